"""Flow graph: the single owner of a questionnaire flow.

All mutation goes through FlowGraph commands. Each command:

1. validates the request (structural rejections come back as a
   ``MutationResult`` carrying a ``ValidationRejected``; API misuse such as an
   unknown node id raises);
2. snapshots the pre-state for undo;
3. applies the change inside a store savepoint, so an exception rolls the
   whole command back;
4. updates path identifiers (incrementally for added edges, fully for
   changes that alter an answer's handles);
5. notifies subscribers with a fresh read-only snapshot.

FlowGraph delegates raw storage to a FlowStore backend (DictFlowStore by
default). Layout only runs on an explicit ``organize()``.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from questionflow.graph.algorithms import (
    natural_sort_key,
    nearest_ancestor_topic,
    reachable_from,
    successors,
    topological_order,
)
from questionflow.graph.errors import (
    EdgeNotFoundError,
    NodeExistsError,
    NodeNotFoundError,
    RejectionReason,
    ValidationRejected,
)
from questionflow.graph.handles import DEFAULT_HANDLE, is_valid_answer_handle
from questionflow.graph.history import DEFAULT_HISTORY_CAPACITY, HistoryManager
from questionflow.graph.layout import LayoutOptions, compute_layout
from questionflow.graph.models import (
    AnswerMode,
    AnswerNode,
    Edge,
    OutcomeNode,
    Position,
    QuestionNode,
    Variant,
)
from questionflow.graph.orphans import NodeFlags, node_flags, stale_paths
from questionflow.graph.path_ids import (
    FALLBACK_TOPIC,
    PathIdGenerator,
    PathIdResult,
    edge_id as make_edge_id,
    is_orphan_path,
    path_level,
    topic_problem,
)
from questionflow.graph.store import DictFlowStore, FlowSnapshot, FlowStore
from questionflow.graph.validation import can_add_edge
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence

    from questionflow.config import EditorConfig
    from questionflow.export.base import FlowDocument
    from questionflow.export.merge import ImportResult
    from questionflow.graph.models import Node

log = get_logger(__name__)

ID_PREFIXES: dict[str, str] = {"question": "q", "answer": "a", "outcome": "o"}

# Fields update_node may change, per node type. Structure-bearing fields
# (variants, mode, topic, is_root) have dedicated commands.
CONTENT_FIELDS: dict[str, frozenset[str]] = {
    "question": frozenset({"text"}),
    "answer": frozenset(),
    "outcome": frozenset({"recommendation"}),
}

VARIANT_FIELDS = frozenset({"text", "score", "additional_info"})


@dataclass
class MutationResult:
    """Outcome of a FlowGraph command.

    Attributes:
        ok: False when the command was rejected or was a no-op.
        reason: Human-readable explanation when ``ok`` is False.
        rejection: The structural rejection, if that is why it failed.
        node_ids: Nodes created or changed by the command.
        edge_ids: Edges created or removed by the command.
    """

    ok: bool = True
    reason: str = ""
    rejection: ValidationRejected | None = None
    node_ids: list[str] = field(default_factory=list)
    edge_ids: list[str] = field(default_factory=list)

    @classmethod
    def rejected(cls, rejection: ValidationRejected) -> MutationResult:
        return cls(ok=False, reason=rejection.message, rejection=rejection)

    @classmethod
    def noop(cls, reason: str) -> MutationResult:
        return cls(ok=False, reason=reason)

    def raise_for_rejection(self) -> MutationResult:
        """Raise the rejection, if any; otherwise return self."""
        if self.rejection is not None:
            raise self.rejection
        return self


@dataclass(frozen=True)
class FlowChange:
    """Notification handed to subscribers after a settled command."""

    command: str
    node_ids: tuple[str, ...]
    edge_ids: tuple[str, ...]
    snapshot: FlowSnapshot


@dataclass(frozen=True)
class Clipboard:
    """Copied nodes plus the edges running between them."""

    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]

    def __bool__(self) -> bool:
        return bool(self.nodes)


class FlowGraph:
    """Command API over a questionnaire flow.

    Args:
        store: Storage backend; a fresh DictFlowStore when omitted.
        topic: Fallback topic for root questions without one.
        history_capacity: Number of undo snapshots kept.
        layout_options: Options for ``organize()``.
        paste_offset: Offset applied to pasted nodes, per axis.
        generator: Path identifier generator; a fresh one when omitted.
    """

    def __init__(
        self,
        *,
        store: FlowStore | None = None,
        topic: str = FALLBACK_TOPIC,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        layout_options: LayoutOptions | None = None,
        paste_offset: float = 50.0,
        generator: PathIdGenerator | None = None,
    ) -> None:
        self._store: FlowStore = store if store is not None else DictFlowStore()
        self.topic = topic
        self.layout_options = layout_options or LayoutOptions()
        self.paste_offset = paste_offset
        self._paths = generator if generator is not None else PathIdGenerator(topic)
        self._history = HistoryManager(history_capacity)
        self._listeners: list[Callable[[FlowChange], None]] = []
        self._clipboard: Clipboard | None = None
        self._savepoint_seq = 0
        self._batch_depth = 0
        self._batch_changed = False
        self._batch_nodes: list[str] = []
        self._batch_edges: list[str] = []
        if self._store.node_count():
            self._paths.load_registry(self._store.all_nodes())

    @classmethod
    def from_config(cls, config: EditorConfig, *, store: FlowStore | None = None) -> FlowGraph:
        """Create a graph using editor configuration."""
        return cls(
            store=store,
            topic=config.default_topic,
            history_capacity=config.history_capacity,
            layout_options=config.layout,
            paste_offset=config.paste_offset,
        )

    @classmethod
    def from_document(cls, document: FlowDocument | Mapping[str, Any], **kwargs: Any) -> FlowGraph:
        """Create a graph from an exchange document, with empty history."""
        graph = cls(**kwargs)
        graph.import_document(document, shift=False)
        graph._history.clear()
        return graph

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    @property
    def nodes(self) -> list[Node]:
        """Deep copies of all nodes, in insertion order."""
        return list(self._store.snapshot().nodes)

    @property
    def edges(self) -> list[Edge]:
        return self._store.get_edges()

    @property
    def paths(self) -> PathIdGenerator:
        """The path identifier generator owned by this graph."""
        return self._paths

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def clipboard(self) -> Clipboard | None:
        return self._clipboard

    def get_node(self, node_id: str) -> Node | None:
        """Copy of a node, or None if not found."""
        node = self._store.get_node(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def has_node(self, node_id: str) -> bool:
        return self._store.has_node(node_id)

    def snapshot(self) -> FlowSnapshot:
        """Immutable copy of the current nodes and edges."""
        return self._store.snapshot()

    def subscribe(self, listener: Callable[[FlowChange], None]) -> Callable[[], None]:
        """Register *listener* for settled changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def node_flags(self) -> dict[str, NodeFlags]:
        """Orphan highlighting flags per node."""
        return node_flags(self._store.all_nodes(), self._store.get_edges())

    def stale_paths(self) -> dict[str, set[str]]:
        """Stored path ids that no longer resolve, per node."""
        return stale_paths(self._store.all_nodes(), self._store.get_edges(), self.topic)

    def root_topics(self) -> list[str]:
        """Topics of flagged root questions, in natural id order."""
        roots = [
            n for n in self._store.all_nodes() if isinstance(n, QuestionNode) and n.is_root and n.topic
        ]
        return [n.topic for n in sorted(roots, key=lambda n: natural_sort_key(n.id))]

    # -------------------------------------------------------------------------
    # Command plumbing
    # -------------------------------------------------------------------------

    def _require(self, node_id: str, context: str) -> Node:
        node = self._store.get_node(node_id)
        if node is None:
            available = sorted((n.id for n in self._store.all_nodes()), key=natural_sort_key)
            raise NodeNotFoundError(node_id, available=available, context=context)
        return node

    def _require_answer(self, node_id: str, context: str) -> AnswerNode:
        node = self._require(node_id, context)
        if not isinstance(node, AnswerNode):
            raise TypeError(f"{context}: node '{node_id}' is a {node.type}, not an answer")
        return node

    def _node_map(self) -> dict[str, Node]:
        return {n.id: n for n in self._store.all_nodes()}

    def _next_savepoint(self, name: str) -> str:
        self._savepoint_seq += 1
        return f"{name}_{self._savepoint_seq}"

    def _notify(self, command: str, node_ids: Iterable[str], edge_ids: Iterable[str]) -> None:
        if not self._listeners:
            return
        change = FlowChange(
            command=command,
            node_ids=tuple(node_ids),
            edge_ids=tuple(edge_ids),
            snapshot=self._store.snapshot(),
        )
        for listener in list(self._listeners):
            listener(change)

    @contextmanager
    def _command(self, name: str, *, record: bool = True) -> Iterator[MutationResult]:
        """Run a command body atomically; yields the result to fill in."""
        result = MutationResult()
        pre = self._store.snapshot() if record and self._batch_depth == 0 else None
        savepoint = self._next_savepoint(name)
        self._store.savepoint(savepoint)
        try:
            yield result
        except Exception:
            self._store.rollback_to(savepoint)
            self._store.release(savepoint)
            log.warning("command_rolled_back", command=name)
            raise
        self._store.release(savepoint)

        if self._batch_depth:
            self._batch_changed = True
            self._batch_nodes.extend(result.node_ids)
            self._batch_edges.extend(result.edge_ids)
            return
        if pre is not None:
            self._history.save(pre)
        log.debug("command_applied", command=name, nodes=result.node_ids, edges=result.edge_ids)
        self._notify(name, result.node_ids, result.edge_ids)

    @contextmanager
    def batch(self, name: str = "batch") -> Iterator[None]:
        """Group several commands into one history entry and one notification.

        Used for drag interactions: ``move_node`` calls inside a batch are
        recorded as a single undo step. Nested batches join the outer one.
        An exception rolls back every command of the batch.
        """
        if self._batch_depth:
            self._batch_depth += 1
            try:
                yield
            finally:
                self._batch_depth -= 1
            return

        pre = self._store.snapshot()
        savepoint = self._next_savepoint(name)
        self._store.savepoint(savepoint)
        self._batch_depth = 1
        self._batch_changed = False
        self._batch_nodes = []
        self._batch_edges = []
        try:
            yield
        except Exception:
            self._store.rollback_to(savepoint)
            self._store.release(savepoint)
            log.warning("batch_rolled_back", batch=name)
            raise
        finally:
            self._batch_depth = 0
        self._store.release(savepoint)

        if self._batch_changed:
            self._history.save(pre)
            log.debug("batch_applied", batch=name, nodes=len(self._batch_nodes))
            self._notify(name, dict.fromkeys(self._batch_nodes), dict.fromkeys(self._batch_edges))

    def _next_id(self, node_type: str) -> str:
        prefix = ID_PREFIXES[node_type]
        pattern = re.compile(rf"^{prefix}(\d+)$")
        highest = 0
        for node in self._store.all_nodes():
            match = pattern.match(node.id)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}{highest + 1}"

    def _unique_edge_id(self, source: str, target: str, handle: str) -> str:
        base = make_edge_id(source, target, handle)
        taken = {e.id for e in self._store.get_edges()}
        candidate, n = base, 2
        while candidate in taken:
            candidate = f"{base}-{n}"
            n += 1
        return candidate

    # -------------------------------------------------------------------------
    # Path identifier upkeep
    # -------------------------------------------------------------------------

    def _merge_paths(self, updates: Mapping[str, set[str]]) -> None:
        """Append derived paths, dropping ORPHAN placeholders."""
        for nid, paths in updates.items():
            node = self._store.get_node(nid)
            if node is None or not paths:
                continue
            real = {p for p in node.path_ids if not is_orphan_path(p)}
            node.path_ids = real | paths
            if isinstance(node, QuestionNode):
                node.level = min(path_level(p) for p in node.path_ids)
            self._store.set_node(node)

    def _derive_for_edges(self, edges: Iterable[Edge]) -> None:
        """Run the incremental path update for new *edges*, sources first."""
        new_edges = list(edges)
        order = {
            nid: i
            for i, nid in enumerate(
                topological_order((n.id for n in self._store.all_nodes()), self._store.get_edges())
            )
        }
        new_edges.sort(key=lambda e: (order.get(e.source, 0), natural_sort_key(e.id)))
        for edge in new_edges:
            updates = self._paths.derive_edge_paths(
                self._node_map(), self._store.get_edges(), edge, self.topic
            )
            self._merge_paths(updates)

    def _recompute_paths(self) -> PathIdResult:
        """Replace every node's path ids with a full recomputation."""
        self._paths.reset()
        result = self._paths.compute(self._store.all_nodes(), self._store.get_edges(), self.topic)
        for node in self._store.all_nodes():
            node.path_ids = set(result.path_ids.get(node.id, set()))
            if isinstance(node, QuestionNode) and node.id in result.levels:
                node.level = result.levels[node.id]
            self._store.set_node(node)
        return result

    # -------------------------------------------------------------------------
    # Node commands
    # -------------------------------------------------------------------------

    def add_node(self, node: Node) -> MutationResult:
        """Add a pre-built node.

        Its ``path_ids`` are ignored and derived by the engine.

        Raises:
            NodeExistsError: If the id is already taken.
            ValueError: If a question topic cannot prefix path identifiers.
        """
        if self._store.has_node(node.id):
            raise NodeExistsError(node.id)
        if isinstance(node, QuestionNode) and node.topic:
            problem = topic_problem(node.topic)
            if problem:
                raise ValueError(f"add_node: {problem}")
        if isinstance(node, QuestionNode) and node.is_root and node.topic:
            for other in self._store.all_nodes():
                if isinstance(other, QuestionNode) and other.is_root and other.topic == node.topic:
                    rejection = ValidationRejected(
                        reason=RejectionReason.DUPLICATE_TOPIC,
                        message=f"Topic '{node.topic}' is already used by root question '{other.id}'",
                        source=node.id,
                    )
                    log.info("node_rejected", node_id=node.id, reason=str(rejection.reason))
                    return MutationResult.rejected(rejection)

        with self._command("add_node") as result:
            new = node.model_copy(deep=True)
            new.path_ids = set()
            self._store.set_node(new)
            new.path_ids = self._paths.initial_path_ids(
                new, self._store.all_nodes(), self.topic, self._store.get_edges()
            )
            self._store.set_node(new)
            result.node_ids.append(new.id)
        return result

    def add_question(
        self,
        text: str = "",
        *,
        topic: str = "",
        is_root: bool = False,
        position: Position | None = None,
        node_id: str | None = None,
    ) -> MutationResult:
        """Create a question. Root questions start a flow and own *topic*."""
        node = QuestionNode(
            id=node_id or self._next_id("question"),
            text=text,
            topic=topic,
            is_root=is_root,
            position=position or Position(),
        )
        return self.add_node(node)

    def add_answer(
        self,
        variants: Sequence[str | Variant] = (),
        *,
        mode: AnswerMode = AnswerMode.SINGLE,
        position: Position | None = None,
        node_id: str | None = None,
    ) -> MutationResult:
        """Create an answer with *variants* (texts or Variant models)."""
        built = [
            v if isinstance(v, Variant) else Variant(id=f"var{i + 1}", text=v)
            for i, v in enumerate(variants)
        ]
        node = AnswerNode(
            id=node_id or self._next_id("answer"),
            mode=mode,
            variants=built,
            position=position or Position(),
        )
        return self.add_node(node)

    def add_outcome(
        self,
        recommendation: str = "",
        *,
        position: Position | None = None,
        node_id: str | None = None,
    ) -> MutationResult:
        """Create a terminal outcome."""
        node = OutcomeNode(
            id=node_id or self._next_id("outcome"),
            recommendation=recommendation,
            position=position or Position(),
        )
        return self.add_node(node)

    def update_node(self, node_id: str, **changes: Any) -> MutationResult:
        """Change a node's content fields (question text, outcome recommendation).

        Raises:
            NodeNotFoundError: If the node doesn't exist.
            ValueError: If a field is not editable content for the node type.
        """
        node = self._require(node_id, "update_node")
        allowed = CONTENT_FIELDS[node.type]
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValueError(
                f"update_node cannot change {', '.join(unknown)} on a {node.type}; "
                f"editable fields: {', '.join(sorted(allowed)) or 'none'}"
            )
        if all(getattr(node, k) == v for k, v in changes.items()):
            return MutationResult.noop("Nothing changed")

        with self._command("update_node") as result:
            for key, value in changes.items():
                setattr(node, key, value)
            self._store.set_node(node)
            result.node_ids.append(node_id)
        return result

    def move_node(self, node_id: str, x: float, y: float) -> MutationResult:
        """Move a node. Not recorded in history; wrap drags in ``batch()``."""
        node = self._require(node_id, "move_node")
        with self._command("move_node", record=False) as result:
            node.position = Position(x=x, y=y)
            self._store.set_node(node)
            result.node_ids.append(node_id)
        return result

    def delete_node(self, node_id: str) -> MutationResult:
        """Delete a node and every edge touching it.

        Downstream path ids are left in place until ``propagate_all()``.
        """
        self._require(node_id, "delete_node")
        with self._command("delete_node") as result:
            removed = self._store.remove_edges_referencing(node_id)
            self._store.delete_node(node_id)
            result.node_ids.append(node_id)
            result.edge_ids.extend(e.id for e in removed)
        log.debug("node_deleted", node_id=node_id, edges_removed=len(removed))
        return result

    # -------------------------------------------------------------------------
    # Edge commands
    # -------------------------------------------------------------------------

    def connect(self, source: str, target: str, handle: str = DEFAULT_HANDLE) -> MutationResult:
        """Connect ``source --handle--> target`` if every invariant allows it.

        On success the target gains the paths the new edge introduces, loses
        its root flag, and inherits the nearest ancestor topic if it has none.
        """
        rejection = can_add_edge(self._node_map(), self._store.get_edges(), source, target, handle)
        if rejection is not None:
            return MutationResult.rejected(rejection)

        with self._command("connect") as result:
            edge = Edge(
                id=self._unique_edge_id(source, target, handle),
                source=source,
                target=target,
                source_handle=handle,
            )
            self._store.add_edge(edge)
            if self._adopt_target(source, target) and any(e.source == target for e in self._store.get_edges()):
                # Paths below a former root were derived from its root path.
                self._recompute_paths()
            else:
                self._derive_for_edges([edge])
            result.node_ids.append(target)
            result.edge_ids.append(edge.id)
        log.debug("edge_added", source=source, target=target, handle=handle)
        return result

    def _adopt_target(self, source: str, target: str) -> bool:
        """Fold a newly connected target into its parent's flow.

        Returns True when the target was a root until this edge.
        """
        node = self._store.get_node(target)
        if node is None:
            return False
        demoted = False
        if isinstance(node, QuestionNode):
            node.is_root = False
            edges = self._store.get_edges()
            if sum(1 for e in edges if e.target == target) == 1:
                demoted = True
                # Its own root path no longer applies; the new edge supplies paths.
                node.path_ids = self._paths.initial_path_ids(node, self._store.all_nodes(), self.topic, edges)
        if not node.topic:
            topic = nearest_ancestor_topic(self._node_map(), self._store.get_edges(), source)
            if topic:
                node.topic = topic
        self._store.set_node(node)
        return demoted

    def delete_edge(self, edge_id: str) -> MutationResult:
        """Remove an edge. Downstream path ids are invalidated lazily.

        Raises:
            EdgeNotFoundError: If no edge has that id.
        """
        if not any(e.id == edge_id for e in self._store.get_edges()):
            raise EdgeNotFoundError(edge_id)
        with self._command("delete_edge") as result:
            self._store.remove_edge(edge_id)
            result.edge_ids.append(edge_id)
        return result

    def cleanup_duplicate_edges(self) -> MutationResult:
        """Drop repeated ``(source, target, handle)`` edges, keeping the first."""
        seen: set[tuple[str, str, str]] = set()
        duplicates: list[str] = []
        for edge in self._store.get_edges():
            key = (edge.source, edge.target, edge.source_handle)
            if key in seen:
                duplicates.append(edge.id)
            seen.add(key)
        if not duplicates:
            return MutationResult.noop("No duplicate connections")

        with self._command("cleanup_duplicate_edges") as result:
            kept: list[Edge] = []
            seen.clear()
            for edge in self._store.get_edges():
                key = (edge.source, edge.target, edge.source_handle)
                if key not in seen:
                    kept.append(edge)
                seen.add(key)
            self._store.replace_edges(kept)
            result.edge_ids.extend(duplicates)
        log.info("duplicate_edges_removed", count=len(duplicates))
        return result

    def prune_stale_edges(self) -> MutationResult:
        """Remove edges leaving handles their answer no longer exposes."""
        nodes = self._node_map()
        stale = [
            e.id
            for e in self._store.get_edges()
            if isinstance(nodes.get(e.source), AnswerNode)
            and not is_valid_answer_handle(
                e.source_handle, nodes[e.source].mode, len(nodes[e.source].variants)
            )
        ]
        if not stale:
            return MutationResult.noop("No stale connections")

        with self._command("prune_stale_edges") as result:
            self._store.replace_edges(e for e in self._store.get_edges() if e.id not in stale)
            self._recompute_paths()
            result.edge_ids.extend(stale)
        log.info("stale_edges_pruned", count=len(stale))
        return result

    # -------------------------------------------------------------------------
    # Answer branching
    # -------------------------------------------------------------------------

    def set_answer_mode(self, node_id: str, mode: AnswerMode) -> MutationResult:
        """Switch an answer's branching mode, dropping edges on handles that vanish."""
        node = self._require_answer(node_id, "set_answer_mode")
        mode = AnswerMode(mode)
        if node.mode is mode:
            return MutationResult.noop(f"Answer is already {mode}")

        with self._command("set_answer_mode") as result:
            count = len(node.variants)
            dropped = [
                e
                for e in self._store.get_edges(source=node_id)
                if not is_valid_answer_handle(e.source_handle, mode, count)
            ]
            for edge in dropped:
                self._store.remove_edge(edge.id)
            node.mode = mode
            self._store.set_node(node)
            self._recompute_paths()
            result.node_ids.append(node_id)
            result.edge_ids.extend(e.id for e in dropped)
        log.debug("answer_mode_changed", node_id=node_id, mode=str(mode), dropped=len(dropped))
        return result

    def add_variant(
        self,
        node_id: str,
        text: str = "",
        *,
        score: float = 0,
        additional_info: str | None = None,
    ) -> MutationResult:
        """Append a variant to an answer."""
        node = self._require_answer(node_id, "add_variant")
        taken = {v.id for v in node.variants}
        n = len(node.variants) + 1
        while f"var{n}" in taken:
            n += 1

        with self._command("add_variant") as result:
            node.variants = [
                *node.variants,
                Variant(id=f"var{n}", text=text, score=score, additional_info=additional_info),
            ]
            self._store.set_node(node)
            self._recompute_paths()
            result.node_ids.append(node_id)
        return result

    def update_variant(self, node_id: str, index: int, **changes: Any) -> MutationResult:
        """Edit text, score or additional info of the variant at *index*.

        Raises:
            IndexError: If there is no variant at *index*.
            ValueError: If a field is not a variant field.
        """
        node = self._require_answer(node_id, "update_variant")
        if not 0 <= index < len(node.variants):
            raise IndexError(f"Answer '{node_id}' has no variant {index}")
        unknown = sorted(set(changes) - VARIANT_FIELDS)
        if unknown:
            raise ValueError(f"update_variant cannot change {', '.join(unknown)}")

        with self._command("update_variant") as result:
            variants = list(node.variants)
            variants[index] = variants[index].model_copy(update=changes)
            node.variants = variants
            self._store.set_node(node)
            result.node_ids.append(node_id)
        return result

    def remove_variant(self, node_id: str, index: int) -> MutationResult:
        """Remove the variant at *index*.

        Edges on handles beyond the new variant count are kept but become
        stale: no path flows through them and orphan flags report them until
        ``prune_stale_edges()`` removes them.

        Raises:
            IndexError: If there is no variant at *index*.
        """
        node = self._require_answer(node_id, "remove_variant")
        if not 0 <= index < len(node.variants):
            raise IndexError(f"Answer '{node_id}' has no variant {index}")

        with self._command("remove_variant") as result:
            node.variants = [v for i, v in enumerate(node.variants) if i != index]
            self._store.set_node(node)
            paths = self._recompute_paths()
            result.node_ids.append(node_id)
            result.edge_ids.extend(s.edge_id for s in paths.stale_handles if s.node_id == node_id)
        return result

    # -------------------------------------------------------------------------
    # Topics and path identifiers
    # -------------------------------------------------------------------------

    def rename_topic(self, node_id: str, topic: str) -> MutationResult:
        """Rename a root question's topic and carry it down its flow."""
        node = self._require(node_id, "rename_topic")
        if not isinstance(node, QuestionNode) or not node.is_root:
            raise ValueError(f"rename_topic: node '{node_id}' is not a root question")
        topic = topic.strip()
        if not topic:
            raise ValueError("rename_topic: topic must not be empty")
        problem = topic_problem(topic)
        if problem:
            raise ValueError(f"rename_topic: {problem}")
        if topic == node.topic:
            return MutationResult.noop("Topic unchanged")
        for other in self._store.all_nodes():
            if isinstance(other, QuestionNode) and other.is_root and other.id != node_id and other.topic == topic:
                rejection = ValidationRejected(
                    reason=RejectionReason.DUPLICATE_TOPIC,
                    message=f"Topic '{topic}' is already used by root question '{other.id}'",
                    source=node_id,
                )
                log.info("topic_rejected", node_id=node_id, topic=topic)
                return MutationResult.rejected(rejection)

        old = node.topic
        with self._command("rename_topic") as result:
            downstream = reachable_from(node_id, successors(self._store.get_edges()))
            for nid in sorted(downstream, key=natural_sort_key):
                member = self._store.get_node(nid)
                if member is None:
                    continue
                if nid == node_id or member.topic in ("", old):
                    member.topic = topic
                    self._store.set_node(member)
                    result.node_ids.append(nid)
            self._recompute_paths()
        log.debug("topic_renamed", node_id=node_id, old=old, new=topic)
        return result

    def propagate_all(self) -> MutationResult:
        """Re-derive every path identifier and question level from scratch."""
        with self._command("propagate_all") as result:
            before = {n.id: set(n.path_ids) for n in self._store.all_nodes()}
            paths = self._recompute_paths()
            result.node_ids.extend(
                nid for nid, ids in paths.path_ids.items() if before.get(nid) != ids
            )
        log.debug("paths_propagated", changed=len(result.node_ids))
        return result

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------

    def organize(self) -> MutationResult:
        """Lay the whole flow out without overlaps, as one undo step."""
        nodes = self._store.all_nodes()
        if not nodes:
            return MutationResult.noop("Nothing to organize")
        existing = {n.id: n.position for n in nodes}
        positions = compute_layout(nodes, self._store.get_edges(), self.layout_options, existing)

        with self._command("organize") as result:
            moved = []
            for node in self._store.snapshot().nodes:
                node.position = positions[node.id]
                moved.append(node)
            self._store.replace_nodes(moved)
            result.node_ids.extend(n.id for n in moved)
        return result

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _restore(self, state: FlowSnapshot) -> None:
        self._store.restore(state)
        self._paths.load_registry(self._store.all_nodes())

    def undo(self) -> MutationResult:
        """Restore the state before the last recorded command."""
        state = self._history.undo(self._store.snapshot())
        if state is None:
            return MutationResult.noop("Nothing to undo")
        self._restore(state)
        self._notify("undo", (), ())
        return MutationResult()

    def redo(self) -> MutationResult:
        """Re-apply the last undone command."""
        state = self._history.redo()
        if state is None:
            return MutationResult.noop("Nothing to redo")
        self._restore(state)
        self._notify("redo", (), ())
        return MutationResult()

    # -------------------------------------------------------------------------
    # Clipboard
    # -------------------------------------------------------------------------

    def copy_nodes(self, node_ids: Iterable[str]) -> Clipboard:
        """Copy nodes and the edges running between them to the clipboard."""
        ids = list(dict.fromkeys(node_ids))
        nodes = tuple(self._require(nid, "copy_nodes").model_copy(deep=True) for nid in ids)
        selected = set(ids)
        edges = tuple(
            e for e in self._store.get_edges() if e.source in selected and e.target in selected
        )
        self._clipboard = Clipboard(nodes=nodes, edges=edges)
        log.debug("nodes_copied", nodes=len(nodes), edges=len(edges))
        return self._clipboard

    def _free_topic(self, topic: str, taken: set[str]) -> str:
        n = 2
        while f"{topic}_{n}" in taken:
            n += 1
        return f"{topic}_{n}"

    def paste(self, clipboard: Clipboard | None = None, *, offset: float | None = None) -> MutationResult:
        """Paste clipboard nodes under fresh ids, shifted by *offset*.

        Root topics that already exist get a ``_<n>`` suffix, carried to the
        pasted nodes that shared the old topic.
        """
        clip = clipboard if clipboard is not None else self._clipboard
        if not clip:
            return MutationResult.noop("Clipboard is empty")
        shift = self.paste_offset if offset is None else offset
        taken_topics = set(self.root_topics())

        with self._command("paste") as result:
            id_map: dict[str, str] = {}
            topic_map: dict[str, str] = {}
            for source in clip.nodes:
                if isinstance(source, QuestionNode) and source.is_root and source.topic in taken_topics:
                    renamed = self._free_topic(source.topic, taken_topics)
                    topic_map[source.topic] = renamed
                    taken_topics.add(renamed)

            for source in clip.nodes:
                new = source.model_copy(deep=True)
                new.id = self._next_id(new.type)
                new.position = Position(x=source.position.x + shift, y=source.position.y + shift)
                new.topic = topic_map.get(new.topic, new.topic)
                new.path_ids = set()
                self._store.set_node(new)
                id_map[source.id] = new.id

            pasted: list[Edge] = []
            for edge in clip.edges:
                source, target = id_map[edge.source], id_map[edge.target]
                new_edge = Edge(
                    id=self._unique_edge_id(source, target, edge.source_handle),
                    source=source,
                    target=target,
                    source_handle=edge.source_handle,
                )
                self._store.add_edge(new_edge)
                pasted.append(new_edge)

            for nid in id_map.values():
                node = self._store.get_node(nid)
                node.path_ids = self._paths.initial_path_ids(
                    node, self._store.all_nodes(), self.topic, self._store.get_edges()
                )
                self._store.set_node(node)
            self._derive_for_edges(pasted)

            result.node_ids.extend(id_map.values())
            result.edge_ids.extend(e.id for e in pasted)
        log.debug("nodes_pasted", nodes=len(result.node_ids), renamed_topics=len(topic_map))
        return result

    # -------------------------------------------------------------------------
    # Composite commands
    # -------------------------------------------------------------------------

    def create_linked_question(
        self,
        source: str,
        handle: str = DEFAULT_HANDLE,
        *,
        text: str = "New Question",
        position: Position | None = None,
    ) -> MutationResult:
        """Create a question (with a Yes/No answer) hanging off *source*'s handle."""
        anchor = self._require(source, "create_linked_question")
        question = QuestionNode(id=self._next_id("question"), text=text)
        trial = {**self._node_map(), question.id: question}
        rejection = can_add_edge(trial, self._store.get_edges(), source, question.id, handle)
        if rejection is not None:
            return MutationResult.rejected(rejection)

        opts = self.layout_options
        if position is None:
            position = Position(x=anchor.position.x + opts.horizontal_spacing, y=anchor.position.y)
        question.position = position
        answer = AnswerNode(
            id=self._next_id("answer"),
            variants=[Variant(id="var1", text="Yes", score=1), Variant(id="var2", text="No", score=0)],
            position=Position(x=position.x, y=position.y + opts.question_height + opts.gap * 2),
        )

        with self._command("create_linked_question") as result:
            self._store.set_node(question)
            self._store.set_node(answer)
            link = Edge(
                id=self._unique_edge_id(source, question.id, handle),
                source=source,
                target=question.id,
                source_handle=handle,
            )
            self._store.add_edge(link)
            self._adopt_target(source, question.id)
            inner = Edge(
                id=self._unique_edge_id(question.id, answer.id, DEFAULT_HANDLE),
                source=question.id,
                target=answer.id,
            )
            self._store.add_edge(inner)
            self._adopt_target(question.id, answer.id)
            for nid in (question.id, answer.id):
                node = self._store.get_node(nid)
                node.path_ids = self._paths.initial_path_ids(
                    node, self._store.all_nodes(), self.topic, self._store.get_edges()
                )
                self._store.set_node(node)
            self._derive_for_edges([link, inner])
            result.node_ids.extend([question.id, answer.id])
            result.edge_ids.extend([link.id, inner.id])
        return result

    def clear(self) -> None:
        """Remove every node and edge and forget history."""
        self._store.replace_edges([])
        self._store.replace_nodes([])
        self._history.clear()
        self._paths.reset()
        self._clipboard = None
        log.debug("flow_cleared")
        self._notify("clear", (), ())

    def import_document(
        self,
        document: FlowDocument | Mapping[str, Any],
        *,
        shift: bool = True,
    ) -> ImportResult:
        """Merge an exchange document into this flow (additive).

        Colliding node ids and root topics are renamed and reported; edges
        that would break an invariant are skipped and reported.

        Args:
            document: A FlowDocument or its JSON-like mapping.
            shift: Move imported nodes right of the existing content.

        Raises:
            DocumentFormatError: If the document cannot be parsed.
        """
        from questionflow.export.merge import merge_document

        plan = merge_document(self._store.all_nodes(), self._store.get_edges(), document, shift=shift)
        if not plan.nodes:
            plan.ok = False
            plan.reason = "Document contains no nodes"
            return plan

        with self._command("import_document") as result:
            for node in plan.nodes:
                self._store.set_node(node)
            for edge in plan.edges:
                self._store.add_edge(edge)
            self._recompute_paths()
            result.node_ids.extend(n.id for n in plan.nodes)
            result.edge_ids.extend(e.id for e in plan.edges)
        plan.node_ids = result.node_ids
        plan.edge_ids = result.edge_ids
        log.info(
            "document_imported",
            nodes=len(plan.node_ids),
            edges=len(plan.edge_ids),
            conflicts=len(plan.conflicts),
            rejected=len(plan.rejected),
        )
        return plan

    def __repr__(self) -> str:
        return f"FlowGraph(nodes={self._store.node_count()}, edges={self._store.edge_count()})"
