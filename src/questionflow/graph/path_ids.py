"""Hierarchical path identifiers for flow nodes.

Every node carries the set of path strings describing each distinct route
by which it is reachable from a root question, e.g. ``T-Q1-A1-V2-Q3``.

Grammar (segments joined with ``-``)::

    path     := topic "-Q" n ( "-A" n [ "-V" combo ] ( "-Q" n | "-E" n ) )*
    combo    := i ( "+V" i )*

The number after ``Q``/``A``/``E`` is the node's rank among all nodes of its
type in natural id order, so identifiers never depend on sibling order.
Nodes no root reaches get ``ORPHAN-<letter><n>``.

The generator is caller-owned: construct one per flow, call ``reset()`` to
drop its registry. Full recomputation (``compute``) is reproducible
byte-for-byte from ``(nodes, edges, topic)``; ``derive_edge_paths`` is the
append-only incremental step used when a single edge is added.
"""

from __future__ import annotations

import re
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from questionflow.graph.algorithms import natural_sort_key, root_questions
from questionflow.graph.errors import OrphanedHandleError
from questionflow.graph.handles import (
    DEFAULT_HANDLE,
    generate_combinations,
    mask_to_indices,
    parse_combination_handle,
    parse_variant_handle,
    variant_handle,
)
from questionflow.graph.models import AnswerMode, AnswerNode, OutcomeNode, QuestionNode
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from questionflow.graph.models import Edge, Node

log = get_logger(__name__)

ORPHAN_PREFIX = "ORPHAN"
FALLBACK_TOPIC = "UNTITLED"

_SEGMENT = re.compile(r"^(?:Q\d+|A\d+|E\d+|V\d+(?:\+V\d+)*)$")


def is_orphan_path(path: str) -> bool:
    """True for ``ORPHAN-*`` placeholder identifiers."""
    return path.startswith(f"{ORPHAN_PREFIX}-")


def topic_problem(topic: str) -> str | None:
    """Why *topic* cannot prefix a path identifier, or None when it can.

    A topic whose last ``-`` part looks like a segment (``X-A1``) would be
    read back as part of the route, and ``ORPHAN`` is the placeholder prefix.

    Examples:
        >>> topic_problem("MY-TOPIC") is None
        True
        >>> topic_problem("X-A1")
        "topic must not end in a path segment ('A1')"
    """
    parts = topic.split("-")
    if parts[0] == ORPHAN_PREFIX:
        return f"topic must not start with '{ORPHAN_PREFIX}'"
    if len(parts) > 1 and _SEGMENT.match(parts[-1]):
        return f"topic must not end in a path segment ('{parts[-1]}')"
    return None


@dataclass(frozen=True)
class PathSegment:
    """One parsed path segment.

    Attributes:
        kind: ``"Q"``, ``"A"``, ``"E"`` or ``"V"``.
        numbers: The segment's numbers; several only for combination ``V``
            segments (``V1+V3`` -> ``(1, 3)``).
    """

    kind: str
    numbers: tuple[int, ...]

    @property
    def number(self) -> int:
        return self.numbers[0]

    def __str__(self) -> str:
        return "+".join(f"{self.kind}{n}" for n in self.numbers)


@dataclass(frozen=True)
class PathIdComponents:
    """A path identifier split into topic and segments."""

    topic: str
    segments: tuple[PathSegment, ...]


@dataclass
class PathIdResult:
    """Output of a full path identifier computation.

    Attributes:
        path_ids: ``node id -> path strings`` for every node.
        levels: Question depth per reachable question (root = 1).
        stale_handles: Edges whose source handle no longer exists.
        unreachable: Nodes no root reaches (assigned ``ORPHAN-*``).
    """

    path_ids: dict[str, set[str]] = field(default_factory=dict)
    levels: dict[str, int] = field(default_factory=dict)
    stale_handles: list[OrphanedHandleError] = field(default_factory=list)
    unreachable: list[str] = field(default_factory=list)


def parse_path_id(path: str) -> PathIdComponents:
    """Split a path identifier into topic and segments.

    The topic is everything before the first run of well-formed trailing
    segments, so topics containing ``-`` survive.

    Examples:
        >>> parse_path_id("T-Q1-A1-V1+V2").segments[-1].numbers
        (1, 2)
        >>> parse_path_id("MY-TOPIC-Q1").topic
        'MY-TOPIC'
    """
    parts = path.split("-")
    start = len(parts)
    while start > 1 and _SEGMENT.match(parts[start - 1]):
        start -= 1
    topic = "-".join(parts[:start])
    segments = []
    for part in parts[start:]:
        pieces = part.split("+")
        segments.append(PathSegment(kind=part[0], numbers=tuple(int(p[1:]) for p in pieces)))
    return PathIdComponents(topic=topic, segments=tuple(segments))


def parent_path_id(path: str) -> str | None:
    """Drop the last segment; None for a root path (topic plus one segment)."""
    components = parse_path_id(path)
    if len(components.segments) <= 1:
        return None
    return path.rsplit("-", 1)[0]


def path_level(path: str) -> int:
    """Number of questions along the path."""
    return sum(1 for s in parse_path_id(path).segments if s.kind == "Q")


def display_label(path: str, node_type: str) -> str:
    """Short label for a node, e.g. ``Q1.2.4`` instead of the full path."""
    components = parse_path_id(path)
    if node_type == "question":
        numbers = [str(s.number) for s in components.segments if s.kind == "Q"]
        return f"Q{'.'.join(numbers)}"
    if node_type == "answer":
        answers = [s for s in components.segments if s.kind == "A"]
        return f"A{answers[-1].number if answers else '?'}"
    if node_type == "outcome":
        return f"Outcome {path_level(path)}"
    return path


def edge_id(source: str, target: str, handle: str | None = None) -> str:
    """Deterministic edge id for a connection."""
    suffix = f"-{handle}" if handle else ""
    return f"edge-{source}-{target}{suffix}"


class PathIdGenerator:
    """Derives path identifiers for a flow.

    Holds a registry of the last computation (``path -> node`` and
    ``node -> paths``) used by the lookup helpers. Not shared between
    flows; ``reset()`` clears it.
    """

    def __init__(self, default_topic: str = FALLBACK_TOPIC) -> None:
        self.default_topic = default_topic
        self._ranks: dict[str, int] = {}
        self._path_to_node: dict[str, str] = {}
        self._node_to_paths: dict[str, set[str]] = {}

    def reset(self) -> None:
        """Forget ranks and the path registry."""
        self._ranks.clear()
        self._path_to_node.clear()
        self._node_to_paths.clear()

    # -------------------------------------------------------------------------
    # Numbering
    # -------------------------------------------------------------------------

    def _build_ranks(self, nodes: Iterable[Node]) -> None:
        by_type: dict[str, list[str]] = defaultdict(list)
        for node in nodes:
            by_type[node.type].append(node.id)
        self._ranks = {}
        for ids in by_type.values():
            for rank, nid in enumerate(sorted(ids, key=natural_sort_key), start=1):
                self._ranks[nid] = rank

    def number_for(self, node_id: str) -> int:
        """Sequential number of a node within its type (1-based)."""
        return self._ranks[node_id]

    # -------------------------------------------------------------------------
    # Path derivation
    # -------------------------------------------------------------------------

    def _node_path(self, node: Node, parent_path: str | None, topic: str) -> str:
        n = self._ranks[node.id]
        if isinstance(node, QuestionNode):
            prefix = parent_path if parent_path is not None else (node.topic or topic)
            return f"{prefix}-Q{n}"
        prefix = parent_path if parent_path is not None else ORPHAN_PREFIX
        if isinstance(node, AnswerNode):
            return f"{prefix}-A{n}"
        return f"{prefix}-E{n}"

    @staticmethod
    def _expand(node: Node, node_path: str) -> tuple[list[str], dict[str, str]]:
        """Return (paths stored on the node, handle -> path handed downstream)."""
        if isinstance(node, OutcomeNode):
            return [node_path], {}
        if isinstance(node, QuestionNode):
            return [node_path], {DEFAULT_HANDLE: node_path}
        if node.mode is AnswerMode.SINGLE:
            return [node_path], {DEFAULT_HANDLE: node_path}
        if node.mode is AnswerMode.MULTIPLE:
            routes = {variant_handle(i): f"{node_path}-V{i + 1}" for i in range(len(node.variants))}
            return list(routes.values()), routes
        routes = {c.handle: f"{node_path}-{c.path_suffix}" for c in generate_combinations(node.variants)}
        return list(routes.values()), routes

    def compute(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
        topic: str | None = None,
    ) -> PathIdResult:
        """Recompute path identifiers for the whole flow from scratch.

        Breadth-first from every question without an incoming edge. Each
        node gains one path per distinct route; traversal continues down
        every outgoing edge whose handle the node exposes for that route.

        Args:
            nodes: All nodes of the flow.
            edges: All edges of the flow.
            topic: Topic used for roots that carry none of their own.

        Returns:
            PathIdResult covering every node.
        """
        node_list = list(nodes)
        edge_list = list(edges)
        node_map = {n.id: n for n in node_list}
        fallback = topic or self.default_topic
        self._build_ranks(node_list)

        outgoing: dict[str, list[Edge]] = defaultdict(list)
        for edge in edge_list:
            outgoing[edge.source].append(edge)

        result = PathIdResult(path_ids={nid: set() for nid in node_map})
        stale_seen: set[str] = set()
        # A simple route visits each node at most once.
        max_depth = len(node_list)

        queue: deque[tuple[str, str | None, int, int]] = deque(
            (root.id, None, 1, 1) for root in root_questions(node_list, edge_list)
        )
        visited: set[tuple[str, str | None]] = set()

        while queue:
            nid, parent, level, depth = queue.popleft()
            if (nid, parent) in visited:
                continue
            visited.add((nid, parent))

            node = node_map[nid]
            node_path = self._node_path(node, parent, fallback)
            if depth > max_depth:
                log.warning("path_depth_exceeded", node_id=nid, path=node_path)
                continue

            stored, routes = self._expand(node, node_path)
            result.path_ids[nid].update(stored)
            if isinstance(node, QuestionNode):
                result.levels[nid] = min(result.levels.get(nid, level), level)
            self._register(nid, stored, node_path)

            next_level = level + 1 if isinstance(node, AnswerNode) else level
            for edge in outgoing.get(nid, []):
                if edge.target not in node_map:
                    continue
                route = routes.get(edge.source_handle)
                if route is None:
                    if not isinstance(node, OutcomeNode) and edge.id not in stale_seen:
                        stale_seen.add(edge.id)
                        result.stale_handles.append(self._stale(node, edge))
                    continue
                queue.append((edge.target, route, next_level, depth + 1))

        for nid in sorted(node_map, key=natural_sort_key):
            if not result.path_ids[nid]:
                node = node_map[nid]
                orphan = f"{ORPHAN_PREFIX}-{node.type_letter}{self._ranks[nid]}"
                result.path_ids[nid] = {orphan}
                result.unreachable.append(nid)
                self._register(nid, [orphan], orphan)

        if result.stale_handles:
            log.warning(
                "stale_handles_detected",
                edges=[s.edge_id for s in result.stale_handles],
            )
        log.debug(
            "path_ids_computed",
            nodes=len(node_map),
            unreachable=len(result.unreachable),
        )
        return result

    def route_paths(self, node: Node, handle: str) -> list[str]:
        """Paths a node currently hands down through *handle*.

        Reads the node's stored ``path_ids``. Empty when the handle does not
        exist on the node or the node has no real paths yet.
        """
        real = sorted(p for p in node.path_ids if not is_orphan_path(p))
        if isinstance(node, OutcomeNode):
            return []
        if isinstance(node, QuestionNode) or node.mode is AnswerMode.SINGLE:
            return real if handle == DEFAULT_HANDLE else []

        if node.mode is AnswerMode.MULTIPLE:
            index = parse_variant_handle(handle)
            if index is None or index >= len(node.variants):
                return []
            suffix = f"V{index + 1}"
        else:
            mask = parse_combination_handle(handle)
            if mask is None or mask >= 2 ** len(node.variants):
                return []
            suffix = "+".join(f"V{i}" for i in mask_to_indices(mask))
        return [p for p in real if p.rsplit("-", 1)[-1] == suffix]

    def initial_path_ids(
        self,
        node: Node,
        nodes: Iterable[Node],
        topic: str | None = None,
        edges: Iterable[Edge] = (),
    ) -> set[str]:
        """Path ids a node holds before any incoming edge hands it paths.

        A question nothing points at is a root and gets its root path; every
        other node gets its ``ORPHAN-*`` placeholder.
        """
        self._build_ranks(nodes)
        if isinstance(node, QuestionNode) and not any(e.target == node.id for e in edges):
            path = self._node_path(node, None, topic or self.default_topic)
        else:
            path = f"{ORPHAN_PREFIX}-{node.type_letter}{self._ranks[node.id]}"
        self._register(node.id, [path], path)
        return {path}

    def derive_edge_paths(
        self,
        nodes: Mapping[str, Node],
        edges: Iterable[Edge],
        edge: Edge,
        topic: str | None = None,
    ) -> dict[str, set[str]]:
        """Derive only the paths a single new edge introduces.

        Starts from the source's current paths for the edge's handle and
        walks the target's subtree, producing paths not already stored.
        Existing paths are never touched. A source question nothing points
        at counts as a root and also gains its root path if it lacks it.

        Args:
            nodes: Current nodes by id (the new edge's endpoints included).
            edges: Current edges, the new edge included.
            edge: The edge just added.
            topic: Fallback topic for a root source with no topic.

        Returns:
            ``node id -> new path strings`` (only nodes that gained paths).
        """
        self._build_ranks(nodes.values())
        source = nodes[edge.source]
        fallback = topic or self.default_topic

        edge_list = list(edges)
        added: dict[str, set[str]] = defaultdict(set)
        parents = self.route_paths(source, edge.source_handle)
        if not parents and isinstance(source, QuestionNode) and not any(e.target == source.id for e in edge_list):
            root_path = self._node_path(source, None, fallback)
            parents = [root_path]
            added[source.id].add(root_path)

        outgoing: dict[str, list[Edge]] = defaultdict(list)
        for e in edge_list:
            outgoing[e.source].append(e)

        max_depth = len(nodes)
        queue = deque((edge.target, p, 1) for p in parents)
        visited: set[tuple[str, str]] = set()

        while queue:
            nid, parent, depth = queue.popleft()
            if (nid, parent) in visited or nid not in nodes or depth > max_depth:
                continue
            visited.add((nid, parent))
            node = nodes[nid]
            node_path = self._node_path(node, parent, fallback)

            stored, routes = self._expand(node, node_path)
            fresh = [p for p in stored if p not in node.path_ids and p not in added[nid]]
            if not fresh:
                continue
            added[nid].update(fresh)
            self._register(nid, fresh, node_path)

            for child in outgoing.get(nid, []):
                route = routes.get(child.source_handle)
                if route is not None and route in fresh:
                    queue.append((child.target, route, depth + 1))

        result = {nid: paths for nid, paths in added.items() if paths}
        log.debug("edge_paths_derived", edge_id=edge.id, nodes=len(result))
        return result

    @staticmethod
    def _stale(node: Node, edge: Edge) -> OrphanedHandleError:
        if isinstance(node, AnswerNode):
            reason = f"handle not exposed by a {node.mode} answer with {len(node.variants)} variant(s)"
        else:
            reason = "questions only expose the default handle"
        return OrphanedHandleError(
            node_id=node.id,
            handle=edge.source_handle,
            edge_id=edge.id,
            reason=reason,
        )

    # -------------------------------------------------------------------------
    # Registry and lookups
    # -------------------------------------------------------------------------

    def _register(self, node_id: str, paths: Iterable[str], base_path: str) -> None:
        bucket = self._node_to_paths.setdefault(node_id, set())
        for path in paths:
            self._path_to_node[path] = node_id
            bucket.add(path)
        # Answer base paths are not stored on Multiple/Combinations answers
        # but still resolve to the answer for score and text lookups.
        self._path_to_node.setdefault(base_path, node_id)

    def load_registry(self, nodes: Iterable[Node]) -> None:
        """Rebuild the registry from paths already stored on *nodes*."""
        self._path_to_node.clear()
        self._node_to_paths.clear()
        for node in nodes:
            for path in node.path_ids:
                base = path
                if isinstance(node, AnswerNode) and node.mode is not AnswerMode.SINGLE:
                    base = path.rsplit("-", 1)[0]
                self._register(node.id, [path], base)

    def node_for_path(self, path: str) -> str | None:
        """Node id a path (or answer base path) resolves to, if any."""
        return self._path_to_node.get(path)

    def paths_for_node(self, node_id: str) -> set[str]:
        """Registered paths of a node."""
        return set(self._node_to_paths.get(node_id, set()))

    def path_score(self, path: str, nodes: Mapping[str, Node]) -> float:
        """Sum the scores of every variant selected along *path*."""
        components = parse_path_id(path)
        current = components.topic
        total = 0.0
        for segment in components.segments:
            if segment.kind == "V":
                answer = nodes.get(self._path_to_node.get(current, ""))
                if isinstance(answer, AnswerNode):
                    for number in segment.numbers:
                        if 0 < number <= len(answer.variants):
                            total += answer.variants[number - 1].score
            current = f"{current}-{segment}"
        return total

    def human_readable_path(self, path: str, nodes: Mapping[str, Node]) -> str:
        """Describe a path with question texts and chosen variant texts."""
        components = parse_path_id(path)
        current = components.topic
        parts: list[str] = []
        for segment in components.segments:
            previous = current
            current = f"{current}-{segment}"
            if segment.kind == "Q":
                node = nodes.get(self._path_to_node.get(current, ""))
                text = node.text if isinstance(node, QuestionNode) and node.text else "Question"
                parts.append(f"Q{segment.number}: {text}")
            elif segment.kind == "A":
                parts.append(f"Answer {segment.number}")
            elif segment.kind == "V":
                answer = nodes.get(self._path_to_node.get(previous, ""))
                if isinstance(answer, AnswerNode):
                    texts = [
                        answer.variants[n - 1].text
                        for n in segment.numbers
                        if 0 < n <= len(answer.variants)
                    ]
                    parts.append(f'-> "{" + ".join(texts)}"')
            elif segment.kind == "E":
                parts.append(f"Outcome {segment.number}")
        return " ".join(parts)
