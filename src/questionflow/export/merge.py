"""Additive import of exchange documents into an existing flow.

Imported content never overwrites what is already there:

- node ids that already exist become ``<id>-imported`` (then
  ``<id>-imported-1``, ``-2``, ...);
- topics that cannot prefix a path identifier have ``-`` replaced by
  ``_``;
- root topics that already exist get a ``_<n>`` suffix, carried to every
  imported node that shared the old topic;
- positions are shifted right of the existing content;
- navigation entries are rebuilt into edges by resolving target path ids
  (real or ``ORPHAN-*``, else a bare document node id),
  and each edge is validated like an interactive ``connect``.

Every rename is reported as an ``ImportConflict``; every refused edge as a
``ValidationRejected``. Neither aborts the import.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from questionflow.export.base import FlowDocument
from questionflow.export.json_exporter import parse_document
from questionflow.graph.errors import ImportConflict, ValidationRejected
from questionflow.graph.graph import MutationResult
from questionflow.graph.layout import LayoutOptions
from questionflow.graph.models import (
    AnswerMode,
    AnswerNode,
    Edge,
    OutcomeNode,
    Position,
    QuestionNode,
    Variant,
)
from questionflow.graph.path_ids import edge_id, is_orphan_path, topic_problem
from questionflow.graph.validation import can_add_edge
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from questionflow.export.base import DocumentNode
    from questionflow.graph.models import Node

log = get_logger(__name__)

IMPORT_SPACING = 400.0


@dataclass
class ImportResult(MutationResult):
    """Outcome of an import.

    Attributes:
        nodes: The nodes added (after renaming).
        edges: The edges added.
        conflicts: Renamed node ids and topics.
        rejected: Navigation entries refused by validation.
        unresolved: Navigation targets whose path id matched no node.
    """

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    conflicts: list[ImportConflict] = field(default_factory=list)
    rejected: list[ValidationRejected] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)


def unique_import_id(original: str, taken: set[str]) -> str:
    """``<id>-imported``, then ``<id>-imported-1``, ``-2``, ... until free."""
    candidate = f"{original}-imported"
    counter = 1
    while candidate in taken:
        candidate = f"{original}-imported-{counter}"
        counter += 1
    return candidate


def node_from_document(entry: DocumentNode, index: int = 0) -> Node:
    """Rebuild an engine node from a document entry.

    Entries without a position are spread on a three-column grid.
    """
    position = entry.position or Position(x=200 + (index % 3) * 400, y=200 + (index // 3) * 300)
    path_ids = set(entry.path_ids) | ({entry.path_id} if entry.path_id else set())
    common: dict[str, Any] = {
        "id": entry.id,
        "position": position,
        "path_ids": path_ids,
        "topic": entry.topic or "",
    }
    if entry.type == "question":
        is_root = entry.is_root if entry.is_root is not None else entry.level == 1
        return QuestionNode(
            **common,
            text=entry.content,
            is_root=is_root,
            level=max(entry.level, 1),
        )
    if entry.type == "answer":
        return AnswerNode(
            **common,
            mode=entry.answer_type or AnswerMode.SINGLE,
            variants=[
                Variant(id=v.id, text=v.text, score=v.score, additional_info=v.additional_info)
                for v in entry.variants or []
            ],
        )
    return OutcomeNode(**common, recommendation=entry.recommendation or entry.content)


def _usable_topic(topic: str) -> str:
    candidate = topic.replace("-", "_")
    if topic_problem(candidate):
        candidate = f"{candidate}_TOPIC"
    return candidate


def _shift_positions(nodes: list[Node], existing: list[Node]) -> None:
    if not existing or not nodes:
        return
    sizes = LayoutOptions()
    right = max(n.position.x + sizes.node_size(n)[0] for n in existing)
    top = min(n.position.y for n in existing)
    min_x = min(n.position.x for n in nodes)
    min_y = min(n.position.y for n in nodes)
    dx = right + IMPORT_SPACING - min_x
    dy = top - min_y
    for node in nodes:
        node.position = Position(x=node.position.x + dx, y=node.position.y + dy)


def merge_document(
    existing_nodes: Iterable[Node],
    existing_edges: Iterable[Edge],
    document: FlowDocument | Mapping[str, Any] | str,
    *,
    shift: bool = True,
) -> ImportResult:
    """Plan the additive import of *document*.

    Nothing is mutated; the caller applies ``result.nodes`` and
    ``result.edges`` (FlowGraph.import_document does so atomically).

    Raises:
        DocumentFormatError: If the document cannot be parsed.
    """
    doc = document if isinstance(document, FlowDocument) else parse_document(document)
    current = list(existing_nodes)
    current_edges = list(existing_edges)
    result = ImportResult()

    taken_ids = {n.id for n in current}
    taken_topics = {n.topic for n in current if isinstance(n, QuestionNode) and n.is_root and n.topic}

    # Path id -> original document node id, for navigation lookups. Orphan
    # placeholders are unique per node too, so unreachable targets resolve.
    by_path: dict[str, str] = {}
    id_map: dict[str, str] = {}
    imported: list[Node] = []
    for index, (key, entry) in enumerate(doc.nodes.items()):
        if not entry.id:
            entry = entry.model_copy(update={"id": key})
        node = node_from_document(entry, index)
        for path in sorted(node.path_ids, key=is_orphan_path):
            by_path.setdefault(path, entry.id)

        new_id = node.id
        if new_id in taken_ids:
            new_id = unique_import_id(node.id, taken_ids)
            result.conflicts.append(
                ImportConflict(
                    kind="node",
                    original_id=node.id,
                    new_id=new_id,
                    reason=f'Node ID "{node.id}" already exists',
                )
            )
            node.id = new_id
        taken_ids.add(new_id)
        id_map[entry.id] = new_id
        imported.append(node)

    topic_map: dict[str, str] = {}
    for node in imported:
        if not node.topic or node.topic in topic_map:
            continue
        problem = topic_problem(node.topic)
        if problem:
            topic_map[node.topic] = _usable_topic(node.topic)
            result.conflicts.append(
                ImportConflict(
                    kind="topic",
                    original_id=node.topic,
                    new_id=topic_map[node.topic],
                    reason=f'Topic "{node.topic}" is unusable: {problem}',
                )
            )
    for node in imported:
        node.topic = topic_map.get(node.topic, node.topic)

    renamed_roots: dict[str, str] = {}
    for node in imported:
        if isinstance(node, QuestionNode) and node.is_root and node.topic:
            if node.topic in taken_topics:
                n = 2
                while f"{node.topic}_{n}" in taken_topics:
                    n += 1
                renamed = f"{node.topic}_{n}"
                renamed_roots[node.topic] = renamed
                result.conflicts.append(
                    ImportConflict(
                        kind="topic",
                        original_id=node.topic,
                        new_id=renamed,
                        reason=f'Topic "{node.topic}" is already used by a root question',
                    )
                )
                node.topic = renamed
            taken_topics.add(node.topic)
    if renamed_roots:
        for node in imported:
            if not (isinstance(node, QuestionNode) and node.is_root):
                node.topic = renamed_roots.get(node.topic, node.topic)

    if shift:
        _shift_positions(imported, current)

    node_map: dict[str, Node] = {n.id: n for n in current}
    node_map.update({n.id: n for n in imported})
    accepted: list[Edge] = []
    taken_edge_ids = {e.id for e in current_edges}
    for source_key, nav in doc.navigation.items():
        source = id_map.get(source_key)
        if source is None:
            result.unresolved.append(source_key)
            continue
        for handle, target_path in nav.targets():
            original_target = by_path.get(target_path)
            if original_target is None and target_path in id_map:
                original_target = target_path
            if original_target is None:
                result.unresolved.append(f"{source_key}:{handle}->{target_path}")
                continue
            target = id_map[original_target]
            rejection = can_add_edge(
                node_map, current_edges + accepted, source, target, handle, keep_stale_handles=True
            )
            if rejection is not None:
                result.rejected.append(rejection)
                continue
            new_edge_id = edge_id(source, target, handle)
            if new_edge_id in taken_edge_ids:
                renamed = unique_import_id(new_edge_id, taken_edge_ids)
                result.conflicts.append(
                    ImportConflict(
                        kind="edge",
                        original_id=new_edge_id,
                        new_id=renamed,
                        reason=f'Edge ID "{new_edge_id}" already exists',
                    )
                )
                new_edge_id = renamed
            taken_edge_ids.add(new_edge_id)
            accepted.append(Edge(id=new_edge_id, source=source, target=target, source_handle=handle))
            target_node = node_map[target]
            if isinstance(target_node, QuestionNode) and target_node.is_root:
                target_node.is_root = False

    result.nodes = imported
    result.edges = accepted
    if result.unresolved:
        log.warning("import_unresolved_targets", targets=result.unresolved)
    log.debug(
        "document_merged",
        nodes=len(imported),
        edges=len(accepted),
        conflicts=len(result.conflicts),
    )
    return result
