"""JSON export format.

Builds the exchange document from a flow and writes it as formatted JSON.
Export always computes fresh path identifiers, so a flow with lazily
invalidated paths still exports a consistent document.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from questionflow.export.base import (
    DocumentCombination,
    DocumentMetadata,
    DocumentNode,
    DocumentVariant,
    FlowDocument,
    NavigationEntry,
)
from questionflow.graph.algorithms import natural_sort_key
from questionflow.graph.errors import DocumentFormatError
from questionflow.graph.handles import COMBINATION_PREFIX, VARIANT_PREFIX
from questionflow.graph.models import AnswerNode, OutcomeNode, QuestionNode
from questionflow.graph.path_ids import FALLBACK_TOPIC, PathIdGenerator
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

    from questionflow.graph.graph import FlowGraph
    from questionflow.graph.models import Edge, Node

log = get_logger(__name__)


def _content(node: Node) -> str:
    if isinstance(node, QuestionNode):
        return node.text
    if isinstance(node, AnswerNode):
        return f"{len(node.variants)} variants"
    return node.recommendation or "No recommendation provided"


def _document_node(node: Node, path_ids: set[str], level: int) -> DocumentNode:
    ordered = sorted(path_ids, key=natural_sort_key)
    entry = DocumentNode(
        id=node.id,
        type=node.type,
        path_id=ordered[0] if ordered else "",
        path_ids=ordered,
        content=_content(node),
        level=level,
        position=node.position,
        topic=node.topic or None,
    )
    if isinstance(node, QuestionNode):
        entry.is_root = node.is_root
    elif isinstance(node, AnswerNode):
        entry.answer_type = node.mode
        entry.variants = [
            DocumentVariant(id=v.id, text=v.text, score=v.score, additional_info=v.additional_info)
            for v in node.variants
        ]
        if node.combinations:
            entry.combinations = [
                DocumentCombination(
                    id=c.id,
                    handle=c.handle,
                    label=c.label,
                    variant_indices=list(c.variant_indices),
                )
                for c in node.combinations
            ]
    elif isinstance(node, OutcomeNode):
        entry.recommendation = node.recommendation
    return entry


def build_document(
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    topic: str | None = None,
    *,
    created_at: str | None = None,
) -> FlowDocument:
    """Build the exchange document for a flow.

    Args:
        nodes: All nodes.
        edges: All edges.
        topic: Fallback topic for roots without one.
        created_at: ISO timestamp; defaults to now (UTC).

    Returns:
        FlowDocument with fresh path identifiers.
    """
    node_list = list(nodes)
    edge_list = list(edges)
    paths = PathIdGenerator().compute(node_list, edge_list, topic)

    roots = sorted(
        (n for n in node_list if isinstance(n, QuestionNode) and n.is_root and n.topic),
        key=lambda n: natural_sort_key(n.id),
    )
    metadata = DocumentMetadata(
        topic=roots[0].topic if roots else (topic or FALLBACK_TOPIC),
        created_at=created_at or datetime.now(UTC).isoformat(),
        total_questions=sum(1 for n in node_list if isinstance(n, QuestionNode)),
    )

    entries: dict[str, DocumentNode] = {}
    for node in node_list:
        level = paths.levels.get(node.id, node.level) if isinstance(node, QuestionNode) else 0
        entries[node.id] = _document_node(node, paths.path_ids[node.id], level)

    navigation: dict[str, NavigationEntry] = {}
    for edge in edge_list:
        target = entries.get(edge.target)
        if edge.source not in entries or target is None:
            continue
        nav = navigation.setdefault(edge.source, NavigationEntry())
        if edge.source_handle.startswith(VARIANT_PREFIX):
            nav.variants = {**(nav.variants or {}), edge.source_handle: target.path_id}
        elif edge.source_handle.startswith(COMBINATION_PREFIX):
            nav.combinations = {**(nav.combinations or {}), edge.source_handle: target.path_id}
        else:
            nav.default = target.path_id

    return FlowDocument(metadata=metadata, nodes=entries, navigation=navigation)


def export_document(graph: FlowGraph, *, created_at: str | None = None) -> FlowDocument:
    """Build the exchange document for *graph*."""
    return build_document(graph.nodes, graph.edges, graph.topic, created_at=created_at)


def parse_document(data: Mapping[str, Any] | str | bytes) -> FlowDocument:
    """Parse an exchange document from JSON text or a decoded mapping.

    Raises:
        DocumentFormatError: If the JSON or its shape is invalid.
    """
    if isinstance(data, str | bytes):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise DocumentFormatError([f"not valid JSON: {e.msg} (line {e.lineno})"]) from e
    if not isinstance(data, dict):
        raise DocumentFormatError(["document must be a JSON object"])
    try:
        return FlowDocument.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise DocumentFormatError(problems) from e


class JsonExporter:
    """Export a flow as the JSON exchange document."""

    format_name = "json"

    def export(self, document: FlowDocument, output_dir: Path) -> Path:
        """Write the document as formatted JSON.

        Args:
            document: The flow as an exchange document.
            output_dir: Directory to write output files.

        Returns:
            Path to the generated flow.json file.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        output_file = output_dir / "flow.json"

        output_file.write_text(json.dumps(document.to_json_dict(), indent=2, ensure_ascii=False))
        log.debug("document_written", path=str(output_file), nodes=len(document.nodes))

        return output_file
