"""Flow inspection and quality analysis.

Automates the review an editor does before publishing a questionnaire:
structure counts, dangling connections, stale handles, path fan-out and
the invariant checks. Pure graph analysis, nothing is mutated.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from questionflow.graph.algorithms import natural_sort_key
from questionflow.graph.models import OutcomeNode
from questionflow.graph.path_ids import PathIdGenerator, is_orphan_path
from questionflow.graph.validation import check_invariants
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from questionflow.graph.graph import FlowGraph

log = get_logger(__name__)


@dataclass
class FlowSummary:
    """High-level flow statistics."""

    total_nodes: int
    total_edges: int
    node_counts: dict[str, int] = field(default_factory=dict)
    topics: list[str] = field(default_factory=list)


@dataclass
class PathStats:
    """Path identifier metrics.

    Attributes:
        total_paths: Path ids across all nodes, orphan placeholders excluded.
        max_fan_out: Largest number of paths leading into a single node.
        max_fan_out_node: The node with that many paths.
        max_level: Deepest question level reached.
        outcome_scores: Lowest and highest accumulated score per outcome.
    """

    total_paths: int = 0
    max_fan_out: int = 0
    max_fan_out_node: str | None = None
    max_level: int = 0
    outcome_scores: dict[str, tuple[float, float]] = field(default_factory=dict)


@dataclass
class FlowReport:
    """Complete flow inspection report."""

    summary: FlowSummary
    paths: PathStats = field(default_factory=PathStats)
    orphaned_nodes: list[str] = field(default_factory=list)
    orphaned_handles: dict[str, list[str]] = field(default_factory=dict)
    stale_handles: dict[str, list[str]] = field(default_factory=dict)
    stale_paths: dict[str, list[str]] = field(default_factory=dict)
    validation_checks: list[dict[str, str]] = field(default_factory=list)


def inspect_flow(graph: FlowGraph) -> FlowReport:
    """Run all inspection checks on a flow.

    Args:
        graph: The flow to inspect.

    Returns:
        FlowReport with all analysis results.
    """
    summary = _flow_summary(graph)
    flags = graph.node_flags()
    order = sorted(flags, key=natural_sort_key)

    report = FlowReport(
        summary=summary,
        paths=_path_stats(graph),
        orphaned_nodes=[nid for nid in order if flags[nid].is_orphaned],
        orphaned_handles={
            nid: list(flags[nid].orphaned_handles) for nid in order if flags[nid].orphaned_handles
        },
        stale_handles={
            nid: list(flags[nid].stale_handles) for nid in order if flags[nid].stale_handles
        },
        stale_paths={
            nid: sorted(paths, key=natural_sort_key) for nid, paths in graph.stale_paths().items()
        },
        validation_checks=[
            {"name": c.name, "severity": c.severity, "message": c.message}
            for c in check_invariants(graph).checks
        ],
    )
    log.info(
        "inspection_complete",
        nodes=summary.total_nodes,
        edges=summary.total_edges,
        orphaned=len(report.orphaned_nodes),
    )
    return report


def _flow_summary(graph: FlowGraph) -> FlowSummary:
    nodes = graph.nodes
    node_counts: dict[str, int] = Counter(n.type for n in nodes)
    return FlowSummary(
        total_nodes=len(nodes),
        total_edges=len(graph.edges),
        node_counts=dict(sorted(node_counts.items(), key=lambda x: -x[1])),
        topics=graph.root_topics(),
    )


def _path_stats(graph: FlowGraph) -> PathStats:
    """Analyze freshly computed path identifiers."""
    nodes = graph.nodes
    if not nodes:
        return PathStats()

    generator = PathIdGenerator(graph.topic)
    result = generator.compute(nodes, graph.edges, graph.topic)
    node_map = {n.id: n for n in nodes}

    stats = PathStats(max_level=max(result.levels.values(), default=0))
    for nid in sorted(result.path_ids, key=natural_sort_key):
        real = [p for p in result.path_ids[nid] if not is_orphan_path(p)]
        stats.total_paths += len(real)
        if len(real) > stats.max_fan_out:
            stats.max_fan_out = len(real)
            stats.max_fan_out_node = nid
        node = node_map.get(nid)
        if isinstance(node, OutcomeNode) and real:
            scores = [generator.path_score(p, node_map) for p in real]
            stats.outcome_scores[nid] = (min(scores), max(scores))

    return stats
