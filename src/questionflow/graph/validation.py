"""Structural validation for flow graphs.

Two entry points:

- ``can_add_edge`` gates a single connection before it is applied. It is the
  only place the adjacency, handle and cycle rules are enforced for edits.
- ``check_invariants`` audits a whole graph (after an import, from the CLI)
  and reports every violation as a ``ValidationCheck``.

Both are pure functions over node/edge collections; nothing here mutates.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from questionflow.graph.algorithms import (
    find_cycle_nodes,
    natural_sort_key,
    would_create_cycle,
)
from questionflow.graph.errors import RejectionReason, ValidationRejected
from questionflow.graph.handles import (
    DEFAULT_HANDLE,
    is_valid_answer_handle,
    parse_combination_handle,
    parse_variant_handle,
)
from questionflow.graph.models import AnswerNode, OutcomeNode, QuestionNode
from questionflow.graph.path_ids import PathIdGenerator, is_orphan_path
from questionflow.graph.validation_types import ValidationCheck, ValidationReport
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from questionflow.graph.graph import FlowGraph
    from questionflow.graph.models import Edge, Node

log = get_logger(__name__)

# Allowed target node types per source node type.
ALLOWED_TARGETS: dict[str, frozenset[str]] = {
    "question": frozenset({"answer"}),
    "answer": frozenset({"question", "outcome"}),
    "outcome": frozenset(),
}


def handle_is_valid(node: Node, handle: str) -> bool:
    """Check whether *node* exposes *handle* as an output."""
    if isinstance(node, QuestionNode):
        return handle == DEFAULT_HANDLE
    if isinstance(node, AnswerNode):
        return is_valid_answer_handle(handle, node.mode, len(node.variants))
    return False


def is_answer_handle(handle: str) -> bool:
    """True for any well-formed variant or combination handle."""
    return parse_variant_handle(handle) is not None or parse_combination_handle(handle) is not None


def can_add_edge(
    nodes: Mapping[str, Node],
    edges: Iterable[Edge],
    source: str,
    target: str,
    handle: str = DEFAULT_HANDLE,
    *,
    keep_stale_handles: bool = False,
) -> ValidationRejected | None:
    """Decide whether ``source --handle--> target`` may be added.

    Checks run in a fixed order and the first failure wins:

    1. both endpoints exist;
    2. type adjacency (Question->Answer, Answer->Question|Outcome);
    3. the handle exists on the source for its type and answer mode;
    4. the handle is not already occupied;
    5. a root question's topic stays unique among root questions;
    6. the edge would not close a cycle (self-loops included).

    Args:
        nodes: Current nodes by id.
        edges: Current edges.
        source: Source node id.
        target: Target node id.
        handle: Source handle.
        keep_stale_handles: Let a well-formed variant or combination handle
            through even if the answer no longer exposes it. Imports use this
            so stale edges survive a round trip and are flagged, not lost.

    Returns:
        None when the edge is acceptable, otherwise the rejection.
    """
    edge_list = list(edges)

    def reject(reason: RejectionReason, message: str) -> ValidationRejected:
        rejection = ValidationRejected(
            reason=reason,
            message=message,
            source=source,
            target=target,
            handle=handle,
        )
        log.info("edge_rejected", reason=str(reason), source=source, target=target, handle=handle)
        return rejection

    source_node = nodes.get(source)
    target_node = nodes.get(target)
    if source_node is None or target_node is None:
        missing = source if source_node is None else target
        return reject(RejectionReason.MISSING_ENDPOINT, f"Node '{missing}' does not exist")

    if target_node.type not in ALLOWED_TARGETS[source_node.type]:
        return reject(
            RejectionReason.ADJACENCY,
            f"A {source_node.type} cannot connect to a {target_node.type}",
        )

    stale_ok = keep_stale_handles and isinstance(source_node, AnswerNode) and is_answer_handle(handle)
    if not stale_ok and not handle_is_valid(source_node, handle):
        if isinstance(source_node, AnswerNode):
            detail = f"a {source_node.mode} answer with {len(source_node.variants)} variant(s)"
        else:
            detail = "a question"
        return reject(RejectionReason.INVALID_HANDLE, f"Handle '{handle}' does not exist on {detail}")

    if any(e.source == source and e.source_handle == handle for e in edge_list):
        return reject(
            RejectionReason.DUPLICATE_HANDLE,
            f"Handle '{handle}' on '{source}' is already connected",
        )

    if isinstance(source_node, QuestionNode) and source_node.is_root and source_node.topic:
        clash = [
            n.id
            for n in nodes.values()
            if isinstance(n, QuestionNode) and n.is_root and n.id != source and n.topic == source_node.topic
        ]
        if clash:
            return reject(
                RejectionReason.DUPLICATE_TOPIC,
                f"Topic '{source_node.topic}' is already used by root question '{clash[0]}'",
            )

    if would_create_cycle(edge_list, source, target):
        return reject(RejectionReason.CYCLE, "This connection would create a loop")

    return None


# ---------------------------------------------------------------------------
# Whole-graph invariant checks
# ---------------------------------------------------------------------------


def check_endpoints(nodes: Mapping[str, Node], edges: list[Edge]) -> ValidationCheck:
    """Every edge references existing nodes."""
    dangling = [e.id for e in edges if e.source not in nodes or e.target not in nodes]
    if dangling:
        return ValidationCheck(
            name="edge_endpoints",
            severity="fail",
            message=f"Edges with missing endpoints: {', '.join(dangling)}",
        )
    return ValidationCheck(name="edge_endpoints", severity="pass", message="All edge endpoints exist")


def check_acyclic(nodes: Mapping[str, Node], edges: list[Edge]) -> ValidationCheck:
    """The graph contains no directed cycle."""
    cyclic = find_cycle_nodes(nodes, edges)
    if cyclic:
        return ValidationCheck(
            name="acyclic",
            severity="fail",
            message=f"Cycle through: {', '.join(cyclic)}",
            node_ids=cyclic,
        )
    return ValidationCheck(name="acyclic", severity="pass", message="No cycles")


def check_adjacency(nodes: Mapping[str, Node], edges: list[Edge]) -> ValidationCheck:
    """Edges only join allowed node types."""
    bad: list[str] = []
    for edge in edges:
        source, target = nodes.get(edge.source), nodes.get(edge.target)
        if source is None or target is None:
            continue
        if target.type not in ALLOWED_TARGETS[source.type]:
            bad.append(f"{edge.id} ({source.type}->{target.type})")
    if bad:
        return ValidationCheck(
            name="adjacency",
            severity="fail",
            message=f"Disallowed connections: {', '.join(bad)}",
        )
    return ValidationCheck(name="adjacency", severity="pass", message="All connections typed correctly")


def check_handle_occupancy(nodes: Mapping[str, Node], edges: list[Edge]) -> ValidationCheck:
    """At most one outgoing edge per source handle."""
    counts = Counter((e.source, e.source_handle) for e in edges)
    doubled = sorted(
        (f"{src}:{handle}" for (src, handle), n in counts.items() if n > 1),
        key=natural_sort_key,
    )
    if doubled:
        return ValidationCheck(
            name="handle_occupancy",
            severity="fail",
            message=f"Handles with more than one edge: {', '.join(doubled)}",
            node_ids=sorted({d.split(':', 1)[0] for d in doubled}, key=natural_sort_key),
        )
    return ValidationCheck(name="handle_occupancy", severity="pass", message="One edge per handle")


def check_stale_handles(nodes: Mapping[str, Node], edges: list[Edge]) -> ValidationCheck:
    """Edges leave handles their source still exposes.

    Stale handles are a warning: they arise legitimately when a variant is
    removed and are cleaned up with ``prune_stale_edges``.
    """
    stale = [
        e.id
        for e in edges
        if e.source in nodes and not isinstance(nodes[e.source], OutcomeNode)
        and not handle_is_valid(nodes[e.source], e.source_handle)
    ]
    if stale:
        return ValidationCheck(
            name="stale_handles",
            severity="warn",
            message=f"Edges on stale handles: {', '.join(stale)}",
            node_ids=sorted({e.source for e in edges if e.id in stale}, key=natural_sort_key),
        )
    return ValidationCheck(name="stale_handles", severity="pass", message="No stale handles")


def check_root_topics(nodes: Mapping[str, Node]) -> ValidationCheck:
    """Topics are unique among flagged root questions."""
    by_topic: dict[str, list[str]] = {}
    for node in nodes.values():
        if isinstance(node, QuestionNode) and node.is_root and node.topic:
            by_topic.setdefault(node.topic, []).append(node.id)
    clashes = {topic: ids for topic, ids in by_topic.items() if len(ids) > 1}
    if clashes:
        detail = "; ".join(f"{t}: {', '.join(ids)}" for t, ids in sorted(clashes.items()))
        return ValidationCheck(
            name="unique_root_topics",
            severity="fail",
            message=f"Duplicate root topics: {detail}",
            node_ids=[nid for ids in clashes.values() for nid in ids],
        )
    return ValidationCheck(name="unique_root_topics", severity="pass", message="Root topics unique")


def check_path_ids(nodes: Mapping[str, Node], edges: list[Edge], topic: str | None = None) -> ValidationCheck:
    """Stored path identifiers match a fresh computation.

    Drift is a warning since deletions invalidate downstream paths lazily
    until ``propagate_all`` runs.
    """
    fresh = PathIdGenerator().compute(nodes.values(), edges, topic)
    drifted = [
        nid
        for nid, node in nodes.items()
        if {p for p in node.path_ids if not is_orphan_path(p)}
        != {p for p in fresh.path_ids[nid] if not is_orphan_path(p)}
    ]
    drifted.sort(key=natural_sort_key)
    if drifted:
        return ValidationCheck(
            name="path_ids_current",
            severity="warn",
            message=f"Path identifiers out of date on: {', '.join(drifted)}",
            node_ids=drifted,
        )
    return ValidationCheck(name="path_ids_current", severity="pass", message="Path identifiers current")


def run_checks(
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    topic: str | None = None,
) -> ValidationReport:
    """Run every invariant check over raw collections."""
    node_map = {n.id: n for n in nodes}
    edge_list = list(edges)
    checks = [
        check_endpoints(node_map, edge_list),
        check_acyclic(node_map, edge_list),
        check_adjacency(node_map, edge_list),
        check_handle_occupancy(node_map, edge_list),
        check_stale_handles(node_map, edge_list),
        check_root_topics(node_map),
    ]
    # Path computation assumes a DAG with resolvable endpoints.
    if not any(c.severity == "fail" for c in checks[:2]):
        checks.append(check_path_ids(node_map, edge_list, topic))
    report = ValidationReport(checks=checks)
    log.debug("invariants_checked", summary=report.summary)
    return report


def check_invariants(graph: FlowGraph) -> ValidationReport:
    """Audit every structural invariant of *graph*.

    Returns:
        ValidationReport with one check per invariant.
    """
    return run_checks(graph.nodes, graph.edges, graph.topic)


__all__ = [
    "ALLOWED_TARGETS",
    "can_add_edge",
    "check_acyclic",
    "check_adjacency",
    "check_endpoints",
    "check_handle_occupancy",
    "check_invariants",
    "check_path_ids",
    "check_root_topics",
    "check_stale_handles",
    "handle_is_valid",
    "run_checks",
]
