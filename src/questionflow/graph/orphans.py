"""Orphan detection: derived highlighting flags for the canvas.

A node is orphaned when it lacks a connection its role requires:

- flagged root questions need an outgoing edge;
- outcomes need an incoming edge;
- every other node needs both.

An answer's orphaned handles are the handles its mode exposes that have no
outgoing edge. Stale handles are the reverse: edges leaving handles the
answer no longer exposes (after a variant was removed).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from questionflow.graph.algorithms import natural_sort_key
from questionflow.graph.handles import valid_handles
from questionflow.graph.models import AnswerNode, OutcomeNode, QuestionNode
from questionflow.graph.path_ids import PathIdGenerator, is_orphan_path
from questionflow.graph.validation import handle_is_valid

if TYPE_CHECKING:
    from collections.abc import Iterable

    from questionflow.graph.models import Edge, Node


@dataclass(frozen=True)
class NodeFlags:
    """Highlighting flags for one node.

    Attributes:
        is_orphaned: The node misses a required connection.
        orphaned_handles: Exposed handles with no outgoing edge.
        stale_handles: Handles of outgoing edges the node no longer exposes.
    """

    is_orphaned: bool = False
    orphaned_handles: tuple[str, ...] = field(default_factory=tuple)
    stale_handles: tuple[str, ...] = field(default_factory=tuple)


def orphaned_node_ids(nodes: Iterable[Node], edges: Iterable[Edge]) -> list[str]:
    """Ids of nodes missing a required connection, in natural order."""
    edge_list = list(edges)
    inbound = {e.target for e in edge_list}
    outbound = {e.source for e in edge_list}
    orphaned = []
    for node in nodes:
        if isinstance(node, QuestionNode) and node.is_root:
            missing = node.id not in outbound
        elif isinstance(node, OutcomeNode):
            missing = node.id not in inbound
        else:
            missing = node.id not in inbound or node.id not in outbound
        if missing:
            orphaned.append(node.id)
    return sorted(orphaned, key=natural_sort_key)


def node_flags(nodes: Iterable[Node], edges: Iterable[Edge]) -> dict[str, NodeFlags]:
    """Compute highlighting flags for every node."""
    node_list = list(nodes)
    edge_list = list(edges)
    orphaned = set(orphaned_node_ids(node_list, edge_list))
    used: dict[str, set[str]] = {}
    for edge in edge_list:
        used.setdefault(edge.source, set()).add(edge.source_handle)

    flags: dict[str, NodeFlags] = {}
    for node in node_list:
        handles = used.get(node.id, set())
        open_handles: tuple[str, ...] = ()
        if isinstance(node, AnswerNode):
            open_handles = tuple(
                h for h in valid_handles(node.mode, len(node.variants)) if h not in handles
            )
        stale = tuple(sorted(
            h for h in handles if not isinstance(node, OutcomeNode) and not handle_is_valid(node, h)
        ))
        flags[node.id] = NodeFlags(
            is_orphaned=node.id in orphaned,
            orphaned_handles=open_handles,
            stale_handles=stale,
        )
    return flags


def stale_paths(
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    topic: str | None = None,
) -> dict[str, set[str]]:
    """Stored path ids that no longer resolve against the current graph.

    Deleting a node or edge leaves downstream ``path_ids`` in place until
    ``propagate_all`` runs; this reports those leftovers per node.
    """
    node_list = list(nodes)
    fresh = PathIdGenerator().compute(node_list, edges, topic)
    result: dict[str, set[str]] = {}
    for node in node_list:
        leftover = {
            p for p in node.path_ids
            if not is_orphan_path(p) and p not in fresh.path_ids.get(node.id, set())
        }
        if leftover:
            result[node.id] = leftover
    return result
