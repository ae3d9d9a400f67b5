"""Shared graph algorithms for the flow engine.

Pure functions over node/edge collections; nothing here mutates state.
Used by validation (cycle checks), path identifiers (root discovery, stable
ordering), topic propagation and layout (components).
"""

from __future__ import annotations

import heapq
import re
from collections import defaultdict, deque
from typing import TYPE_CHECKING

from questionflow.graph.models import QuestionNode
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from questionflow.graph.models import Edge, Node

log = get_logger(__name__)

_DIGITS = re.compile(r"(\d+)")


def natural_sort_key(value: str) -> tuple[tuple[int, int | str], ...]:
    """Sort key treating digit runs as numbers (``q2`` before ``q10``).

    Each chunk is tagged so digits and text never compare against each
    other, keeping the order total.
    """
    key: list[tuple[int, int | str]] = []
    for chunk in _DIGITS.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk)))
        else:
            key.append((1, chunk))
    return tuple(key)


def successors(edges: Iterable[Edge]) -> dict[str, list[str]]:
    """Build ``source -> [targets]`` adjacency in edge order."""
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)
    return adjacency


def predecessors(edges: Iterable[Edge]) -> dict[str, list[str]]:
    """Build ``target -> [sources]`` adjacency in edge order."""
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.target].append(edge.source)
    return adjacency


def reachable_from(start: str, adjacency: Mapping[str, list[str]]) -> set[str]:
    """Return every node reachable from *start*, including *start* itself.

    Iterative depth-first search, so deep chains don't hit the recursion
    limit.
    """
    seen: set[str] = set()
    stack = [start]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(adjacency.get(current, []))
    return seen


def would_create_cycle(edges: Iterable[Edge], source: str, target: str) -> bool:
    """Check whether adding ``source -> target`` closes a directed cycle.

    True when *source* is reachable from *target*, which includes the
    self-loop case ``source == target``.
    """
    return source in reachable_from(target, successors(edges))


def find_cycle_nodes(node_ids: Iterable[str], edges: Iterable[Edge]) -> list[str]:
    """Return nodes that sit on or behind a cycle (empty for a DAG).

    Kahn's algorithm: whatever cannot be peeled off in topological order is
    part of, or downstream of, a cycle.
    """
    ids = list(node_ids)
    in_degree: dict[str, int] = dict.fromkeys(ids, 0)
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        if edge.source in in_degree and edge.target in in_degree:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    queue = [nid for nid, deg in in_degree.items() if deg == 0]
    heapq.heapify(queue)
    removed: set[str] = set()
    while queue:
        node = heapq.heappop(queue)
        removed.add(node)
        for succ in adjacency.get(node, []):
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(queue, succ)

    remaining = sorted(set(ids) - removed, key=natural_sort_key)
    if remaining:
        log.warning("cycle_detected", nodes=remaining)
    return remaining


def topological_order(node_ids: Iterable[str], edges: Iterable[Edge]) -> list[str]:
    """Topologically sort *node_ids* with natural-order tie-breaking.

    Nodes caught in a cycle are appended at the end in natural order.
    """
    ids = sorted(node_ids, key=natural_sort_key)
    rank = {nid: i for i, nid in enumerate(ids)}
    in_degree: dict[str, int] = dict.fromkeys(ids, 0)
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        if edge.source in in_degree and edge.target in in_degree:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    queue = [(rank[nid], nid) for nid in ids if in_degree[nid] == 0]
    heapq.heapify(queue)
    order: list[str] = []
    while queue:
        _, node = heapq.heappop(queue)
        order.append(node)
        for succ in adjacency.get(node, []):
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(queue, (rank[succ], succ))

    if len(order) != len(ids):
        placed = set(order)
        order.extend(nid for nid in ids if nid not in placed)
    return order


def weakly_connected_components(node_ids: Iterable[str], edges: Iterable[Edge]) -> list[list[str]]:
    """Group nodes into weakly-connected components.

    Edges are treated as undirected. Components are returned largest first,
    ties broken by the natural order of their smallest member; members are
    in natural order.
    """
    ids = list(node_ids)
    known = set(ids)
    neighbours: dict[str, set[str]] = {nid: set() for nid in ids}
    for edge in edges:
        if edge.source in known and edge.target in known:
            neighbours[edge.source].add(edge.target)
            neighbours[edge.target].add(edge.source)

    seen: set[str] = set()
    components: list[list[str]] = []
    for nid in sorted(ids, key=natural_sort_key):
        if nid in seen:
            continue
        component: list[str] = []
        queue = deque([nid])
        seen.add(nid)
        while queue:
            current = queue.popleft()
            component.append(current)
            for other in neighbours[current]:
                if other not in seen:
                    seen.add(other)
                    queue.append(other)
        components.append(sorted(component, key=natural_sort_key))

    components.sort(key=lambda c: (-len(c), natural_sort_key(c[0])))
    return components


def root_questions(nodes: Iterable[Node], edges: Iterable[Edge]) -> list[QuestionNode]:
    """Return Question nodes without an incoming edge, in natural id order."""
    targets = {edge.target for edge in edges}
    roots = [n for n in nodes if isinstance(n, QuestionNode) and n.id not in targets]
    return sorted(roots, key=lambda n: natural_sort_key(n.id))


def nearest_ancestor_topic(
    nodes: Mapping[str, Node],
    edges: Iterable[Edge],
    node_id: str,
) -> str | None:
    """Find the topic of the closest ancestor (or the node itself) that has one.

    Breadth-first over incoming edges, so the nearest topic wins; among
    equally near ancestors the earliest edge wins.
    """
    parents = predecessors(edges)
    seen: set[str] = set()
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        node = nodes.get(current)
        if node is not None and node.topic:
            return node.topic
        queue.extend(parents.get(current, []))
    return None
