"""Flow storage backend protocol and dict-based implementation.

The FlowStore protocol defines the low-level storage operations that
FlowGraph delegates to. Implementations handle raw CRUD; FlowGraph provides
the public command API with validation, path identifiers, history and
notifications.

DictFlowStore is the default (and only built-in) backend. It keeps nodes in
insertion order and edges in a list, and implements savepoints with deep
copies so a failed command can be rolled back.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from questionflow.graph.models import Edge, Node


@dataclass(frozen=True)
class FlowSnapshot:
    """Immutable copy of the node and edge collections.

    Used for history entries and as the read-only view handed to listeners.
    """

    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]

    @classmethod
    def capture(cls, nodes: Iterable[Node], edges: Iterable[Edge]) -> FlowSnapshot:
        """Deep-copy *nodes* and *edges* into a new snapshot."""
        return cls(
            nodes=tuple(copy.deepcopy(list(nodes))),
            edges=tuple(copy.deepcopy(list(edges))),
        )

    def node_map(self) -> dict[str, Node]:
        """Return a fresh ``id -> node`` dict of deep copies."""
        return {n.id: copy.deepcopy(n) for n in self.nodes}


@runtime_checkable
class FlowStore(Protocol):
    """Storage backend protocol for FlowGraph.

    Methods raise no domain-specific errors; FlowGraph is responsible for
    translating missing ids into NodeNotFoundError, etc.
    """

    # -- Nodes -----------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        """Get a node by ID, or None if not found."""
        ...

    def has_node(self, node_id: str) -> bool:
        """Check whether a node exists."""
        ...

    def set_node(self, node: Node) -> None:
        """Store a node (create or overwrite by id)."""
        ...

    def delete_node(self, node_id: str) -> None:
        """Delete a node by ID. No cascade; caller handles edges first."""
        ...

    def all_nodes(self) -> list[Node]:
        """Return all nodes in insertion order."""
        ...

    def replace_nodes(self, nodes: Iterable[Node]) -> None:
        """Atomically replace the whole node collection."""
        ...

    def node_count(self) -> int:
        """Return total number of nodes."""
        ...

    # -- Edges -----------------------------------------------------------------

    def add_edge(self, edge: Edge) -> None:
        """Append a pre-built edge (no validation)."""
        ...

    def remove_edge(self, edge_id: str) -> Edge | None:
        """Remove an edge by id, returning it, or None if absent."""
        ...

    def get_edges(
        self,
        source: str | None = None,
        target: str | None = None,
        source_handle: str | None = None,
    ) -> list[Edge]:
        """Return edges matching optional filters (all edges if no filters)."""
        ...

    def edges_referencing(self, node_id: str) -> list[Edge]:
        """Return all edges where *node_id* is the source or the target."""
        ...

    def remove_edges_referencing(self, node_id: str) -> list[Edge]:
        """Remove and return all edges touching *node_id*."""
        ...

    def replace_edges(self, edges: Iterable[Edge]) -> None:
        """Atomically replace the whole edge collection."""
        ...

    def edge_count(self) -> int:
        """Return total number of edges."""
        ...

    # -- Savepoints ------------------------------------------------------------

    def savepoint(self, name: str) -> None:
        """Create a named savepoint of the current state."""
        ...

    def rollback_to(self, name: str) -> None:
        """Rollback to a named savepoint."""
        ...

    def release(self, name: str) -> None:
        """Release (discard) a named savepoint."""
        ...

    # -- Snapshots -------------------------------------------------------------

    def snapshot(self) -> FlowSnapshot:
        """Return an immutable deep copy of nodes and edges."""
        ...

    def restore(self, snapshot: FlowSnapshot) -> None:
        """Replace all state with a copy of *snapshot*."""
        ...


class DictFlowStore:
    """In-memory dict-based flow store."""

    def __init__(
        self,
        nodes: Iterable[Node] | None = None,
        edges: Iterable[Edge] | None = None,
    ) -> None:
        self._nodes: dict[str, Node] = {n.id: n for n in nodes or ()}
        self._edges: list[Edge] = list(edges or ())
        self._savepoints: dict[str, dict[str, Any]] = {}

    # -- Nodes -----------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def set_node(self, node: Node) -> None:
        self._nodes[node.id] = node

    def delete_node(self, node_id: str) -> None:
        del self._nodes[node_id]

    def all_nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def replace_nodes(self, nodes: Iterable[Node]) -> None:
        self._nodes = {n.id: n for n in nodes}

    def node_count(self) -> int:
        return len(self._nodes)

    # -- Edges -----------------------------------------------------------------

    def add_edge(self, edge: Edge) -> None:
        self._edges.append(edge)

    def remove_edge(self, edge_id: str) -> Edge | None:
        for i, edge in enumerate(self._edges):
            if edge.id == edge_id:
                return self._edges.pop(i)
        return None

    def get_edges(
        self,
        source: str | None = None,
        target: str | None = None,
        source_handle: str | None = None,
    ) -> list[Edge]:
        edges = self._edges
        if source is not None:
            edges = [e for e in edges if e.source == source]
        if target is not None:
            edges = [e for e in edges if e.target == target]
        if source_handle is not None:
            edges = [e for e in edges if e.source_handle == source_handle]
        return list(edges)

    def edges_referencing(self, node_id: str) -> list[Edge]:
        return [e for e in self._edges if node_id in (e.source, e.target)]

    def remove_edges_referencing(self, node_id: str) -> list[Edge]:
        removed = self.edges_referencing(node_id)
        self._edges = [e for e in self._edges if node_id not in (e.source, e.target)]
        return removed

    def replace_edges(self, edges: Iterable[Edge]) -> None:
        self._edges = list(edges)

    def edge_count(self) -> int:
        return len(self._edges)

    # -- Savepoints (deepcopy-based) -------------------------------------------

    def savepoint(self, name: str) -> None:
        """Save a named snapshot of current state."""
        self._savepoints[name] = copy.deepcopy({"nodes": self._nodes, "edges": self._edges})

    def rollback_to(self, name: str) -> None:
        """Restore state from a named snapshot."""
        if name not in self._savepoints:
            raise ValueError(f"No savepoint named '{name}'")
        saved = copy.deepcopy(self._savepoints[name])
        self._nodes = saved["nodes"]
        self._edges = saved["edges"]

    def release(self, name: str) -> None:
        """Discard a named snapshot."""
        self._savepoints.pop(name, None)

    # -- Snapshots -------------------------------------------------------------

    def snapshot(self) -> FlowSnapshot:
        return FlowSnapshot.capture(self._nodes.values(), self._edges)

    def restore(self, snapshot: FlowSnapshot) -> None:
        self._nodes = snapshot.node_map()
        self._edges = list(copy.deepcopy(snapshot.edges))
