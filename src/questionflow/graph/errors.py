"""Flow graph error types with user-facing feedback.

Two families live here:

- Exceptions raised for API misuse (unknown node ids, duplicate ids,
  malformed documents). These propagate to the caller.
- Records describing recoverable problems (a rejected mutation, a stale
  handle, an id renamed during import). The engine returns these instead
  of raising so the canvas can highlight them or show a toast.

Every type can format itself via ``to_user_message()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches
from enum import StrEnum


class RejectionReason(StrEnum):
    """Why a structural mutation was refused."""

    MISSING_ENDPOINT = "missing_endpoint"
    ADJACENCY = "adjacency"
    INVALID_HANDLE = "invalid_handle"
    DUPLICATE_HANDLE = "duplicate_handle"
    DUPLICATE_TOPIC = "duplicate_topic"
    CYCLE = "cycle"


class FlowGraphError(Exception):
    """Base class for flow graph errors.

    Subclasses must implement to_user_message() to provide a message the
    editor can show as-is.
    """

    def to_user_message(self) -> str:
        """Format error as a short human-readable message."""
        raise NotImplementedError


@dataclass
class NodeNotFoundError(FlowGraphError):
    """Raised when a command references a node that does not exist.

    Attributes:
        node_id: The ID that was referenced but doesn't exist.
        available: Valid IDs that could be used instead.
        context: Description of where the reference occurred.
    """

    node_id: str
    available: list[str] = field(default_factory=list)
    context: str = ""

    def __post_init__(self) -> None:
        msg = f"Node '{self.node_id}' not found"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)

    def to_user_message(self) -> str:
        """Format with a typo suggestion when one is close enough."""
        message = str(self)
        matches = get_close_matches(self.node_id, self.available, n=1, cutoff=0.6)
        if matches:
            message += f". Did you mean '{matches[0]}'?"
        return message


@dataclass
class NodeExistsError(FlowGraphError):
    """Raised when creating a node whose id is already taken."""

    node_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Node '{self.node_id}' already exists")

    def to_user_message(self) -> str:
        return f"A node with id '{self.node_id}' already exists; pick another id."


@dataclass
class EdgeNotFoundError(FlowGraphError):
    """Raised when a command references an edge that does not exist."""

    edge_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Edge '{self.edge_id}' not found")

    def to_user_message(self) -> str:
        return f"Connection '{self.edge_id}' no longer exists."


@dataclass
class ValidationRejected(FlowGraphError):
    """A structural mutation that would break a graph invariant.

    Always recoverable: the mutation is not applied and the graph is left
    unchanged. Commands return this inside their result; callers that
    prefer exceptions use ``MutationResult.raise_for_rejection()``.

    Attributes:
        reason: Machine-readable rejection category.
        message: Human-readable explanation.
        source: Source node of the attempted edge, if any.
        target: Target node of the attempted edge, if any.
        handle: Source handle of the attempted edge, if any.
    """

    reason: RejectionReason
    message: str
    source: str | None = None
    target: str | None = None
    handle: str | None = None

    def __post_init__(self) -> None:
        super().__init__(f"[{self.reason}] {self.message}")

    def to_user_message(self) -> str:
        return self.message


@dataclass
class OrphanedHandleError(FlowGraphError):
    """An edge leaving a handle its source no longer exposes.

    Happens when a variant is deleted (or the answer mode changes) after the
    edge was created. The engine never raises this; it drops the paths that
    would flow through the edge and reports the record so orphan
    highlighting can react.

    Attributes:
        node_id: Source node of the stale edge.
        handle: The handle that no longer exists.
        edge_id: The stale edge.
        reason: Why the handle is invalid.
    """

    node_id: str
    handle: str
    edge_id: str
    reason: str = "handle no longer exists"

    def __post_init__(self) -> None:
        super().__init__(
            f"Edge '{self.edge_id}' leaves stale handle '{self.handle}' on '{self.node_id}'"
        )

    def to_user_message(self) -> str:
        return f"Connection from '{self.handle}' on '{self.node_id}' is stale: {self.reason}."


@dataclass
class ImportConflict(FlowGraphError):
    """An identifier collision resolved by renaming during import.

    Attributes:
        kind: What collided: ``"node"``, ``"edge"`` or ``"topic"``.
        original_id: The identifier in the imported document.
        new_id: The identifier it was renamed to.
        reason: Human-readable description.
    """

    kind: str
    original_id: str
    new_id: str
    reason: str = ""

    def __post_init__(self) -> None:
        super().__init__(f"{self.kind} '{self.original_id}' renamed to '{self.new_id}'")

    def to_user_message(self) -> str:
        return self.reason or str(self)


@dataclass
class DocumentFormatError(FlowGraphError):
    """Raised when an exchange document cannot be parsed.

    Attributes:
        problems: One line per validation problem.
    """

    problems: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(f"Invalid flow document: {len(self.problems)} problem(s)")

    def to_user_message(self) -> str:
        lines = ["The flow document could not be read:"]
        for problem in self.problems[:5]:
            lines.append(f"  - {problem}")
        if len(self.problems) > 5:
            lines.append(f"  - ... and {len(self.problems) - 5} more")
        return "\n".join(lines)
