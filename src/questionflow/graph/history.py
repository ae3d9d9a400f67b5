"""Bounded undo/redo history of flow snapshots.

Entries are deep-copied ``FlowSnapshot`` values taken *before* each
mutating command. The live state after the last command is not in the list
until the first ``undo``, which records it so ``redo`` can return to it.

Capacity defaults to 50 entries; the oldest entries are evicted first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from questionflow.graph.store import FlowSnapshot

log = get_logger(__name__)

DEFAULT_HISTORY_CAPACITY = 50


class HistoryManager:
    """Linear undo/redo stack with a cursor.

    Args:
        capacity: Maximum number of retained snapshots (at least 1).
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: list[FlowSnapshot] = []
        self._cursor = 0
        self._live_recorded = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def can_undo(self) -> bool:
        if not self._entries:
            return False
        return self._cursor > 0 or not self._live_recorded

    @property
    def can_redo(self) -> bool:
        return self._live_recorded and self._cursor < len(self._entries) - 1

    def _push(self, state: FlowSnapshot) -> None:
        self._entries.append(state)
        while len(self._entries) > self.capacity:
            self._entries.pop(0)
        self._cursor = len(self._entries) - 1

    def save(self, state: FlowSnapshot) -> None:
        """Record the pre-mutation *state* and drop any redo entries."""
        del self._entries[self._cursor + 1 :]
        if not self._entries or self._entries[self._cursor] != state:
            self._push(state)
        self._live_recorded = False
        log.debug("history_saved", entries=len(self._entries), cursor=self._cursor)

    def undo(self, current: FlowSnapshot) -> FlowSnapshot | None:
        """Step back one entry.

        Args:
            current: The live state, recorded first so redo can return to it.

        Returns:
            The state to restore, or None when there is nothing to undo.
        """
        if not self._entries:
            return None
        if not self._live_recorded:
            del self._entries[self._cursor + 1 :]
            if self._entries[self._cursor] != current:
                self._push(current)
            self._live_recorded = True
        if self._cursor == 0:
            return None
        self._cursor -= 1
        log.debug("history_undo", cursor=self._cursor)
        return self._entries[self._cursor]

    def redo(self) -> FlowSnapshot | None:
        """Step forward one entry; None at the newest entry."""
        if not self.can_redo:
            return None
        self._cursor += 1
        log.debug("history_redo", cursor=self._cursor)
        return self._entries[self._cursor]

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
        self._cursor = 0
        self._live_recorded = False
