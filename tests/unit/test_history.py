"""Tests for the bounded undo/redo history."""

from __future__ import annotations

import pytest

from questionflow.graph.history import DEFAULT_HISTORY_CAPACITY, HistoryManager
from questionflow.graph.models import QuestionNode
from questionflow.graph.store import FlowSnapshot


def _state(text: str) -> FlowSnapshot:
    return FlowSnapshot.capture([QuestionNode(id="q1", text=text)], [])


class TestHistoryManager:
    def test_default_capacity(self) -> None:
        assert HistoryManager().capacity == DEFAULT_HISTORY_CAPACITY == 50

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            HistoryManager(0)

    def test_empty_history_is_noop(self) -> None:
        history = HistoryManager()
        assert not history.can_undo
        assert not history.can_redo
        assert history.undo(_state("x")) is None
        assert history.redo() is None

    def test_undo_then_redo_round_trip(self) -> None:
        """Undo walks back through saved states; redo returns to the live one."""
        history = HistoryManager()
        history.save(_state("s0"))
        history.save(_state("s1"))
        live = _state("s2")

        assert history.undo(live) == _state("s1")
        assert history.undo(_state("s1")) == _state("s0")
        assert history.undo(_state("s0")) is None
        assert not history.can_undo

        assert history.redo() == _state("s1")
        assert history.redo() == live
        assert history.redo() is None

    def test_save_after_undo_drops_redo_branch(self) -> None:
        history = HistoryManager()
        history.save(_state("s0"))
        history.save(_state("s1"))
        history.undo(_state("s2"))

        history.save(_state("s1"))

        assert not history.can_redo
        assert history.undo(_state("s3")) == _state("s1")

    def test_oldest_entries_evicted(self) -> None:
        history = HistoryManager(capacity=3)
        for i in range(6):
            history.save(_state(f"s{i}"))

        assert len(history) == 3
        restored = []
        current = _state("live")
        while (state := history.undo(current)) is not None:
            restored.append(state.nodes[0].text)
            current = state
        assert restored == ["s5", "s4"]

    def test_identical_consecutive_states_stored_once(self) -> None:
        history = HistoryManager()
        history.save(_state("same"))
        history.save(_state("same"))
        assert len(history) == 1

    def test_clear(self) -> None:
        history = HistoryManager()
        history.save(_state("s0"))
        history.clear()
        assert len(history) == 0
        assert not history.can_undo
