"""Tests for shared graph algorithms."""

from __future__ import annotations

from questionflow.graph.algorithms import (
    find_cycle_nodes,
    natural_sort_key,
    nearest_ancestor_topic,
    reachable_from,
    root_questions,
    successors,
    topological_order,
    weakly_connected_components,
    would_create_cycle,
)
from questionflow.graph.models import AnswerNode, Edge, QuestionNode


def _edges(*pairs: tuple[str, str]) -> list[Edge]:
    return [Edge(id=f"e{i}", source=s, target=t) for i, (s, t) in enumerate(pairs)]


class TestNaturalSort:
    def test_numbers_compare_numerically(self) -> None:
        ids = ["q10", "q2", "a1", "q1"]
        assert sorted(ids, key=natural_sort_key) == ["a1", "q1", "q2", "q10"]

    def test_mixed_ids_stay_comparable(self) -> None:
        ids = ["q1-imported", "q1", "1q"]
        assert sorted(ids, key=natural_sort_key) == ["1q", "q1", "q1-imported"]


class TestReachability:
    """Reachability and cycle checks."""

    def test_reachable_includes_start(self) -> None:
        adjacency = successors(_edges(("q1", "a1"), ("a1", "o1")))
        assert reachable_from("q1", adjacency) == {"q1", "a1", "o1"}
        assert reachable_from("o1", adjacency) == {"o1"}

    def test_would_create_cycle(self) -> None:
        edges = _edges(("q1", "a1"), ("a1", "q2"))
        assert would_create_cycle(edges, "q2", "q1")
        assert would_create_cycle(edges, "q1", "q1")
        assert not would_create_cycle(edges, "q1", "q2")

    def test_find_cycle_nodes(self) -> None:
        edges = _edges(("q1", "a1"), ("a1", "q2"), ("q2", "a2"), ("a2", "q2"))
        assert find_cycle_nodes(["q1", "a1", "q2", "a2"], edges) == ["a2", "q2"]
        assert find_cycle_nodes(["q1", "a1"], edges[:1]) == []


class TestOrdering:
    def test_topological_order_breaks_ties_naturally(self) -> None:
        edges = _edges(("q10", "a1"), ("q2", "a1"))
        assert topological_order(["a1", "q10", "q2"], edges) == ["q2", "q10", "a1"]

    def test_cycle_members_appended(self) -> None:
        edges = _edges(("q1", "a1"), ("a1", "q1"))
        assert topological_order(["q1", "a1", "o1"], edges) == ["o1", "a1", "q1"]

    def test_components_largest_first(self) -> None:
        edges = _edges(("q3", "a3"), ("q1", "a1"), ("a1", "o1"))
        components = weakly_connected_components(["q1", "a1", "o1", "q3", "a3", "o9"], edges)
        assert components == [["a1", "o1", "q1"], ["a3", "q3"], ["o9"]]


class TestTopics:
    """Root detection and topic inheritance."""

    def test_root_questions_have_no_incoming_edge(self) -> None:
        nodes = [QuestionNode(id="q2"), QuestionNode(id="q1"), AnswerNode(id="a1")]
        roots = root_questions(nodes, _edges(("a1", "q2")))
        assert [n.id for n in roots] == ["q1"]

    def test_nearest_ancestor_topic(self) -> None:
        nodes = {
            "q1": QuestionNode(id="q1", topic="T"),
            "a1": AnswerNode(id="a1"),
            "q2": QuestionNode(id="q2"),
        }
        edges = _edges(("q1", "a1"), ("a1", "q2"))
        assert nearest_ancestor_topic(nodes, edges, "q2") == "T"
        assert nearest_ancestor_topic(nodes, [], "q2") is None
