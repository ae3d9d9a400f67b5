"""Tests for orphan highlighting flags."""

from __future__ import annotations

from questionflow.graph import AnswerMode, FlowGraph
from questionflow.graph.models import AnswerNode, Edge, OutcomeNode, QuestionNode, Variant
from questionflow.graph.orphans import node_flags, orphaned_node_ids


class TestOrphanedNodes:
    """Which roles need which connections."""

    def test_connected_flow_has_no_orphans(self, linear_graph: FlowGraph) -> None:
        assert orphaned_node_ids(linear_graph.nodes, linear_graph.edges) == []

    def test_root_needs_only_outgoing(self) -> None:
        nodes = [QuestionNode(id="q1", is_root=True), AnswerNode(id="a1")]
        assert orphaned_node_ids(nodes, []) == ["a1", "q1"]
        edges = [Edge(id="e1", source="q1", target="a1")]
        assert orphaned_node_ids(nodes, edges) == ["a1"]

    def test_outcome_needs_only_incoming(self) -> None:
        nodes = [AnswerNode(id="a1"), OutcomeNode(id="o1")]
        edges = [Edge(id="e1", source="a1", target="o1")]
        assert "o1" not in orphaned_node_ids(nodes, edges)

    def test_non_root_question_needs_both(self) -> None:
        nodes = [QuestionNode(id="q2"), AnswerNode(id="a1")]
        edges = [Edge(id="e1", source="q2", target="a1")]
        assert "q2" in orphaned_node_ids(nodes, edges)

    def test_natural_order(self) -> None:
        nodes = [OutcomeNode(id="o10"), OutcomeNode(id="o2")]
        assert orphaned_node_ids(nodes, []) == ["o2", "o10"]


class TestHandleFlags:
    """Open and stale handles on answers."""

    def test_open_handles_listed(self, multiple_graph: FlowGraph) -> None:
        flags = multiple_graph.node_flags()
        assert flags["a1"].orphaned_handles == ("variant-1",)
        assert not flags["a1"].is_orphaned

    def test_combination_handles(self) -> None:
        answer = AnswerNode(
            id="a1",
            mode=AnswerMode.COMBINATIONS,
            variants=[Variant(id="var1", text="A"), Variant(id="var2", text="B")],
        )
        edges = [Edge(id="e1", source="a1", target="o1", source_handle="combination-combo-3")]
        flags = node_flags([answer, OutcomeNode(id="o1")], edges)
        assert flags["a1"].orphaned_handles == ("combination-combo-1", "combination-combo-2")

    def test_stale_handle_after_mode_shrink(self) -> None:
        answer = AnswerNode(id="a1", variants=[Variant(id="var1", text="A")])
        edges = [Edge(id="e1", source="a1", target="o1", source_handle="variant-0")]
        flags = node_flags([answer, OutcomeNode(id="o1")], edges)
        assert flags["a1"].stale_handles == ("variant-0",)
        assert flags["a1"].orphaned_handles == ("default",)

    def test_outcomes_have_no_handles(self, linear_graph: FlowGraph) -> None:
        flags = linear_graph.node_flags()["o1"]
        assert flags.orphaned_handles == ()
        assert flags.stale_handles == ()
