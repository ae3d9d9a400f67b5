"""Tests for path identifier derivation."""

from __future__ import annotations

import pytest

from questionflow.graph.models import (
    AnswerMode,
    AnswerNode,
    Edge,
    OutcomeNode,
    QuestionNode,
    Variant,
)
from questionflow.graph.path_ids import (
    PathIdGenerator,
    display_label,
    edge_id,
    is_orphan_path,
    parent_path_id,
    parse_path_id,
    path_level,
    topic_problem,
)


def _answer(
    nid: str,
    *texts: str,
    mode: AnswerMode = AnswerMode.SINGLE,
    scores: tuple[float, ...] = (),
) -> AnswerNode:
    variants = [
        Variant(id=f"var{i + 1}", text=t, score=scores[i] if i < len(scores) else 0)
        for i, t in enumerate(texts)
    ]
    return AnswerNode(id=nid, mode=mode, variants=variants)


def _edge(source: str, target: str, handle: str = "default") -> Edge:
    return Edge(id=edge_id(source, target, handle), source=source, target=target, source_handle=handle)


class TestPathGrammar:
    """Parsing helpers over path strings."""

    def test_parse_simple_path(self) -> None:
        components = parse_path_id("T-Q1-A1-V2-E3")
        assert components.topic == "T"
        assert [str(s) for s in components.segments] == ["Q1", "A1", "V2", "E3"]

    def test_topic_may_contain_hyphens(self) -> None:
        components = parse_path_id("MY-TOPIC-Q1-A2")
        assert components.topic == "MY-TOPIC"
        assert components.segments[-1].number == 2

    def test_combination_segment_numbers(self) -> None:
        assert parse_path_id("T-Q1-A1-V1+V3").segments[-1].numbers == (1, 3)

    def test_parent_and_level(self) -> None:
        assert parent_path_id("T-Q1-A1-Q2") == "T-Q1-A1"
        assert parent_path_id("T-Q1") is None
        assert path_level("T-Q1-A1-V1-Q2-A2") == 2

    def test_display_labels(self) -> None:
        assert display_label("T-Q1-A1-Q3", "question") == "Q1.3"
        assert display_label("T-Q1-A2", "answer") == "A2"

    def test_orphan_prefix(self) -> None:
        assert is_orphan_path("ORPHAN-A1")
        assert not is_orphan_path("T-Q1")

    def test_topic_problem(self) -> None:
        """Topics must read back unchanged from the paths they prefix."""
        assert topic_problem("MY-TOPIC") is None
        assert topic_problem("Q1") is None
        assert "A1" in topic_problem("X-A1")
        assert "V1+V2" in topic_problem("X-V1+V2")
        assert topic_problem("ORPHAN") is not None
        assert topic_problem("ORPHAN-SURVEY") is not None


class TestFullComputation:
    """PathIdGenerator.compute over whole flows."""

    def test_root_single_answer_outcome(self) -> None:
        """Root -> single answer -> outcome gets one path per node."""
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "Yes", "No"),
            OutcomeNode(id="o1"),
        ]
        edges = [_edge("q1", "a1"), _edge("a1", "o1")]

        result = PathIdGenerator().compute(nodes, edges)

        assert result.path_ids == {
            "q1": {"T-Q1"},
            "a1": {"T-Q1-A1"},
            "o1": {"T-Q1-A1-E1"},
        }
        assert result.levels == {"q1": 1}
        assert result.unreachable == []

    def test_multiple_answer_has_no_base_path(self) -> None:
        """A Multiple answer stores one path per variant, not its base path."""
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "A", "B", mode=AnswerMode.MULTIPLE),
            OutcomeNode(id="o1"),
        ]
        edges = [_edge("q1", "a1"), _edge("a1", "o1", "variant-0")]

        result = PathIdGenerator().compute(nodes, edges)

        assert result.path_ids["a1"] == {"T-Q1-A1-V1", "T-Q1-A1-V2"}
        assert "T-Q1-A1" not in result.path_ids["a1"]
        assert result.path_ids["o1"] == {"T-Q1-A1-V1-E1"}

    def test_combination_route(self) -> None:
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "A", "B", mode=AnswerMode.COMBINATIONS),
            OutcomeNode(id="o1"),
        ]
        edges = [_edge("q1", "a1"), _edge("a1", "o1", "combination-combo-3")]

        result = PathIdGenerator().compute(nodes, edges)

        assert result.path_ids["a1"] == {"T-Q1-A1-V1", "T-Q1-A1-V2", "T-Q1-A1-V1+V2"}
        assert result.path_ids["o1"] == {"T-Q1-A1-V1+V2-E1"}

    def test_fan_in_multiplies_paths(self) -> None:
        """Two variants into one question give it two paths and both routes continue."""
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "A", "B", mode=AnswerMode.MULTIPLE),
            QuestionNode(id="q2"),
            _answer("a2", "Ok"),
        ]
        edges = [
            _edge("q1", "a1"),
            _edge("a1", "q2", "variant-0"),
            _edge("a1", "q2", "variant-1"),
            _edge("q2", "a2"),
        ]

        result = PathIdGenerator().compute(nodes, edges)

        assert result.path_ids["q2"] == {"T-Q1-A1-V1-Q2", "T-Q1-A1-V2-Q2"}
        assert result.path_ids["a2"] == {"T-Q1-A1-V1-Q2-A2", "T-Q1-A1-V2-Q2-A2"}
        assert result.levels["q2"] == 2

    def test_numbers_follow_natural_id_order(self) -> None:
        """q10 ranks after q2, so it is Q3 among three questions."""
        nodes = [
            QuestionNode(id="q10", topic="C", is_root=True),
            QuestionNode(id="q2", topic="B", is_root=True),
            QuestionNode(id="q1", topic="A", is_root=True),
        ]
        result = PathIdGenerator().compute(nodes, [])
        assert result.path_ids == {"q1": {"A-Q1"}, "q2": {"B-Q2"}, "q10": {"C-Q3"}}

    def test_unreachable_nodes_get_orphan_ids(self) -> None:
        nodes = [QuestionNode(id="q1", topic="T", is_root=True), _answer("a1", "X"), OutcomeNode(id="o1")]
        result = PathIdGenerator().compute(nodes, [])

        assert result.path_ids["a1"] == {"ORPHAN-A1"}
        assert result.path_ids["o1"] == {"ORPHAN-E1"}
        assert result.unreachable == ["a1", "o1"]

    def test_root_without_topic_uses_fallback(self) -> None:
        result = PathIdGenerator().compute([QuestionNode(id="q1", is_root=True)], [], "SURVEY")
        assert result.path_ids["q1"] == {"SURVEY-Q1"}

    def test_hyphenated_topic_keeps_root_path(self) -> None:
        result = PathIdGenerator().compute([QuestionNode(id="q1", topic="my-big-survey-topic-x", is_root=True)], [])

        assert result.path_ids == {"q1": {"my-big-survey-topic-x-Q1"}}
        assert result.unreachable == []

    def test_hyphens_in_topic_do_not_limit_depth(self) -> None:
        topic = "a-b-c-d-e-f-g-h-i-j"
        nodes = [QuestionNode(id="q1", topic=topic, is_root=True), _answer("a1", "Yes"), OutcomeNode(id="o1")]

        result = PathIdGenerator().compute(nodes, [_edge("q1", "a1"), _edge("a1", "o1")])

        assert result.path_ids["o1"] == {f"{topic}-Q1-A1-E1"}
        assert parse_path_id(f"{topic}-Q1-A1-E1").topic == topic

    def test_unflagged_question_without_parent_is_root(self) -> None:
        result = PathIdGenerator().compute([QuestionNode(id="q1"), _answer("a1", "Yes")], [_edge("q1", "a1")], "T")
        assert result.path_ids == {"q1": {"T-Q1"}, "a1": {"T-Q1-A1"}}

    def test_stale_handle_reported_not_raised(self) -> None:
        """An edge on a removed variant drops its paths and is returned as a record."""
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "Only", mode=AnswerMode.MULTIPLE),
            OutcomeNode(id="o1"),
        ]
        edges = [_edge("q1", "a1"), _edge("a1", "o1", "variant-1")]

        result = PathIdGenerator().compute(nodes, edges)

        assert len(result.stale_handles) == 1
        stale = result.stale_handles[0]
        assert (stale.node_id, stale.handle) == ("a1", "variant-1")
        assert result.path_ids["o1"] == {"ORPHAN-E1"}

    def test_recomputation_is_idempotent(self) -> None:
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "A", "B", "C", mode=AnswerMode.COMBINATIONS),
            QuestionNode(id="q2"),
            _answer("a2", "Yes"),
            OutcomeNode(id="o1"),
        ]
        edges = [
            _edge("q1", "a1"),
            _edge("a1", "q2", "combination-combo-5"),
            _edge("a1", "q2", "combination-combo-7"),
            _edge("q2", "a2"),
            _edge("a2", "o1"),
        ]
        generator = PathIdGenerator()
        first = generator.compute(nodes, edges)
        generator.reset()
        second = generator.compute(list(reversed(nodes)), list(reversed(edges)))

        assert first.path_ids == second.path_ids
        assert first.levels == second.levels

    def test_cycle_is_bounded(self) -> None:
        """A cyclic graph (only reachable through raw data) still terminates."""
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            _answer("a1", "A"),
            QuestionNode(id="q2"),
            _answer("a2", "B"),
        ]
        edges = [_edge("q1", "a1"), _edge("a1", "q2"), _edge("q2", "a2"), _edge("a2", "q2")]

        result = PathIdGenerator().compute(nodes, edges)

        assert "T-Q1-A1-Q2" in result.path_ids["q2"]


class TestIncrementalDerivation:
    """derive_edge_paths only adds what a new edge introduces."""

    def test_new_edge_extends_existing_paths(self) -> None:
        q1 = QuestionNode(id="q1", topic="T", is_root=True, path_ids={"T-Q1"})
        a1 = _answer("a1", "A", "B", mode=AnswerMode.MULTIPLE)
        a1.path_ids = {"T-Q1-A1-V1", "T-Q1-A1-V2"}
        o1 = OutcomeNode(id="o1", path_ids={"ORPHAN-E1"})
        nodes = {"q1": q1, "a1": a1, "o1": o1}
        new = _edge("a1", "o1", "variant-1")

        added = PathIdGenerator().derive_edge_paths(nodes, [_edge("q1", "a1"), new], new)

        assert added == {"o1": {"T-Q1-A1-V2-E1"}}

    def test_known_paths_are_not_repeated(self) -> None:
        q1 = QuestionNode(id="q1", topic="T", is_root=True, path_ids={"T-Q1"})
        a1 = _answer("a1", "A")
        a1.path_ids = {"T-Q1-A1"}
        nodes = {"q1": q1, "a1": a1}
        edge = _edge("q1", "a1")

        assert PathIdGenerator().derive_edge_paths(nodes, [edge], edge) == {}

    def test_matches_full_computation(self) -> None:
        """Paths added edge by edge equal a full recomputation."""
        nodes = {
            "q1": QuestionNode(id="q1", topic="T", is_root=True, path_ids={"T-Q1"}),
            "a1": _answer("a1", "A", "B", mode=AnswerMode.MULTIPLE),
            "q2": QuestionNode(id="q2"),
            "a2": _answer("a2", "Yes"),
            "o1": OutcomeNode(id="o1"),
        }
        order = [
            _edge("q1", "a1"),
            _edge("a1", "q2", "variant-0"),
            _edge("q2", "a2"),
            _edge("a2", "o1"),
            _edge("a1", "q2", "variant-1"),
        ]
        generator = PathIdGenerator()
        applied: list[Edge] = []
        for edge in order:
            applied.append(edge)
            for nid, paths in generator.derive_edge_paths(nodes, applied, edge).items():
                nodes[nid].path_ids = nodes[nid].path_ids | paths

        full = PathIdGenerator().compute(nodes.values(), applied)
        assert {nid: n.path_ids for nid, n in nodes.items()} == full.path_ids

    def test_unflagged_root_seeds_derivation(self) -> None:
        """A question nothing points at roots the flow even without is_root."""
        nodes = {"q1": QuestionNode(id="q1"), "a1": _answer("a1", "Yes")}
        edge = _edge("q1", "a1")

        added = PathIdGenerator().derive_edge_paths(nodes, [edge], edge, "T")

        assert added == {"q1": {"T-Q1"}, "a1": {"T-Q1-A1"}}
        assert added == PathIdGenerator().compute(nodes.values(), [edge], "T").path_ids

    def test_hyphenated_topic_derivation(self) -> None:
        q1 = QuestionNode(id="q1", topic="a-b-c-d-e", is_root=True, path_ids={"a-b-c-d-e-Q1"})
        nodes = {"q1": q1, "a1": _answer("a1", "Yes")}
        edge = _edge("q1", "a1")

        assert PathIdGenerator().derive_edge_paths(nodes, [edge], edge) == {"a1": {"a-b-c-d-e-Q1-A1"}}

    def test_initial_paths_follow_incoming_edges(self) -> None:
        q1 = QuestionNode(id="q1")
        a1 = _answer("a1", "Yes")
        generator = PathIdGenerator()

        assert generator.initial_path_ids(q1, [q1, a1], "T") == {"T-Q1"}
        assert generator.initial_path_ids(q1, [q1, a1], "T", [_edge("a1", "q1")]) == {"ORPHAN-Q1"}
        assert generator.initial_path_ids(a1, [q1, a1], "T") == {"ORPHAN-A1"}


class TestLookups:
    """Registry lookups after a computation."""

    @pytest.fixture
    def scored(self) -> tuple[PathIdGenerator, dict[str, object]]:
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True, text="Level?"),
            _answer("a1", "Low", "High", mode=AnswerMode.MULTIPLE, scores=(1, 5)),
            OutcomeNode(id="o1"),
        ]
        generator = PathIdGenerator()
        generator.compute(nodes, [_edge("q1", "a1"), _edge("a1", "o1", "variant-1")])
        return generator, {n.id: n for n in nodes}

    def test_node_for_path(self, scored: tuple[PathIdGenerator, dict[str, object]]) -> None:
        generator, _ = scored
        assert generator.node_for_path("T-Q1-A1-V2-E1") == "o1"
        assert generator.node_for_path("T-Q1-A1") == "a1"
        assert generator.node_for_path("T-Q9") is None

    def test_paths_for_node_and_reset(self, scored: tuple[PathIdGenerator, dict[str, object]]) -> None:
        generator, _ = scored
        assert generator.paths_for_node("a1") == {"T-Q1-A1-V1", "T-Q1-A1-V2"}
        assert generator.number_for("o1") == 1

        generator.reset()

        assert generator.paths_for_node("a1") == set()
        assert generator.node_for_path("T-Q1") is None

    def test_path_score_sums_selected_variants(self, scored: tuple[PathIdGenerator, dict[str, object]]) -> None:
        generator, nodes = scored
        assert generator.path_score("T-Q1-A1-V2-E1", nodes) == 5

    def test_human_readable_path(self, scored: tuple[PathIdGenerator, dict[str, object]]) -> None:
        generator, nodes = scored
        text = generator.human_readable_path("T-Q1-A1-V2", nodes)
        assert "Q1: Level?" in text
        assert "High" in text
