"""Tests for the collision-free layout engine."""

from __future__ import annotations

import random
from itertools import combinations

import pytest

from questionflow.graph import AnswerMode, FlowGraph, LayoutOptions, compute_layout
from questionflow.graph.layout import OccupancyGrid, find_main_path
from questionflow.graph.models import AnswerNode, Edge, OutcomeNode, Position, QuestionNode, Variant


def _boxes(graph: FlowGraph, options: LayoutOptions) -> list[tuple[str, float, float, float, float]]:
    boxes = []
    for node in graph.nodes:
        w, h = options.node_size(node)
        boxes.append((node.id, node.position.x, node.position.y, w, h))
    return boxes


def _overlap(a: tuple[str, float, float, float, float], b: tuple[str, float, float, float, float]) -> bool:
    _, ax, ay, aw, ah = a
    _, bx, by, bw, bh = b
    return ax < bx + bw and bx < ax + aw and ay < by + bh and by < ay + ah


def _random_flow(seed: int) -> FlowGraph:
    rng = random.Random(seed)
    graph = FlowGraph(topic="T")
    for r in range(rng.randint(1, 3)):
        graph.add_question(f"Root {r}", topic=f"T{r}", is_root=True)
    for i in range(rng.randint(2, 8)):
        graph.add_question(f"Q{i}")
    for _ in range(rng.randint(2, 8)):
        graph.add_answer(["A", "B", "C"][: rng.randint(1, 3)], mode=rng.choice(list(AnswerMode)))
    for _ in range(rng.randint(1, 5)):
        graph.add_outcome("End")

    ids = [n.id for n in graph.nodes]
    handles = ["default", "variant-0", "variant-1", "variant-2", "combination-combo-3"]
    for _ in range(60):
        graph.connect(rng.choice(ids), rng.choice(ids), rng.choice(handles))
    # Pile everything on one spot so the layout has to separate it.
    for nid in ids:
        graph.move_node(nid, 0, 0)
    return graph


class TestOccupancyGrid:
    """Cell bookkeeping."""

    def test_marked_area_is_not_free(self) -> None:
        grid = OccupancyGrid(cell_size=50)
        grid.mark(0, 0, 100, 100)
        assert not grid.is_free(50, 50, 10, 10)
        assert grid.is_free(200, 0, 100, 100)

    def test_find_free_returns_requested_spot_when_open(self) -> None:
        assert OccupancyGrid(50).find_free(300, 300, 100, 100, radius=5) == (300, 300)

    def test_find_free_moves_off_occupied_spot(self) -> None:
        grid = OccupancyGrid(50, gap=10)
        grid.mark(0, 0, 100, 100)
        x, y = grid.find_free(0, 0, 100, 100, radius=10)
        assert (x, y) != (0, 0)
        assert grid.is_free(x, y, 100, 100)

    def test_bounds(self) -> None:
        grid = OccupancyGrid(50)
        assert grid.bounds() is None
        grid.mark(10, 20, 30, 40)
        grid.mark(100, 0, 10, 10)
        assert grid.bounds() == (10, 0, 110, 60)


class TestMainPath:
    def test_prefers_longest_walk(self) -> None:
        edges = [
            Edge(id="e1", source="q1", target="a1"),
            Edge(id="e2", source="a1", target="q2"),
            Edge(id="e3", source="q2", target="a2"),
            Edge(id="e4", source="q3", target="a2"),
        ]
        assert find_main_path(["q1", "a1", "q2", "a2", "q3"], edges) == ["q1", "a1", "q2", "a2"]


class TestComputeLayout:
    """Placement of whole flows."""

    def test_empty_flow(self) -> None:
        assert compute_layout([], []) == {}

    def test_main_path_runs_left_to_right(self) -> None:
        nodes = [
            QuestionNode(id="q1", topic="T", is_root=True),
            AnswerNode(id="a1", variants=[Variant(id="var1", text="Yes")]),
            OutcomeNode(id="o1"),
        ]
        edges = [
            Edge(id="e1", source="q1", target="a1"),
            Edge(id="e2", source="a1", target="o1"),
        ]
        positions = compute_layout(nodes, edges)

        assert positions["q1"] == Position(x=150, y=150)
        assert positions["q1"].x < positions["a1"].x < positions["o1"].x
        assert positions["q1"].y == positions["a1"].y == positions["o1"].y

    def test_isolated_nodes_go_below(self) -> None:
        nodes = [QuestionNode(id="q1", is_root=True), AnswerNode(id="a1"), OutcomeNode(id="o9")]
        edges = [Edge(id="e1", source="q1", target="a1")]
        positions = compute_layout(nodes, edges)
        assert positions["o9"].y > positions["a1"].y

    def test_starts_from_existing_top_left(self) -> None:
        nodes = [QuestionNode(id="q1", is_root=True)]
        positions = compute_layout(nodes, [], existing={"q1": Position(x=900, y=700)})
        assert positions["q1"] == Position(x=900, y=700)

    def test_deterministic(self, demo_graph: FlowGraph) -> None:
        first = compute_layout(demo_graph.nodes, demo_graph.edges)
        second = compute_layout(demo_graph.nodes, demo_graph.edges)
        assert first == second

    @pytest.mark.parametrize("seed", range(12))
    def test_random_flows_never_overlap(self, seed: int) -> None:
        """Every pair of node boxes is disjoint after organizing."""
        graph = _random_flow(seed)
        graph.organize()

        boxes = _boxes(graph, graph.layout_options)
        clashes = [(a[0], b[0]) for a, b in combinations(boxes, 2) if _overlap(a, b)]
        assert clashes == []

    def test_organize_is_one_undo_step(self, linear_graph: FlowGraph) -> None:
        linear_graph.organize()
        assert linear_graph.get_node("a1").position != Position(x=0, y=300)
        linear_graph.undo()
        assert linear_graph.get_node("a1").position == Position(x=0, y=300)

    def test_organize_empty_flow_is_noop(self, graph: FlowGraph) -> None:
        assert not graph.organize().ok

    def test_options_from_dict_ignore_unknown_keys(self) -> None:
        options = LayoutOptions.from_dict({"gap": 10, "bogus": 1})
        assert options.gap == 10
        assert options.cell_size == 50

    def test_node_sizes_per_type(self) -> None:
        options = LayoutOptions()
        answer = AnswerNode(id="a1", variants=[Variant(id="var1", text="Yes"), Variant(id="var2", text="No")])

        assert options.node_size(QuestionNode(id="q1")) == (350.0, 200.0)
        assert options.node_size(OutcomeNode(id="o1")) == (300.0, 160.0)
        assert options.node_size(answer) == (350.0, 260.0)

    def test_node_size_rejects_non_nodes(self) -> None:
        with pytest.raises(TypeError, match="Edge"):
            LayoutOptions().node_size(Edge(id="e1", source="q1", target="a1"))
