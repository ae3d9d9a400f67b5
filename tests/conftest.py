"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from questionflow.demo import build_demo_flow
from questionflow.graph import AnswerMode, FlowGraph, Position


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's QFLOW_* settings out of test runs."""
    monkeypatch.delenv("QFLOW_HISTORY_CAPACITY", raising=False)
    monkeypatch.delenv("QFLOW_CONFIG", raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def graph() -> FlowGraph:
    """Empty flow with topic T."""
    return FlowGraph(topic="T")


@pytest.fixture
def linear_graph(graph: FlowGraph) -> FlowGraph:
    """Root question -> single answer -> outcome.

    Paths: q1 ``T-Q1``, a1 ``T-Q1-A1``, o1 ``T-Q1-A1-E1``.
    """
    graph.add_question("Root?", topic="T", is_root=True, position=Position(x=0, y=0))
    graph.add_answer(["Yes", "No"], position=Position(x=0, y=300))
    graph.add_outcome("Done", position=Position(x=0, y=600))
    graph.connect("q1", "a1").raise_for_rejection()
    graph.connect("a1", "o1").raise_for_rejection()
    return graph


@pytest.fixture
def multiple_graph(graph: FlowGraph) -> FlowGraph:
    """Root question -> multiple answer (A, B) with variant-0 -> o1."""
    graph.add_question("Pick", topic="T", is_root=True)
    graph.add_answer(["A", "B"], mode=AnswerMode.MULTIPLE)
    graph.add_outcome("First")
    graph.connect("q1", "a1").raise_for_rejection()
    graph.connect("a1", "o1", "variant-0").raise_for_rejection()
    return graph


@pytest.fixture
def demo_graph() -> FlowGraph:
    """The bundled demo questionnaire."""
    return build_demo_flow()
