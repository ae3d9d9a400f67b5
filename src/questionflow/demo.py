"""Sample flow for trying the editor and the CLI."""

from __future__ import annotations

from questionflow.graph.graph import FlowGraph
from questionflow.graph.handles import variant_handle
from questionflow.graph.models import AnswerMode, Position, Variant

DEMO_TOPIC = "DEMO"


def build_demo_flow(graph: FlowGraph | None = None) -> FlowGraph:
    """Populate *graph* (or a new FlowGraph) with the demo questionnaire.

    Two questions: a single-choice answer that always continues to the
    second question, and a multiple-choice answer whose variants lead to
    different outcomes. Added as one undo step.
    """
    graph = graph or FlowGraph(topic=DEMO_TOPIC)
    with graph.batch("load_demo"):
        graph.add_question(
            "What is your experience level with React?",
            topic=DEMO_TOPIC,
            is_root=True,
            position=Position(x=100, y=100),
            node_id="q1",
        )
        graph.add_answer(
            [
                Variant(id="var1", text="Beginner", score=1),
                Variant(id="var2", text="Intermediate", score=2),
                Variant(id="var3", text="Advanced", score=3),
            ],
            position=Position(x=100, y=400),
            node_id="a1",
        )
        graph.add_question(
            "Do you prefer TypeScript over JavaScript?",
            position=Position(x=550, y=100),
            node_id="q2",
        )
        graph.add_answer(
            [Variant(id="var1", text="Yes", score=1), Variant(id="var2", text="No", score=0)],
            mode=AnswerMode.MULTIPLE,
            position=Position(x=550, y=400),
            node_id="a2",
        )
        graph.add_outcome(
            "Work through the TypeScript handbook next.",
            position=Position(x=1000, y=100),
            node_id="o1",
        )
        graph.add_outcome(
            "Stay with JavaScript and add JSDoc types.",
            position=Position(x=1000, y=450),
            node_id="o2",
        )

        graph.connect("q1", "a1").raise_for_rejection()
        graph.connect("a1", "q2").raise_for_rejection()
        graph.connect("q2", "a2").raise_for_rejection()
        graph.connect("a2", "o1", variant_handle(0)).raise_for_rejection()
        graph.connect("a2", "o2", variant_handle(1)).raise_for_rejection()
    return graph
