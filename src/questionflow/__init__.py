"""QuestionFlow: flow graph engine for branching questionnaires."""

__version__ = "0.1.0"
