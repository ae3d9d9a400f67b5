"""Pydantic models for flow graph nodes and edges.

A flow is a directed graph of three node kinds:

- Question: asks something; its single output feeds an Answer.
- Answer: a set of variants plus a branching mode deciding how many
  outgoing routes it has (one, one per variant, or one per variant subset).
- Outcome: terminal recommendation.

``path_ids`` on every node is derived state owned by the path identifier
engine (see :mod:`questionflow.graph.path_ids`); commands never write it
from caller input.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from questionflow.graph.handles import DEFAULT_HANDLE, Combination, generate_combinations


class AnswerMode(StrEnum):
    """Branching mode of an answer node."""

    SINGLE = "single"
    MULTIPLE = "multiple"
    COMBINATIONS = "combinations"


class Position(BaseModel):
    """Canvas position of a node's top-left corner."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


class Variant(BaseModel):
    """One selectable answer variant."""

    id: str = Field(min_length=1)
    text: str = ""
    score: float = 0
    additional_info: str | None = None


class _NodeBase(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1)
    position: Position = Field(default_factory=Position)
    path_ids: set[str] = Field(default_factory=set)
    topic: str = ""

    @property
    def type_letter(self) -> str:
        """Single-letter path segment tag for this node type."""
        raise NotImplementedError


class QuestionNode(_NodeBase):
    """A question. Root questions start a flow and own its topic."""

    type: Literal["question"] = "question"
    is_root: bool = False
    level: int = Field(default=1, ge=1)
    text: str = ""

    @property
    def type_letter(self) -> str:
        return "Q"


class AnswerNode(_NodeBase):
    """An answer with its variants and branching mode."""

    type: Literal["answer"] = "answer"
    mode: AnswerMode = AnswerMode.SINGLE
    variants: list[Variant] = Field(default_factory=list)

    @property
    def type_letter(self) -> str:
        return "A"

    @property
    def combinations(self) -> list[Combination]:
        """Every variant subset; empty unless the mode is COMBINATIONS."""
        if self.mode is not AnswerMode.COMBINATIONS:
            return []
        return generate_combinations(self.variants)


class OutcomeNode(_NodeBase):
    """Terminal node carrying a recommendation."""

    type: Literal["outcome"] = "outcome"
    recommendation: str = ""

    @property
    def type_letter(self) -> str:
        return "E"


Node = Annotated[QuestionNode | AnswerNode | OutcomeNode, Field(discriminator="type")]

NODE_TYPES: tuple[str, ...] = ("question", "answer", "outcome")


class Edge(BaseModel):
    """A directed connection leaving *source* through *source_handle*."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    source_handle: str = DEFAULT_HANDLE
