"""Exchange document models and Exporter protocol.

The exchange document is the JSON shape flows are saved and shared in::

    {
      "metadata":   {"topic", "version", "createdAt", "totalQuestions"},
      "nodes":      {id: {"id", "type", "pathId", "pathIds", "content", ...}},
      "navigation": {source id: {"default"?, "variants"?, "combinations"?}}
    }

Navigation values are path identifiers, not node ids; importing resolves
them back through each node's ``pathIds``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from questionflow.graph.models import AnswerMode, Position
from questionflow.graph.path_ids import FALLBACK_TOPIC

if TYPE_CHECKING:
    from pathlib import Path

DOCUMENT_VERSION = "1.0.0"


class _DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DocumentMetadata(_DocumentModel):
    """Document header."""

    topic: str = FALLBACK_TOPIC
    version: str = DOCUMENT_VERSION
    created_at: str = ""
    total_questions: int = 0


class DocumentVariant(_DocumentModel):
    id: str
    text: str = ""
    score: float = 0
    additional_info: str | None = None


class DocumentCombination(_DocumentModel):
    """A combination handle as shown to readers of the document."""

    id: str
    handle: str
    label: str
    variant_indices: list[int] = Field(default_factory=list)


class DocumentNode(_DocumentModel):
    """One node entry; type-specific fields are omitted for other types."""

    id: str = Field(min_length=1)
    type: Literal["question", "answer", "outcome"]
    path_id: str = ""
    path_ids: list[str] = Field(default_factory=list)
    content: str = ""
    level: int = 0
    position: Position | None = None
    topic: str | None = None
    is_root: bool | None = None
    answer_type: AnswerMode | None = None
    variants: list[DocumentVariant] | None = None
    combinations: list[DocumentCombination] | None = None
    recommendation: str | None = None


class NavigationEntry(_DocumentModel):
    """Where each handle of a node leads, as target path identifiers."""

    default: str | None = None
    variants: dict[str, str] | None = None
    combinations: dict[str, str] | None = None

    def targets(self) -> list[tuple[str, str]]:
        """``(handle, target path id)`` pairs in document order."""
        pairs: list[tuple[str, str]] = []
        if self.default:
            pairs.append(("default", self.default))
        pairs.extend((self.variants or {}).items())
        pairs.extend((self.combinations or {}).items())
        return pairs


class FlowDocument(_DocumentModel):
    """The complete exchange document."""

    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    nodes: dict[str, DocumentNode] = Field(default_factory=dict)
    navigation: dict[str, NavigationEntry] = Field(default_factory=dict)

    def to_json_dict(self) -> dict[str, object]:
        """Dump with camelCase keys, omitting absent optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Exporter(Protocol):
    """Protocol for flow export format handlers."""

    format_name: str

    def export(self, document: FlowDocument, output_dir: Path) -> Path:
        """Export the flow to the given output directory.

        Args:
            document: The flow as an exchange document.
            output_dir: Directory to write output files.

        Returns:
            Path to the main output file.
        """
        ...
