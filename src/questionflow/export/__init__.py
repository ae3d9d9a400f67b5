"""Export format handlers (JSON, CSV) and additive document import."""

from __future__ import annotations

from questionflow.export.base import (
    DocumentMetadata,
    DocumentNode,
    Exporter,
    FlowDocument,
    NavigationEntry,
)
from questionflow.export.csv_exporter import CsvExporter
from questionflow.export.json_exporter import (
    JsonExporter,
    build_document,
    export_document,
    parse_document,
)
from questionflow.export.merge import ImportResult, merge_document

_EXPORTERS: dict[str, type[JsonExporter | CsvExporter]] = {
    "json": JsonExporter,
    "csv": CsvExporter,
}


def get_exporter(format_name: str) -> JsonExporter | CsvExporter:
    """Get an exporter instance by format name.

    Args:
        format_name: Export format ("json" or "csv").

    Returns:
        Exporter instance.

    Raises:
        ValueError: If the format is not supported.
    """
    cls = _EXPORTERS.get(format_name)
    if cls is None:
        supported = ", ".join(sorted(_EXPORTERS))
        msg = f"Unknown export format '{format_name}'. Supported: {supported}"
        raise ValueError(msg)
    return cls()


__all__ = [
    "CsvExporter",
    "DocumentMetadata",
    "DocumentNode",
    "Exporter",
    "FlowDocument",
    "ImportResult",
    "JsonExporter",
    "NavigationEntry",
    "build_document",
    "export_document",
    "get_exporter",
    "merge_document",
    "parse_document",
]
