"""CSV export format.

One row per question and outcome, and one row per answer variant, for
review in a spreadsheet. Every cell is quoted.
"""

from __future__ import annotations

import csv
from typing import TYPE_CHECKING

from questionflow.graph.handles import variant_handle
from questionflow.graph.path_ids import parse_path_id

if TYPE_CHECKING:
    from pathlib import Path

    from questionflow.export.base import FlowDocument

CSV_HEADERS = ["Path ID", "Clean Path ID", "Type", "Content", "Level", "Variants", "Scores", "Next Path"]


def clean_path_id(path_id: str) -> str:
    """Strip the topic prefix: ``T-Q1-A1`` -> ``Q1-A1``."""
    components = parse_path_id(path_id)
    if len(components.segments) <= 1:
        return path_id
    return "-".join(str(s) for s in components.segments)


def document_rows(document: FlowDocument) -> list[list[str]]:
    """Tabulate a document, header row first."""
    rows = [list(CSV_HEADERS)]
    for node in document.nodes.values():
        nav = document.navigation.get(node.id)
        if node.type == "question":
            rows.append([
                node.path_id,
                clean_path_id(node.path_id),
                "Question",
                node.content,
                str(node.level),
                "",
                "",
                (nav.default if nav else None) or "",
            ])
        elif node.type == "answer":
            for index, variant in enumerate(node.variants or []):
                next_path = ""
                if nav is not None:
                    next_path = (nav.variants or {}).get(variant_handle(index)) or nav.default or ""
                rows.append([
                    node.path_id,
                    clean_path_id(node.path_id),
                    "Answer",
                    variant.text,
                    "0",
                    variant.text,
                    f"{variant.score:g}",
                    next_path,
                ])
        else:
            rows.append([
                node.path_id,
                clean_path_id(node.path_id),
                "Outcome",
                node.recommendation or "No recommendation",
                "0",
                "",
                "",
                "",
            ])
    return rows


class CsvExporter:
    """Export a flow as a flat CSV table."""

    format_name = "csv"

    def export(self, document: FlowDocument, output_dir: Path) -> Path:
        """Write the flow table.

        Returns:
            Path to the generated flow.csv file.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        output_file = output_dir / "flow.csv"
        with output_file.open("w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_ALL)
            writer.writerows(document_rows(document))
        return output_file
