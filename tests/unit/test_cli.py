"""Test CLI commands."""

from __future__ import annotations

import csv
import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from questionflow import __version__
from questionflow.cli import app
from questionflow.export import export_document

if TYPE_CHECKING:
    from pathlib import Path

    from questionflow.graph import FlowGraph

runner = CliRunner()


@pytest.fixture
def no_config(tmp_path: Path) -> list[str]:
    """Global options pointing at a config file that does not exist."""
    return ["--config", str(tmp_path / "none.yaml")]


def _write(graph: FlowGraph, path: Path) -> Path:
    path.write_text(json.dumps(export_document(graph).to_json_dict()))
    return path


def test_version_command() -> None:
    """Test qflow version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    """Test that no arguments shows help."""
    result = runner.invoke(app, [])
    # no_args_is_help=True returns exit code 2 (not 0 like --help)
    assert result.exit_code == 2
    assert "QuestionFlow" in result.stdout


# --- Demo / Paths ---


def test_demo_prints_paths(no_config: list[str]) -> None:
    result = runner.invoke(app, [*no_config, "demo"])
    assert result.exit_code == 0
    assert "Path Identifiers" in result.stdout
    assert "DEMO-Q1" in result.stdout


def test_demo_writes_document(tmp_path: Path, no_config: list[str]) -> None:
    output = tmp_path / "demo.json"
    result = runner.invoke(app, [*no_config, "demo", "-o", str(output)])

    assert result.exit_code == 0
    assert "Demo flow written to" in result.stdout
    data = json.loads(output.read_text())
    assert data["metadata"]["topic"] == "DEMO"
    assert len(data["nodes"]) == 6


def test_paths_command(tmp_path: Path, no_config: list[str], linear_graph: FlowGraph) -> None:
    flow = _write(linear_graph, tmp_path / "flow.json")
    result = runner.invoke(app, [*no_config, "paths", str(flow)])
    assert result.exit_code == 0
    assert "T-Q1-A1-E1" in result.stdout


def test_missing_file(tmp_path: Path, no_config: list[str]) -> None:
    result = runner.invoke(app, [*no_config, "paths", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "File not found" in result.stdout


def test_malformed_document(tmp_path: Path, no_config: list[str]) -> None:
    flow = tmp_path / "bad.json"
    flow.write_text("{oops")
    result = runner.invoke(app, [*no_config, "check", str(flow)])
    assert result.exit_code == 1
    assert "could not be read" in result.stdout


def test_bad_config(tmp_path: Path, demo_graph: FlowGraph) -> None:
    config = tmp_path / "questionflow.yaml"
    config.write_text("history_capacity: 0\n")
    flow = _write(demo_graph, tmp_path / "flow.json")
    result = runner.invoke(app, ["--config", str(config), "paths", str(flow)])
    assert result.exit_code == 1
    assert "Failed to load editor config" in result.stdout


# --- Check / Inspect ---


def test_check_clean_flow(tmp_path: Path, no_config: list[str], demo_graph: FlowGraph) -> None:
    flow = _write(demo_graph, tmp_path / "flow.json")
    result = runner.invoke(app, [*no_config, "check", str(flow)])
    assert result.exit_code == 0
    assert "Flow Check" in result.stdout


def test_inspect(tmp_path: Path, no_config: list[str], demo_graph: FlowGraph) -> None:
    flow = _write(demo_graph, tmp_path / "flow.json")
    result = runner.invoke(app, [*no_config, "inspect", str(flow)])
    assert result.exit_code == 0
    assert "Topics: DEMO" in result.stdout
    assert "All invariant checks passed." in result.stdout


def test_inspect_lists_dangling(tmp_path: Path, no_config: list[str], multiple_graph: FlowGraph) -> None:
    flow = _write(multiple_graph, tmp_path / "flow.json")
    result = runner.invoke(app, [*no_config, "inspect", str(flow)])
    assert result.exit_code == 0
    assert "Dangling Connections" in result.stdout
    assert "variant-1" in result.stdout


# --- Organize / Export / Merge ---


def test_organize_writes_output(tmp_path: Path, no_config: list[str], linear_graph: FlowGraph) -> None:
    flow = _write(linear_graph, tmp_path / "flow.json")
    output = tmp_path / "organized.json"

    result = runner.invoke(app, [*no_config, "organize", str(flow), "-o", str(output)])

    assert result.exit_code == 0
    assert "Organized 3 node(s)" in result.stdout
    nodes = json.loads(output.read_text())["nodes"]
    assert nodes["a1"]["position"] != {"x": 0.0, "y": 300.0}


def test_export_json(tmp_path: Path, no_config: list[str], demo_graph: FlowGraph) -> None:
    flow = _write(demo_graph, tmp_path / "flow.json")
    out_dir = tmp_path / "out"
    result = runner.invoke(app, [*no_config, "export", str(flow), "-o", str(out_dir)])
    assert result.exit_code == 0
    assert (out_dir / "flow.json").exists()


def test_export_csv(tmp_path: Path, no_config: list[str], demo_graph: FlowGraph) -> None:
    flow = _write(demo_graph, tmp_path / "flow.json")
    out_dir = tmp_path / "out"

    result = runner.invoke(app, [*no_config, "export", str(flow), "-f", "csv", "-o", str(out_dir)])

    assert result.exit_code == 0
    with (out_dir / "flow.csv").open(newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "Path ID"
    assert len(rows) == 1 + 2 + 3 + 2 + 2


def test_export_unknown_format(tmp_path: Path, no_config: list[str], demo_graph: FlowGraph) -> None:
    flow = _write(demo_graph, tmp_path / "flow.json")
    result = runner.invoke(app, [*no_config, "export", str(flow), "-f", "pdf"])
    assert result.exit_code == 1
    assert "Unknown export format" in result.stdout


def test_merge(tmp_path: Path, no_config: list[str], linear_graph: FlowGraph, demo_graph: FlowGraph) -> None:
    base = _write(linear_graph, tmp_path / "base.json")
    incoming = _write(demo_graph, tmp_path / "incoming.json")
    output = tmp_path / "merged.json"

    result = runner.invoke(app, [*no_config, "merge", str(base), str(incoming), "-o", str(output)])

    assert result.exit_code == 0
    assert "Renamed on Import" in result.stdout
    assert "Merged 6 node(s) and 5 connection(s)" in result.stdout
    data = json.loads(output.read_text())
    assert len(data["nodes"]) == 9
    assert "q1-imported" in data["nodes"]


def test_merge_empty_incoming(tmp_path: Path, no_config: list[str], linear_graph: FlowGraph) -> None:
    base = _write(linear_graph, tmp_path / "base.json")
    incoming = tmp_path / "empty.json"
    incoming.write_text("{}")
    result = runner.invoke(app, [*no_config, "merge", str(base), str(incoming)])
    assert result.exit_code == 1
    assert "no nodes" in result.stdout
