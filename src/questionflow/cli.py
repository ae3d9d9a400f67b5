"""QuestionFlow CLI - typer application entry point."""

from __future__ import annotations

import atexit
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.table import Table

from questionflow.config import ConfigError, EditorConfig, load_editor_config
from questionflow.export import export_document, get_exporter, parse_document
from questionflow.graph.algorithms import natural_sort_key
from questionflow.graph.errors import DocumentFormatError
from questionflow.graph.graph import FlowGraph
from questionflow.graph.path_ids import display_label
from questionflow.graph.validation import check_invariants
from questionflow.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from questionflow.export.merge import ImportResult

app = typer.Typer(
    name="qflow",
    help="QuestionFlow: build and check branching questionnaire flows.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("questionflow.yaml")

SEVERITY_ICONS = {
    "pass": "[green]✓[/green] pass",
    "warn": "[yellow]![/yellow] warn",
    "fail": "[red]✗[/red] fail",
}

# Global state set by the callback, used by commands
_config_path: Path = DEFAULT_CONFIG_PATH


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_dir: Annotated[
        Path | None,
        typer.Option(
            "--log-dir",
            help="Append all log events to {log_dir}/flow-events.jsonl.",
        ),
    ] = None,
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="Editor configuration file (default: ./questionflow.yaml).",
            envvar="QFLOW_CONFIG",
        ),
    ] = DEFAULT_CONFIG_PATH,
) -> None:
    """QuestionFlow: build and check branching questionnaire flows."""
    global _config_path
    _config_path = config

    configure_logging(verbosity=verbose, log_to_file=log_dir is not None, log_dir=log_dir)
    if log_dir is not None:
        atexit.register(close_file_logging)


def _load_config() -> EditorConfig:
    try:
        return load_editor_config(_config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _new_graph(config: EditorConfig) -> FlowGraph:
    return FlowGraph.from_config(config)


def _load_flow(path: Path) -> FlowGraph:
    """Read an exchange document into a fresh graph, exiting on errors."""
    config = _load_config()
    try:
        document = parse_document(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1) from e
    except DocumentFormatError as e:
        console.print(f"[red]Error:[/red] {e.to_user_message()}")
        raise typer.Exit(1) from e

    graph = FlowGraph.from_document(
        document,
        topic=config.default_topic,
        history_capacity=config.history_capacity,
        layout_options=config.layout,
        paste_offset=config.paste_offset,
    )
    log.debug("flow_loaded", path=str(path), nodes=len(graph.nodes))
    return graph


def _write_flow(graph: FlowGraph, output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    document = export_document(graph)
    output.write_text(json.dumps(document.to_json_dict(), indent=2, ensure_ascii=False))


def _print_paths(graph: FlowGraph) -> None:
    table = Table(title="Path Identifiers")
    table.add_column("Node", style="cyan")
    table.add_column("Type")
    table.add_column("Label", style="bold")
    table.add_column("Path IDs", style="dim")

    for node in sorted(graph.nodes, key=lambda n: natural_sort_key(n.id)):
        ordered = sorted(node.path_ids, key=natural_sort_key)
        label = display_label(ordered[0], node.type) if ordered else "-"
        table.add_row(node.id, node.type, label, "\n".join(ordered))

    console.print()
    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Show version information."""
    from questionflow import __version__

    console.print(f"QuestionFlow v{__version__}")


@app.command()
def demo(
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the demo flow as JSON to this file."),
    ] = None,
) -> None:
    """Build the demo questionnaire and show its path identifiers."""
    from questionflow.demo import build_demo_flow

    graph = build_demo_flow(_new_graph(_load_config()))
    _print_paths(graph)
    if output is not None:
        _write_flow(graph, output)
        console.print(f"[green]✓[/green] Demo flow written to [bold]{output}[/bold]")


@app.command()
def paths(
    flow: Annotated[Path, typer.Argument(help="Flow document (JSON).")],
) -> None:
    """Recompute and list the path identifiers of a flow."""
    graph = _load_flow(flow)
    _print_paths(graph)

    stale = graph.stale_paths()
    if stale:
        console.print(f"[yellow]{len(stale)} node(s) carry stale path identifiers.[/yellow]")


@app.command()
def check(
    flow: Annotated[Path, typer.Argument(help="Flow document (JSON).")],
) -> None:
    """Run the structural invariant checks on a flow."""
    graph = _load_flow(flow)
    report = check_invariants(graph)

    table = Table(title=f"Flow Check: {flow.name}")
    table.add_column("Check", style="cyan")
    table.add_column("Result", style="bold")
    table.add_column("Details", style="dim")
    for c in report.checks:
        table.add_row(c.name, SEVERITY_ICONS.get(c.severity, c.severity), c.message)

    console.print()
    console.print(table)
    console.print()
    console.print(report.summary)

    if report.has_failures:
        raise typer.Exit(1)


@app.command()
def organize(
    flow: Annotated[Path, typer.Argument(help="Flow document (JSON).")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write here instead of overwriting the input."),
    ] = None,
) -> None:
    """Lay a flow out without overlapping nodes."""
    graph = _load_flow(flow)
    result = graph.organize()
    target = output or flow
    _write_flow(graph, target)
    console.print(
        f"[green]✓[/green] Organized {len(result.node_ids)} node(s) into [bold]{target}[/bold]"
    )


@app.command()
def export(
    flow: Annotated[Path, typer.Argument(help="Flow document (JSON).")],
    format_name: Annotated[
        str,
        typer.Option("--format", "-f", help="Export format: json or csv."),
    ] = "json",
    output_dir: Annotated[
        Path,
        typer.Option("--output-dir", "-o", help="Directory for exported files."),
    ] = Path("exports"),
) -> None:
    """Export a flow with fresh path identifiers."""
    try:
        exporter = get_exporter(format_name)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    graph = _load_flow(flow)
    written = exporter.export(export_document(graph), output_dir)
    console.print(f"[green]✓[/green] Exported {format_name} to [bold]{written}[/bold]")


def _print_import(result: ImportResult) -> None:
    if result.conflicts:
        table = Table(title="Renamed on Import")
        table.add_column("Kind", style="cyan")
        table.add_column("Original")
        table.add_column("New", style="bold")
        for c in result.conflicts:
            table.add_row(c.kind, c.original_id, c.new_id)
        console.print(table)
    for rejection in result.rejected:
        console.print(f"[yellow]Skipped connection:[/yellow] {rejection.to_user_message()}")
    for target in result.unresolved:
        console.print(f"[yellow]Unresolved navigation:[/yellow] {target}")


@app.command()
def merge(
    base: Annotated[Path, typer.Argument(help="Flow document to merge into.")],
    incoming: Annotated[Path, typer.Argument(help="Flow document to add.")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write here instead of overwriting BASE."),
    ] = None,
) -> None:
    """Add the nodes and connections of INCOMING to BASE."""
    graph = _load_flow(base)
    try:
        result = graph.import_document(parse_document(incoming.read_text(encoding="utf-8")))
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] File not found: {incoming}")
        raise typer.Exit(1) from e
    except DocumentFormatError as e:
        console.print(f"[red]Error:[/red] {e.to_user_message()}")
        raise typer.Exit(1) from e

    if not result.ok:
        console.print(f"[red]Error:[/red] {result.reason}")
        raise typer.Exit(1)

    _print_import(result)
    target = output or base
    _write_flow(graph, target)
    console.print(
        f"[green]✓[/green] Merged {len(result.node_ids)} node(s) and "
        f"{len(result.edge_ids)} connection(s) into [bold]{target}[/bold]"
    )


@app.command()
def inspect(
    flow: Annotated[Path, typer.Argument(help="Flow document (JSON).")],
) -> None:
    """Show structure, dangling connections and path statistics."""
    from questionflow.inspection import inspect_flow

    graph = _load_flow(flow)
    report = inspect_flow(graph)
    summary = report.summary

    console.print()
    console.print(f"[bold]Flow:[/bold] {flow.name}")
    console.print(f"  Topics: {', '.join(summary.topics) or '-'}")
    console.print(f"  Nodes: {summary.total_nodes}  Edges: {summary.total_edges}")
    for node_type, count in summary.node_counts.items():
        console.print(f"    {node_type}: {count}")

    stats = report.paths
    console.print()
    console.print("[bold]Paths[/bold]")
    console.print(f"  Total: {stats.total_paths}  Deepest level: {stats.max_level}")
    if stats.max_fan_out_node:
        console.print(f"  Max fan-out: {stats.max_fan_out} ({stats.max_fan_out_node})")
    for nid, (low, high) in stats.outcome_scores.items():
        console.print(f"  Outcome {nid}: score {low:g}-{high:g}")

    if report.orphaned_nodes or report.orphaned_handles or report.stale_handles:
        table = Table(title="Dangling Connections")
        table.add_column("Node", style="cyan")
        table.add_column("Issue", style="bold")
        for nid in report.orphaned_nodes:
            table.add_row(nid, "missing connection")
        for nid, handles in report.orphaned_handles.items():
            table.add_row(nid, f"open handles: {', '.join(handles)}")
        for nid, handles in report.stale_handles.items():
            table.add_row(nid, f"[yellow]stale handles: {', '.join(handles)}[/yellow]")
        console.print()
        console.print(table)

    failures = [c for c in report.validation_checks if c["severity"] == "fail"]
    console.print()
    if failures:
        for c in failures:
            console.print(f"[red]✗[/red] {c['name']}: {c['message']}")
    else:
        console.print("[green]All invariant checks passed.[/green]")
