"""``pipewright graph PIPELINE`` — validate a definition and show its DAG."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pipewright.core.task_graph import TaskGraph
from pipewright.errors import DefinitionError
from pipewright.loader import load_pipeline

console = Console()


def graph_cmd(
    pipeline_file: Path = typer.Argument(..., help="Pipeline definition (YAML or JSON)."),
    order: bool = typer.Option(
        False, "--order", help="Print one valid execution order, one task per line."
    ),
) -> None:
    """Validate a pipeline and print its dependency graph.

    Exit status 2 if the definition is invalid (cycle, dangling reference,
    unknown task or parameter).
    """
    try:
        graph = TaskGraph.from_pipeline(load_pipeline(pipeline_file))
    except DefinitionError as exc:
        console.print(f"[bold red]Invalid pipeline:[/bold red] {exc}")
        raise typer.Exit(code=2)

    if order:
        for name in graph.topological_order():
            console.print(name)
        return

    table = Table(title=graph.definition.name, header_style="bold cyan")
    table.add_column("Level", justify="right", style="dim")
    table.add_column("Task")
    table.add_column("run_after")
    table.add_column("Uses results of")
    for level, names in enumerate(graph.levels()):
        for name in names:
            table.add_row(
                str(level),
                name,
                ", ".join(sorted(graph.explicit_predecessors(name))) or "[dim]-[/dim]",
                ", ".join(sorted(graph.implicit_predecessors(name))) or "[dim]-[/dim]",
            )
    console.print(table)
    console.print(f"[dim]{len(graph)} tasks, {len(graph.edges)} edges[/dim]")
