"""``pipewright run PIPELINE`` — execute a pipeline definition.

Exit status: 0 when every task succeeded, 1 when a task failed (the
failing task and its output are printed), 2 when the definition or the
supplied parameters are invalid.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pipewright.cli.wiring import PlatformKind, make_executor, make_platform, make_promoter
from pipewright.config import config
from pipewright.core.orchestrator import Orchestrator
from pipewright.core.run_ledger import RunLedger
from pipewright.errors import DefinitionError, PlatformError
from pipewright.loader import load_pipeline
from pipewright.models.config import PipelineConfig
from pipewright.models.runs import PipelineRunResult, TaskRun, TaskState
from pipewright.models.tasks import ParamType, PipelineDefinition

console = Console()

_STATE_STYLES = {
    TaskState.SUCCEEDED: "green",
    TaskState.FAILED: "bold red",
    TaskState.SKIPPED: "dim",
    TaskState.RUNNING: "yellow",
    TaskState.PENDING: "dim",
}


def parse_params(
    raw: list[str], definition: PipelineDefinition
) -> dict[str, str | list[str]]:
    """Turn ``key=value`` pairs into pipeline params.

    Values of array params are split on commas.
    """
    types = {spec.name: spec.type for spec in definition.params}
    params: dict[str, str | list[str]] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise DefinitionError(f"Parameter must look like key=value, got {item!r}")
        if types.get(key) == ParamType.ARRAY:
            params[key] = [v for v in value.split(",") if v]
        else:
            params[key] = value
    return params


def _progress(task_run: TaskRun) -> None:
    if task_run.state == TaskState.RUNNING:
        console.print(f"[yellow]>[/yellow] {task_run.task_name}")
    elif task_run.state == TaskState.SUCCEEDED:
        console.print(f"[green]✓[/green] {task_run.task_name}")
    elif task_run.state == TaskState.FAILED:
        console.print(f"[bold red]✗[/bold red] {task_run.task_name} ({task_run.message})")
    elif task_run.state == TaskState.SKIPPED:
        console.print(f"[dim]- {task_run.task_name} skipped: {task_run.message}[/dim]")


def _summary(result: PipelineRunResult) -> Table:
    table = Table(title=f"{result.pipeline_name} ({result.run_id})", header_style="bold cyan")
    table.add_column("Task")
    table.add_column("State", justify="center")
    table.add_column("Exit", justify="right")
    table.add_column("Results", overflow="fold")
    for name, task_run in result.task_runs.items():
        style = _STATE_STYLES.get(task_run.state, "")
        results = ", ".join(f"{k}={v}" for k, v in sorted(task_run.results.items()))
        table.add_row(
            name,
            f"[{style}]{task_run.state.value}[/{style}]",
            "" if task_run.exit_code is None else str(task_run.exit_code),
            results or "[dim]-[/dim]",
        )
    return table


def run_cmd(
    pipeline_file: Path = typer.Argument(..., help="Pipeline definition (YAML or JSON)."),
    param: list[str] = typer.Option(
        [], "--param", "-p", help="Pipeline parameter as key=value (repeatable)."
    ),
    max_workers: Optional[int] = typer.Option(
        None, "--max-workers", "-w", help="Maximum concurrently running tasks."
    ),
    fail_fast: Optional[bool] = typer.Option(
        None,
        "--fail-fast/--no-fail-fast",
        help="Stop dispatching new tasks after the first failure.",
    ),
    platform: PlatformKind = typer.Option(
        PlatformKind.LOCAL, "--platform", help="Platform backend for builtin tasks."
    ),
    state_file: Optional[Path] = typer.Option(
        None, "--state", help="Local platform state file."
    ),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
    workspace_dir: Optional[Path] = typer.Option(
        None, "--workspace", help="Directory for per-run task workspaces."
    ),
    source_root: Path = typer.Option(
        Path("."), "--source-root", help="Base directory for builtin path params."
    ),
) -> None:
    """Run a pipeline to completion."""
    pipeline_config = PipelineConfig(
        ledger_db_path=ledger_db or config.ledger_path,
        workspace_dir=workspace_dir or config.workspace_dir,
        max_workers=max_workers or config.max_workers,
        fail_fast=config.fail_fast if fail_fast is None else fail_fast,
    )

    try:
        definition = load_pipeline(pipeline_file)
        params = parse_params(param, definition)
    except DefinitionError as exc:
        console.print(f"[bold red]Invalid pipeline:[/bold red] {exc}")
        raise typer.Exit(code=2)

    ledger = RunLedger(pipeline_config.ledger_db_path)
    try:
        backend = make_platform(platform, state_file or config.platform_state_path, config)
    except PlatformError as exc:
        console.print(f"[bold red]Platform unavailable:[/bold red] {exc}")
        raise typer.Exit(code=1)
    promoter = make_promoter(backend, config, ledger=ledger)
    executor = make_executor(backend, promoter, config, source_root=source_root)
    orchestrator = Orchestrator(
        pipeline_config, executor, ledger=ledger, listeners=[_progress]
    )

    try:
        result = orchestrator.run_pipeline(definition, params)
    except DefinitionError as exc:
        console.print(f"[bold red]Invalid pipeline:[/bold red] {exc}")
        raise typer.Exit(code=2)

    console.print()
    console.print(_summary(result))

    if not result.succeeded:
        console.print(
            Panel(
                result.error or f"Task '{result.failed_task}' failed",
                title=f"[bold red]Run failed at task {result.failed_task}[/bold red]",
                border_style="red",
            )
        )
        raise typer.Exit(code=result.exit_code)

    console.print(f"[bold green]Run {result.run_id} succeeded.[/bold green]")
