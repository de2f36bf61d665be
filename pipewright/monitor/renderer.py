"""Rich terminal renderer for run snapshots and promotion records.

Color scheme
------------
- green  : SUCCEEDED
- red    : FAILED
- yellow : RUNNING
- dim    : PENDING / SKIPPED
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pipewright.models.runs import RunState, TaskState

if TYPE_CHECKING:
    from pipewright.models.platform import EnvironmentResources
    from pipewright.models.promotion import PromotionRecord
    from pipewright.monitor.projection import RunProjection, RunSnapshot


_STATE_LABELS: dict[TaskState, str] = {
    TaskState.SUCCEEDED: "[green]SUCCEEDED[/green]",
    TaskState.FAILED: "[bold red]FAILED[/bold red]",
    TaskState.RUNNING: "[yellow]RUNNING[/yellow]",
    TaskState.PENDING: "[dim]PENDING[/dim]",
    TaskState.SKIPPED: "[dim]SKIPPED[/dim]",
}

_RUN_LABELS: dict[RunState, str] = {
    RunState.SUCCEEDED: "[green]succeeded[/green]",
    RunState.FAILED: "[bold red]failed[/bold red]",
    RunState.RUNNING: "[yellow]running[/yellow]",
}


class RunRenderer:
    """Renders ``RunSnapshot`` and promotion results with Rich.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Task", min_width=20)
        table.add_column("State", justify="center", min_width=12)
        table.add_column("Exit", justify="right", width=6)
        table.add_column("Duration", justify="right", width=10)
        table.add_column("Details")

        for task in snapshot.tasks:
            duration = task.duration_seconds
            table.add_row(
                task.name,
                _STATE_LABELS.get(task.state, task.state.value),
                "" if task.exit_code is None else str(task.exit_code),
                "" if duration is None else f"{duration:.2f}s",
                task.message or "[dim]-[/dim]",
            )

        run_state = (
            _RUN_LABELS.get(snapshot.run_state, snapshot.run_state.value)
            if snapshot.run_state is not None
            else "[dim]unknown[/dim]"
        )
        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {snapshot.run_id}",
                f"[bold]State:[/bold] {run_state}",
                f"[bold]Progress:[/bold] {snapshot.succeeded_count}/{snapshot.total_tasks}",
                f"[bold]Chain:[/bold] {chain}",
            ]
        )
        title = snapshot.pipeline_name or snapshot.run_id
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title=f"[bold]{title}[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
        )

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def render_live(
        self, run_id: str, projection: RunProjection, *, refresh_hz: float = 2.0
    ) -> None:
        """Re-render the run until it reaches a terminal state or Ctrl+C."""
        interval = 1.0 / max(refresh_hz, 0.1)
        with Live(console=self.console, refresh_per_second=refresh_hz) as live:
            try:
                while True:
                    snapshot = projection.snapshot(run_id)
                    live.update(self.render_snapshot(snapshot))
                    if snapshot.run_state in (RunState.SUCCEEDED, RunState.FAILED):
                        break
                    time.sleep(interval)
            except KeyboardInterrupt:
                live.update(self.render_snapshot(projection.snapshot(run_id)))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")

    # ------------------------------------------------------------------
    # Promotions / environments
    # ------------------------------------------------------------------

    def render_promotion(self, record: PromotionRecord) -> Panel:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Action")
        table.add_column("Resource")
        table.add_column("Name")
        table.add_column("Detail", overflow="fold")
        for action in record.actions:
            table.add_row(action.action, action.resource, action.name, action.detail)

        lines = [
            f"[bold]Image:[/bold] {record.image}",
            f"[bold]Digest:[/bold] {record.digest}",
            f"[bold]Replaced:[/bold] {record.replaced_revision or '-'}",
            f"[bold]Slot version:[/bold] {record.slot_version}",
        ]
        for error in record.cleanup_errors:
            lines.append(f"[yellow]cleanup warning:[/yellow] {error}")
        req = record.request
        return Panel(
            Group(table, Text(""), Text.from_markup("\n".join(lines))),
            title=(
                f"[bold]{req.application}:{req.revision}[/bold] "
                f"{req.source_env} -> {req.target_env}"
            ),
            border_style="green" if not record.cleanup_errors else "yellow",
        )

    def render_resources(self, resources: EnvironmentResources) -> Table:
        table = Table(
            title=f"{resources.application} in {resources.namespace}",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Detail", overflow="fold")

        deployment = resources.deployment
        if deployment is not None:
            table.add_row(
                "deployment",
                deployment.name,
                f"{deployment.image} (revision {deployment.revision}, rollouts {deployment.rollouts})",
            )
        if resources.service is not None:
            table.add_row("service", resources.service.name, f"port {resources.service.port}")
        if resources.route is not None:
            table.add_row("route", resources.route.name, resources.route.host)
        for image in resources.images:
            table.add_row("image", image.reference, image.digest)
        if table.row_count == 0:
            table.add_row("[dim]-[/dim]", "[dim]nothing deployed[/dim]", "")
        return table
