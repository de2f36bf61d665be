"""``pipewright status APP --env ENV`` — what is deployed where."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from pipewright.cli.wiring import PlatformKind, make_platform
from pipewright.config import config
from pipewright.errors import PlatformError
from pipewright.monitor.renderer import RunRenderer

console = Console()


def status_cmd(
    application: str = typer.Argument(..., help="Application name."),
    env: list[str] = typer.Option(
        ["dev", "stage"], "--env", "-e", help="Environment(s) to inspect (repeatable)."
    ),
    platform: PlatformKind = typer.Option(
        PlatformKind.LOCAL, "--platform", help="Platform backend."
    ),
    state_file: Optional[Path] = typer.Option(
        None, "--state", help="Local platform state file."
    ),
) -> None:
    """Show the deployment, service, route and images of APP per environment."""
    try:
        backend = make_platform(platform, state_file or config.platform_state_path, config)
    except PlatformError as exc:
        console.print(f"[bold red]Platform unavailable:[/bold red] {exc}")
        raise typer.Exit(code=1)
    renderer = RunRenderer(console=console)
    for environment in env:
        try:
            resources = backend.list_resources(environment, application)
            slot = backend.get_slot(environment, application)
        except PlatformError as exc:
            console.print(f"[bold red]{environment}:[/bold red] {exc}")
            raise typer.Exit(code=1)
        console.print(renderer.render_resources(resources))
        if slot.version:
            console.print(
                f"[dim]slot v{slot.version}: revision {slot.revision} "
                f"({slot.updated_at:%Y-%m-%d %H:%M:%S} UTC)[/dim]"
            )
        if slot.holder:
            console.print(f"[yellow]slot claimed by promotion {slot.holder}[/yellow]")
