"""``pipewright promote APP REVISION --from dev --to stage``.

Re-tags an already built revision into the target environment, replaces the
deployment there and triggers the rollout.  Exit status 1 on any promotion
failure (missing source artifact, strict cleanup failure, concurrent
promotion); nothing in the target is touched when a precondition fails.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from pipewright.cli.wiring import PlatformKind, make_platform, make_promoter
from pipewright.config import config
from pipewright.core.run_ledger import RunLedger
from pipewright.errors import PlatformError, PromotionError, PromotionPreconditionError
from pipewright.models.promotion import CleanupPolicy, PromotionRequest, RoutePolicy
from pipewright.monitor.renderer import RunRenderer

console = Console()


def promote_cmd(
    application: str = typer.Argument(..., help="Application name."),
    revision: str = typer.Argument(..., help="Revision id to promote."),
    source_env: str = typer.Option("dev", "--from", help="Source environment."),
    target_env: str = typer.Option("stage", "--to", help="Target environment."),
    cleanup: Optional[CleanupPolicy] = typer.Option(
        None, "--cleanup", help="What to do when stale resources cannot be deleted."
    ),
    route: Optional[RoutePolicy] = typer.Option(
        None, "--route", help="Preserve or recreate the external route."
    ),
    platform: PlatformKind = typer.Option(
        PlatformKind.LOCAL, "--platform", help="Platform backend."
    ),
    state_file: Optional[Path] = typer.Option(
        None, "--state", help="Local platform state file."
    ),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    """Promote REVISION of APPLICATION from one environment to another."""
    ledger = RunLedger(ledger_db or config.ledger_path)
    try:
        backend = make_platform(platform, state_file or config.platform_state_path, config)
    except PlatformError as exc:
        console.print(f"[bold red]Platform unavailable:[/bold red] {exc}")
        raise typer.Exit(code=1)
    promoter = make_promoter(
        backend, config, ledger=ledger, cleanup_policy=cleanup, route_policy=route
    )
    request = PromotionRequest(
        application=application,
        revision=revision,
        source_env=source_env,
        target_env=target_env,
    )

    try:
        record = promoter.promote(request)
    except PromotionPreconditionError as exc:
        console.print(f"[bold red]Precondition failed:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except PromotionError as exc:
        console.print(f"[bold red]Promotion failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(RunRenderer(console=console).render_promotion(record))
    console.print(
        f"[bold green]{application}:{revision} is live in {target_env}.[/bold green]"
    )
