"""``pipewright monitor [RUN_ID]`` — show a run as recorded in the ledger.

The monitor is a read-only projection: every display re-reads the ledger.
Without RUN_ID the most recently active run is shown.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from pipewright.config import config
from pipewright.core.run_ledger import LedgerIntegrityError, RunLedger
from pipewright.monitor.projection import RunProjection
from pipewright.monitor.renderer import RunRenderer

console = Console()


def monitor_cmd(
    run_id: Optional[str] = typer.Argument(None, help="Run to show (default: latest)."),
    live: bool = typer.Option(
        False, "--live", "-L", help="Keep refreshing until the run finishes (Ctrl+C to exit)."
    ),
    verify_chain: bool = typer.Option(
        False, "--verify-chain", "-V", help="Verify the hash chain before displaying."
    ),
    refresh_hz: float = typer.Option(2.0, "--refresh", "-r", help="Refresh rate for live mode."),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    """Show the state of every task in a pipeline run."""
    db_path = ledger_db or config.ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        console.print("[dim]Run a pipeline first with: pipewright run PIPELINE[/dim]")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    projection = RunProjection(ledger)
    renderer = RunRenderer(console=console)

    run_id = run_id or projection.latest_run_id()
    if run_id is None or not ledger.get_run_entries(run_id):
        console.print(f"[bold red]Run not found:[/bold red] {run_id or '-'}")
        all_runs = ledger.get_all_run_ids()
        if all_runs:
            console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
            if len(all_runs) > 10:
                console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
        raise typer.Exit(code=1)

    if verify_chain:
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        if not valid:
            raise typer.Exit(code=1)

    if live:
        renderer.render_live(run_id, projection, refresh_hz=refresh_hz)
    else:
        renderer.print_snapshot(projection.snapshot(run_id))
