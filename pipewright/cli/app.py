"""Main Typer application — registers all CLI commands.

Entry point: ``pipewright`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from typing import Optional

import typer

from pipewright.cli.commands.graph_cmd import graph_cmd
from pipewright.cli.commands.monitor_cmd import monitor_cmd
from pipewright.cli.commands.promote_cmd import promote_cmd
from pipewright.cli.commands.revision_cmd import revision_cmd
from pipewright.cli.commands.run_cmd import run_cmd
from pipewright.cli.commands.status_cmd import status_cmd
from pipewright.cli.wiring import configure_logging
from pipewright.config import config

app = typer.Typer(
    name="pipewright",
    help="Pipewright: concurrent build pipelines and environment promotion.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: PIPEWRIGHT_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Configure logging before any command runs."""
    level = log_level or ("DEBUG" if config.debug else config.log_level)
    configure_logging(level)


# Register subcommands
app.command(name="run", help="Run a pipeline definition.")(run_cmd)
app.command(name="graph", help="Validate a pipeline and show its task graph.")(graph_cmd)
app.command(name="revision", help="Print the revision id of a source tree.")(revision_cmd)
app.command(name="promote", help="Promote a built revision to another environment.")(promote_cmd)
app.command(name="monitor", help="Show a run recorded in the ledger.")(monitor_cmd)
app.command(name="status", help="Show what is deployed in each environment.")(status_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
