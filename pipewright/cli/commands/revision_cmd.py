"""``pipewright revision [PATH]`` — print the revision id of a source tree."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from pipewright.config import config
from pipewright.core.revision import DirectorySource, GitSource, SourceProvider, resolve_revision
from pipewright.errors import SourceUnavailableError

console = Console()


def revision_cmd(
    path: Path = typer.Argument(Path("."), help="Source directory."),
    content: bool = typer.Option(
        False, "--content", help="Hash the directory contents instead of asking git."
    ),
    ref: str = typer.Option("HEAD", "--ref", help="Git revision to resolve."),
    length: Optional[int] = typer.Option(
        None, "--length", "-n", min=4, max=40, help="Revision id length."
    ),
) -> None:
    """Resolve the short revision id that tags builds of PATH."""
    source: SourceProvider = DirectorySource(path) if content else GitSource(path, ref)
    try:
        revision = resolve_revision(source, length or config.revision_length)
    except SourceUnavailableError as exc:
        console.print(f"[bold red]Source unavailable:[/bold red] {exc}")
        raise typer.Exit(code=1)
    # plain output for scripting
    typer.echo(revision)
