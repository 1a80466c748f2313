"""Prasasti CLI - keep change markers and documentation headers in sync with git."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from prasasti_cli.cli import CliState
from prasasti_cli.cli.commands import docs, markers
from prasasti_cli.cli.commands.scan import scan

__version__ = "0.4.0"

app = typer.Typer(
    name="prasasti",
    help="Keep PL/SQL change markers and documentation headers in sync with git history",
    no_args_is_help=True,
)
app.command(name="scan")(scan)
app.add_typer(markers.app, name="markers")
app.add_typer(docs.app, name="docs")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"prasasti {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    root: Annotated[
        Optional[Path], typer.Option("--root", help="Repository root (default: current directory)")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    ctx.obj = CliState(root=root or Path.cwd(), verbose=verbose)


def main() -> None:
    app()


__all__ = ["app", "main"]
