"""Shared CLI helpers: console, workspace resolution and batch reporting."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NoReturn, Sequence

import typer
from rich.console import Console

from prasasti_cli.config import ConfigError, PrasastiConfig, load_config
from prasasti_cli.core.git_ops import is_git_repo
from prasasti_cli.services.fixer import FixOutcome
from prasasti_cli.services.workspace import BatchResult, CancellationToken, run_batch

logger = logging.getLogger(__name__)

console = Console()

OUTCOME_MESSAGES = {
    FixOutcome.NO_CHANGES: "[yellow]No changes detected[/yellow]",
    FixOutcome.APPLIED: "[green]Applied[/green]",
    FixOutcome.ALREADY_VALID: "[dim]Already valid[/dim]",
    FixOutcome.NO_RULE: "[yellow]No matching rule[/yellow]",
    FixOutcome.PREVIEW: "[cyan]Preview written[/cyan]",
}


@dataclass
class CliState:
    """Options of the root command, shared with subcommands via ``ctx.obj``."""

    root: Path
    verbose: bool = False


def get_state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if not isinstance(state, CliState):
        state = CliState(root=Path.cwd())
        ctx.obj = state
    return state


def fail(message: str) -> NoReturn:
    """Print an error line and exit with status 1."""
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def load_workspace(ctx: typer.Context) -> tuple[Path, PrasastiConfig]:
    """Resolve the repository root and load its configuration or exit."""
    root = get_state(ctx).root.resolve()
    if not is_git_repo(root):
        fail(f"{root} is not inside a git repository")
    try:
        config = load_config(root)
    except ConfigError as exc:
        fail(str(exc))
    return root, config


def resolve_files(root: Path, files: Sequence[Path]) -> list[Path]:
    """Absolute paths for ``files``; relative ones are taken from ``root``."""
    resolved: list[Path] = []
    for file in files:
        path = file if file.is_absolute() else root / file
        if not path.is_file():
            fail(f"File not found: {file}")
        resolved.append(path.resolve())
    return resolved


def run_file_batch(
    paths: Sequence[Path],
    operation: Callable[[Path], FixOutcome],
    concurrency: int,
) -> tuple[BatchResult, dict[Path, FixOutcome]]:
    """Run ``operation`` over ``paths`` and collect per-file outcomes.

    Ctrl+C sets the cancellation token from inside the event loop, so files
    not yet started are skipped while running ones finish.
    """
    outcomes: dict[Path, FixOutcome] = {}
    token = CancellationToken()

    def task(path: Path) -> None:
        outcomes[path] = operation(path)

    async def run() -> BatchResult:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler not supported on this platform")
            return await run_batch(paths, task, concurrency=concurrency, cancel=token)
        try:
            return await run_batch(paths, task, concurrency=concurrency, cancel=token)
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    result = asyncio.run(run())
    if token.cancelled:
        console.print("[yellow]Batch cancelled.[/yellow]")
        raise typer.Exit(130)
    return result, outcomes


def print_batch(root: Path, result: BatchResult, outcomes: dict[Path, FixOutcome]) -> None:
    for path, outcome in sorted(outcomes.items()):
        console.print(f"  {display_path(root, path)}: {OUTCOME_MESSAGES[outcome]}")
    for path, error in sorted(result.errors.items()):
        console.print(f"  {display_path(root, Path(path))}: [red]{error}[/red]")
    console.print(f"Batch complete. Success: {result.success}, Fail: {result.failed}")


def display_path(root: Path, path: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


__all__ = [
    "CliState",
    "console",
    "display_path",
    "fail",
    "get_state",
    "load_workspace",
    "print_batch",
    "resolve_files",
    "run_file_batch",
]
