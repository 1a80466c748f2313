"""Marker commands - check, fix and regenerate Start/End markers."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from typing import List

import typer
from typing_extensions import Annotated

from prasasti_cli.cli import (
    console,
    display_path,
    fail,
    load_workspace,
    print_batch,
    resolve_files,
    run_file_batch,
)
from prasasti_cli.core import git_ops
from prasasti_cli.core.markers import check_markers
from prasasti_cli.services.fixer import fix_markers_for_file, generate_markers_for_file

app = typer.Typer(
    name="markers",
    help="Check and repair change markers",
    no_args_is_help=True,
)

FilesArg = Annotated[List[Path], typer.Argument(help="Files to process (relative to the root)")]


@app.command(name="check")
def check(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="File to validate")],
) -> None:
    """Verify every logic change in the working diff is wrapped in markers.

    Falls back to the diff of the last commit when the file is clean.
    """
    root, _ = load_workspace(ctx)
    path = resolve_files(root, [file])[0]

    diff = git_ops.get_working_diff(path, root)
    if not diff.strip():
        diff = git_ops.get_last_commit_diff(path, root)
    if not diff.strip():
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        fail(f"Could not read file: {exc}")

    validation = check_markers(content, diff)
    name = display_path(root, path)
    if validation.uncovered is None:
        console.print(f"[green]Markers OK[/green] {name} ({validation.checked_blocks} logic blocks)")
        return
    console.print(f"[red]Missing markers[/red] {name}: change at {validation.uncovered.describe()} is not covered")
    raise typer.Exit(1)


@app.command(name="fix")
def fix(ctx: typer.Context, files: FilesArg) -> None:
    """Wrap uncovered logic changes in new marker pairs.

    Examples:
        prasasti markers fix src/customer.plsql
    """
    root, config = load_workspace(ctx)
    paths = resolve_files(root, files)
    result, outcomes = run_file_batch(
        paths,
        partial(fix_markers_for_file, repo_root=root, config=config),
        config.scan_concurrency,
    )
    print_batch(root, result, outcomes)
    if result.failed:
        raise typer.Exit(1)


@app.command(name="generate")
def generate(ctx: typer.Context, files: FilesArg) -> None:
    """Rewrite the whole marker layer of each file from git blame.

    Only files matching a ``markers.rules`` entry are processed.
    """
    root, config = load_workspace(ctx)
    if not config.rules:
        fail("No marker rules configured (markers.rules in .prasasti.yaml)")
    paths = resolve_files(root, files)
    result, outcomes = run_file_batch(
        paths,
        partial(generate_markers_for_file, repo_root=root, config=config),
        config.scan_concurrency,
    )
    print_batch(root, result, outcomes)
    if result.failed:
        raise typer.Exit(1)
