"""Documentation commands - audit headers, generate docs, patch history."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from typing import List, Optional

import typer
from rich.table import Table
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
from prasasti_cli.core.analysis import CACHE_PATH, AuditCache, DocStatus, analyze_file
from prasasti_cli.services.docgen import DocGenError, GeminiClient
from prasasti_cli.services.fixer import (
    FixOutcome,
    generate_docs_for_file,
    patch_history_for_file,
    preview_path,
)

app = typer.Typer(
    name="docs",
    help="Audit and update documentation headers",
    no_args_is_help=True,
)

FilesArg = Annotated[List[Path], typer.Argument(help="Files to process (relative to the root)")]

STATUS_STYLES = {
    DocStatus.SUCCESS: "green",
    DocStatus.OUTDATED: "red",
    DocStatus.NO_HEADER: "yellow",
    DocStatus.UNKNOWN: "dim",
    DocStatus.DIRTY_CODE: "magenta",
}


@app.command(name="audit")
def audit(
    ctx: typer.Context,
    files: FilesArg,
    no_cache: Annotated[bool, typer.Option("--no-cache", help="Ignore cached audit results")] = False,
) -> None:
    """Report whether each file header is current with its git history."""
    root, config = load_workspace(ctx)
    paths = resolve_files(root, files)
    cache_file = root / CACHE_PATH
    cache = AuditCache() if no_cache else AuditCache.load(cache_file)

    table = Table(title="Documentation Audit")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Reason")
    outdated = 0
    for path in paths:
        result = analyze_file(path, root, config.skip_keywords, cache)
        style = STATUS_STYLES[result.status]
        table.add_row(display_path(root, path), f"[{style}]{result.status.value}[/{style}]", result.reason)
        if result.status != DocStatus.SUCCESS:
            outdated += 1
    console.print(table)

    if not no_cache:
        cache.save(cache_file)
    if outdated:
        console.print(f"[yellow]{outdated} file(s) need attention.[/yellow]")


@app.command(name="generate")
def generate(
    ctx: typer.Context,
    files: FilesArg,
    no_apply: Annotated[
        bool, typer.Option("--no-apply", help="Write a preview file instead of changing the source")
    ] = False,
) -> None:
    """Regenerate header history and markers with the documentation service.

    Examples:
        GEMINI_API_KEY=... prasasti docs generate src/customer.plsql
        prasasti docs generate src/customer.plsql --no-apply
    """
    root, config = load_workspace(ctx)
    paths = resolve_files(root, files)
    try:
        client = GeminiClient(config.api_key or "", config.model, config.max_retries)
    except DocGenError as exc:
        fail(str(exc))

    with client:
        result, outcomes = run_file_batch(
            paths,
            partial(
                generate_docs_for_file,
                repo_root=root,
                config=config,
                client=client,
                apply=False if no_apply else None,
            ),
            config.scan_concurrency,
        )
    print_batch(root, result, outcomes)
    for path, outcome in outcomes.items():
        if outcome == FixOutcome.PREVIEW:
            console.print(f"[dim]Review {display_path(root, path)} -> {preview_path(path)}[/dim]")
    if result.failed:
        raise typer.Exit(1)


@app.command(name="history")
def history(
    ctx: typer.Context,
    files: FilesArg,
    sign: Annotated[
        Optional[str], typer.Option("--sign", help="Signature for new entries (default: commit author)")
    ] = None,
) -> None:
    """Add header history entries for commits newer than the header date."""
    root, config = load_workspace(ctx)
    paths = resolve_files(root, files)
    result, outcomes = run_file_batch(
        paths,
        partial(patch_history_for_file, repo_root=root, config=config, sign=sign),
        config.scan_concurrency,
    )
    print_batch(root, result, outcomes)
    if result.failed:
        raise typer.Exit(1)
