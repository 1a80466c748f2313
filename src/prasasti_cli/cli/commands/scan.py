"""Scan command - list files with missing markers or documentation."""

from __future__ import annotations

import asyncio
import json
from functools import partial
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table
from typing_extensions import Annotated

from prasasti_cli.cli import console, display_path, load_workspace, print_batch, run_file_batch
from prasasti_cli.config import PrasastiConfig
from prasasti_cli.services.fixer import FixOutcome, fix_markers_for_file, patch_history_for_file
from prasasti_cli.services.workspace import ListItem, WorkspaceScanner


def _render(root: Path, title: str, items: list[ListItem]) -> None:
    if not items:
        console.print(f"[green]{title}: nothing to do[/green]")
        return
    table = Table(title=title, show_lines=False)
    table.add_column("File", style="cyan")
    table.add_column("Issue", style="yellow")
    table.add_column("Reason")
    for item in items:
        table.add_row(display_path(root, item.path), item.label, item.reason)
    console.print(table)


def _fix_items(root: Path, config: PrasastiConfig, scanner: WorkspaceScanner) -> None:
    """Fix scanned files and drop the items that are now resolved."""
    resolved = (FixOutcome.APPLIED, FixOutcome.ALREADY_VALID)

    marker_paths = [item.path for item in scanner.marker_items]
    if marker_paths:
        result, outcomes = run_file_batch(
            marker_paths,
            partial(fix_markers_for_file, repo_root=root, config=config),
            config.scan_concurrency,
        )
        print_batch(root, result, outcomes)
        for path, outcome in outcomes.items():
            if outcome in resolved:
                scanner.remove_marker_item(path)

    doc_paths = [item.path for item in scanner.doc_items]
    if doc_paths:
        result, outcomes = run_file_batch(
            doc_paths,
            partial(patch_history_for_file, repo_root=root, config=config),
            config.scan_concurrency,
        )
        print_batch(root, result, outcomes)
        for path, outcome in outcomes.items():
            if outcome in resolved:
                scanner.remove_doc_item(path)


def scan(
    ctx: typer.Context,
    json_output: Annotated[
        Optional[Path], typer.Option("--json", help="Write scan results as JSON to this path")
    ] = None,
    fix: Annotated[
        bool, typer.Option("--fix", help="Add missing markers and history entries, then list what is left")
    ] = False,
) -> None:
    """Scan the workspace for files whose markers or history lag behind git.

    Examples:
        prasasti scan
        prasasti --root ../erp scan --json issues.json
        prasasti scan --fix
    """
    root, config = load_workspace(ctx)
    scanner = WorkspaceScanner(root, config)
    with console.status("Scanning workspace..."):
        asyncio.run(scanner.scan())

    if fix:
        _fix_items(root, config, scanner)

    _render(root, "Missing Markers", scanner.marker_items)
    _render(root, "Missing Documentation", scanner.doc_items)

    if json_output:
        payload = {
            "markers": [item.to_dict() for item in scanner.marker_items],
            "documentation": [item.to_dict() for item in scanner.doc_items],
        }
        json_output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        console.print(f"[dim]Results written to {json_output}[/dim]")
