"""Per-file operations: fix markers, regenerate markers, generate docs.

Each function reads one file, computes the new content and writes it back
only when something changed.  Expected conditions (no diff, no matching
rule) are reported through :class:`FixOutcome`; real failures raise
:class:`FixError`.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import re
import tempfile
from enum import Enum
from pathlib import Path
from typing import Iterable

from prasasti_cli.config import PrasastiConfig
from prasasti_cli.core import git_ops
from prasasti_cli.core.attribution import build_commit_labels, get_marker_dates, regenerate_markers
from prasasti_cli.core.git_ops import LogEntry
from prasasti_cli.core.history import (
    HistoryEntry,
    apply_header_patch,
    get_header_date,
    header_date_to_iso,
)
from prasasti_cli.core.markers import ensure_markers
from prasasti_cli.services.docgen import (
    MAX_COMMITS_FETCHED,
    MAX_COMMITS_IN_PROMPT,
    CommitDiff,
    DocGenError,
    GeminiClient,
    build_forensic_data,
    build_prompt,
    strip_code_fences,
)

logger = logging.getLogger(__name__)

SIGN_LENGTH = 5
TICKET_RE = re.compile(r"\[?\b([A-Z][A-Z0-9]+-\d+)\b\]?")


class FixOutcome(str, Enum):
    NO_CHANGES = "no_changes"
    APPLIED = "applied"
    ALREADY_VALID = "already_valid"
    NO_RULE = "no_rule"
    PREVIEW = "preview"


class FixError(RuntimeError):
    """A per-file operation could not complete."""


# ============================================================================
# Helpers
# ============================================================================


def ticket_id_for(today: dt.date | None = None) -> str:
    """``MOD-YYMMDD`` for the given day (default: today)."""
    return f"MOD-{(today or dt.date.today()).strftime('%y%m%d')}"


def author_sign(author: str | None, default: str) -> str:
    """First five characters of the author name, upper-cased."""
    sign = (author or "").strip()[:SIGN_LENGTH].upper()
    return sign or default


def preview_path(file_path: Path) -> Path:
    """Where a generated file is written when changes are not applied."""
    digest = hashlib.sha1(str(file_path.resolve()).encode("utf-8")).hexdigest()[:8]
    return Path(tempfile.gettempdir()) / f"prasasti_ai_{digest}_{file_path.name}"


def _read(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FixError(f"Could not read file: {file_path}") from exc


def _write(file_path: Path, content: str) -> None:
    try:
        file_path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise FixError(f"Could not write file: {file_path}") from exc


def _relative(file_path: Path, repo_root: Path) -> str:
    try:
        return file_path.resolve().relative_to(repo_root.resolve()).as_posix()
    except ValueError:
        return file_path.as_posix()


# ============================================================================
# Markers
# ============================================================================


def fix_markers_for_file(
    file_path: Path,
    repo_root: Path,
    config: PrasastiConfig,
    today: dt.date | None = None,
) -> FixOutcome:
    """Wrap uncovered logic changes of the working (or last commit) diff."""
    logger.info("Fixing markers for %s", file_path.name)
    diff = git_ops.get_working_diff(file_path, repo_root)
    if not diff.strip():
        diff = git_ops.get_last_commit_diff(file_path, repo_root)
    if not diff.strip():
        logger.info("No changes detected in %s", file_path.name)
        return FixOutcome.NO_CHANGES

    content = _read(file_path)
    log = git_ops.get_log(file_path, repo_root, limit=1)
    sign = author_sign(log[0].author if log else None, config.default_sign)

    new_content = ensure_markers(content, diff, ticket_id_for(today), sign, tolerance=config.tolerance)
    if new_content == content:
        return FixOutcome.ALREADY_VALID
    _write(file_path, new_content)
    logger.info("Markers applied to %s", file_path.name)
    return FixOutcome.APPLIED


def generate_markers_for_file(file_path: Path, repo_root: Path, config: PrasastiConfig) -> FixOutcome:
    """Rewrite the whole marker layer of ``file_path`` from git blame."""
    relative = _relative(file_path, repo_root)
    rule = config.find_rule(relative)
    if rule is None:
        logger.info("No matching rule found for %s", relative)
        return FixOutcome.NO_RULE
    logger.info("Applying rule: %s", rule.message or rule.file_pattern)

    content = _read(file_path)
    since = None
    if config.incremental:
        dates = get_marker_dates(content)
        if dates:
            since = header_date_to_iso(dates[-1])

    commits = git_ops.get_marker_commits(file_path, repo_root, config.skip_keywords, since_date=since)
    labels = build_commit_labels(commits)
    blame = git_ops.get_blame(file_path, repo_root)
    if not blame:
        raise FixError(f"No blame data for {relative}")

    new_content = regenerate_markers(
        blame,
        labels,
        header_stop=rule.compiled_start(),
        skip_keywords=rule.skip_keywords,
        preserve_existing=config.incremental,
    )
    if new_content == content:
        return FixOutcome.ALREADY_VALID
    _write(file_path, new_content)
    logger.info("Markers regenerated for %s (%d labels)", relative, len(labels))
    return FixOutcome.APPLIED


# ============================================================================
# Documentation
# ============================================================================


def collect_commit_diffs(file_path: Path, repo_root: Path, content: str) -> list[CommitDiff]:
    """Commits since the documented header date, newest first, capped."""
    header_date = get_header_date(content)
    if header_date:
        since = header_date_to_iso(header_date)
        logger.info("Last doc date found: %s. Fetching incremental updates...", since)
        entries = git_ops.get_log(file_path, repo_root, limit=None, since_date=since)
    else:
        entries = git_ops.get_log(file_path, repo_root, limit=MAX_COMMITS_FETCHED)

    commits = []
    for entry in entries[:MAX_COMMITS_IN_PROMPT]:
        diff = git_ops.get_diff(file_path, repo_root, commit=entry.hash)
        commits.append(CommitDiff(date=entry.date, author=entry.author, diff=diff))
    return commits


def generate_docs_for_file(
    file_path: Path,
    repo_root: Path,
    config: PrasastiConfig,
    client: GeminiClient,
    apply: bool | None = None,
) -> FixOutcome:
    """Ask the documentation service to refresh header history and markers.

    With ``apply`` False (default: ``config.auto_apply``) the result is
    written to :func:`preview_path` instead of the file itself.
    """
    content = _read(file_path)
    commits = collect_commit_diffs(file_path, repo_root, content)
    forensic = build_forensic_data(commits)
    if not forensic:
        logger.info("No new commits found since the last documentation of %s", file_path.name)
        return FixOutcome.NO_CHANGES

    logger.info("Requesting update for %s using %s...", file_path.name, client.model)
    try:
        generated = client.generate(build_prompt(file_path.name, forensic, content))
    except DocGenError as exc:
        raise FixError(f"Documentation service failed for {file_path.name}: {exc}") from exc

    new_content = strip_code_fences(generated)
    should_apply = config.auto_apply if apply is None else apply
    if should_apply:
        _write(file_path, new_content)
        logger.info("Applied changes to %s", file_path.name)
        return FixOutcome.APPLIED

    target = preview_path(file_path)
    _write(target, new_content)
    logger.info("Preview for %s written to %s", file_path.name, target)
    return FixOutcome.PREVIEW


def build_history_entries(commits: Iterable[LogEntry], sign: str | None = None) -> list[HistoryEntry]:
    """History entries for commits; ticket ids come from the subject when present."""
    entries = []
    for commit in commits:
        subject = commit.subject.strip()
        ticket = TICKET_RE.search(subject)
        if ticket:
            entry_id = ticket.group(1)
            desc = (subject[: ticket.start()] + subject[ticket.end() :]).strip(" :-")
        else:
            entry_id = f"MOD-{commit.date}"
            desc = subject
        entries.append(
            HistoryEntry(
                date=commit.date,
                sign=sign or author_sign(commit.author, "AI"),
                id=entry_id,
                desc=desc,
            )
        )
    return entries


def patch_history_for_file(
    file_path: Path,
    repo_root: Path,
    config: PrasastiConfig,
    sign: str | None = None,
) -> FixOutcome:
    """Merge commits newer than the header date into the history block."""
    content = _read(file_path)
    header_date = get_header_date(content)
    since = header_date_to_iso(header_date) if header_date else None
    commits = [
        entry
        for entry in git_ops.get_log(file_path, repo_root, limit=None, since_date=since)
        if not git_ops.should_skip(entry.subject, config.skip_keywords)
        and (header_date is None or entry.date > header_date)
    ]
    if not commits:
        return FixOutcome.NO_CHANGES

    new_content = apply_header_patch(content, build_history_entries(commits, sign))
    if new_content == content:
        return FixOutcome.ALREADY_VALID
    _write(file_path, new_content)
    logger.info("History header updated for %s (%d commits)", file_path.name, len(commits))
    return FixOutcome.APPLIED


__all__ = [
    "FixError",
    "FixOutcome",
    "author_sign",
    "build_history_entries",
    "collect_commit_diffs",
    "fix_markers_for_file",
    "generate_docs_for_file",
    "generate_markers_for_file",
    "patch_history_for_file",
    "preview_path",
    "ticket_id_for",
]
