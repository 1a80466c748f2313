"""Git and subprocess helpers for the Prasasti CLI.

Every query helper treats git as an external service: a failing command,
a path outside a repository or a missing ``git`` binary is logged and
reported as an empty result (``""``, ``[]``, ``None``) so batch operations
can carry on with the remaining files.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from prasasti_cli.core.attribution import BlameInfo, CommitInfo, CommitType

logger = logging.getLogger(__name__)

#: ``git blame`` hash of lines not committed yet.
UNCOMMITTED_HASH = "0" * 40

_BLAME_HEADER_RE = re.compile(r"^([0-9a-f]{40}) \d+ \d+")
_LOG_FORMAT = "--pretty=format:%H|%ad|%an|%s"


class GitError(RuntimeError):
    """Raised by :func:`run_git` when a checked git command fails."""


@dataclass
class LogEntry:
    """One line of ``git log`` output.

    Attributes:
        hash: Full commit hash
        date: Date as formatted by the query (``YYMMDD`` or ISO)
        author: Author name
        subject: First line of the commit message
    """

    hash: str
    date: str
    author: str
    subject: str = ""


def run_git(args: Sequence[str], repo_root: Path | str, *, check: bool = True) -> str | None:
    """Run ``git <args>`` in ``repo_root`` and return stdout (right-stripped).

    With ``check=True`` a non-zero exit raises :class:`GitError`; otherwise
    failures are logged and ``None`` is returned.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=str(repo_root),
            check=False,
        )
    except FileNotFoundError as exc:
        if check:
            raise GitError("git executable not found") from exc
        logger.error("git executable not found")
        return None

    if result.returncode != 0:
        message = (result.stderr or "").strip() or f"exit code {result.returncode}"
        if check:
            raise GitError(f"git {' '.join(args)} failed: {message}")
        logger.error("git %s failed: %s", args[0], message)
        return None
    return (result.stdout or "").rstrip()


def is_git_repo(path: Path | None = None) -> bool:
    """True when ``path`` (default: cwd) is inside a git work tree."""
    target = (path or Path.cwd()).resolve()
    if not target.is_dir():
        return False
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            capture_output=True,
            text=True,
            cwd=target,
            check=False,
        )
    except FileNotFoundError:
        return False
    return result.returncode == 0 and result.stdout.strip() == "true"


def _parse_log(output: str | None) -> list[LogEntry]:
    entries: list[LogEntry] = []
    if not output:
        return entries
    for line in output.splitlines():
        parts = line.split("|", 3)
        if len(parts) < 3 or not parts[0]:
            continue
        entries.append(
            LogEntry(
                hash=parts[0],
                date=parts[1],
                author=parts[2],
                subject=parts[3] if len(parts) > 3 else "",
            )
        )
    return entries


def get_log(
    file_path: Path | str,
    repo_root: Path | str,
    limit: int | None = 1,
    since_date: str | None = None,
) -> list[LogEntry]:
    """Return commits touching ``file_path``, newest first, dates as ``YYMMDD``.

    Args:
        file_path: File to query
        repo_root: Repository root (working directory for git)
        limit: Maximum number of commits; None for the whole history
        since_date: ISO date (``YYYY-MM-DD``); only commits on or after it
    """
    args = ["log"]
    if limit is not None:
        args.append(f"-{limit}")
    args += ["--date=format:%y%m%d", _LOG_FORMAT]
    if since_date:
        args.append(f"--since={since_date} 00:00:00")
    args += ["--", str(file_path)]
    return _parse_log(run_git(args, repo_root, check=False))


def get_head_hash(file_path: Path | str, repo_root: Path | str) -> str | None:
    """Hash of the last commit touching ``file_path`` (None when untracked)."""
    entries = get_log(file_path, repo_root, limit=1)
    return entries[0].hash if entries else None


def get_diff(file_path: Path | str, repo_root: Path | str, commit: str | None = None) -> str:
    """Zero-context diff: working tree vs HEAD, or the changes of ``commit``."""
    if commit:
        args = ["show", "--format=", "--no-color", "-U0", commit, "--", str(file_path)]
    else:
        args = ["diff", "--no-color", "-U0", "HEAD", "--", str(file_path)]
    return run_git(args, repo_root, check=False) or ""


def get_working_diff(file_path: Path | str, repo_root: Path | str) -> str:
    return get_diff(file_path, repo_root)


def get_last_commit_diff(file_path: Path | str, repo_root: Path | str) -> str:
    """Zero-context diff of HEAD against its parent, limited to ``file_path``."""
    return get_diff(file_path, repo_root, commit="HEAD")


def is_dirty(file_path: Path | str, repo_root: Path | str) -> bool:
    """True when ``file_path`` differs from HEAD in the working tree."""
    try:
        result = subprocess.run(
            ["git", "diff", "--quiet", "HEAD", "--", str(file_path)],
            capture_output=True,
            cwd=str(repo_root),
            check=False,
        )
    except FileNotFoundError:
        return False
    # exit code 1 means "differences found"; anything else is an error
    return result.returncode == 1


def get_blame(file_path: Path | str, repo_root: Path | str) -> list[BlameInfo]:
    """Per-line blame of the working-tree file.

    Lines not committed yet carry ``hash=None``.
    """
    output = run_git(["blame", "--line-porcelain", "--", str(file_path)], repo_root, check=False)
    records: list[BlameInfo] = []
    if output is None:
        return records

    current_hash: str | None = None
    current_author: str | None = None
    for line in output.split("\n"):
        if line.startswith("\t"):
            records.append(
                BlameInfo(
                    hash=None if current_hash == UNCOMMITTED_HASH else current_hash,
                    blame_author=current_author,
                    content=line[1:],
                )
            )
            continue
        header = _BLAME_HEADER_RE.match(line)
        if header:
            current_hash = header.group(1)
            current_author = None
        elif line.startswith("author "):
            current_author = line[len("author ") :]
    return records


def _find_add_commit(file_path: Path | str, repo_root: Path | str) -> str | None:
    output = run_git(
        ["log", "--diff-filter=A", "--format=%H", "--", str(file_path)],
        repo_root,
        check=False,
    )
    if not output:
        return None
    # newest first: the last line is the commit that first added the path
    return output.splitlines()[-1].strip() or None


def should_skip(subject: str, keywords: Sequence[str]) -> bool:
    """Case-insensitive substring match of any keyword in ``subject``."""
    upper_subject = (subject or "").upper()
    return any(keyword.upper() in upper_subject for keyword in keywords if keyword)


def get_marker_commits(
    file_path: Path | str,
    repo_root: Path | str,
    skip_keywords: Sequence[str] = (),
    since_date: str | None = None,
) -> list[CommitInfo]:
    """Qualifying commits of ``file_path``, oldest first, with ISO dates.

    Commits whose subject contains a skip keyword are dropped.  The commit
    that added the file is typed ``ADD``; every other commit ``MOD``.
    """
    args = ["log", "--reverse", "--date=short", _LOG_FORMAT]
    if since_date:
        args.append(f"--since={since_date} 00:00:00")
    args += ["--", str(file_path)]
    entries = _parse_log(run_git(args, repo_root, check=False))
    if not entries:
        return []

    add_hash = _find_add_commit(file_path, repo_root)
    commits: list[CommitInfo] = []
    for entry in entries:
        if should_skip(entry.subject, skip_keywords):
            logger.debug("Skipping commit %s (%s)", entry.hash[:8], entry.subject)
            continue
        commits.append(
            CommitInfo(
                hash=entry.hash,
                date=entry.date,
                author=entry.author,
                type=CommitType.ADD if entry.hash == add_hash else CommitType.MOD,
            )
        )
    return commits


def get_commit_dates(
    file_path: Path | str,
    repo_root: Path | str,
    skip_keywords: Sequence[str] = (),
    since_date: str | None = None,
) -> list[str]:
    """Unique ``YYMMDD`` dates of qualifying commits, sorted ascending."""
    entries = get_log(file_path, repo_root, limit=None, since_date=since_date)
    return sorted({e.date for e in entries if not should_skip(e.subject, skip_keywords)})


def get_uncommitted_files(repo_root: Path | str) -> list[str]:
    """Repository-relative paths with staged or unstaged changes."""
    output = run_git(["status", "--porcelain"], repo_root, check=False)
    paths: list[str] = []
    if not output:
        return paths
    for line in output.splitlines():
        if len(line) < 4:
            continue
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        paths.append(path.strip().strip('"'))
    return paths


__all__ = [
    "GitError",
    "LogEntry",
    "get_blame",
    "get_commit_dates",
    "get_diff",
    "get_head_hash",
    "get_last_commit_diff",
    "get_log",
    "get_marker_commits",
    "get_uncommitted_files",
    "get_working_diff",
    "is_dirty",
    "is_git_repo",
    "run_git",
    "should_skip",
]
