"""Documentation audit and missing-marker scans for single files.

``analyze_file`` decides whether the documentation header of a file is
current with respect to its git history.  ``scan_file`` compares commit
dates against the dates already recorded in the file (marker labels or
history entries) and reports the dates that are missing.

Audit results are cached per file and invalidated as soon as the last
commit touching the file changes.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, Sequence

from prasasti_cli.config import FULL_SCAN
from prasasti_cli.core import git_ops
from prasasti_cli.core.attribution import get_marker_dates
from prasasti_cli.core.history import (
    HEADER_SCAN_LIMIT,
    get_header_date,
    get_history_dates,
    header_date_to_iso,
)
from prasasti_cli.core.logic_classifier import has_logic_changes

logger = logging.getLogger(__name__)

ScanKind = Literal["Marker", "Documentation"]

#: Audit cache location, relative to the repository root.
CACHE_PATH = Path(".prasasti") / "cache.json"


# ============================================================================
# Types
# ============================================================================


class DocStatus(str, Enum):
    """Documentation state of a file."""

    SUCCESS = "success"
    OUTDATED = "outdated"
    NO_HEADER = "no_header"
    UNKNOWN = "unknown"
    DIRTY_CODE = "dirty_code"


@dataclass
class AuditResult:
    """Outcome of :func:`analyze_file`."""

    status: DocStatus
    reason: str
    path: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status.value, "reason": self.reason, "path": self.path}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AuditResult":
        return cls(
            status=DocStatus(str(data["status"])),
            reason=str(data.get("reason", "")),
            path=str(data.get("path", "")),
        )


@dataclass
class FileResult:
    """A file with git dates not yet reflected in its content."""

    path: str
    reason: str
    missing_dates: tuple[str, ...] = ()


@dataclass
class CacheRecord:
    file_path: str
    last_seen_hash: str
    result: AuditResult


class AuditCache:
    """Audit results keyed by file path, valid while the head hash matches.

    Not thread-safe on its own; the workspace scanner serializes access per
    path.
    """

    def __init__(self) -> None:
        self._records: dict[str, CacheRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get(self, file_path: str, current_hash: str) -> AuditResult | None:
        record = self._records.get(file_path)
        if record is None:
            return None
        if record.last_seen_hash != current_hash:
            del self._records[file_path]
            return None
        return record.result

    def put(self, file_path: str, current_hash: str, result: AuditResult) -> None:
        self._records[file_path] = CacheRecord(file_path, current_hash, result)

    def save(self, path: Path) -> None:
        """Persist to JSON (atomic replace)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            key: {"last_seen_hash": record.last_seen_hash, "result": record.result.to_dict()}
            for key, record in self._records.items()
        }
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)

    @classmethod
    def load(cls, path: Path) -> "AuditCache":
        """Load a cache file; unreadable or corrupt files give an empty cache."""
        cache = cls()
        if not path.exists():
            return cache
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            for key, value in data.items():
                cache.put(key, value["last_seen_hash"], AuditResult.from_dict(value["result"]))
        except (json.JSONDecodeError, OSError, KeyError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring unreadable audit cache %s: %s", path, exc)
            return cls()
        return cache


# ============================================================================
# Helpers
# ============================================================================


def read_header_snippet(file_path: Path) -> str:
    """First bytes of the file, enough to locate the header date."""
    with open(file_path, "rb") as f:
        return f.read(HEADER_SCAN_LIMIT).decode("utf-8", errors="replace")


def _to_int(date: str | None) -> int:
    try:
        return int(date or 0)
    except ValueError:
        return 0


# ============================================================================
# Public API
# ============================================================================


def analyze_file(
    file_path: Path,
    repo_root: Path,
    skip_keywords: Sequence[str] = (),
    cache: AuditCache | None = None,
) -> AuditResult:
    """Audit the documentation header of ``file_path`` against git history."""
    path_key = str(file_path)
    try:
        header_date = get_header_date(read_header_snippet(file_path))
    except OSError as exc:
        logger.error("Cannot read %s: %s", file_path, exc)
        return AuditResult(DocStatus.UNKNOWN, f"Unreadable: {exc}", path_key)

    if not header_date:
        return AuditResult(DocStatus.NO_HEADER, "Header missing", path_key)

    if git_ops.is_dirty(file_path, repo_root):
        diff = git_ops.get_diff(file_path, repo_root)
        if has_logic_changes(diff):
            return AuditResult(DocStatus.DIRTY_CODE, "Unsaved Logic Changes", path_key)
        return AuditResult(DocStatus.SUCCESS, "Writing docs...", path_key)

    log = git_ops.get_log(file_path, repo_root, limit=1)
    if not log:
        return AuditResult(DocStatus.UNKNOWN, "Untracked", path_key)
    last = log[0]

    if cache is not None:
        cached = cache.get(path_key, last.hash)
        if cached is not None:
            return cached

    git_date = _to_int(last.date)
    header_int = _to_int(header_date)

    if header_int >= git_date:
        result = AuditResult(DocStatus.SUCCESS, "Up to date", path_key)
    elif git_ops.should_skip(last.subject, skip_keywords):
        logger.info("Skipping %s due to keyword match.", file_path.name)
        result = AuditResult(DocStatus.SUCCESS, "Keyword skipped", path_key)
    elif not has_logic_changes(git_ops.get_diff(file_path, repo_root, last.hash)):
        logger.info("Skipping %s - commit was docs only.", file_path.name)
        result = AuditResult(DocStatus.SUCCESS, "Docs-only update", path_key)
    else:
        result = AuditResult(DocStatus.OUTDATED, f"Outdated (H:{header_int} < G:{git_date})", path_key)

    if cache is not None:
        cache.put(path_key, last.hash, result)
    return result


def file_dates(content: str, kind: ScanKind) -> list[str]:
    """Dates already recorded in the file for the given scan kind."""
    if kind == "Marker":
        return get_marker_dates(content)
    return get_history_dates(content)


def scan_file(
    file_path: Path,
    repo_root: Path,
    skip_keywords: Sequence[str] = (),
    scan_mode: str = FULL_SCAN,
    kind: ScanKind = "Marker",
) -> FileResult | None:
    """Report git commit dates that the file does not mention yet.

    In incremental mode only history since the newest recorded date is
    queried.  Returns None when nothing is missing or the file cannot be
    analysed.
    """
    try:
        content = file_path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.error("%s analysis failed for %s: %s", kind, file_path.name, exc)
        return None

    recorded = sorted(file_dates(content, kind))
    last_date = recorded[-1] if recorded else None
    since = None if scan_mode == FULL_SCAN or last_date is None else header_date_to_iso(last_date)

    git_dates = git_ops.get_commit_dates(file_path, repo_root, skip_keywords, since_date=since)
    missing = sorted(date for date in git_dates if date not in recorded)
    if not missing:
        return None
    return FileResult(
        path=str(file_path),
        reason=f"Missing {kind} for dates: {', '.join(missing)}",
        missing_dates=tuple(missing),
    )


__all__ = [
    "CACHE_PATH",
    "AuditCache",
    "AuditResult",
    "CacheRecord",
    "DocStatus",
    "FileResult",
    "analyze_file",
    "file_dates",
    "scan_file",
]
