"""Blame-based attribution and whole-file marker regeneration.

Every qualifying commit of a file gets a label ``{type}-{YYMMDD}-{n}`` where
``n`` counts commits sharing the same date in the order the history query
returned them (oldest first).  The blame table then maps each physical line
to a label; consecutive lines with the same ``(label, author)`` are emitted
as one run:

* single-line run -> trailing inline comment ``code -- [label] author``
* multi-line run  -> ``-- Start [label] author`` / ``-- End [label] author``

Regeneration rewrites the complete marker layer in one pass.  It is the
counterpart of the incremental :func:`prasasti_cli.core.markers.ensure_markers`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

# ============================================================================
# Constants
# ============================================================================

#: Label written by regeneration, e.g. ``[MOD-240615-2] ERW``
LABELLED_MARKER_RE = re.compile(r"\[((?:ADD|MOD)-\d{6}-\d+)\]\s*(\w+)")

#: Trailing inline label left by a previous regeneration run.
INLINE_LABEL_RE = re.compile(r"--\s*\[(?:ADD|MOD)-\d{6}-\d+\].*$")

#: Whole-line Start/End brackets left by a previous regeneration run.
OLD_MARKER_RE = re.compile(r"^\s*--\s+(?:Start|End)\s+\[(?:ADD|MOD)-\d{6}-\d+\]", re.IGNORECASE)

SEPARATOR_TOKEN = "----"
UNKNOWN_AUTHOR = "Unknown"

_NO_MARKER = "NO_MARKER"


# ============================================================================
# Types
# ============================================================================


class CommitType(str, Enum):
    """Whether a commit created the file or modified it."""

    ADD = "ADD"
    MOD = "MOD"


@dataclass
class CommitInfo:
    """One historical commit touching a file.

    Attributes:
        hash: Full commit hash
        date: Commit date, ``YYMMDD`` or ISO ``YYYY-MM-DD``
        author: Author name
        type: ADD for the creating commit, MOD otherwise
    """

    hash: str
    date: str
    author: str
    type: CommitType = CommitType.MOD

    @property
    def short_date(self) -> str:
        return normalize_date(self.date)


@dataclass
class BlameInfo:
    """Blame record for one physical line (hash None when uncommitted)."""

    hash: str | None = None
    blame_author: str | None = None
    content: str | None = None


@dataclass(frozen=True)
class CommitLabel:
    label: str
    author: str


# ============================================================================
# Labels
# ============================================================================


def normalize_date(date: str) -> str:
    """Return a ``YYMMDD`` date from ``YYMMDD`` or ISO input.

    Examples:
        >>> normalize_date("2024-06-15")
        '240615'
        >>> normalize_date("240615")
        '240615'
    """
    value = date.strip()
    if re.fullmatch(r"\d{6}", value):
        return value
    digits = value[:10].replace("-", "")
    return digits[2:8]


def build_commit_labels(commits: Iterable[CommitInfo]) -> dict[str, CommitLabel]:
    """Map commit hash to its ``{type}-{YYMMDD}-{n}`` label.

    ``n`` restarts at 1 for every date and follows the iteration order of
    ``commits``.  Label stability across runs therefore depends on the
    history query returning a stable (chronological) order.
    """
    counters: dict[str, int] = {}
    labels: dict[str, CommitLabel] = {}
    for commit in commits:
        short_date = commit.short_date
        counters[short_date] = counters.get(short_date, 0) + 1
        label = f"{commit.type.value}-{short_date}-{counters[short_date]}"
        labels[commit.hash] = CommitLabel(label=label, author=commit.author)
    return labels


def get_marker_dates(content: str) -> list[str]:
    """Unique ``YYMMDD`` dates used by labelled markers, sorted ascending."""
    dates = {match.group(1).split("-")[1] for match in LABELLED_MARKER_RE.finditer(content)}
    return sorted(dates)


# ============================================================================
# Regeneration
# ============================================================================


class _Run:
    """Consecutive lines sharing one attribution key."""

    def __init__(self) -> None:
        self.key: str | None = None
        self.info: CommitLabel | None = None
        self.lines: list[str] = []

    def flush_into(self, out: list[str]) -> None:
        if not self.lines:
            return
        if self.info is None:
            out.extend(self.lines)
        elif len(self.lines) == 1:
            out.append(f"{self.lines[0]} -- [{self.info.label}] {self.info.author}")
        else:
            out.append(f"-- Start [{self.info.label}] {self.info.author}")
            out.extend(self.lines)
            out.append(f"-- End [{self.info.label}] {self.info.author}")
        self.key = None
        self.info = None
        self.lines = []


def _resolve_label(
    record: BlameInfo,
    labels: dict[str, CommitLabel],
    preserve_existing: bool,
) -> CommitLabel | None:
    commit = labels.get(record.hash) if record.hash else None
    if commit is not None:
        return commit

    if not preserve_existing:
        return None

    match = LABELLED_MARKER_RE.search(record.content or "")
    if match is None:
        return None
    return CommitLabel(
        label=match.group(1),
        author=match.group(2) or record.blame_author or UNKNOWN_AUTHOR,
    )


def regenerate_markers(
    blame: Sequence[BlameInfo],
    labels: dict[str, CommitLabel],
    header_stop: re.Pattern[str] | None = None,
    skip_keywords: Sequence[str] = (),
    preserve_existing: bool = False,
) -> str:
    """Rebuild the marker layer of a file from its blame table.

    Args:
        blame: One record per physical line, in file order
        labels: Commit hash -> label map from :func:`build_commit_labels`
        header_stop: Pattern of the last header line; lines up to and
            including the first match pass through untouched.  None means
            the whole file is eligible.
        skip_keywords: Lines containing any of these pass through unmarked
        preserve_existing: Keep a label already written on a line whose
            commit is not in ``labels`` (incremental history scans)

    Returns:
        The annotated file text joined with ``\\n``.
    """
    out: list[str] = []
    run = _Run()
    header_passed = header_stop is None

    for record in blame:
        original = record.content or ""
        content = original

        if not header_passed:
            out.append(content)
            if header_stop is not None and header_stop.search(content):
                header_passed = True
            continue

        if OLD_MARKER_RE.match(content):
            continue

        if "-- [" in content:
            content = INLINE_LABEL_RE.sub("", content).rstrip()
            if not content.strip() and original.strip():
                # the line was nothing but a marker
                continue

        if not content.strip():
            run.flush_into(out)
            out.append("")
            continue

        if SEPARATOR_TOKEN in content or any(keyword in content for keyword in skip_keywords):
            run.flush_into(out)
            out.append(content)
            continue

        info = _resolve_label(record, labels, preserve_existing)
        if info is not None and not info.author:
            info = CommitLabel(info.label, record.blame_author or UNKNOWN_AUTHOR)
        key = f"{info.label}|{info.author}" if info else _NO_MARKER

        if key != run.key:
            run.flush_into(out)
            run.key = key
            run.info = info

        run.lines.append(content)

    run.flush_into(out)
    return "\n".join(out)


__all__ = [
    "INLINE_LABEL_RE",
    "LABELLED_MARKER_RE",
    "OLD_MARKER_RE",
    "BlameInfo",
    "CommitInfo",
    "CommitLabel",
    "CommitType",
    "build_commit_labels",
    "get_marker_dates",
    "normalize_date",
    "regenerate_markers",
]
