"""History header parsing and patching.

Source files carry a fixed-format comment header::

    --  Date    Sign    History
    --  ------  ------  -----------------------------------------------------
    --  240615  ERW     [SC-1234] Added credit check
    --  240101  ERW     [MOD-240101] Initial version
    -----------------------------------------------------------------------------

:func:`apply_header_patch` merges new :class:`HistoryEntry` items into that
block, deduplicating by ``(date, id)`` and keeping the longer description,
and rewrites every entry newest-first in the fixed-width layout.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable

# ============================================================================
# Constants
# ============================================================================

#: "Documentation last updated" date near the top of a file.
HEADER_DATE_RE = re.compile(r"--\s+(\d{6})\s+[\w\d]+")

#: Bytes of the file inspected for the header date.
HEADER_SCAN_LIMIT = 8192

HISTORY_BLOCK_RE = re.compile(
    r"(--\s+Date\s+Sign\s+History\r?\n--\s+-{2,}\s+-{2,}\s+-{5,}.*\r?\n)([\s\S]*?)(-{60,})"
)
HISTORY_SEPARATOR_RE = re.compile(r"(--\s+-{2,}\s+-{2,}\s+-{5,}.*)(\r?\n)")
HISTORY_LINE_RE = re.compile(r"--\s+(\d{6})\s+(\w+)\s+(.*)")

#: A line made only of dashes closes the header.
CODE_SEPARATOR_RE = re.compile(r"^[ \t]*-{60,}[ \t]*$", re.MULTILINE)

_BRACKET_ID_RE = re.compile(r"^\[([^\]]+)\]\s*(.*)")
_SPACE_ID_RE = re.compile(r"^([A-Z0-9\-]+)\s+(.*)")

DEFAULT_ENTRY_ID = "Patch"
SIGN_WIDTH = 6


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class HistoryEntry:
    """One ``-- YYMMDD Sign [Ticket-ID] Description`` line."""

    date: str
    sign: str
    id: str
    desc: str = ""

    @property
    def clean_id(self) -> str:
        return re.sub(r"[\[\]]", "", self.id).strip()

    @property
    def key(self) -> tuple[str, str]:
        """Deduplication key: normalized (date, id)."""
        return self.date.strip(), self.clean_id

    def format_line(self) -> str:
        return f"--  {self.date}  {self.sign.ljust(SIGN_WIDTH)}  [{self.clean_id}] {self.desc}"


# ============================================================================
# Header helpers
# ============================================================================


def get_header_date(content: str) -> str | None:
    """Return the first ``YYMMDD`` header date, or None when absent."""
    match = HEADER_DATE_RE.search(content[:HEADER_SCAN_LIMIT])
    return match.group(1) if match else None


def header_date_to_iso(date: str) -> str:
    """``240615`` -> ``2024-06-15``."""
    return f"20{date[0:2]}-{date[2:4]}-{date[4:6]}"


def split_header(content: str) -> tuple[str, str]:
    """Split ``content`` into (header, code body).

    The header ends with the closing dash line of the history block.  When
    there is no history block, it ends at the first dash-only line that is
    not the very first non-blank line.  Without any dash line the whole
    file is code.
    """
    block = HISTORY_BLOCK_RE.search(content)
    if block:
        line_end = content.find("\n", block.end(3))
        cut = len(content) if line_end == -1 else line_end + 1
        return content[:cut], content[cut:]

    first_text = re.search(r"\S", content)
    for match in CODE_SEPARATOR_RE.finditer(content):
        if first_text is not None and match.start() <= first_text.start() <= match.end():
            continue
        line_end = content.find("\n", match.end())
        cut = len(content) if line_end == -1 else line_end + 1
        return content[:cut], content[cut:]
    return "", content


def get_history_dates(content: str) -> list[str]:
    """``YYMMDD`` dates listed in the header, unique and sorted ascending."""
    header, _ = split_header(content)
    return sorted({match.group(1) for match in HEADER_DATE_RE.finditer(header)})


# ============================================================================
# Parsing / merging
# ============================================================================


def parse_history_line(line: str) -> HistoryEntry | None:
    clean = line.strip()
    if not clean.startswith("--"):
        return None
    match = HISTORY_LINE_RE.match(clean)
    if not match:
        return None

    rest = match.group(3).strip()
    entry_id, desc = DEFAULT_ENTRY_ID, rest
    bracket = _BRACKET_ID_RE.match(rest)
    if bracket:
        entry_id, desc = bracket.group(1), bracket.group(2)
    else:
        spaced = _SPACE_ID_RE.match(rest)
        if spaced:
            entry_id, desc = spaced.group(1), spaced.group(2)
    return HistoryEntry(date=match.group(1), sign=match.group(2), id=entry_id, desc=desc)


def parse_existing_history(text_block: str) -> list[HistoryEntry]:
    """Parse every entry line of a history block body."""
    entries = []
    for line in text_block.split("\n"):
        entry = parse_history_line(line)
        if entry is not None:
            entries.append(entry)
    return entries


def merge_history_entries(entries: Iterable[HistoryEntry]) -> list[HistoryEntry]:
    """Deduplicate by ``(date, id)`` and sort newest first.

    On conflict the entry with the longer description wins; the earlier one
    wins ties.  Ids are stored without brackets.
    """
    unique: dict[tuple[str, str], HistoryEntry] = {}
    for entry in entries:
        cleaned = replace(entry, id=entry.clean_id, date=entry.date.strip())
        current = unique.get(cleaned.key)
        if current is None or len(cleaned.desc) > len(current.desc):
            unique[cleaned.key] = cleaned
    return sorted(unique.values(), key=lambda e: e.date, reverse=True)


def _has_news(existing: list[HistoryEntry], new_entries: list[HistoryEntry]) -> bool:
    known = {entry.key: entry for entry in existing}
    for entry in new_entries:
        current = known.get(entry.key)
        if current is None or len(entry.desc) > len(current.desc):
            return True
    return False


def _patch_after_separator(content: str, entries: list[HistoryEntry]) -> str:
    """Merge into the entry lines that follow the history separator.

    Used when the closing dash line is missing; the run of entries ends at
    the first line that is not a history entry.
    """
    match = HISTORY_SEPARATOR_RE.search(content)
    if not match:
        return content
    newline = match.group(2)
    body_start = match.end()

    existing: list[HistoryEntry] = []
    position = body_start
    while position < len(content):
        line_end = content.find("\n", position)
        stop = len(content) if line_end == -1 else line_end + 1
        entry = parse_history_line(content[position:stop])
        if entry is None:
            break
        existing.append(entry)
        position = stop

    if not _has_news(existing, entries):
        return content

    block = newline.join(entry.format_line() for entry in merge_history_entries([*existing, *entries]))
    return content[:body_start] + block + newline + content[position:]


# ============================================================================
# Public API
# ============================================================================


def apply_header_patch(content: str, entries: Iterable[HistoryEntry]) -> str:
    """Merge ``entries`` into the history block of ``content``.

    Returns ``content`` unchanged when there are no entries, when every
    entry is already present with an equal or longer description, or when
    no history anchor exists at all.
    """
    new_entries = list(entries)
    if not new_entries:
        return content

    match = HISTORY_BLOCK_RE.search(content)
    if match is None:
        return _patch_after_separator(content, new_entries)

    header_prefix, old_history, footer = match.group(1), match.group(2), match.group(3)
    existing = parse_existing_history(old_history)
    if not _has_news(existing, new_entries):
        return content

    final_entries = merge_history_entries([*existing, *new_entries])
    new_block = "\n".join(entry.format_line() for entry in final_entries)
    return content[: match.start()] + f"{header_prefix}{new_block}\n{footer}" + content[match.end() :]


__all__ = [
    "CODE_SEPARATOR_RE",
    "HEADER_DATE_RE",
    "HISTORY_BLOCK_RE",
    "HistoryEntry",
    "apply_header_patch",
    "get_header_date",
    "get_history_dates",
    "header_date_to_iso",
    "merge_history_entries",
    "parse_existing_history",
    "parse_history_line",
    "split_header",
]
