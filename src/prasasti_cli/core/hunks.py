"""Unified-diff hunk parsing and change-region merging.

Converts ``-U0`` style unified diffs into zero-based, inclusive line ranges
in the *new* version of a file, then coalesces ranges that sit close to each
other so a single marker pair can wrap them.

Example:
    >>> parse_diff_to_line_numbers("@@ -10,0 +11,3 @@")
    [ChangeBlock(start_line=10, end_line=12)]
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

# ============================================================================
# Constants
# ============================================================================

#: Hunk header, "+" side only.  ``@@ -a,b +c,d @@`` -> groups (c, d)
HUNK_HEADER_RE = re.compile(r"^@@\s-[0-9,]+\s\+(\d+)(?:,(\d+))?\s@@")

#: Two edits with at most this many unchanged lines between them share one marker pair.
DEFAULT_MERGE_TOLERANCE = 2


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class ChangeBlock:
    """Line range in the current file touched by one diff hunk.

    Attributes:
        start_line: Zero-based index of the first changed line
        end_line: Zero-based index of the last changed line (inclusive)
    """

    start_line: int
    end_line: int

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    def line_range(self) -> range:
        """Return the indices covered by this block."""
        return range(self.start_line, self.end_line + 1)

    def describe(self) -> str:
        """One-based, human-readable range used in diagnostics."""
        if self.start_line == self.end_line:
            return f"line {self.start_line + 1}"
        return f"lines {self.start_line + 1}-{self.end_line + 1}"


# ============================================================================
# Public API
# ============================================================================


def parse_diff_to_line_numbers(diff_text: str) -> list[ChangeBlock]:
    """Parse unified diff text into change blocks on the new-file side.

    Hunks with a zero (or negative) line count, i.e. pure deletions, are
    dropped.  Text without any ``@@`` header yields an empty list.  Output
    order follows the diff; callers sort before merging.
    """
    blocks: list[ChangeBlock] = []
    if not diff_text:
        return blocks

    for line in diff_text.split("\n"):
        match = HUNK_HEADER_RE.match(line)
        if not match:
            continue
        start_line = int(match.group(1)) - 1
        count = int(match.group(2)) if match.group(2) is not None else 1
        if count <= 0:
            continue
        blocks.append(ChangeBlock(start_line=start_line, end_line=start_line + count - 1))
    return blocks


def merge_nearby_changes(
    blocks: Iterable[ChangeBlock],
    tolerance: int = DEFAULT_MERGE_TOLERANCE,
) -> list[ChangeBlock]:
    """Coalesce blocks separated by at most ``tolerance`` unchanged lines.

    The input is not mutated.  The result is sorted by ``start_line`` and
    contains no overlapping blocks.
    """
    ordered = sorted(
        (ChangeBlock(b.start_line, b.end_line) for b in blocks),
        key=lambda b: b.start_line,
    )
    if not ordered:
        return []

    merged: list[ChangeBlock] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if nxt.start_line - current.end_line - 1 <= tolerance:
            current.end_line = max(current.end_line, nxt.end_line)
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


__all__ = [
    "DEFAULT_MERGE_TOLERANCE",
    "HUNK_HEADER_RE",
    "ChangeBlock",
    "merge_nearby_changes",
    "parse_diff_to_line_numbers",
]
