"""Marker reconciliation between diff hunks and existing ``Start``/``End`` markers.

Markers are comment lines bracketing a changed region::

    -- [MOD-240615-1] AI Start
       v_total := 100;
    -- [MOD-240615-1] AI End

Two operations are exposed:

* :func:`validate_markers` - read-only: is every logic change covered by a
  marker pair?
* :func:`ensure_markers` - mutating: wrap every uncovered logic change in a
  new marker pair, never double-wrapping a region that is already marked.

Line indices are zero-based throughout.  Insertions are applied in
descending start order so indices of blocks not yet processed stay valid.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from prasasti_cli.core.hunks import (
    DEFAULT_MERGE_TOLERANCE,
    ChangeBlock,
    merge_nearby_changes,
    parse_diff_to_line_numbers,
)
from prasasti_cli.core.logic_classifier import DEFAULT_CLASSIFIER, LogicClassifier

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

#: Any marker line, role captured in group 1.
MARKER_RE = re.compile(r"^\s*--\s+\[.*?\]\s+\w+\s+(Start|End)", re.IGNORECASE)
START_MARKER_RE = re.compile(r"--\s+\[.*?\]\s+\w+\s+Start", re.IGNORECASE)
END_MARKER_RE = re.compile(r"--\s+\[.*?\]\s+\w+\s+End", re.IGNORECASE)

_LINE_SPLIT_RE = re.compile(r"\r?\n")
_INDENT_RE = re.compile(r"^\s*")


# ============================================================================
# Types
# ============================================================================


class CommentFilter(str, Enum):
    """How a change block is judged to be comment-only.

    span        - every non-blank line in the block must be a comment or a
                  marker (canonical, never discards a block with real code)
    first_line  - only the first line of the block is inspected (legacy)
    """

    SPAN = "span"
    FIRST_LINE = "first_line"


@dataclass(frozen=True)
class MarkerRange:
    """Line indices of an existing Start/End marker pair (start < end)."""

    start: int
    end: int

    def covers(self, block: ChangeBlock) -> bool:
        return block.start_line >= self.start and block.end_line <= self.end

    def overlaps(self, block: ChangeBlock) -> bool:
        return block.start_line <= self.end and block.end_line >= self.start


@dataclass
class MarkerValidation:
    """Outcome of :func:`check_markers`.

    Attributes:
        covered: True when every logic block sits inside a marker pair
        uncovered: First block found without coverage (None when covered)
        checked_blocks: Number of blocks left after comment filtering
    """

    covered: bool
    uncovered: ChangeBlock | None = None
    checked_blocks: int = 0


# ============================================================================
# Helpers
# ============================================================================


def split_lines(content: str) -> list[str]:
    """Split on ``\\n`` or ``\\r\\n``."""
    return _LINE_SPLIT_RE.split(content)


def is_marker_line(line: str) -> bool:
    return MARKER_RE.match(line) is not None


def is_pure_comment_block(
    lines: Sequence[str],
    block: ChangeBlock,
    classifier: LogicClassifier = DEFAULT_CLASSIFIER,
    mode: CommentFilter = CommentFilter.SPAN,
) -> bool:
    """Return True when ``block`` holds nothing but comments/markers/blanks.

    Blocks lying entirely past the end of ``lines`` are never comment-only;
    the caller decides what to do with them.
    """
    if block.start_line >= len(lines) or block.start_line < 0:
        return False

    if mode == CommentFilter.FIRST_LINE:
        return classifier.is_comment(lines[block.start_line])

    for line in lines[block.start_line : block.end_line + 1]:
        if not line.strip():
            continue
        if classifier.is_comment(line) or is_marker_line(line):
            continue
        return False
    return True


def _clamp(block: ChangeBlock, line_count: int) -> ChangeBlock | None:
    """Trim a block to the file; None when it starts past the last line."""
    if block.start_line < 0 or block.start_line >= line_count:
        return None
    return ChangeBlock(block.start_line, min(block.end_line, line_count - 1))


def _logic_blocks(
    lines: Sequence[str],
    diff_output: str,
    classifier: LogicClassifier,
    mode: CommentFilter,
) -> list[ChangeBlock]:
    blocks: list[ChangeBlock] = []
    for raw in parse_diff_to_line_numbers(diff_output):
        block = _clamp(raw, len(lines))
        if block is None:
            logger.debug("Ignoring hunk past end of file: %s", raw.describe())
            continue
        if is_pure_comment_block(lines, block, classifier, mode):
            continue
        blocks.append(block)
    return blocks


def has_valid_markers(lines: Sequence[str], block: ChangeBlock) -> bool:
    """True when a Start marker sits directly above and an End directly below."""
    before = block.start_line - 1
    after = block.end_line + 1
    if before < 0 or after >= len(lines):
        return False
    start_match = MARKER_RE.match(lines[before])
    end_match = MARKER_RE.match(lines[after])
    return (
        start_match is not None
        and start_match.group(1).lower() == "start"
        and end_match is not None
        and end_match.group(1).lower() == "end"
    )


def _uncovered_segments(
    lines: Sequence[str],
    block: ChangeBlock,
    ranges: Sequence[MarkerRange],
    classifier: LogicClassifier,
    mode: CommentFilter,
) -> list[ChangeBlock]:
    """Parts of ``block`` outside every marker range that still hold logic."""
    if has_valid_markers(lines, block):
        return []

    segments: list[ChangeBlock] = []
    start = block.start_line
    for marker in sorted(ranges, key=lambda r: r.start):
        if not marker.overlaps(block):
            continue
        if marker.start > start:
            segments.append(ChangeBlock(start, marker.start - 1))
        start = max(start, marker.end + 1)
    if start <= block.end_line:
        segments.append(ChangeBlock(start, block.end_line))
    return [segment for segment in segments if not is_pure_comment_block(lines, segment, classifier, mode)]


def _merge_between_ranges(
    segments: Sequence[ChangeBlock],
    ranges: Sequence[MarkerRange],
    tolerance: int,
) -> list[ChangeBlock]:
    """Merge nearby segments, but never into a block spanning an existing range."""
    merged: list[ChangeBlock] = []
    for block in merge_nearby_changes(segments, tolerance):
        if any(marker.overlaps(block) for marker in ranges):
            inside = [
                segment
                for segment in segments
                if segment.start_line >= block.start_line and segment.end_line <= block.end_line
            ]
            # overlapping segments still collapse
            merged.extend(merge_nearby_changes(inside, -1))
        else:
            merged.append(block)
    return merged


def format_marker(indent: str, ticket_id: str, sign: str, role: str) -> str:
    return f"{indent}-- [{ticket_id}] {sign} {role}"


def apply_marker_block(
    lines: list[str],
    block: ChangeBlock,
    ticket_id: str,
    sign: str,
) -> None:
    """Splice a Start/End pair around ``block`` in place.

    End is inserted first so the Start insertion index stays valid.
    """
    current = lines[block.start_line] if block.start_line < len(lines) else ""
    indent = _INDENT_RE.match(current).group(0)  # type: ignore[union-attr]
    lines.insert(block.end_line + 1, format_marker(indent, ticket_id, sign, "End"))
    lines.insert(block.start_line, format_marker(indent, ticket_id, sign, "Start"))


# ============================================================================
# Public API
# ============================================================================


def find_existing_marker_ranges(content: str) -> list[MarkerRange]:
    """Index the Start/End marker pairs present in ``content``.

    A Start without a later End is dropped: an unterminated marker counts as
    no coverage at all.  A second Start before an End re-opens the range at
    the newer line.
    """
    ranges: list[MarkerRange] = []
    current_start = -1
    for index, line in enumerate(split_lines(content)):
        if START_MARKER_RE.search(line):
            current_start = index
        elif END_MARKER_RE.search(line) and current_start != -1:
            ranges.append(MarkerRange(start=current_start, end=index))
            current_start = -1
    return ranges


def check_markers(
    content: str,
    diff_output: str,
    classifier: LogicClassifier = DEFAULT_CLASSIFIER,
    mode: CommentFilter = CommentFilter.SPAN,
) -> MarkerValidation:
    """Validate marker coverage and report the first uncovered block."""
    lines = split_lines(content)
    changes = _logic_blocks(lines, diff_output, classifier, mode)
    if not changes:
        return MarkerValidation(covered=True)

    existing = find_existing_marker_ranges(content)
    for change in changes:
        uncovered = _uncovered_segments(lines, change, existing, classifier, mode)
        if uncovered:
            logger.info("Change at %s is not covered by markers", uncovered[0].describe())
            return MarkerValidation(covered=False, uncovered=uncovered[0], checked_blocks=len(changes))
    return MarkerValidation(covered=True, checked_blocks=len(changes))


def validate_markers(
    content: str,
    diff_output: str,
    classifier: LogicClassifier = DEFAULT_CLASSIFIER,
    mode: CommentFilter = CommentFilter.SPAN,
) -> bool:
    """Return True when every non-comment change block is inside a marker pair.

    Read-only.  Fails fast on the first uncovered block.
    """
    return check_markers(content, diff_output, classifier, mode).covered


def ensure_markers(
    content: str,
    diff_output: str,
    ticket_id: str,
    sign: str,
    tolerance: int = DEFAULT_MERGE_TOLERANCE,
    classifier: LogicClassifier = DEFAULT_CLASSIFIER,
    mode: CommentFilter = CommentFilter.SPAN,
) -> str:
    """Wrap every uncovered logic change of ``diff_output`` in markers.

    Lines already inside a marker range are left alone; only the parts of a
    change outside every range get a new pair, and a new pair never spans
    an existing one.

    Args:
        content: Current file text
        diff_output: ``-U0`` unified diff whose "+" side matches ``content``
        ticket_id: Ticket id or label written inside the brackets
        sign: Author signature written after the brackets
        tolerance: Gap (in lines) under which neighbouring hunks are merged
        classifier: Comment detection used by the comment-block filter
        mode: Comment-block filter variant

    Returns:
        The patched text joined with ``\\n``, or ``content`` itself
        (byte-identical) when nothing needed a marker.
    """
    lines = split_lines(content)
    valid = _logic_blocks(lines, diff_output, classifier, mode)
    if not valid:
        return content

    logger.info("Processing %d logic blocks for markers.", len(valid))
    existing = find_existing_marker_ranges(content)
    segments = [
        segment for block in valid for segment in _uncovered_segments(lines, block, existing, classifier, mode)
    ]
    pending = _merge_between_ranges(segments, existing, tolerance)
    if not pending:
        return content

    for block in sorted(pending, key=lambda b: b.start_line, reverse=True):
        apply_marker_block(lines, block, ticket_id, sign)

    return "\n".join(lines)


__all__ = [
    "END_MARKER_RE",
    "MARKER_RE",
    "START_MARKER_RE",
    "CommentFilter",
    "MarkerRange",
    "MarkerValidation",
    "apply_marker_block",
    "check_markers",
    "ensure_markers",
    "find_existing_marker_ranges",
    "format_marker",
    "has_valid_markers",
    "is_marker_line",
    "is_pure_comment_block",
    "split_lines",
    "validate_markers",
]
