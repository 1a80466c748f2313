"""
Marker and history reconciliation core.

Pure text transforms (hunks, logic_classifier, markers, attribution,
history) plus the git query layer (git_ops) and per-file audits
(analysis).  Line indices are zero-based and ranges inclusive.
"""

from .hunks import ChangeBlock, merge_nearby_changes, parse_diff_to_line_numbers
from .logic_classifier import LogicClassifier, has_logic_changes, is_noise_line
from .markers import ensure_markers, find_existing_marker_ranges, validate_markers
from .history import HistoryEntry, apply_header_patch

__all__ = [
    "ChangeBlock",
    "HistoryEntry",
    "LogicClassifier",
    "apply_header_patch",
    "ensure_markers",
    "find_existing_marker_ranges",
    "has_logic_changes",
    "is_noise_line",
    "merge_nearby_changes",
    "parse_diff_to_line_numbers",
    "validate_markers",
]
