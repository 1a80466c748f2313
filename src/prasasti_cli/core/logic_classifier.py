"""Lexical classifier separating logic changes from cosmetic diff noise.

A diff line is *noise* when, after removing the ``+``/``-`` prefix and
surrounding whitespace, it is empty, a comment, or a bare structural keyword
of the PL/SQL dialect (``END IF;``, ``BEGIN``, ``EXCEPTION`` ...).  Any other
added or removed line is a logic change.

This is an allow-list heuristic, not a parser.  The keyword set and comment
prefixes are configurable so the heuristic can be tuned without touching the
marker reconciliation code.
"""

from __future__ import annotations

import re
from typing import Iterable

# ============================================================================
# Constants
# ============================================================================

DEFAULT_STRUCTURAL_KEYWORDS: tuple[str, ...] = (
    "CURSOR",
    "IS",
    "BEGIN",
    "END",
    "IF",
    "THEN",
    "ELSE",
    "ELSIF",
    "FOR",
    "LOOP",
    "RETURN",
    "EXCEPTION",
    "FUNCTION",
    "PROCEDURE",
    "PRAGMA",
    "TYPE",
    "CONSTANT",
    "NULL",
    "WHEN",
    "AS",
)

DEFAULT_COMMENT_PREFIXES: tuple[str, ...] = ("--", "//", "/*")

#: Diff bookkeeping lines that never describe content.
DIFF_METADATA_RE = re.compile(r"^(---|\+\+\+|index|@@)")


# ============================================================================
# Types
# ============================================================================


class LogicClassifier:
    """Keyword/comment allow-list used to spot real logic changes."""

    def __init__(
        self,
        keywords: Iterable[str] = DEFAULT_STRUCTURAL_KEYWORDS,
        comment_prefixes: Iterable[str] = DEFAULT_COMMENT_PREFIXES,
    ) -> None:
        self.keywords = tuple(k.upper() for k in keywords)
        self.comment_prefixes = tuple(comment_prefixes)
        if self.keywords:
            alternatives = "|".join(re.escape(k) for k in self.keywords)
            self._keyword_re: re.Pattern[str] | None = re.compile(
                rf"^\s*({alternatives})(\s|;|$|\()", re.IGNORECASE
            )
        else:
            self._keyword_re = None

    def is_comment(self, line: str) -> bool:
        return line.strip().startswith(self.comment_prefixes)

    def is_structural_keyword(self, line: str) -> bool:
        if self._keyword_re is None:
            return False
        return self._keyword_re.match(line.strip()) is not None

    def is_noise_line(self, line: str) -> bool:
        """Return True for empty, comment-only or bare-keyword lines."""
        content = line.strip()
        if not content:
            return True
        if self.is_comment(content):
            return True
        return self.is_structural_keyword(content)

    def has_logic_changes(self, diff_text: str) -> bool:
        """Return True as soon as one added/removed line is not noise."""
        if not diff_text:
            return False
        for line in diff_text.split("\n"):
            if DIFF_METADATA_RE.match(line):
                continue
            if not line.startswith(("+", "-")):
                continue
            if self.is_noise_line(line[1:]):
                continue
            return True
        return False


#: Shared instance with the default PL/SQL keyword set.
DEFAULT_CLASSIFIER = LogicClassifier()


# ============================================================================
# Public API
# ============================================================================


def is_noise_line(line: str) -> bool:
    """Module-level shortcut using :data:`DEFAULT_CLASSIFIER`."""
    return DEFAULT_CLASSIFIER.is_noise_line(line)


def has_logic_changes(diff_text: str, classifier: LogicClassifier | None = None) -> bool:
    """Decide whether ``diff_text`` contains at least one logic change.

    Args:
        diff_text: Raw unified diff (any context size)
        classifier: Alternate classifier; defaults to the PL/SQL keyword set

    Returns:
        False for empty diffs and diffs made only of comments, blank lines
        and bare structural keywords.
    """
    return (classifier or DEFAULT_CLASSIFIER).has_logic_changes(diff_text)


__all__ = [
    "DEFAULT_CLASSIFIER",
    "DEFAULT_COMMENT_PREFIXES",
    "DEFAULT_STRUCTURAL_KEYWORDS",
    "DIFF_METADATA_RE",
    "LogicClassifier",
    "has_logic_changes",
    "is_noise_line",
]
