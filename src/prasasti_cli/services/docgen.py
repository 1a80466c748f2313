"""Documentation generation through the Gemini ``generateContent`` API.

The service is a black box: a prompt goes in, generated text comes out.
Failures are typed so callers can tell a rate limit from a content filter
or a truncated answer.  Rate-limit responses (HTTP 429) are retried with
exponential backoff up to ``max_retries`` attempts; transport errors and
5xx responses are retried after a short pause.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable

import httpx

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

#: Backoff for 429: 2s, 4s, 8s, ...
RATE_LIMIT_BASE_DELAY = 2.0
#: Pause after a transport error or 5xx before the next attempt.
ERROR_RETRY_DELAY = 1.0

MAX_COMMITS_IN_PROMPT = 10
MAX_COMMITS_FETCHED = 20

_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

_FENCE_START_RE = re.compile(r"^\s*```(?:sql|plsql)?[ \t]*\r?\n?", re.IGNORECASE)
_FENCE_END_RE = re.compile(r"\r?\n?```\s*$")
_DIFF_CONTENT_RE = re.compile(r"^(\+|-)|^\s+@@")


# ============================================================================
# Errors
# ============================================================================


class DocGenError(Exception):
    """Documentation service failed for one request."""


class RateLimitedError(DocGenError):
    """Still rate limited after the retry budget was spent."""


class ContentFilteredError(DocGenError):
    """The prompt or answer was blocked by a safety filter."""


class TruncatedError(DocGenError):
    """Generation stopped at the output token limit."""


class EmptyResponseError(DocGenError):
    """The service answered without any candidate text."""


# ============================================================================
# Client
# ============================================================================


class GeminiClient:
    """Thin synchronous client around ``models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_retries: int = 3,
        *,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 120.0,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise DocGenError("Gemini API key is missing (set ai.api_key or GEMINI_API_KEY)")
        self.api_key = api_key
        self.model = model
        self.max_retries = max(1, max_retries)
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GeminiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _payload(self, prompt: str) -> dict[str, object]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_NONE"} for category in _SAFETY_CATEGORIES
            ],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": 8192},
        }

    def generate(self, prompt: str) -> str:
        """Send ``prompt`` and return the generated text.

        Raises:
            RateLimitedError: 429 on every attempt
            ContentFilteredError: Prompt blocked or answer stopped for SAFETY
            TruncatedError: Answer stopped at MAX_TOKENS
            EmptyResponseError: No candidate or no text in the candidate
            DocGenError: Any other HTTP/transport failure
        """
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        last_error: DocGenError | None = None

        for attempt in range(self.max_retries):
            logger.info(
                "Sending %d chars to %s (attempt %d/%d)",
                len(prompt),
                self.model,
                attempt + 1,
                self.max_retries,
            )
            try:
                response = self._client.post(self.endpoint, json=self._payload(prompt), headers=headers)
            except httpx.TransportError as exc:
                logger.error("Documentation service unreachable: %s", exc)
                last_error = DocGenError(f"Transport error: {exc}")
                if attempt + 1 < self.max_retries:
                    self._sleep(ERROR_RETRY_DELAY)
                continue

            if response.status_code == 429:
                last_error = RateLimitedError(f"Rate limited after {attempt + 1} attempt(s)")
                if attempt + 1 < self.max_retries:
                    delay = (2**attempt) * RATE_LIMIT_BASE_DELAY
                    logger.warning("Rate limit hit. Retrying in %.1fs", delay)
                    self._sleep(delay)
                continue

            if response.status_code >= 500:
                logger.error("HTTP Error %d: %s", response.status_code, response.text[:500])
                last_error = DocGenError(f"HTTP {response.status_code}: {response.text[:200]}")
                if attempt + 1 < self.max_retries:
                    self._sleep(ERROR_RETRY_DELAY)
                continue

            if response.status_code >= 400:
                logger.error("HTTP Error %d: %s", response.status_code, response.text[:500])
                raise DocGenError(f"HTTP {response.status_code}: {response.text[:200]}")

            return extract_text(response.json())

        raise last_error or DocGenError("No request sent: max_retries must be at least 1")


def extract_text(data: dict) -> str:
    """Pull the generated text out of a ``generateContent`` response body."""
    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise ContentFilteredError(f"Blocked by filter: {feedback['blockReason']}")

    candidates = data.get("candidates") or []
    if not candidates:
        raise EmptyResponseError("Response OK but candidates empty (possible content filter)")

    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason and finish_reason != "STOP":
        logger.warning("Generation stopped abnormally. Reason: %s", finish_reason)
        if finish_reason == "SAFETY":
            raise ContentFilteredError("Safety filter triggered on generated content")
        if finish_reason == "MAX_TOKENS":
            raise TruncatedError("File exceeds the output token limit")

    parts = (candidate.get("content") or {}).get("parts") or []
    text = parts[0].get("text") if parts else None
    if not text:
        raise EmptyResponseError("Candidate exists but content text is empty")
    logger.info("Received %d chars.", len(text))
    return text


# ============================================================================
# Prompt assembly
# ============================================================================


@dataclass
class CommitDiff:
    """Diff of one commit, as fed to the prompt."""

    date: str
    author: str
    diff: str


def clean_diff(diff: str) -> str:
    """Keep only added/removed lines and hunk headers."""
    return "\n".join(line for line in diff.split("\n") if _DIFF_CONTENT_RE.match(line))


def build_forensic_data(commits: Iterable[CommitDiff]) -> str:
    """Concatenate commit diffs into the history section of the prompt."""
    chunks = []
    for commit in commits:
        chunks.append(
            f"=== COMMIT: {commit.date} by {commit.author} ===\n"
            f"{clean_diff(commit.diff)}\n"
            "================================\n"
        )
    return "".join(chunks)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```sql / ```plsql markdown fence, if any."""
    return _FENCE_END_RE.sub("", _FENCE_START_RE.sub("", text, count=1), count=1)


PROMPT_TEMPLATE = """You are a Senior IFS ERP Technical Consultant. Your task is to UPDATE documentation based on NEW GIT CHANGES.

INPUTS:
1. SOURCE CODE: Current file content (containing potentially messy legacy markers and including existing history).
2. FORENSIC DATA: Only the NEW changes (commits) that happened AFTER the last documentation update.

RULES:

1. **HEADER HISTORY RECONSTRUCTION:**
   - Locate the standard IFS Header block.
   - REWRITE the 'History' list based on the 'FORENSIC GIT HISTORY'.
   - **Format:** `YYMMDD  Sign    [Ticket-ID] Description`
   - **Ticket-ID:** If the git commit message or diff mentions a Ticket/Jira ID (e.g., SC-1234), use it. If not, generate a unique ID based on date (e.g., `MOD-251118`).
   - **Description:** Summarize the logic change professionally based on the diff analysis.
   - NEWER entries should be at the top of the 'History' list.

2. **CODE MARKER SYNCHRONIZATION (CRITICAL):**
   - **Legacy Markers:** If you find old markers (e.g., "-- 050519 ERW Start"), DO NOT DELETE THEM. Instead, **REFORMAT** them to match the standard format below using the corresponding info from the Header.
   - **New Changes:** If the 'FORENSIC GIT HISTORY' shows significant logic added/changed, ensure those blocks are wrapped in markers.
   - **STANDARD FORMAT:**
     -- [Ticket-ID] [Sign] Start
        [The Code Logic]
     -- [Ticket-ID] [Sign] End

3. **METHOD DOCUMENTATION:**
   - Add standard IFS Docstrings to all FUNCTIONS/PROCEDURES/VIEWS.
   - Format:
     -----------------------------------------------------------------------------
     -- [Method_Name]
     --    [Concise Description]
     -----------------------------------------------------------------------------

4. **NO LOGIC CHANGES:** Return the code logic exactly as is. Only add/format comments.
5. OUTPUT: Return ONLY the full valid PL/SQL code. Do not use Markdown code blocks (```sql).
6. PRESERVE SYNTAX: DO NOT remove any special characters used for PL/SQL functions or variables, including the dollar sign ($), ampersand (&), and pipe (|).
7. DONT ADD PROMPT IN THE VIEW.
8. CRITICAL: The string '$SEARCH' and any text after that must remain intact.
9. IMPORTANT: Do not delete any system-level logging calls, including any function starting with 'Log_Sys.' or 'Dbms_Output'. These are required system functions.

FORENSIC GIT HISTORY for '{file_name}':
{forensic}

SOURCE CODE for '{file_name}':
{code}
"""


def build_prompt(file_name: str, forensic: str, code: str) -> str:
    return PROMPT_TEMPLATE.format(file_name=file_name, forensic=forensic, code=code)


__all__ = [
    "ContentFilteredError",
    "CommitDiff",
    "DocGenError",
    "EmptyResponseError",
    "GeminiClient",
    "RateLimitedError",
    "TruncatedError",
    "build_forensic_data",
    "build_prompt",
    "clean_diff",
    "extract_text",
    "strip_code_fences",
]
