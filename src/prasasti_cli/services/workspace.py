"""Workspace scanning and bounded batch execution.

``WorkspaceScanner`` is constructed per workspace and owns the lists of
files needing markers or documentation.  ``run_batch`` fans a per-file task
out over a bounded number of worker slots, serializing tasks that target
the same path and honouring a cancellation token between items.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Literal, Sequence

from prasasti_cli.config import PrasastiConfig, matches_glob
from prasasti_cli.core import git_ops
from prasasti_cli.core.analysis import FileResult, ScanKind, scan_file

logger = logging.getLogger(__name__)

ContextType = Literal["marker", "documentation"]

_IGNORED_DIRS = frozenset({".git", ".prasasti", "node_modules", "__pycache__"})


class CancellationToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ListItem:
    """A file flagged by a workspace scan."""

    path: Path
    label: str
    reason: str
    context_type: ContextType

    def to_dict(self) -> dict[str, str]:
        return {
            "path": str(self.path),
            "label": self.label,
            "reason": self.reason,
            "context_type": self.context_type,
        }


@dataclass
class BatchResult:
    """Counts of a batch run; ``errors`` maps path to failure message."""

    success: int = 0
    failed: int = 0
    cancelled: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.success + self.failed + self.cancelled


async def run_batch(
    paths: Sequence[Path],
    task: Callable[[Path], object],
    *,
    concurrency: int = 5,
    cancel: CancellationToken | None = None,
    on_done: Callable[[Path, BaseException | None], None] | None = None,
) -> BatchResult:
    """Run the blocking ``task`` once per path with bounded concurrency.

    Each call runs in a worker thread.  At most ``concurrency`` calls are in
    flight and never two for the same path.  Items not yet started when
    ``cancel`` fires are counted as cancelled.  A failing item is logged and
    counted; it does not stop the batch.
    """
    result = BatchResult()
    semaphore = asyncio.Semaphore(max(1, concurrency))
    path_locks: dict[str, asyncio.Lock] = {}

    async def run_one(path: Path) -> None:
        lock = path_locks.setdefault(str(Path(path).resolve()), asyncio.Lock())
        async with semaphore, lock:
            if cancel is not None and cancel.cancelled:
                result.cancelled += 1
                return
            error: BaseException | None = None
            try:
                await asyncio.to_thread(task, path)
            except Exception as exc:
                logger.error("Task failed for %s: %s", path, exc)
                result.failed += 1
                result.errors[str(path)] = str(exc)
                error = exc
            else:
                result.success += 1
            if on_done is not None:
                on_done(path, error)

    await asyncio.gather(*(run_one(path) for path in paths))
    logger.info(
        "Batch complete. Success: %d, Fail: %d, Cancelled: %d",
        result.success,
        result.failed,
        result.cancelled,
    )
    return result


def find_files(root: Path, patterns: Iterable[str]) -> list[Path]:
    """Files under ``root`` whose relative path matches any glob, sorted."""
    pattern_list = list(patterns)
    found: list[Path] = []
    for candidate in root.rglob("*"):
        if not candidate.is_file():
            continue
        relative = candidate.relative_to(root)
        if any(part in _IGNORED_DIRS for part in relative.parts[:-1]):
            continue
        if any(matches_glob(relative.as_posix(), pattern) for pattern in pattern_list):
            found.append(candidate)
    return sorted(found)


class WorkspaceScanner:
    """Scans one workspace for files with missing markers or documentation."""

    def __init__(self, root: Path, config: PrasastiConfig) -> None:
        self.root = root
        self.config = config
        self.marker_items: list[ListItem] = []
        self.doc_items: list[ListItem] = []

    async def _scan_kind(
        self,
        files: Sequence[Path],
        kind: ScanKind,
        semaphore: asyncio.Semaphore,
    ) -> list[tuple[Path, FileResult]]:
        async def scan_one(path: Path) -> tuple[Path, FileResult | None]:
            async with semaphore:
                found = await asyncio.to_thread(
                    scan_file,
                    path,
                    self.root,
                    self.config.skip_keywords,
                    self.config.scan_mode,
                    kind,
                )
                return path, found

        results = await asyncio.gather(*(scan_one(path) for path in files))
        return [(path, found) for path, found in results if found is not None]

    async def scan(self) -> None:
        """Refresh ``marker_items`` and ``doc_items``.

        Files with uncommitted changes are skipped; their state is judged
        once they are committed.
        """
        logger.info("Scanning workspace %s (%s)...", self.root, self.config.scan_mode)
        uncommitted = set(await asyncio.to_thread(git_ops.get_uncommitted_files, self.root))
        logger.info("Found %d uncommitted files.", len(uncommitted))

        def committed(paths: list[Path]) -> list[Path]:
            return [p for p in paths if p.relative_to(self.root).as_posix() not in uncommitted]

        marker_files = committed(await asyncio.to_thread(find_files, self.root, self.config.include_markers))
        doc_files = committed(await asyncio.to_thread(find_files, self.root, self.config.include_docs))

        semaphore = asyncio.Semaphore(self.config.scan_concurrency)
        marker_hits, doc_hits = await asyncio.gather(
            self._scan_kind(marker_files, "Marker", semaphore),
            self._scan_kind(doc_files, "Documentation", semaphore),
        )

        self.marker_items = [
            ListItem(path=path, label="Missing Markers", reason=hit.reason, context_type="marker")
            for path, hit in marker_hits
        ]
        self.doc_items = [
            ListItem(path=path, label="Missing Documentation", reason=hit.reason, context_type="documentation")
            for path, hit in doc_hits
        ]
        logger.info(
            "Found %d files needing markers, %d needing documentation.",
            len(self.marker_items),
            len(self.doc_items),
        )

    def remove_marker_item(self, path: Path) -> None:
        self.marker_items = [item for item in self.marker_items if item.path != path]

    def remove_doc_item(self, path: Path) -> None:
        self.doc_items = [item for item in self.doc_items if item.path != path]


__all__ = [
    "BatchResult",
    "CancellationToken",
    "ListItem",
    "WorkspaceScanner",
    "find_files",
    "run_batch",
]
