"""Integration tests for documentation audits and missing-date scans."""

from __future__ import annotations

import json

import pytest

from prasasti_cli.config import FULL_SCAN, INCREMENTAL_SCAN
from prasasti_cli.core.analysis import AuditCache, AuditResult, DocStatus, analyze_file, scan_file

pytestmark = pytest.mark.git_repo

SEPARATOR = "-" * 77


def _source(header_date: str, body: str = "   v_total := 1;", extra_history: str = "") -> str:
    lines = [
        SEPARATOR,
        "--  Date    Sign    History",
        "--  ------  ------  ---------------------------------------------------------",
    ]
    if extra_history:
        lines.append(extra_history)
    lines += [
        f"--  {header_date}  ERW     [SC-1] Initial version",
        SEPARATOR,
        "PROCEDURE Calc IS",
        "BEGIN",
        body,
        "END Calc;",
        "",
    ]
    return "\n".join(lines)


class TestAnalyzeFile:
    def test_up_to_date(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240615"), "init", date="2024-06-15")
        result = analyze_file(git_repo / "calc.plsql", git_repo)
        assert result.status == DocStatus.SUCCESS
        assert result.reason == "Up to date"

    def test_no_header(self, git_repo, commit_file):
        commit_file("calc.plsql", "PROCEDURE Calc IS\nBEGIN\n  NULL;\nEND;\n", "init")
        assert analyze_file(git_repo / "calc.plsql", git_repo).status == DocStatus.NO_HEADER

    def test_outdated_logic_change(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init", date="2024-01-01")
        commit_file("calc.plsql", _source("240101", "   v_total := 2;"), "change", date="2024-06-15")
        result = analyze_file(git_repo / "calc.plsql", git_repo)
        assert result.status == DocStatus.OUTDATED
        assert result.reason == "Outdated (H:240101 < G:240615)"

    def test_docs_only_commit(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init", date="2024-01-01")
        commit_file("calc.plsql", _source("240101", "   -- tidy comment\n   v_total := 1;"), "docs", date="2024-06-15")
        result = analyze_file(git_repo / "calc.plsql", git_repo)
        assert (result.status, result.reason) == (DocStatus.SUCCESS, "Docs-only update")

    def test_skip_keyword(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init", date="2024-01-01")
        commit_file("calc.plsql", _source("240101", "   v_total := 2;"), "Merge feature", date="2024-06-15")
        result = analyze_file(git_repo / "calc.plsql", git_repo, skip_keywords=["merge"])
        assert (result.status, result.reason) == (DocStatus.SUCCESS, "Keyword skipped")

    def test_dirty_logic_change(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init")
        (git_repo / "calc.plsql").write_text(_source("240101", "   v_total := 9;"), encoding="utf-8")
        assert analyze_file(git_repo / "calc.plsql", git_repo).status == DocStatus.DIRTY_CODE

    def test_dirty_comment_change(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init")
        (git_repo / "calc.plsql").write_text(
            _source("240101", "   -- note\n   v_total := 1;"), encoding="utf-8"
        )
        assert analyze_file(git_repo / "calc.plsql", git_repo).status == DocStatus.SUCCESS

    def test_untracked(self, git_repo):
        (git_repo / "calc.plsql").write_text(_source("240101"), encoding="utf-8")
        assert analyze_file(git_repo / "calc.plsql", git_repo).status == DocStatus.UNKNOWN

    def test_cache_hit_and_invalidation(self, git_repo, commit_file):
        path = git_repo / "calc.plsql"
        first = commit_file("calc.plsql", _source("240101"), "init", date="2024-01-01")
        cache = AuditCache()
        cache.put(str(path), first, AuditResult(DocStatus.OUTDATED, "cached", str(path)))
        assert analyze_file(path, git_repo, cache=cache).reason == "cached"

        commit_file("calc.plsql", _source("240615"), "doc update", date="2024-06-15")
        result = analyze_file(path, git_repo, cache=cache)
        assert result.reason == "Up to date"
        assert len(cache) == 1


class TestAuditCache:
    def test_stale_hash_drops_record(self):
        cache = AuditCache()
        cache.put("a", "h1", AuditResult(DocStatus.SUCCESS, "ok"))
        assert cache.get("a", "h2") is None
        assert len(cache) == 0

    def test_save_and_load(self, tmp_path):
        cache = AuditCache()
        cache.put("a", "h1", AuditResult(DocStatus.OUTDATED, "old", "a"))
        target = tmp_path / ".prasasti" / "cache.json"
        cache.save(target)
        loaded = AuditCache.load(target)
        assert loaded.get("a", "h1") == AuditResult(DocStatus.OUTDATED, "old", "a")
        assert json.loads(target.read_text())["a"]["last_seen_hash"] == "h1"

    def test_corrupt_file_gives_empty_cache(self, tmp_path):
        target = tmp_path / "cache.json"
        target.write_text("{not json", encoding="utf-8")
        assert len(AuditCache.load(target)) == 0


class TestScanFile:
    def test_missing_marker_dates(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init", date="2024-01-01")
        commit_file("calc.plsql", _source("240101", "   v_total := 2; -- [MOD-240101-1] ERW"), "x", date="2024-06-15")
        result = scan_file(git_repo / "calc.plsql", git_repo, kind="Marker")
        assert result is not None
        assert result.missing_dates == ("240615",)
        assert result.reason == "Missing Marker for dates: 240615"

    def test_history_dates_complete(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init", date="2024-01-01")
        commit_file(
            "calc.plsql",
            _source("240101", "   v_total := 2;", extra_history="--  240615  ERW     [SC-2] Changed total"),
            "x",
            date="2024-06-15",
        )
        assert scan_file(git_repo / "calc.plsql", git_repo, kind="Documentation") is None

    def test_incremental_only_checks_newer_history(self, git_repo, commit_file):
        commit_file("calc.plsql", _source("240101"), "init", date="2023-01-01")
        commit_file(
            "calc.plsql",
            _source("240101", extra_history="--  240615  ERW     [SC-2] Changed total"),
            "x",
            date="2024-06-15",
        )
        path = git_repo / "calc.plsql"
        full = scan_file(path, git_repo, scan_mode=FULL_SCAN, kind="Documentation")
        assert full is not None and full.missing_dates == ("230101",)
        assert scan_file(path, git_repo, scan_mode=INCREMENTAL_SCAN, kind="Documentation") is None
