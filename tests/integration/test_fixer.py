"""Integration tests for per-file fix operations."""

from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock

import pytest

from prasasti_cli.config import MarkerRule, PrasastiConfig
from prasasti_cli.core import git_ops
from prasasti_cli.core.git_ops import LogEntry
from prasasti_cli.core.markers import validate_markers
from prasasti_cli.services.docgen import DocGenError
from prasasti_cli.services.fixer import (
    FixError,
    FixOutcome,
    author_sign,
    build_history_entries,
    fix_markers_for_file,
    generate_docs_for_file,
    generate_markers_for_file,
    patch_history_for_file,
    preview_path,
    ticket_id_for,
)

pytestmark = pytest.mark.git_repo

SEPARATOR = "-" * 77

BASE = "\n".join(
    [
        SEPARATOR,
        "--  Date    Sign    History",
        "--  ------  ------  ---------------------------------------------------------",
        "--  240101  ERW     [SC-1] Initial version",
        SEPARATOR,
        "PROCEDURE Calc IS",
        "BEGIN",
        "   v_total := 1;",
        "END Calc;",
        "",
    ]
)

TODAY = dt.date(2024, 6, 15)

# Header without a leading separator, so the closing one ends it.
REGEN_BASE = BASE.split("\n", 1)[1]


def test_ticket_and_sign_helpers():
    assert ticket_id_for(TODAY) == "MOD-240615"
    assert author_sign("Erwin Tester", "AI") == "ERWIN"
    assert author_sign("", "AI") == "AI"


class TestFixMarkers:
    def test_wraps_working_change(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init")
        path = git_repo / "calc.plsql"
        path.write_text(BASE.replace("   v_total := 1;", "   v_total := 1;\n   v_extra := 2;"), encoding="utf-8")

        assert fix_markers_for_file(path, git_repo, PrasastiConfig(), today=TODAY) == FixOutcome.APPLIED
        lines = path.read_text(encoding="utf-8").split("\n")
        index = lines.index("   v_extra := 2;")
        assert lines[index - 1] == "   -- [MOD-240615] ERWIN Start"
        assert lines[index + 1] == "   -- [MOD-240615] ERWIN End"

        assert fix_markers_for_file(path, git_repo, PrasastiConfig(), today=TODAY) == FixOutcome.ALREADY_VALID

    def test_second_nearby_edit_is_wrapped_once(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init")
        path = git_repo / "calc.plsql"
        path.write_text(BASE.replace("   v_total := 1;", "   v_total := 1;\n   v_x := 2;"), encoding="utf-8")
        assert fix_markers_for_file(path, git_repo, PrasastiConfig(), today=TODAY) == FixOutcome.APPLIED

        end_marker = "   -- [MOD-240615] ERWIN End"
        text = path.read_text(encoding="utf-8")
        path.write_text(text.replace(end_marker, f"{end_marker}\n   v_y := 3;"), encoding="utf-8")

        assert fix_markers_for_file(path, git_repo, PrasastiConfig(), today=TODAY) == FixOutcome.APPLIED
        assert fix_markers_for_file(path, git_repo, PrasastiConfig(), today=TODAY) == FixOutcome.ALREADY_VALID

        text = path.read_text(encoding="utf-8")
        assert text.count("ERWIN Start") == 2
        assert text.count("ERWIN End") == 2
        assert validate_markers(text, git_ops.get_working_diff(path, git_repo))

    def test_falls_back_to_last_commit(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init")
        commit_file("calc.plsql", BASE.replace("v_total := 1;", "v_total := 5;"), "change")
        path = git_repo / "calc.plsql"
        assert fix_markers_for_file(path, git_repo, PrasastiConfig(), today=TODAY) == FixOutcome.APPLIED
        assert "-- [MOD-240615] ERWIN Start" in path.read_text(encoding="utf-8")

    def test_no_changes(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init")
        commit_file("other.plsql", "x\n", "other")
        path = git_repo / "calc.plsql"
        assert fix_markers_for_file(path, git_repo, PrasastiConfig()) == FixOutcome.NO_CHANGES


class TestGenerateMarkers:
    def _config(self, **kwargs) -> PrasastiConfig:
        return PrasastiConfig(rules=[MarkerRule("**/*.plsql", start_regex=r"^-{60,}")], **kwargs)

    def test_regenerates_from_blame(self, git_repo, commit_file):
        commit_file("calc.plsql", REGEN_BASE, "init", date="2024-01-01")
        commit_file(
            "calc.plsql",
            REGEN_BASE.replace("   v_total := 1;", "   v_total := 1;\n   v_a := 2;\n   v_b := 3;"),
            "change",
            date="2024-06-15",
            author="Kalle",
        )
        path = git_repo / "calc.plsql"
        assert generate_markers_for_file(path, git_repo, self._config()) == FixOutcome.APPLIED

        lines = path.read_text(encoding="utf-8").split("\n")
        assert lines[:4] == REGEN_BASE.split("\n")[:4]
        assert "-- Start [MOD-240615-1] Kalle" in lines
        assert "-- End [MOD-240615-1] Kalle" in lines
        assert "-- Start [ADD-240101-1] Erwin Tester" in lines

    def test_no_rule(self, git_repo, commit_file):
        commit_file("calc.sql", "x\n", "init")
        result = generate_markers_for_file(git_repo / "calc.sql", git_repo, self._config())
        assert result == FixOutcome.NO_RULE

    def test_untracked_file_fails(self, git_repo, commit_file):
        commit_file("other.plsql", "x\n", "init")
        (git_repo / "calc.plsql").write_text(BASE, encoding="utf-8")
        with pytest.raises(FixError):
            generate_markers_for_file(git_repo / "calc.plsql", git_repo, self._config())


class TestGenerateDocs:
    def _client(self, text: str = "```sql\nNEW CONTENT\n```"):
        client = MagicMock()
        client.model = "gemini-test"
        client.generate.return_value = text
        return client

    def test_applies_generated_text(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init", date="2024-01-01")
        commit_file("calc.plsql", BASE.replace("v_total := 1;", "v_total := 5;"), "change", date="2024-06-15")
        path = git_repo / "calc.plsql"
        client = self._client()

        assert generate_docs_for_file(path, git_repo, PrasastiConfig(), client) == FixOutcome.APPLIED
        assert path.read_text(encoding="utf-8") == "NEW CONTENT"
        prompt = client.generate.call_args.args[0]
        assert "=== COMMIT: 240615 by Erwin Tester ===" in prompt
        assert "+   v_total := 5;" in prompt

    def test_preview_when_not_applied(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init", date="2024-06-15")
        path = git_repo / "calc.plsql"
        result = generate_docs_for_file(path, git_repo, PrasastiConfig(auto_apply=False), self._client())
        assert result == FixOutcome.PREVIEW
        assert path.read_text(encoding="utf-8") == BASE
        assert preview_path(path).read_text(encoding="utf-8") == "NEW CONTENT"

    def test_preview_paths_differ_per_directory(self, tmp_path):
        first = preview_path(tmp_path / "a" / "calc.plsql")
        second = preview_path(tmp_path / "b" / "calc.plsql")
        assert first != second
        assert first.name.endswith("_calc.plsql")
        assert preview_path(tmp_path / "a" / "calc.plsql") == first

    def test_no_history(self, git_repo, commit_file):
        commit_file("other.plsql", "x\n", "init")
        (git_repo / "calc.plsql").write_text(BASE, encoding="utf-8")
        client = self._client()
        assert generate_docs_for_file(git_repo / "calc.plsql", git_repo, PrasastiConfig(), client) == FixOutcome.NO_CHANGES
        client.generate.assert_not_called()

    def test_service_failure(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init", date="2024-06-15")
        client = self._client()
        client.generate.side_effect = DocGenError("Rate limited")
        with pytest.raises(FixError, match="Rate limited"):
            generate_docs_for_file(git_repo / "calc.plsql", git_repo, PrasastiConfig(), client)


class TestHistory:
    def test_build_entries(self):
        entries = build_history_entries(
            [
                LogEntry("h1", "240615", "Erwin Tester", "SC-42: Added credit check"),
                LogEntry("h2", "240620", "Kalle", "tidy up"),
            ]
        )
        assert [(e.date, e.sign, e.id, e.desc) for e in entries] == [
            ("240615", "ERWIN", "SC-42", "Added credit check"),
            ("240620", "KALLE", "MOD-240620", "tidy up"),
        ]

    def test_patch_history(self, git_repo, commit_file):
        commit_file("calc.plsql", BASE, "init", date="2024-01-01")
        commit_file("calc.plsql", BASE.replace("v_total := 1;", "v_total := 5;"), "SC-2 Raise total", date="2024-06-15")
        path = git_repo / "calc.plsql"

        assert patch_history_for_file(path, git_repo, PrasastiConfig(), sign="AI") == FixOutcome.APPLIED
        lines = path.read_text(encoding="utf-8").split("\n")
        assert lines[3] == "--  240615  AI      [SC-2] Raise total"
        assert lines[4] == "--  240101  ERW     [SC-1] Initial version"
        assert lines[5] == SEPARATOR

        assert patch_history_for_file(path, git_repo, PrasastiConfig(), sign="AI") == FixOutcome.NO_CHANGES
