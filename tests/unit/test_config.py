"""Unit tests for configuration loading and glob matching."""

from __future__ import annotations

import pytest

from prasasti_cli.config import (
    CONFIG_FILENAME,
    INCREMENTAL_SCAN,
    ConfigError,
    MarkerRule,
    PrasastiConfig,
    config_from_dict,
    expand_patterns,
    load_config,
    matches_glob,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("PRASASTI_MODEL", raising=False)


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path)
    assert config == PrasastiConfig()
    assert config.tolerance == 2
    assert config.default_sign == "AI"
    assert not config.incremental


def test_yaml_file_loaded(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text(
        "\n".join(
            [
                "ai:",
                "  model: gemini-2.0-pro",
                "network:",
                "  max_retries: 5",
                "files:",
                "  include_markers: ['src/**/*.plsql']",
                "  git_skip_keywords: [merge, 'ci:']",
                "  scan_mode: Incremental",
                "behavior:",
                "  auto_apply: false",
                "markers:",
                "  tolerance: 3",
                "  rules:",
                "    - file_pattern: '**/*.plsql'",
                "      start_regex: '^-{60,}'",
                "      skip_keywords: ['$SEARCH']",
                "scan:",
                "  concurrency: 8",
            ]
        ),
        encoding="utf-8",
    )
    config = load_config(tmp_path)
    assert config.model == "gemini-2.0-pro"
    assert config.max_retries == 5
    assert config.include_markers == ["src/**/*.plsql"]
    assert config.skip_keywords == ["merge", "ci:"]
    assert config.scan_mode == INCREMENTAL_SCAN
    assert config.incremental
    assert config.auto_apply is False
    assert config.tolerance == 3
    assert config.scan_concurrency == 8
    assert config.rules[0].skip_keywords == ["$SEARCH"]


def test_env_overrides_file(tmp_path, monkeypatch):
    (tmp_path / CONFIG_FILENAME).write_text("ai:\n  api_key: from-file\n", encoding="utf-8")
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    monkeypatch.setenv("PRASASTI_MODEL", "gemini-env")
    config = load_config(tmp_path)
    assert config.api_key == "from-env"
    assert config.model == "gemini-env"


def test_explicit_overrides(tmp_path):
    config = load_config(tmp_path, {"auto_apply": False, "model": None})
    assert config.auto_apply is False
    assert config.model == "gemini-2.5-flash"


def test_unknown_override_rejected(tmp_path):
    with pytest.raises(ConfigError, match="Unknown setting"):
        load_config(tmp_path, {"colour": "blue"})


@pytest.mark.parametrize(
    "text, message",
    [
        ("ai: [1, 2]", "'ai' must be a mapping"),
        ("files:\n  scan_mode: Max Scan", "scan_mode"),
        ("network:\n  max_retries: 0", "max_retries"),
        ("markers:\n  rules:\n    - start_regex: x", "file_pattern"),
        ("markers:\n  rules:\n    - file_pattern: '*.sql'\n      start_regex: '(['", "Invalid regex"),
        ("- just\n- a list", "mapping at top level"),
        ("ai: {model: [", "Invalid YAML"),
    ],
)
def test_invalid_config(tmp_path, text, message):
    (tmp_path / CONFIG_FILENAME).write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match=message):
        load_config(tmp_path)


def test_camel_case_rule_keys():
    rule = MarkerRule.from_dict({"filePattern": "*.plsql", "startRegex": "^--", "skipKeywords": ["X"]})
    assert rule.file_pattern == "*.plsql"
    assert rule.compiled_start() is not None
    assert rule.skip_keywords == ["X"]


def test_find_rule_first_match_wins():
    config = config_from_dict(
        {
            "markers": {
                "rules": [
                    {"file_pattern": "legacy/**/*.plsql", "message": "legacy"},
                    {"file_pattern": "**/*.plsql", "message": "default"},
                ]
            }
        }
    )
    assert config.find_rule("legacy/a/b.plsql").message == "legacy"
    assert config.find_rule("src/b.plsql").message == "default"
    assert config.find_rule("src/b.sql") is None


@pytest.mark.parametrize(
    "path, pattern, expected",
    [
        ("a.plsql", "**/*.plsql", True),
        ("src/db/a.plsql", "**/*.plsql", True),
        ("src/a.plsvc", "**/*.{plsql,plsvc}", True),
        ("src/a.sql", "**/*.{plsql,plsvc}", False),
        ("src\\a.plsql", "src/*.plsql", True),
    ],
)
def test_matches_glob(path, pattern, expected):
    assert matches_glob(path, pattern) is expected


def test_expand_patterns_dedupes():
    assert expand_patterns(["**/*.{plsql,plsvc}", "**/*.plsql"]) == ["**/*.plsql", "**/*.plsvc"]
