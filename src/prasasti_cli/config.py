"""Configuration loading for the Prasasti CLI.

Settings come from ``.prasasti.yaml`` at the repository root, then from
environment variables, then from explicit overrides (CLI flags).  A missing
file is fine; defaults apply.

Example ``.prasasti.yaml``::

    ai:
      model: gemini-2.5-flash
    network:
      max_retries: 3
    files:
      include_markers: ["**/*.plsql"]
      git_skip_keywords: ["merge"]
    markers:
      rules:
        - file_pattern: "**/*.plsql"
          start_regex: "^-{60,}"
"""

from __future__ import annotations

import fnmatch
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

CONFIG_FILENAME = ".prasasti.yaml"
API_KEY_ENV = "GEMINI_API_KEY"
MODEL_ENV = "PRASASTI_MODEL"

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_PATTERNS = ("**/*.plsql", "**/*.plsvc")

FULL_SCAN = "Full Scan"
INCREMENTAL_SCAN = "Incremental"
SCAN_MODES = frozenset({FULL_SCAN, INCREMENTAL_SCAN})


class ConfigError(ValueError):
    """Raised when the configuration file or a rule is invalid."""


@dataclass
class MarkerRule:
    """Which files get regenerated markers and where their header ends.

    Attributes:
        file_pattern: Glob matched against the repository-relative path
        start_regex: Pattern of the last header line (None: no header)
        skip_keywords: Lines containing one of these are never marked
        message: Human-readable rule description
    """

    file_pattern: str
    start_regex: str | None = None
    skip_keywords: list[str] = field(default_factory=list)
    message: str | None = None

    def compiled_start(self) -> re.Pattern[str] | None:
        if not self.start_regex:
            return None
        try:
            return re.compile(self.start_regex, re.IGNORECASE)
        except re.error as exc:
            raise ConfigError(f"Invalid regex in rule '{self.file_pattern}': {self.start_regex} ({exc})") from exc

    def matches(self, relative_path: str) -> bool:
        return matches_glob(relative_path, self.file_pattern)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarkerRule":
        pattern = data.get("file_pattern") or data.get("filePattern")
        if not pattern:
            raise ConfigError("markers.rules entries need a 'file_pattern'")
        rule = cls(
            file_pattern=str(pattern),
            start_regex=data.get("start_regex") or data.get("startRegex"),
            skip_keywords=[str(k) for k in (data.get("skip_keywords") or data.get("skipKeywords") or [])],
            message=data.get("message"),
        )
        rule.compiled_start()
        return rule


@dataclass
class PrasastiConfig:
    """Resolved settings for one workspace."""

    api_key: str | None = None
    model: str = DEFAULT_MODEL
    max_retries: int = 3
    include_markers: list[str] = field(default_factory=lambda: list(DEFAULT_PATTERNS))
    include_docs: list[str] = field(default_factory=lambda: list(DEFAULT_PATTERNS))
    skip_keywords: list[str] = field(default_factory=list)
    scan_mode: str = FULL_SCAN
    auto_apply: bool = True
    rules: list[MarkerRule] = field(default_factory=list)
    tolerance: int = 2
    default_sign: str = "AI"
    scan_concurrency: int = 5

    @property
    def incremental(self) -> bool:
        return self.scan_mode == INCREMENTAL_SCAN

    def find_rule(self, relative_path: str) -> MarkerRule | None:
        """First rule whose glob matches ``relative_path``."""
        for rule in self.rules:
            if rule.matches(relative_path):
                return rule
        return None


# ============================================================================
# Glob matching
# ============================================================================


def _expand_braces(pattern: str) -> list[str]:
    match = re.search(r"\{([^{}]*)\}", pattern)
    if not match:
        return [pattern]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(_expand_braces(pattern[: match.start()] + option + pattern[match.end() :]))
    return expanded


def expand_patterns(patterns: list[str]) -> list[str]:
    """Expand ``{a,b}`` alternatives, keeping order and dropping duplicates."""
    result: list[str] = []
    for pattern in patterns:
        for item in _expand_braces(pattern):
            if item not in result:
                result.append(item)
    return result


def matches_glob(relative_path: str, pattern: str) -> bool:
    """Minimatch-style match where a leading ``**/`` also matches top-level files."""
    path = relative_path.replace("\\", "/")
    for candidate in _expand_braces(pattern):
        if fnmatch.fnmatchcase(path, candidate):
            return True
        if candidate.startswith("**/") and fnmatch.fnmatchcase(path, candidate[3:]):
            return True
    return False


# ============================================================================
# Loading
# ============================================================================


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list of strings")
    return [str(v) for v in value]


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file; a missing file yields an empty mapping."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at top level")
    return data


def config_from_dict(data: Mapping[str, Any]) -> PrasastiConfig:
    """Build a :class:`PrasastiConfig` from the parsed YAML structure."""
    ai = _section(data, "ai")
    network = _section(data, "network")
    files = _section(data, "files")
    behavior = _section(data, "behavior")
    markers = _section(data, "markers")
    scan = _section(data, "scan")

    config = PrasastiConfig()
    config.api_key = ai.get("api_key") or None
    config.model = str(ai.get("model") or DEFAULT_MODEL)
    config.max_retries = int(network.get("max_retries", config.max_retries))
    if "include_markers" in files:
        config.include_markers = _string_list(files["include_markers"], "files.include_markers")
    if "include_docs" in files:
        config.include_docs = _string_list(files["include_docs"], "files.include_docs")
    config.skip_keywords = _string_list(files.get("git_skip_keywords"), "files.git_skip_keywords")

    scan_mode = str(files.get("scan_mode", FULL_SCAN))
    if scan_mode not in SCAN_MODES:
        raise ConfigError(f"files.scan_mode must be one of {sorted(SCAN_MODES)}, got '{scan_mode}'")
    config.scan_mode = scan_mode

    config.auto_apply = bool(behavior.get("auto_apply", True))
    config.rules = [MarkerRule.from_dict(rule) for rule in markers.get("rules") or []]
    config.tolerance = int(markers.get("tolerance", config.tolerance))
    config.default_sign = str(markers.get("default_sign", config.default_sign))
    config.scan_concurrency = max(1, int(scan.get("concurrency", config.scan_concurrency)))

    if config.max_retries < 1:
        raise ConfigError("network.max_retries must be at least 1")
    if config.tolerance < 0:
        raise ConfigError("markers.tolerance must not be negative")
    return config


def load_config(repo_root: Path, overrides: Mapping[str, Any] | None = None) -> PrasastiConfig:
    """Load ``.prasasti.yaml`` from ``repo_root`` and apply env/overrides."""
    config = config_from_dict(read_config_file(repo_root / CONFIG_FILENAME))

    env_key = os.environ.get(API_KEY_ENV)
    if env_key:
        config.api_key = env_key
    env_model = os.environ.get(MODEL_ENV)
    if env_model:
        config.model = env_model

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if not hasattr(config, key):
            raise ConfigError(f"Unknown setting: {key}")
        setattr(config, key, value)
    return config


__all__ = [
    "CONFIG_FILENAME",
    "FULL_SCAN",
    "INCREMENTAL_SCAN",
    "ConfigError",
    "MarkerRule",
    "PrasastiConfig",
    "config_from_dict",
    "expand_patterns",
    "load_config",
    "matches_glob",
    "read_config_file",
]
