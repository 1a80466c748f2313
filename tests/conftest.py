from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable

import pytest

AUTHOR_NAME = "Erwin Tester"
AUTHOR_EMAIL = "erwin@example.com"


@pytest.fixture()
def _git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fixed author/committer identity, independent of the host git config."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", AUTHOR_NAME)
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", AUTHOR_EMAIL)
    monkeypatch.setenv("GIT_COMMITTER_NAME", AUTHOR_NAME)
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", AUTHOR_EMAIL)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture()
def git_repo(tmp_path: Path, _git_identity: None) -> Path:
    """Create an empty git repository."""
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(["git", "init", "-q"], cwd=repo, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.name", AUTHOR_NAME], cwd=repo, check=True)
    subprocess.run(["git", "config", "user.email", AUTHOR_EMAIL], cwd=repo, check=True)
    subprocess.run(["git", "config", "commit.gpgsign", "false"], cwd=repo, check=True)
    return repo


@pytest.fixture()
def commit_file(
    git_repo: Path, monkeypatch: pytest.MonkeyPatch
) -> Callable[..., str]:
    """Return a helper that writes a file and commits it.

    ``date`` is an ISO day (``2024-06-15``); the commit is made at noon so
    the ``YYMMDD`` rendering does not depend on the local timezone.
    """

    def _commit(
        relative: str,
        content: str,
        message: str,
        date: str | None = None,
        author: str | None = None,
    ) -> str:
        target = git_repo / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        subprocess.run(["git", "add", relative], cwd=git_repo, check=True)
        env_overrides = {}
        if date:
            env_overrides["GIT_AUTHOR_DATE"] = f"{date}T12:00:00"
            env_overrides["GIT_COMMITTER_DATE"] = f"{date}T12:00:00"
        if author:
            env_overrides["GIT_AUTHOR_NAME"] = author
        with monkeypatch.context() as patch:
            for key, value in env_overrides.items():
                patch.setenv(key, value)
            subprocess.run(
                ["git", "commit", "-q", "-m", message],
                cwd=git_repo,
                check=True,
                capture_output=True,
            )
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=git_repo,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    return _commit
