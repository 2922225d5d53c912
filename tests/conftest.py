"""Global test fixtures for agentdeck."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from agentdeck.config.schema import DeckConfig, GitConfig, WatcherConfig
from agentdeck.git.operations import GitOperations
from agentdeck.runner.command import CommandRunner
from agentdeck.workspace.worktree import WorktreeManager


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A throwaway repository on ``main`` with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q", "-b", "main")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test")
    _git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# test repo\n")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def deck_config() -> DeckConfig:
    """Defaults with fast retries so failure paths don't slow the suite."""
    return DeckConfig(
        git=GitConfig(retries=1, min_wait=0.01, max_wait=0.02),
        watcher=WatcherConfig(polling_only=True),
    )


@pytest.fixture
def runner() -> CommandRunner:
    return CommandRunner()


@pytest.fixture
def git_ops(runner: CommandRunner, deck_config: DeckConfig) -> GitOperations:
    return GitOperations(runner, deck_config.git)


@pytest.fixture
def worktrees(git_ops: GitOperations, deck_config: DeckConfig) -> WorktreeManager:
    return WorktreeManager(git_ops, deck_config)

