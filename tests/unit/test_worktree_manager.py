"""Tests for agentdeck.workspace.worktree against a real repository."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from agentdeck.config.schema import DeckConfig
from agentdeck.errors import GitError
from agentdeck.git.operations import GitOperations
from agentdeck.protocol.models import Agent, PersistedAgent
from agentdeck.workspace.worktree import WorktreeManager


def _branches(repo: Path) -> set[str]:
    out = subprocess.run(
        ["git", "branch", "--format=%(refname:short)"],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    ).stdout
    return {line.strip() for line in out.splitlines() if line.strip()}


def _record(repo: Path, worktree: Path, *, agent_id: int = 1, name: str = "alpha") -> PersistedAgent:
    return PersistedAgent(
        id=agent_id,
        name=name,
        session_id=f"session-{agent_id}",
        branch=f"claude-{name}",
        worktree_path=str(worktree),
        repo_path=str(repo),
    )


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


class TestPaths:
    def test_worktree_path_default(self, worktrees: WorktreeManager) -> None:
        assert worktrees.worktree_path("/repo", "alpha") == Path("/repo/.worktrees/claude-alpha")

    def test_worktree_path_custom_directory(self, git_ops: GitOperations) -> None:
        manager = WorktreeManager(git_ops, DeckConfig(worktree_directory="custom-worktrees"))
        assert manager.worktree_path("/repo", "bravo") == Path("/repo/custom-worktrees/claude-bravo")

    def test_worktree_path_absolute_directory(self, git_ops: GitOperations, tmp_path: Path) -> None:
        manager = WorktreeManager(git_ops, DeckConfig(worktree_directory=str(tmp_path / "wt")))
        assert manager.worktree_path("/repo", "echo") == tmp_path / "wt" / "claude-echo"

    def test_metadata_and_status_locations(self, worktrees: WorktreeManager) -> None:
        assert worktrees.metadata_path("/w") == Path("/w/.agentdeck/agent.json")
        assert worktrees.status_dir("/w") == Path("/w/.agentdeck/status")

    def test_exists(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        target = tmp_path / ".worktrees" / "claude-alpha"
        assert not worktrees.exists(target)
        target.mkdir(parents=True)
        assert worktrees.exists(target)

    def test_install_status_hooks_targets_signal_file(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        record = _record(tmp_path, tmp_path / "wt")
        signal = worktrees.signal_file(record)
        assert signal == tmp_path / "wt" / ".agentdeck" / "status" / "session-1"

        settings = worktrees.install_status_hooks(record)

        assert settings == tmp_path / "wt" / ".claude" / "settings.local.json"
        assert str(signal) in settings.read_text()


# ---------------------------------------------------------------------------
# Create / remove
# ---------------------------------------------------------------------------


class TestCreateRemove:
    @pytest.mark.asyncio
    async def test_create_checks_out_new_branch(self, git_repo: Path, worktrees: WorktreeManager) -> None:
        path = worktrees.worktree_path(git_repo, "alpha")
        await worktrees.create(git_repo, path, "claude-alpha", "main")

        assert (path / ".git").exists()
        assert (path / "README.md").exists()
        assert "claude-alpha" in _branches(git_repo)
        head = subprocess.run(
            ["git", "branch", "--show-current"], cwd=path, capture_output=True, text=True, check=True
        ).stdout.strip()
        assert head == "claude-alpha"

    @pytest.mark.asyncio
    async def test_create_twice_surfaces_error(self, git_repo: Path, worktrees: WorktreeManager) -> None:
        path = worktrees.worktree_path(git_repo, "alpha")
        await worktrees.create(git_repo, path, "claude-alpha", "main")
        with pytest.raises(GitError):
            await worktrees.create(git_repo, path, "claude-alpha", "main")

    @pytest.mark.asyncio
    async def test_remove_leaves_no_directory_or_branch(self, git_repo: Path, worktrees: WorktreeManager) -> None:
        path = worktrees.worktree_path(git_repo, "alpha")
        await worktrees.create(git_repo, path, "claude-alpha", "main")
        worktrees.save_metadata(_record(git_repo, path))

        await worktrees.remove(git_repo, path, "claude-alpha")

        assert not path.exists()
        assert "claude-alpha" not in _branches(git_repo)

    @pytest.mark.asyncio
    async def test_remove_is_repeatable(self, git_repo: Path, worktrees: WorktreeManager) -> None:
        path = worktrees.worktree_path(git_repo, "alpha")
        await worktrees.create(git_repo, path, "claude-alpha", "main")
        await worktrees.remove(git_repo, path, "claude-alpha")
        # Second call finds nothing to remove and must not raise
        await worktrees.remove(git_repo, path, "claude-alpha")

    @pytest.mark.asyncio
    async def test_remove_unknown_worktree(self, git_repo: Path, worktrees: WorktreeManager) -> None:
        await worktrees.remove(git_repo, git_repo / ".worktrees" / "nonexistent", "nonexistent")

    @pytest.mark.asyncio
    async def test_move_keeps_branch(self, git_repo: Path, worktrees: WorktreeManager) -> None:
        old = worktrees.worktree_path(git_repo, "alpha")
        new = worktrees.worktree_path(git_repo, "zulu")
        await worktrees.create(git_repo, old, "claude-alpha", "main")
        await worktrees.move(git_repo, old, new)
        assert not old.exists()
        assert (new / "README.md").exists()


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class TestMetadata:
    def test_save_writes_json(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        worktree = tmp_path / ".worktrees" / "claude-alpha"
        worktree.mkdir(parents=True)
        agent = Agent(
            id=1,
            name="alpha",
            session_id="test-session-123",
            branch="claude-alpha",
            worktree_path=str(worktree),
            repo_path=str(tmp_path),
            status="working",
        )
        path = worktrees.save_metadata(agent)

        data = json.loads(path.read_text())
        assert data["id"] == 1
        assert data["name"] == "alpha"
        assert data["session_id"] == "test-session-123"
        assert data["branch"] == "claude-alpha"
        # Volatile fields are not persisted
        assert "status" not in data
        assert (path.parent / ".gitignore").read_text() == "*\n"

    def test_load_round_trip(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        worktree = tmp_path / ".worktrees" / "claude-bravo"
        record = PersistedAgent(
            id=2,
            name="bravo",
            session_id="session-456",
            branch="claude-bravo",
            worktree_path=str(worktree),
            repo_path=str(tmp_path),
            task_file="feature.md",
            isolation_config="docker",
        )
        worktrees.save_metadata(record)
        assert worktrees.load_metadata(worktree) == record

    def test_load_missing(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        assert worktrees.load_metadata(tmp_path / "nowhere") is None

    def test_load_corrupt(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        meta = worktrees.metadata_path(tmp_path)
        meta.parent.mkdir(parents=True)
        meta.write_text("{not json")
        assert worktrees.load_metadata(tmp_path) is None

    def test_load_invalid_fields(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        meta = worktrees.metadata_path(tmp_path)
        meta.parent.mkdir(parents=True)
        meta.write_text(json.dumps({"id": "one", "name": "alpha"}))
        assert worktrees.load_metadata(tmp_path) is None


# ---------------------------------------------------------------------------
# Scan
# ---------------------------------------------------------------------------


class TestScan:
    def test_no_worktree_directory(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        assert worktrees.scan_for_agents(tmp_path) == []

    def test_filters_and_sorts(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        root = tmp_path / ".worktrees"
        for agent_id, name in ((3, "charlie"), (1, "alpha")):
            worktree = root / f"claude-{name}"
            worktree.mkdir(parents=True)
            worktrees.save_metadata(_record(tmp_path, worktree, agent_id=agent_id, name=name))
        # Matching name but no metadata
        (root / "claude-bravo").mkdir()
        # Non-matching directory with metadata
        stray = root / "other-delta"
        stray.mkdir()
        worktrees.save_metadata(_record(tmp_path, stray, agent_id=4, name="delta"))
        # Plain file
        (root / "claude-file").write_text("x")

        found = worktrees.scan_for_agents(tmp_path)
        assert [r.name for r in found] == ["alpha", "charlie"]
        assert [r.id for r in found] == [1, 3]

    @pytest.mark.asyncio
    async def test_recovers_created_agent_without_central_storage(
        self, git_repo: Path, worktrees: WorktreeManager
    ) -> None:
        path = worktrees.worktree_path(git_repo, "alpha")
        await worktrees.create(git_repo, path, "claude-alpha", "main")
        record = _record(git_repo, path)
        worktrees.save_metadata(record)

        assert worktrees.scan_for_agents(git_repo) == [record]
