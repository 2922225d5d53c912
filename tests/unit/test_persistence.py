"""Tests for agent persistence and restoration."""

from __future__ import annotations

import shutil
from pathlib import Path

from agentdeck.agents.persistence import AgentPersistence
from agentdeck.config.schema import DeckConfig
from agentdeck.protocol.models import Agent, PersistedAgent
from agentdeck.storage import AGENTS_KEY, MemoryStorage
from agentdeck.workspace.worktree import WorktreeManager


def _agent(repo: Path, agent_id: int, name: str) -> Agent:
    worktree = repo / ".worktrees" / f"claude-{name}"
    worktree.mkdir(parents=True, exist_ok=True)
    return Agent(
        id=agent_id,
        name=name,
        session_id=f"sid-{agent_id}",
        branch=f"claude-{name}",
        worktree_path=str(worktree),
        repo_path=str(repo),
    )


def _persistence(storage: MemoryStorage | None = None) -> tuple[AgentPersistence, WorktreeManager, MemoryStorage]:
    storage = storage or MemoryStorage()
    # Metadata and scanning never touch git
    worktrees = WorktreeManager(git=None, config=DeckConfig())  # type: ignore[arg-type]
    return AgentPersistence(worktrees, storage), worktrees, storage


class TestSave:
    def test_writes_metadata_and_central(self, tmp_path: Path) -> None:
        persistence, worktrees, storage = _persistence()
        agent = _agent(tmp_path, 1, "alpha")
        persistence.save(agent)

        assert worktrees.load_metadata(agent.worktree_path) == agent.to_persisted()
        assert storage.get(AGENTS_KEY) == [agent.to_persisted().to_dict()]

    def test_upsert_by_id_sorted(self, tmp_path: Path) -> None:
        persistence, _, _ = _persistence()
        persistence.save(_agent(tmp_path, 2, "bravo"))
        alpha = _agent(tmp_path, 1, "alpha")
        persistence.save(alpha)
        alpha.isolation_config = "docker"
        persistence.save(alpha)

        records = persistence.load_central()
        assert [r.id for r in records] == [1, 2]
        assert records[0].isolation_config == "docker"

    def test_remove(self, tmp_path: Path) -> None:
        persistence, _, _ = _persistence()
        persistence.save(_agent(tmp_path, 1, "alpha"))
        persistence.remove(1)
        persistence.remove(1)
        assert persistence.load_central() == []

    def test_invalid_central_entries_dropped(self) -> None:
        persistence, _, _ = _persistence(MemoryStorage({AGENTS_KEY: [{"id": "x"}, "junk"]}))
        assert persistence.load_central() == []
        persistence, _, _ = _persistence(MemoryStorage({AGENTS_KEY: {"not": "a list"}}))
        assert persistence.load_central() == []


class TestRestore:
    def test_restore_reports_missing_and_rewrites(self, tmp_path: Path) -> None:
        persistence, _, storage = _persistence()
        alpha = _agent(tmp_path, 1, "alpha")
        bravo = _agent(tmp_path, 2, "bravo")
        persistence.save(alpha)
        persistence.save(bravo)
        shutil.rmtree(bravo.worktree_path)

        result = persistence.restore_agents(tmp_path)

        assert [a.name for a in result.agents] == ["alpha"]
        assert result.agents[0].status == "idle"
        assert [r.name for r in result.missing] == ["bravo"]
        assert [PersistedAgent.from_dict(r).name for r in storage.get(AGENTS_KEY)] == ["alpha"]

    def test_restore_from_metadata_without_central(self, tmp_path: Path) -> None:
        writer, _, _ = _persistence()
        writer.save(_agent(tmp_path, 3, "charlie"))

        fresh, _, storage = _persistence()
        result = fresh.restore_agents(tmp_path)

        assert [(a.id, a.name) for a in result.agents] == [(3, "charlie")]
        assert result.missing == []
        assert len(storage.get(AGENTS_KEY)) == 1
