"""Tests for the agent data model and JSON IO helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentdeck.protocol.io import read_json, write_json_atomic
from agentdeck.protocol.models import Agent, DiffStats, PersistedAgent, RuntimeHandle


def _record(**overrides: object) -> dict[str, object]:
    data: dict[str, object] = {
        "id": 1,
        "name": "alpha",
        "session_id": "sid-1",
        "branch": "claude-alpha",
        "worktree_path": "/repo/.worktrees/claude-alpha",
        "repo_path": "/repo",
    }
    data.update(overrides)
    return data


class TestPersistedAgent:
    def test_from_dict_defaults(self) -> None:
        record = PersistedAgent.from_dict(_record())
        assert record.isolation_config == "none"
        assert record.task_file is None

    def test_round_trip(self) -> None:
        record = PersistedAgent.from_dict(_record(task_file="t.md", isolation_config="docker"))
        assert PersistedAgent.from_dict(record.to_dict()) == record

    @pytest.mark.parametrize(
        "data",
        [
            [],
            _record(id=0),
            _record(id=True),
            _record(id="1"),
            _record(name=""),
            _record(branch=None),
            {k: v for k, v in _record().items() if k != "session_id"},
        ],
    )
    def test_invalid(self, data: object) -> None:
        with pytest.raises(ValueError):
            PersistedAgent.from_dict(data)


class TestAgent:
    def test_defaults(self) -> None:
        agent = Agent.from_persisted(PersistedAgent.from_dict(_record()))
        assert agent.status == "idle"
        assert agent.pending_approval is None
        assert agent.diff_stats == DiffStats()
        assert agent.todos == []
        assert agent.runtime is None

    def test_to_persisted_drops_volatile_state(self) -> None:
        agent = Agent.from_persisted(PersistedAgent.from_dict(_record()))
        agent.status = "working"
        agent.pending_approval = "Bash: ls"
        assert agent.to_persisted() == PersistedAgent.from_dict(_record())

    def test_diff_stats_value_equality(self) -> None:
        assert DiffStats(1, 2, 3) == DiffStats(insertions=1, deletions=2, files_changed=3)


class TestRuntimeHandle:
    def test_round_trip(self) -> None:
        handle = RuntimeHandle(runtime_id="abc", backend="docker", agent_id=2, worktree_path="/wt")
        restored = RuntimeHandle.from_dict(handle.to_dict())
        assert restored == handle
        assert restored.state == "running"


class TestJsonIO:
    def test_missing_and_corrupt(self, tmp_path: Path) -> None:
        assert read_json(tmp_path / "none.json", {"d": 1}) == {"d": 1}
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        assert read_json(bad, None) is None

    def test_atomic_write_creates_parents(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "doc.json"
        write_json_atomic(target, {"x": [1, 2]})
        assert read_json(target, None) == {"x": [1, 2]}
        assert [p.name for p in target.parent.iterdir()] == ["doc.json"]

    def test_full_rewrite(self, tmp_path: Path) -> None:
        target = tmp_path / "doc.json"
        write_json_atomic(target, {"a": 1, "b": 2})
        write_json_atomic(target, {"a": 3})
        assert read_json(target, None) == {"a": 3}

    def test_failed_write_keeps_old_document(self, tmp_path: Path) -> None:
        target = tmp_path / "doc.json"
        write_json_atomic(target, {"a": 1})
        with pytest.raises(TypeError):
            write_json_atomic(target, {"a": object()})
        assert read_json(target, None) == {"a": 1}
        assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]
