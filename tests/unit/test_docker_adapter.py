"""Tests for the Docker isolation backend (docker CLI mocked)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentdeck.errors import CommandError, IsolationError
from agentdeck.isolation.base import LABEL_MANAGED
from agentdeck.isolation.docker import (
    DEFAULT_IMAGE,
    DockerAdapter,
    DockerDefinition,
    git_common_dir,
    parse_memory_mb,
)
from agentdeck.runner.command import CommandResult, CommandRunner


def _result(returncode: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(args=["docker"], returncode=returncode, stdout=stdout, stderr=stderr)


def _adapter(*results: object) -> tuple[DockerAdapter, MagicMock]:
    runner = MagicMock(spec=CommandRunner)
    runner.run = AsyncMock(side_effect=list(results))
    return DockerAdapter(runner), runner


def _definition(tmp_path: Path, text: str) -> str:
    path = tmp_path / "docker.yaml"
    path.write_text(text)
    return str(path)


# ---------------------------------------------------------------------------
# Definition parsing
# ---------------------------------------------------------------------------


class TestDefinition:
    def test_defaults(self) -> None:
        definition = DockerDefinition.from_dict({})
        assert definition.image == DEFAULT_IMAGE
        assert definition.memory == "4g"
        assert definition.cpus == "2"
        assert definition.pids_limit == 100
        assert definition.command == ["sleep", "infinity"]

    def test_full(self) -> None:
        definition = DockerDefinition.from_dict(
            {
                "name": "Node",
                "image": "node:20",
                "memory": "2g",
                "cpus": 1,
                "network": "none",
                "mounts": [{"source": "~/.npm", "target": "/home/node/.npm", "readonly": True}],
                "environment": {"NODE_ENV": "dev", "N": 1},
            }
        )
        assert definition.name == "Node"
        assert definition.cpus == "1"
        assert definition.mounts[0].readonly
        assert definition.environment == {"NODE_ENV": "dev", "N": "1"}

    def test_bad_mount(self) -> None:
        with pytest.raises(IsolationError):
            DockerDefinition.from_dict({"mounts": [{"source": "/x"}]})


class TestHelpers:
    def test_parse_memory(self) -> None:
        assert parse_memory_mb("12.5MiB / 3.8GiB") == 12.5
        assert parse_memory_mb("1.5GiB / 4GiB") == 1536.0
        assert parse_memory_mb("512KiB / 1GiB") == 0.5
        assert parse_memory_mb("--") == 0.0

    def test_git_common_dir(self, tmp_path: Path) -> None:
        worktree = tmp_path / "wt"
        worktree.mkdir()
        assert git_common_dir(worktree) is None
        (worktree / ".git").write_text(f"gitdir: {tmp_path}/repo/.git/worktrees/claude-alpha\n")
        assert git_common_dir(worktree) == tmp_path / "repo" / ".git"


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class TestAdapter:
    @pytest.mark.asyncio
    async def test_is_available(self) -> None:
        adapter, _ = _adapter(_result(stdout="24.0.7"))
        assert await adapter.is_available()
        adapter, _ = _adapter(_result(returncode=1, stderr="Cannot connect"))
        assert not await adapter.is_available()
        adapter, _ = _adapter(CommandError("no docker", args=["docker"]))
        assert not await adapter.is_available()

    @pytest.mark.asyncio
    async def test_create_applies_hardening_and_labels(self, tmp_path: Path) -> None:
        worktree = tmp_path / "wt"
        worktree.mkdir()
        definition = _definition(tmp_path, "image: node:20\nenvironment:\n  FOO: bar\n")
        adapter, runner = _adapter(_result(stdout="abc123def456\n"))

        runtime_id = await adapter.create(definition, str(worktree), 3)

        assert runtime_id == "abc123def456"
        args = runner.run.await_args.args[0]
        assert args[:3] == ["docker", "run", "-d"]
        assert LABEL_MANAGED in args
        assert "agentdeck.agent-id=3" in args
        assert "--cap-drop=ALL" in args
        assert "--security-opt=no-new-privileges" in args
        assert "--pids-limit=100" in args
        assert "--memory=4g" in args
        assert f"{worktree}:/workspace" in args
        assert "FOO=bar" in args
        assert args[-3:] == ["node:20", "sleep", "infinity"]

    @pytest.mark.asyncio
    async def test_create_refuses_credential_mounts(self, tmp_path: Path) -> None:
        definition = _definition(tmp_path, "mounts:\n  - {source: ~/.ssh, target: /root/.ssh}\n")
        adapter, runner = _adapter()
        with pytest.raises(IsolationError, match="credential"):
            await adapter.create(definition, str(tmp_path), 1)
        runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_failure(self, tmp_path: Path) -> None:
        adapter, _ = _adapter(CommandError("pull access denied", args=["docker"], returncode=125))
        with pytest.raises(IsolationError) as info:
            await adapter.create(None, str(tmp_path), 1)
        assert info.value.backend == "docker"

    @pytest.mark.asyncio
    async def test_exec(self) -> None:
        adapter, runner = _adapter(_result(stdout="hi\n"))
        assert await adapter.exec("cid", "echo hi") == "hi\n"
        assert runner.run.await_args.args[0] == ["docker", "exec", "cid", "/bin/sh", "-c", "echo hi"]

    @pytest.mark.asyncio
    async def test_destroy_tolerates_missing(self) -> None:
        adapter, _ = _adapter(_result(returncode=1, stderr="Error: No such container: cid"))
        await adapter.destroy("cid")

    @pytest.mark.asyncio
    async def test_destroy_failure(self) -> None:
        adapter, _ = _adapter(_result(returncode=1, stderr="permission denied"))
        with pytest.raises(IsolationError):
            await adapter.destroy("cid")

    @pytest.mark.asyncio
    async def test_stats(self) -> None:
        line = '{"CPUPerc":"12.34%","MemUsage":"256MiB / 4GiB","Name":"x"}\n'
        adapter, _ = _adapter(_result(stdout=line))
        stats = await adapter.get_stats("cid")
        assert stats is not None
        assert stats.memory_mb == 256.0
        assert stats.cpu_percent == 12.34

    @pytest.mark.asyncio
    async def test_stats_unavailable(self) -> None:
        adapter, _ = _adapter(_result(returncode=1))
        assert await adapter.get_stats("cid") is None
        adapter, _ = _adapter(_result(stdout="garbage"))
        assert await adapter.get_stats("cid") is None

    @pytest.mark.asyncio
    async def test_display_info(self, tmp_path: Path) -> None:
        definition = _definition(tmp_path, "name: Node sandbox\nimage: node:20\nmemory: 8g\ncpus: 4\n")
        adapter, _ = _adapter()
        info = await adapter.get_display_info(definition)
        assert info.name == "Node sandbox"
        assert info.description == "node:20"
        assert info.memory_limit == "8g"
        assert info.cpu_limit == "4"
