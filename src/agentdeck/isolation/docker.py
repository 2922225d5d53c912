"""Docker backend: one long-lived, hardened container per agent.

Definition file (YAML or JSON)::

    name: Node sandbox
    image: node:20-bookworm
    memory: 4g
    cpus: "2"
    pids_limit: 100
    network: bridge          # or none
    workdir: /workspace
    mounts:
      - {source: ~/.npm, target: /home/node/.npm, readonly: true}
    environment:
      NODE_ENV: development

The worktree is mounted at ``workdir`` and the repository's git directory is
mounted at its host path so git keeps working inside the container.
Credential locations (``~/.ssh``, ``~/.aws``, ...) are refused as mounts.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentdeck.errors import CommandError, IsolationError
from agentdeck.isolation.base import (
    LABEL_AGENT_ID,
    LABEL_MANAGED,
    LABEL_WORKTREE,
    DisplayInfo,
    RuntimeStats,
    is_blocked_path,
    load_definition,
)
from agentdeck.runner.command import CommandRunner

log = logging.getLogger(__name__)

DEFAULT_IMAGE = "ghcr.io/agentdeck/sandbox:latest"

_SIZE_RE = re.compile(r"([\d.]+)\s*([KMGT]?i?B)", re.IGNORECASE)
_UNIT_MB = {
    "b": 1 / (1024 * 1024),
    "kb": 1 / 1000,
    "kib": 1 / 1024,
    "mb": 1.0,
    "mib": 1.0,
    "gb": 1000.0,
    "gib": 1024.0,
    "tb": 1_000_000.0,
    "tib": 1024.0 * 1024.0,
}


@dataclass(slots=True)
class DockerMount:
    source: str
    target: str
    readonly: bool = False


@dataclass(slots=True)
class DockerDefinition:
    """Options for a docker-isolated agent."""

    name: str = "Docker"
    description: str = ""
    image: str = DEFAULT_IMAGE
    memory: str = "4g"
    cpus: str = "2"
    pids_limit: int = 100
    network: str = "bridge"
    workdir: str = "/workspace"
    tmp_size: str = "100m"
    user: str | None = None
    command: list[str] = field(default_factory=lambda: ["sleep", "infinity"])
    mounts: list[DockerMount] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DockerDefinition:
        mounts = []
        for raw in data.get("mounts") or []:
            if not isinstance(raw, dict) or "source" not in raw or "target" not in raw:
                raise IsolationError(f"Invalid mount entry: {raw!r}", backend="docker")
            mounts.append(
                DockerMount(
                    source=str(raw["source"]),
                    target=str(raw["target"]),
                    readonly=bool(raw.get("readonly", False)),
                )
            )
        command = data.get("command")
        defaults = cls()
        return cls(
            name=str(data.get("name") or defaults.name),
            description=str(data.get("description", "")),
            image=str(data.get("image") or DEFAULT_IMAGE),
            memory=str(data.get("memory", defaults.memory)),
            cpus=str(data.get("cpus", defaults.cpus)),
            pids_limit=int(data.get("pids_limit", defaults.pids_limit)),
            network=str(data.get("network", defaults.network)),
            workdir=str(data.get("workdir", defaults.workdir)),
            tmp_size=str(data.get("tmp_size", defaults.tmp_size)),
            user=str(data["user"]) if data.get("user") else None,
            command=[str(c) for c in command] if isinstance(command, list) else defaults.command,
            mounts=mounts,
            environment={str(k): str(v) for k, v in (data.get("environment") or {}).items()},
        )


def parse_memory_mb(text: str) -> float:
    """``"12.5MiB / 3.8GiB"`` -> 12.5"""
    match = _SIZE_RE.search(text)
    if not match:
        return 0.0
    value, unit = match.groups()
    return float(value) * _UNIT_MB.get(unit.lower(), 1.0)


def git_common_dir(worktree: Path) -> Path | None:
    """Host git directory a linked worktree points into, if any."""
    marker = worktree / ".git"
    if not marker.is_file():
        return None
    try:
        text = marker.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not text.startswith("gitdir:"):
        return None
    gitdir = Path(text.split(":", 1)[1].strip())
    if not gitdir.is_absolute():
        gitdir = (worktree / gitdir).resolve()
    # <repo>/.git/worktrees/<name> -> <repo>/.git
    return gitdir.parent.parent


class DockerAdapter:
    type = "docker"

    def __init__(self, runner: CommandRunner, *, timeout: float = 120.0) -> None:
        self._runner = runner
        self._timeout = timeout

    async def is_available(self) -> bool:
        try:
            result = await self._runner.run(
                ["docker", "info", "--format", "{{.ServerVersion}}"], timeout=10, check=False
            )
        except CommandError:
            return False
        return result.ok

    def load(self, definition_path: str | None) -> DockerDefinition:
        if not definition_path:
            return DockerDefinition()
        return DockerDefinition.from_dict(load_definition(definition_path, self.type))

    async def get_display_info(self, definition_path: str | None) -> DisplayInfo:
        definition = self.load(definition_path)
        return DisplayInfo(
            name=definition.name,
            description=definition.description or definition.image,
            memory_limit=definition.memory,
            cpu_limit=definition.cpus,
        )

    def build_run_args(self, definition: DockerDefinition, worktree_path: str, agent_id: int) -> list[str]:
        worktree = Path(worktree_path)
        args = [
            "docker", "run", "-d",
            "--label", LABEL_MANAGED,
            "--label", f"{LABEL_AGENT_ID}={agent_id}",
            "--label", f"{LABEL_WORKTREE}={worktree}",
            "--cap-drop=ALL",
            "--security-opt=no-new-privileges",
            f"--pids-limit={definition.pids_limit}",
            f"--memory={definition.memory}",
            f"--cpus={definition.cpus}",
            "--tmpfs", f"/tmp:rw,nosuid,size={definition.tmp_size}",
            f"--network={definition.network}",
            "-w", definition.workdir,
            "-v", f"{worktree}:{definition.workdir}",
        ]

        common = git_common_dir(worktree)
        if common is not None:
            args.extend(["-v", f"{common}:{common}"])

        for mount in definition.mounts:
            if is_blocked_path(mount.source):
                raise IsolationError(f"Refusing to mount credential path {mount.source}", backend=self.type)
            source = Path(mount.source).expanduser()
            spec = f"{source}:{mount.target}"
            if mount.readonly:
                spec += ":ro"
            args.extend(["-v", spec])

        if definition.user:
            args.extend(["--user", definition.user])
        for key, value in definition.environment.items():
            args.extend(["-e", f"{key}={value}"])

        args.append(definition.image)
        args.extend(definition.command)
        return args

    async def create(self, definition_path: str | None, worktree_path: str, agent_id: int) -> str:
        definition = self.load(definition_path)
        args = self.build_run_args(definition, worktree_path, agent_id)
        try:
            result = await self._runner.run(args, timeout=self._timeout)
        except CommandError as exc:
            raise IsolationError(f"docker run failed: {exc}", backend=self.type) from exc
        container_id = result.stdout.strip()
        if not container_id:
            raise IsolationError("docker run returned no container id", backend=self.type)
        log.info("Started container %s for agent %d", container_id[:12], agent_id)
        return container_id

    async def exec(self, runtime_id: str, command: str) -> str:
        try:
            result = await self._runner.run(
                ["docker", "exec", runtime_id, "/bin/sh", "-c", command], timeout=self._timeout
            )
        except CommandError as exc:
            raise IsolationError(f"docker exec failed: {exc}", backend=self.type) from exc
        return result.stdout

    async def destroy(self, runtime_id: str) -> None:
        try:
            result = await self._runner.run(["docker", "rm", "-f", runtime_id], timeout=30, check=False)
        except CommandError as exc:
            raise IsolationError(f"docker rm failed: {exc}", backend=self.type) from exc
        if not result.ok and "no such container" not in result.stderr.lower():
            raise IsolationError(f"docker rm failed: {result.stderr.strip()}", backend=self.type)

    async def get_stats(self, runtime_id: str) -> RuntimeStats | None:
        try:
            result = await self._runner.run(
                ["docker", "stats", "--no-stream", "--format", "{{json .}}", runtime_id],
                timeout=15,
                check=False,
            )
        except CommandError:
            return None
        if not result.ok:
            return None
        try:
            data = json.loads(result.stdout.strip().splitlines()[0])
        except (IndexError, json.JSONDecodeError):
            return None
        cpu = str(data.get("CPUPerc", "0")).rstrip("%") or "0"
        try:
            cpu_percent = float(cpu)
        except ValueError:
            cpu_percent = 0.0
        return RuntimeStats(memory_mb=parse_memory_mb(str(data.get("MemUsage", ""))), cpu_percent=cpu_percent)
