"""Isolation adapter interface.

Every backend (none, docker, firecracker) implements the same capability set.
Definition-file parsing, resource limits and network setup are private to
each adapter; callers only ever see runtime ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from agentdeck.errors import IsolationError

LABEL_MANAGED = "agentdeck.managed=true"
LABEL_AGENT_ID = "agentdeck.agent-id"
LABEL_WORKTREE = "agentdeck.worktree-path"

# Host paths that must never be mounted into a sandbox
BLOCKED_HOST_PATHS: tuple[str, ...] = (
    "~/.ssh",
    "~/.aws",
    "~/.config/gh",
    "~/.gitconfig",
    "~/.netrc",
    "~/.docker/config.json",
    "~/.kube/config",
)


@dataclass(slots=True)
class DisplayInfo:
    name: str
    description: str = ""
    memory_limit: str = ""
    cpu_limit: str = ""


@dataclass(slots=True)
class RuntimeStats:
    memory_mb: float
    cpu_percent: float = 0.0


@runtime_checkable
class IsolationAdapter(Protocol):
    type: str

    async def is_available(self) -> bool: ...

    async def get_display_info(self, definition_path: str | None) -> DisplayInfo: ...

    async def create(self, definition_path: str | None, worktree_path: str, agent_id: int) -> str: ...

    async def exec(self, runtime_id: str, command: str) -> str: ...

    async def destroy(self, runtime_id: str) -> None: ...

    async def get_stats(self, runtime_id: str) -> RuntimeStats | None: ...


def load_definition(path: str | Path, backend: str) -> dict[str, Any]:
    """Read a YAML or JSON definition file into a dict.

    Raises:
        IsolationError: the file is missing, unparseable or not a mapping.
    """
    target = Path(path).expanduser()
    try:
        text = target.read_text(encoding="utf-8")
    except OSError as exc:
        raise IsolationError(f"Cannot read definition {target}: {exc}", backend=backend) from exc
    try:
        # YAML is a superset of JSON, so one loader covers both
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise IsolationError(f"Invalid definition {target}: {exc}", backend=backend) from exc
    if not isinstance(data, dict):
        raise IsolationError(f"Definition {target} must be a mapping", backend=backend)
    return data


def is_blocked_path(path: str | Path) -> bool:
    """True if *path* is, or lies inside, a credential location."""
    resolved = Path(path).expanduser().resolve()
    for blocked in BLOCKED_HOST_PATHS:
        target = Path(blocked).expanduser().resolve()
        if resolved == target or target in resolved.parents:
            return True
    return False
