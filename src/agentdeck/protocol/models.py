"""Agent data model shared by every engine component."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

AgentStatus = Literal["idle", "working", "waiting-input", "waiting-approval"]
RuntimeState = Literal["creating", "running", "stopped", "error", "not_created"]

AGENT_STATUSES: tuple[str, ...] = ("idle", "working", "waiting-input", "waiting-approval")
WAITING_STATUSES: frozenset[str] = frozenset({"waiting-input", "waiting-approval"})
NO_ISOLATION = "none"


@dataclass(slots=True, frozen=True)
class DiffStats:
    insertions: int = 0
    deletions: int = 0
    files_changed: int = 0


@dataclass(slots=True, frozen=True)
class TodoItem:
    status: str
    content: str
    active_form: str = ""


@dataclass(slots=True)
class RuntimeHandle:
    """Opaque isolation runtime reference owned by the adapter that created it."""

    runtime_id: str
    backend: str
    agent_id: int
    worktree_path: str
    state: RuntimeState = "running"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeHandle:
        return cls(
            runtime_id=str(data["runtime_id"]),
            backend=str(data["backend"]),
            agent_id=int(data["agent_id"]),
            worktree_path=str(data["worktree_path"]),
            state=data.get("state", "running"),
            created_at=float(data.get("created_at", time.time())),
        )


@dataclass(slots=True)
class PersistedAgent:
    """Durable subset of an agent, mirrored to central storage and the worktree."""

    id: int
    name: str
    session_id: str
    branch: str
    worktree_path: str
    repo_path: str
    task_file: str | None = None
    isolation_config: str = NO_ISOLATION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> PersistedAgent:
        """Validate and build; raises ``ValueError`` on malformed records."""
        if not isinstance(data, dict):
            raise ValueError("agent record must be an object")
        try:
            agent_id = data["id"]
            strings = {
                key: data[key]
                for key in ("name", "session_id", "branch", "worktree_path", "repo_path")
            }
        except KeyError as exc:
            raise ValueError(f"agent record missing field {exc.args[0]!r}") from None
        if isinstance(agent_id, bool) or not isinstance(agent_id, int) or agent_id < 1:
            raise ValueError(f"invalid agent id: {agent_id!r}")
        for key, value in strings.items():
            if not isinstance(value, str) or not value:
                raise ValueError(f"invalid {key}: {value!r}")
        task_file = data.get("task_file")
        return cls(
            id=agent_id,
            task_file=task_file if isinstance(task_file, str) else None,
            isolation_config=str(data.get("isolation_config") or NO_ISOLATION),
            **strings,
        )


@dataclass(slots=True)
class Agent:
    """Runtime agent: persisted identity plus volatile, polled state."""

    id: int
    name: str
    session_id: str
    branch: str
    worktree_path: str
    repo_path: str
    task_file: str | None = None
    isolation_config: str = NO_ISOLATION
    status: AgentStatus = "idle"
    status_icon: str = "circle-outline"
    pending_approval: str | None = None
    last_interaction_time: float = field(default_factory=time.time)
    diff_stats: DiffStats = field(default_factory=DiffStats)
    todos: list[TodoItem] = field(default_factory=list)
    runtime: RuntimeHandle | None = None
    terminal_session: str | None = None

    def to_persisted(self) -> PersistedAgent:
        return PersistedAgent(
            id=self.id,
            name=self.name,
            session_id=self.session_id,
            branch=self.branch,
            worktree_path=self.worktree_path,
            repo_path=self.repo_path,
            task_file=self.task_file,
            isolation_config=self.isolation_config,
        )

    @classmethod
    def from_persisted(cls, record: PersistedAgent) -> Agent:
        return cls(
            id=record.id,
            name=record.name,
            session_id=record.session_id,
            branch=record.branch,
            worktree_path=record.worktree_path,
            repo_path=record.repo_path,
            task_file=record.task_file,
            isolation_config=record.isolation_config,
        )


@dataclass(slots=True)
class ParsedStatus:
    """One read of a signal file; ``file_timestamp`` is its mtime (epoch seconds)."""

    status: AgentStatus
    pending_approval: str | None = None
    file_timestamp: float | None = None


@dataclass(slots=True)
class PendingApproval:
    agent_id: int
    description: str
    timestamp: float = field(default_factory=time.time)
