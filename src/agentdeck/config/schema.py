"""Configuration schema for agentdeck."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class PollingConfig:
    """Status tracker polling periods in seconds (``<= 0`` disables a loop)."""

    status_interval: float = 1.0
    todo_interval: float = 2.0
    diff_interval: float = 60.0


@dataclass(slots=True)
class WatcherConfig:
    poll_interval: float = 5.0
    health_check_interval: float = 60.0
    debounce: float = 0.1
    polling_only: bool | None = None  # None = auto (poll-only under WSL)


@dataclass(slots=True)
class GitConfig:
    retries: int = 3
    min_wait: float = 0.5
    max_wait: float = 3.0
    factor: float = 2.0
    fast_timeout: float = 5.0
    medium_timeout: float = 15.0
    slow_timeout: float = 60.0


@dataclass(slots=True)
class IsolationProfile:
    """Named isolation config: backend type plus an optional definition file."""

    type: str = "none"
    definition: str | None = None  # relative paths resolve against the repo root


@dataclass(slots=True)
class DeckConfig:
    worktree_directory: str = ".worktrees"
    branch_prefix: str = "claude"
    coordination_dir: str = ".agentdeck"
    tmux_session_prefix: str = "agentdeck"
    agent_command: str = "claude"
    todos_directory: str = "~/.claude/todos"
    storage_file: str = "storage.json"
    default_isolation: str = "none"
    log_level: str = "info"
    log_json: bool = False
    path_style: str = "native"  # native | wsl | gitbash
    polling: PollingConfig = field(default_factory=PollingConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    git: GitConfig = field(default_factory=GitConfig)
    isolation: dict[str, IsolationProfile] = field(
        default_factory=lambda: {"none": IsolationProfile()}
    )
