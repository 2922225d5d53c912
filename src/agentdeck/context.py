"""EngineContext - dependency bundle for one repository's agent deck.

The process entry point builds one context per repository and owns its
lifetime; nothing in the engine is a module-level singleton.

Usage::

    ctx = EngineContext.create("/path/to/repo")
    agents = {a.id: a for a in ctx.restore_agents().agents}
    await ctx.start(lambda: agents)
    batch = await ctx.factory.create_agents(3, ctx.repo_path)
    ...
    ctx.stop()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentdeck.agents.factory import AgentFactory
from agentdeck.agents.lifecycle import AgentLifecycle
from agentdeck.agents.persistence import AgentPersistence, RestoreResult
from agentdeck.config.loader import load_config
from agentdeck.config.schema import DeckConfig
from agentdeck.events.bus import EventBus
from agentdeck.git.operations import GitOperations
from agentdeck.isolation.manager import IsolationManager
from agentdeck.isolation.registry import IsolationRegistry, default_registry
from agentdeck.runner.command import CommandRunner
from agentdeck.status.parser import StatusParser
from agentdeck.status.todos import TodoReader
from agentdeck.status.tracker import AgentSource, AgentStatusTracker, agent_list
from agentdeck.status.watcher import FileWatcher, WatchEvent
from agentdeck.storage import FileStorage, Storage
from agentdeck.terminal.tmux import TmuxSessions
from agentdeck.utilities.logger import get_logger, setup_from_config
from agentdeck.workspace.worktree import WorktreeManager


@dataclass
class EngineContext:
    """Every engine component for one repository, wired together."""

    repo_path: Path
    config: DeckConfig
    runner: CommandRunner
    git: GitOperations
    worktrees: WorktreeManager
    storage: Storage
    events: EventBus
    parser: StatusParser
    todos: TodoReader
    tracker: AgentStatusTracker
    tmux: TmuxSessions
    registry: IsolationRegistry
    isolation: IsolationManager
    persistence: AgentPersistence
    factory: AgentFactory
    lifecycle: AgentLifecycle

    watcher: FileWatcher | None = None
    log: Any = field(default=None, repr=False)
    _get_agents: AgentSource | None = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        repo_path: str | Path,
        config: DeckConfig | None = None,
        *,
        runner: CommandRunner | None = None,
        storage: Storage | None = None,
        registry: IsolationRegistry | None = None,
        events: EventBus | None = None,
        configure_logging: bool = False,
    ) -> EngineContext:
        repo = Path(repo_path).resolve()
        config = config or load_config(repo)
        if configure_logging:
            setup_from_config(config)
        runner = runner or CommandRunner(path_style=config.path_style)
        storage = storage or FileStorage(repo / config.coordination_dir / config.storage_file)
        registry = registry or default_registry(runner)
        events = events or EventBus()

        git = GitOperations(runner, config.git)
        worktrees = WorktreeManager(git, config)
        parser = StatusParser(config.coordination_dir)
        todos = TodoReader(config.todos_directory)
        tracker = AgentStatusTracker(parser, git, events, todos=todos, config=config.polling)
        tmux = TmuxSessions(runner, config.tmux_session_prefix)
        isolation = IsolationManager(registry, config, repo, storage)
        persistence = AgentPersistence(worktrees, storage)
        factory = AgentFactory(
            git, worktrees, persistence, config=config, isolation=isolation, sink=events
        )
        lifecycle = AgentLifecycle(
            git, worktrees, persistence, tmux, isolation=isolation, sink=events
        )
        return cls(
            repo_path=repo,
            config=config,
            runner=runner,
            git=git,
            worktrees=worktrees,
            storage=storage,
            events=events,
            parser=parser,
            todos=todos,
            tracker=tracker,
            tmux=tmux,
            registry=registry,
            isolation=isolation,
            persistence=persistence,
            factory=factory,
            lifecycle=lifecycle,
            log=get_logger("agentdeck.engine", repo=str(repo)),
        )

    @property
    def is_running(self) -> bool:
        return self.tracker.is_polling

    def restore_agents(self) -> RestoreResult:
        result = self.persistence.restore_agents(self.repo_path)
        if result.missing:
            self.log.info("agents_missing", names=[r.name for r in result.missing])
        return result

    async def start(self, get_agents: AgentSource) -> None:
        """Start status polling and the watcher on every agent's coordination dir."""
        if self.is_running:
            return
        self._get_agents = get_agents
        self.tracker.start_polling(get_agents)

        watcher_cfg = self.config.watcher
        self.watcher = FileWatcher(
            self._watched_paths(),
            self._on_watch_event,
            poll_interval=watcher_cfg.poll_interval,
            health_check_interval=watcher_cfg.health_check_interval,
            debounce=watcher_cfg.debounce,
            polling_only=watcher_cfg.polling_only,
            on_error=self._on_watch_error,
        )
        await self.watcher.start()
        self.log.info("engine_started", polling_only=self.watcher.polling_only)

    def sync_watched_paths(self) -> None:
        """Align the watcher with the current agent set (after create/delete/rename)."""
        if self.watcher is None:
            return
        wanted = set(self._watched_paths())
        current = set(self.watcher.watched_paths)
        for path in sorted(current - wanted):
            self.watcher.remove_path(path)
        for path in sorted(wanted - current):
            self.watcher.add_path(path)

    def stop(self) -> None:
        """Stop polling and watching; safe to call repeatedly."""
        was_running = self.is_running or self.watcher is not None
        self.tracker.stop_polling()
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        self._get_agents = None
        if was_running:
            self.log.info("engine_stopped")

    def _watched_paths(self) -> list[str]:
        if self._get_agents is None:
            return []
        return [
            str(self.worktrees.coordination_dir(agent.worktree_path))
            for agent in agent_list(self._get_agents())
        ]

    def _on_watch_event(self, event: WatchEvent) -> None:
        if event.type != "error":
            self.tracker.request_status_refresh()

    def _on_watch_error(self, exc: BaseException) -> None:
        self.log.warning("watcher_error", error=str(exc))
