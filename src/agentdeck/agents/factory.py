"""Batch agent creation.

For each requested agent: create the worktree, allocate the smallest unused
id, generate a session id, install status hooks, optionally start an
isolation runtime (falling back to none), write metadata, then hand the
agent to the caller's terminal hook.  One agent failing never aborts the
rest of the batch.
"""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from agentdeck.agents.persistence import AgentPersistence
from agentdeck.config.schema import DeckConfig
from agentdeck.events.bus import AGENT_CREATED, DeckEvent, EventSink, NullSink
from agentdeck.git.operations import GitOperations
from agentdeck.isolation.manager import IsolationManager
from agentdeck.protocol.models import NO_ISOLATION, Agent
from agentdeck.workspace.names import get_available_names
from agentdeck.workspace.worktree import WorktreeManager

log = logging.getLogger(__name__)

TerminalHook = Callable[[Agent], None | Awaitable[None]]


@dataclass(slots=True)
class CreationError:
    name: str
    error: str


@dataclass(slots=True)
class CreationBatch:
    requested: int = 0
    created: list[Agent] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[CreationError] = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        """Agents not even attempted because the name pool ran out."""
        attempted = len(self.created) + len(self.skipped) + len([e for e in self.errors if e.name])
        return max(0, self.requested - attempted)


def next_agent_id(existing: Iterable[int]) -> int:
    """Smallest positive id not in *existing*."""
    taken = set(existing)
    agent_id = 1
    while agent_id in taken:
        agent_id += 1
    return agent_id


class AgentFactory:
    def __init__(
        self,
        git: GitOperations,
        worktrees: WorktreeManager,
        persistence: AgentPersistence,
        *,
        config: DeckConfig | None = None,
        isolation: IsolationManager | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self._git = git
        self._worktrees = worktrees
        self._persistence = persistence
        self._config = config or DeckConfig()
        self._isolation = isolation
        self._sink = sink or NullSink()

    @staticmethod
    def generate_session_id() -> str:
        return str(uuid.uuid4())

    def existing_agent_names(self, repo: str | Path) -> set[str]:
        return {record.name for record in self._worktrees.scan_for_agents(repo)}

    async def create_agents(
        self,
        count: int,
        repo: str | Path,
        *,
        isolation_config: str | None = None,
        on_create_terminal: TerminalHook | None = None,
    ) -> CreationBatch:
        batch = CreationBatch(requested=max(count, 0))
        if count <= 0:
            return batch

        branch = await self._git.current_branch_result(repo)
        if not branch.ok or not branch.data:
            if branch.error:
                log.error("Failed to get base branch: %s", branch.error)
            batch.errors.append(CreationError(name="", error="Could not determine base branch"))
            return batch
        base_branch = branch.data

        # Always scan: a cached agent list may be stale
        existing = self._worktrees.scan_for_agents(repo)
        existing_ids = {record.id for record in existing}
        names = get_available_names((record.name for record in existing), count)
        if len(names) < count:
            log.warning("Could only generate %d names out of %d requested", len(names), count)

        config_name = isolation_config or self._config.default_isolation
        for name in names:
            try:
                agent = await self._create_one(name, repo, base_branch, existing_ids, config_name)
            except Exception as exc:
                log.exception("Failed to create agent %s", name)
                batch.errors.append(CreationError(name=name, error=str(exc)))
                continue

            if agent is None:
                batch.skipped.append(name)
                continue

            existing_ids.add(agent.id)
            batch.created.append(agent)
            if on_create_terminal is not None:
                await self._run_terminal_hook(on_create_terminal, agent)

        log.info(
            "Created %d agents, skipped %d, errors %d",
            len(batch.created), len(batch.skipped), len(batch.errors),
        )
        return batch

    async def _create_one(
        self,
        name: str,
        repo: str | Path,
        base_branch: str,
        existing_ids: set[int],
        config_name: str,
    ) -> Agent | None:
        branch = self._worktrees.branch_name(name)
        worktree = self._worktrees.worktree_path(repo, name)
        if self._worktrees.exists(worktree):
            log.debug("Worktree already exists at %s, skipping", worktree)
            return None

        await self._worktrees.create(repo, worktree, branch, base_branch)

        agent = Agent(
            id=next_agent_id(existing_ids),
            name=name,
            session_id=self.generate_session_id(),
            branch=branch,
            worktree_path=str(worktree),
            repo_path=str(repo),
            isolation_config=config_name,
            last_interaction_time=time.time(),
        )
        try:
            self._worktrees.install_status_hooks(agent)
            await self._start_isolation(agent)
            self._persistence.save(agent)
        except Exception:
            if agent.runtime is not None and self._isolation is not None:
                try:
                    await self._isolation.destroy(agent.id)
                except Exception:
                    log.warning("Could not destroy runtime for %s during cleanup", name, exc_info=True)
            await self._worktrees.remove(repo, worktree, branch)
            raise

        self._sink.emit(
            DeckEvent(
                event_type=AGENT_CREATED,
                agent_id=agent.id,
                data={"name": agent.name, "branch": agent.branch, "isolation_config": agent.isolation_config},
            )
        )
        log.debug("Created agent %s (id=%d)", name, agent.id)
        return agent

    async def _start_isolation(self, agent: Agent) -> None:
        if agent.isolation_config == NO_ISOLATION or self._isolation is None:
            return
        try:
            agent.runtime = await self._isolation.create(agent.id, agent.worktree_path, agent.isolation_config)
        except Exception as exc:
            log.warning("Isolation %r failed for %s, running unisolated: %s", agent.isolation_config, agent.name, exc)
            agent.isolation_config = NO_ISOLATION
            agent.runtime = None

    async def _run_terminal_hook(self, hook: TerminalHook, agent: Agent) -> None:
        try:
            result = hook(agent)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("Terminal hook failed for agent %s", agent.name)
