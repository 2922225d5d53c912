"""Operations on existing agents: delete, rename and user interaction."""

from __future__ import annotations

import logging
import time

from agentdeck.agents.persistence import AgentPersistence
from agentdeck.errors import IsolationError, NameInUseError, TerminalError
from agentdeck.events.bus import (
    AGENT_DELETED,
    AGENT_RENAMED,
    APPROVAL_RESOLVED,
    DeckEvent,
    EventSink,
    NullSink,
)
from agentdeck.git.operations import GitOperations
from agentdeck.isolation.manager import IsolationManager
from agentdeck.protocol.models import Agent
from agentdeck.terminal.tmux import TmuxSessions
from agentdeck.workspace.names import is_valid_name
from agentdeck.workspace.worktree import WorktreeManager

log = logging.getLogger(__name__)


class AgentLifecycle:
    def __init__(
        self,
        git: GitOperations,
        worktrees: WorktreeManager,
        persistence: AgentPersistence,
        tmux: TmuxSessions,
        *,
        isolation: IsolationManager | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self._git = git
        self._worktrees = worktrees
        self._persistence = persistence
        self._tmux = tmux
        self._isolation = isolation
        self._sink = sink or NullSink()

    def session_for(self, agent: Agent) -> str:
        return agent.terminal_session or self._tmux.session_name(agent.session_id)

    async def delete_agent(self, agent: Agent) -> None:
        """Tear down the agent's terminal, runtime, worktree and records.

        Each step is attempted even if an earlier one fails.
        """
        await self._tmux.kill_session(self.session_for(agent))

        if self._isolation is not None:
            try:
                await self._isolation.destroy(agent.id)
            except IsolationError as exc:
                log.warning("Runtime cleanup failed for %s: %s", agent.name, exc)
        agent.runtime = None

        await self._worktrees.remove(agent.repo_path, agent.worktree_path, agent.branch)
        self._persistence.remove(agent.id)
        agent.terminal_session = None
        self._emit(AGENT_DELETED, agent, {})
        log.info("Deleted agent %s (id=%d)", agent.name, agent.id)

    async def rename_agent(self, agent: Agent, new_name: str) -> Agent:
        """Move the worktree and branch to *new_name*.

        The id and session id are unchanged, so the tmux session survives.

        Raises:
            ValueError: *new_name* is not usable as a branch component.
            NameInUseError: another agent or worktree already has the name.
            GitError: the move or branch rename failed.
        """
        if not is_valid_name(new_name):
            raise ValueError(f"Invalid agent name: {new_name!r}")
        if new_name == agent.name:
            return agent

        repo = agent.repo_path
        new_path = self._worktrees.worktree_path(repo, new_name)
        new_branch = self._worktrees.branch_name(new_name)
        taken = {record.name for record in self._worktrees.scan_for_agents(repo)}
        if new_name in taken or self._worktrees.exists(new_path):
            raise NameInUseError(new_name)

        old_name, old_branch = agent.name, agent.branch
        await self._worktrees.move(repo, agent.worktree_path, new_path)
        try:
            await self._git.rename_branch(repo, old_branch, new_branch)
        except Exception:
            await self._worktrees.move(repo, new_path, agent.worktree_path)
            raise

        agent.name = new_name
        agent.branch = new_branch
        agent.worktree_path = str(new_path)
        self._worktrees.install_status_hooks(agent)
        self._persistence.save(agent)
        self._emit(AGENT_RENAMED, agent, {"old_name": old_name, "old_branch": old_branch})
        log.info("Renamed agent %s to %s", old_name, new_name)
        return agent

    def mark_interaction(self, agent: Agent) -> bool:
        """Record a local interaction; returns True if an approval was pending.

        Signal files older than this moment are treated as stale by the
        status tracker, so an old ``waiting-approval`` file cannot undo it.
        """
        had_approval = agent.pending_approval is not None
        agent.status = "working"
        agent.pending_approval = None
        agent.last_interaction_time = time.time()
        return had_approval

    async def send_to_agent(self, agent: Agent, text: str) -> None:
        """Mark the interaction, then type *text* into the agent's terminal."""
        pending = agent.pending_approval
        if self.mark_interaction(agent):
            self._emit(APPROVAL_RESOLVED, agent, {"description": pending})
        try:
            await self._tmux.send_keys(self.session_for(agent), text)
        except TerminalError:
            log.warning("Could not deliver input to agent %s", agent.name, exc_info=True)
            raise

    def _emit(self, event_type: str, agent: Agent, data: dict[str, object]) -> None:
        payload = {"name": agent.name, **data}
        self._sink.emit(DeckEvent(event_type=event_type, agent_id=agent.id, data=payload))
