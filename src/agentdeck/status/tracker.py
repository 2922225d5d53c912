"""Agent status tracker.

Three independent polling loops reconcile each agent's status, task list and
diff statistics from external sources:

* status: the newest hook-written signal file in the agent's worktree
* todos: the coding agent's task-list file for the session
* diff: ``git diff --shortstat`` of the agent branch against the base

Every tick resolves the agent set through a caller-supplied accessor, so the
tracker never holds on to a stale copy of it.  Status updates whose signal
file predates the agent's last local interaction are discarded: when a user
answers a prompt the agent is marked ``working`` immediately, and the old
``waiting-approval`` file still on disk must not flip it back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping

from agentdeck.config.schema import PollingConfig
from agentdeck.events.bus import (
    APPROVAL_PENDING,
    DIFF_STATS_CHANGED,
    STATUS_CHANGED,
    TODOS_CHANGED,
    DeckEvent,
    EventSink,
)
from agentdeck.git.operations import GitOperations
from agentdeck.protocol.models import (
    WAITING_STATUSES,
    Agent,
    AgentStatus,
    ParsedStatus,
    PendingApproval,
)
from agentdeck.status.parser import StatusParser
from agentdeck.status.todos import TodoReader

log = logging.getLogger(__name__)

AgentSet = Mapping[int, Agent] | Iterable[Agent]
AgentSource = Callable[[], AgentSet]

STATUS_ICONS: dict[str, str] = {
    "working": "sync~spin",
    "waiting-input": "bell",
    "waiting-approval": "question",
}


def status_icon(status: AgentStatus, has_session: bool) -> str:
    """Icon for a status; idle distinguishes a live session from none."""
    if status == "idle":
        return "circle-filled" if has_session else "circle-outline"
    return STATUS_ICONS.get(status, "circle-outline")


def agent_list(agents: AgentSet) -> list[Agent]:
    if isinstance(agents, Mapping):
        return list(agents.values())
    return list(agents)


class AgentStatusTracker:
    def __init__(
        self,
        parser: StatusParser,
        git: GitOperations,
        sink: EventSink,
        *,
        todos: TodoReader | None = None,
        config: PollingConfig | None = None,
    ) -> None:
        self._parser = parser
        self._git = git
        self._sink = sink
        self._todos = todos
        self._config = config or PollingConfig()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._wake: asyncio.Event | None = None
        self._polling = False

    @property
    def is_polling(self) -> bool:
        return self._polling

    # ------------------------------------------------------------------
    # Polling control
    # ------------------------------------------------------------------

    def start_polling(self, get_agents: AgentSource, config: PollingConfig | None = None) -> None:
        """Start the polling loops on the running event loop.

        Each enabled loop ticks once immediately and then every interval.
        A no-op while already polling.
        """
        if self._polling:
            log.debug("Polling already running")
            return

        cfg = config or self._config
        self._polling = True
        self._wake = asyncio.Event()
        log.debug(
            "Starting polling (status=%ss todos=%ss diff=%ss)",
            cfg.status_interval,
            cfg.todo_interval,
            cfg.diff_interval,
        )

        loops: list[tuple[str, float, Callable[[list[Agent]], Awaitable[None]]]] = [
            ("status", cfg.status_interval, self.refresh_status),
            ("diff", cfg.diff_interval, self.refresh_diff_stats),
        ]
        if self._todos is not None:
            loops.append(("todos", cfg.todo_interval, self.refresh_todos))

        for name, interval, refresh in loops:
            if interval > 0:
                self._tasks[name] = asyncio.create_task(
                    self._run_loop(name, interval, get_agents, refresh),
                    name=f"agentdeck-poll-{name}",
                )

    def stop_polling(self) -> None:
        """Cancel every loop; safe to call repeatedly."""
        tasks, self._tasks = self._tasks, {}
        for task in tasks.values():
            task.cancel()
        self._wake = None
        if self._polling:
            log.debug("Polling stopped")
        self._polling = False

    def request_status_refresh(self) -> None:
        """Run the status loop now instead of waiting for its next interval."""
        if self._wake is not None:
            self._wake.set()

    async def _run_loop(
        self,
        name: str,
        interval: float,
        get_agents: AgentSource,
        refresh: Callable[[list[Agent]], Awaitable[None]],
    ) -> None:
        while True:
            try:
                agents = agent_list(get_agents())
                if agents:
                    await refresh(agents)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("%s poll failed", name)

            if name == "status" and self._wake is not None:
                wake = self._wake
                try:
                    await asyncio.wait_for(wake.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
                wake.clear()
            else:
                await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def refresh_status(self, agents: AgentSet) -> None:
        for agent in agent_list(agents):
            parsed = await asyncio.to_thread(self._parser.check_status, agent.worktree_path)
            if parsed is not None:
                self.apply_status(agent, parsed)
            self.update_agent_icon(agent)

    def apply_status(self, agent: Agent, parsed: ParsedStatus) -> bool:
        """Apply a parsed signal unless it is stale; returns whether it applied."""
        if parsed.file_timestamp is not None and parsed.file_timestamp < agent.last_interaction_time:
            log.debug(
                "Skipping stale status file for agent %s (file %.3f < interaction %.3f)",
                agent.name,
                parsed.file_timestamp,
                agent.last_interaction_time,
            )
            return False

        previous = agent.status
        had_approval = agent.pending_approval is not None
        agent.status = parsed.status
        agent.pending_approval = parsed.pending_approval

        if previous != agent.status:
            self._emit(
                STATUS_CHANGED,
                agent,
                {"status": agent.status, "previous_status": previous},
                f"{agent.name}: {previous} -> {agent.status}",
            )
        if not had_approval and agent.pending_approval is not None:
            self._emit(
                APPROVAL_PENDING,
                agent,
                {"description": agent.pending_approval},
                agent.pending_approval,
            )
        return True

    def update_agent_icon(self, agent: Agent) -> None:
        agent.status_icon = status_icon(agent.status, agent.terminal_session is not None)

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    async def refresh_todos(self, agents: AgentSet) -> None:
        if self._todos is None:
            return
        for agent in agent_list(agents):
            if not agent.session_id:
                continue
            items = await asyncio.to_thread(self._todos.get_todos, agent.session_id)
            if items is None:
                continue
            previous = agent.todos
            if items != previous:
                agent.todos = items
                self._emit(
                    TODOS_CHANGED,
                    agent,
                    {"count": len(items), "previous_count": len(previous)},
                )

    # ------------------------------------------------------------------
    # Diff stats
    # ------------------------------------------------------------------

    async def refresh_diff_stats(self, agents: AgentSet) -> None:
        """Refresh every agent concurrently; failures keep the previous value."""
        items = agent_list(agents)
        bases: dict[str, asyncio.Task[str]] = {}
        for agent in items:
            if agent.repo_path not in bases:
                bases[agent.repo_path] = asyncio.create_task(self._git.base_branch(agent.repo_path))
        results = await asyncio.gather(
            *(self._refresh_agent_diff(agent, bases[agent.repo_path]) for agent in items),
            return_exceptions=True,
        )
        for agent, result in zip(items, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                log.debug("Diff stats refresh failed for %s: %s", agent.name, result)

    async def _refresh_agent_diff(self, agent: Agent, base: Awaitable[str]) -> None:
        result = await self._git.diff_stats_result(agent.worktree_path, await base)
        if not result.ok or result.data is None:
            return
        previous = agent.diff_stats
        if result.data != previous:
            agent.diff_stats = result.data
            self._emit(
                DIFF_STATS_CHANGED,
                agent,
                {
                    "insertions": result.data.insertions,
                    "deletions": result.data.deletions,
                    "files_changed": result.data.files_changed,
                },
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def get_pending_approvals(agents: AgentSet) -> list[PendingApproval]:
        return [
            PendingApproval(agent_id=agent.id, description=agent.pending_approval)
            for agent in agent_list(agents)
            if agent.pending_approval
        ]

    @staticmethod
    def get_waiting_count(agents: AgentSet) -> int:
        return sum(1 for agent in agent_list(agents) if agent.status in WAITING_STATUSES)

    def _emit(self, event_type: str, agent: Agent, data: dict[str, object], message: str = "") -> None:
        payload = {"name": agent.name, **data}
        self._sink.emit(DeckEvent(event_type=event_type, agent_id=agent.id, data=payload, message=message))

