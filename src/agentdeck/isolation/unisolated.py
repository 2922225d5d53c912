"""Pass-through backend: commands run on the host inside the worktree."""

from __future__ import annotations

from pathlib import Path

from agentdeck.errors import CommandError, IsolationError
from agentdeck.isolation.base import DisplayInfo, RuntimeStats
from agentdeck.runner.command import CommandRunner


class UnisolatedAdapter:
    """The runtime id is the worktree path, so it survives restarts unchanged."""

    type = "none"

    def __init__(self, runner: CommandRunner, *, timeout: float = 120.0) -> None:
        self._runner = runner
        self._timeout = timeout

    async def is_available(self) -> bool:
        return True

    async def get_display_info(self, definition_path: str | None = None) -> DisplayInfo:
        return DisplayInfo(name="Unisolated", description="Runs directly on the host")

    async def create(self, definition_path: str | None, worktree_path: str, agent_id: int) -> str:
        if not Path(worktree_path).is_dir():
            raise IsolationError(f"Worktree does not exist: {worktree_path}", backend=self.type)
        return worktree_path

    async def exec(self, runtime_id: str, command: str) -> str:
        try:
            result = await self._runner.run_shell(command, cwd=runtime_id, timeout=self._timeout)
        except CommandError as exc:
            raise IsolationError(str(exc), backend=self.type) from exc
        return result.stdout

    async def destroy(self, runtime_id: str) -> None:
        return None

    async def get_stats(self, runtime_id: str) -> RuntimeStats | None:
        return None
