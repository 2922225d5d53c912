"""tmux session management for persistent agent terminals.

Sessions are named from the agent's session id, never its display name, so a
rename leaves the live session addressable.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path

from agentdeck.errors import CommandError, TerminalError
from agentdeck.runner.command import CommandRunner

log = logging.getLogger(__name__)

SHORT_ID_LENGTH = 12
DEFAULT_TIMEOUT = 10.0


class TmuxSessions:
    def __init__(
        self,
        runner: CommandRunner,
        prefix: str = "agentdeck",
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._runner = runner
        self.prefix = prefix
        self._timeout = timeout

    def session_name(self, session_id: str) -> str:
        short = session_id.replace("-", "")[:SHORT_ID_LENGTH]
        return f"{self.prefix}-{short}"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def session_exists(self, name: str) -> bool:
        return await self._succeeds(["tmux", "has-session", "-t", f"={name}"])

    async def container_session_exists(self, container_id: str, name: str) -> bool:
        return await self._succeeds(
            ["docker", "exec", container_id, "tmux", "has-session", "-t", f"={name}"]
        )

    async def list_sessions(self) -> list[str]:
        """Names of this deck's sessions (prefix-filtered)."""
        try:
            result = await self._runner.run(
                ["tmux", "list-sessions", "-F", "#{session_name}"],
                timeout=self._timeout,
                check=False,
            )
        except CommandError:
            return []
        if not result.ok:
            return []
        wanted = f"{self.prefix}-"
        return [line.strip() for line in result.stdout.splitlines() if line.strip().startswith(wanted)]

    # ------------------------------------------------------------------
    # Create / attach
    # ------------------------------------------------------------------

    async def create_or_attach(self, name: str, cwd: str | Path) -> None:
        """Attach to *name*, creating it first if needed, in the foreground.

        Blocks until the user detaches.  ``new-session -A`` makes the check
        and the creation one tmux operation.
        """
        path = self._runner.terminal_path(cwd)
        try:
            code = await self._runner.run_interactive(
                ["tmux", "new-session", "-A", "-s", name, "-c", path], cwd=cwd
            )
        except CommandError as exc:
            raise TerminalError(f"Failed to create/attach tmux session {name}: {exc}", session=name) from exc
        if code != 0:
            raise TerminalError(f"tmux new-session -A exited with {code}", session=name)
        log.debug("Created/attached to tmux session: %s", name)

    async def create_detached(self, name: str, cwd: str | Path) -> bool:
        """Ensure a background session named *name* exists.

        Returns ``True`` when this call created it and ``False`` when it
        already existed.  tmux rejects a duplicate name atomically, so two
        concurrent callers never end up with two sessions.
        """
        path = self._runner.terminal_path(cwd)
        try:
            result = await self._runner.run(
                ["tmux", "new-session", "-d", "-s", name, "-c", path],
                cwd=cwd,
                timeout=self._timeout,
                check=False,
            )
        except CommandError as exc:
            raise TerminalError(f"Failed to create tmux session {name}: {exc}", session=name) from exc
        if result.ok:
            log.debug("Created detached tmux session: %s", name)
            return True
        if "duplicate session" in result.stderr:
            return False
        raise TerminalError(
            f"Failed to create tmux session {name}: {result.stderr.strip()}", session=name
        )

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------

    async def send_keys(self, name: str, text: str, *, press_enter: bool = True) -> None:
        try:
            await self._runner.run(
                ["tmux", "send-keys", "-t", name, "-l", text], timeout=self._timeout
            )
            if press_enter:
                await self._runner.run(["tmux", "send-keys", "-t", name, "Enter"], timeout=self._timeout)
        except CommandError as exc:
            raise TerminalError(f"Failed to send text to tmux session {name}: {exc}", session=name) from exc
        log.debug("Sent text to tmux session: %s", name)

    @staticmethod
    def alias_command(agent_command: str, session_id: str) -> str:
        """Shell alias ``oo`` that resumes the agent's coding session."""
        return f"alias oo={shlex.quote(f'{agent_command} --session-id {shlex.quote(session_id)}')}"

    async def setup_alias(self, name: str, agent_command: str, session_id: str) -> None:
        await self.send_keys(name, self.alias_command(agent_command, session_id))

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def kill_session(self, name: str) -> None:
        if await self._succeeds(["tmux", "kill-session", "-t", f"={name}"]):
            log.debug("Killed tmux session: %s", name)

    async def kill_container_session(self, container_id: str, name: str) -> None:
        await self._succeeds(
            ["docker", "exec", container_id, "tmux", "kill-session", "-t", f"={name}"],
            timeout=2.0,
        )

    async def _succeeds(self, args: list[str], *, timeout: float | None = None) -> bool:
        try:
            result = await self._runner.run(args, timeout=timeout or self._timeout, check=False)
        except CommandError:
            return False
        return result.ok
