"""Command runner: every external process the engine starts goes through here."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from agentdeck.errors import CommandError, CommandTimeoutError
from agentdeck.runner.paths import to_terminal_path

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(slots=True)
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands with a mandatory upper time bound.

    ``path_style`` selects how working directories are rendered for the
    shell (see :mod:`agentdeck.runner.paths`).
    """

    def __init__(self, *, path_style: str = "native", default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self.path_style = path_style
        self.default_timeout = default_timeout

    def terminal_path(self, path: str | Path) -> str:
        return to_terminal_path(str(path), self.path_style)

    async def run(
        self,
        args: list[str],
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run *args* to completion.

        Raises:
            CommandTimeoutError: the process exceeded *timeout* and was killed.
            CommandError: the binary could not be started, or (with *check*)
                the process exited non-zero.
        """
        limit = self.default_timeout if timeout is None else timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd(cwd),
                env=self._env(env),
            )
        except OSError as exc:
            raise CommandError(
                f"Failed to start {args[0]}: {exc}", args=args, stderr=str(exc)
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input.encode() if input is not None else None),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            await _reap(proc)
            raise CommandTimeoutError(args, limit) from None
        except BaseException:
            # Cancelled while waiting: never leave the child running
            await _reap(proc)
            raise

        result = CommandResult(
            args=list(args),
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if check and not result.ok:
            raise CommandError(
                f"Command '{' '.join(args)}' exited with {result.returncode}: {result.stderr.strip()}",
                args=args,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    async def run_shell(
        self,
        command: str,
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command line through ``/bin/sh -c``."""
        return await self.run(["/bin/sh", "-c", command], cwd=cwd, timeout=timeout, check=check)

    async def stream(
        self,
        args: list[str],
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[str]:
        """Yield stdout lines as they arrive; the whole stream shares one deadline."""
        limit = self.default_timeout if timeout is None else timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self._cwd(cwd),
            )
        except OSError as exc:
            raise CommandError(f"Failed to start {args[0]}: {exc}", args=args) from exc

        assert proc.stdout is not None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise CommandTimeoutError(args, limit)
                try:
                    line = await asyncio.wait_for(proc.stdout.readline(), timeout=remaining)
                except asyncio.TimeoutError:
                    raise CommandTimeoutError(args, limit) from None
                if not line:
                    break
                yield line.decode(errors="replace").rstrip("\n")
            await proc.wait()
        finally:
            await _reap(proc)

    async def run_interactive(self, args: list[str], *, cwd: str | Path | None = None) -> int:
        """Run in the foreground with inherited stdio (e.g. attaching a terminal)."""
        try:
            proc = await asyncio.create_subprocess_exec(*args, cwd=self._cwd(cwd))
        except OSError as exc:
            raise CommandError(f"Failed to start {args[0]}: {exc}", args=args) from exc
        try:
            return await proc.wait()
        except BaseException:
            await _reap(proc)
            raise

    async def spawn(
        self,
        args: list[str],
        *,
        cwd: str | Path | None = None,
    ) -> asyncio.subprocess.Process:
        """Start a long-lived background process; the caller owns its lifetime."""
        try:
            return await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd(cwd),
                start_new_session=True,
            )
        except OSError as exc:
            raise CommandError(f"Failed to start {args[0]}: {exc}", args=args) from exc

    def _cwd(self, cwd: str | Path | None) -> str | None:
        return str(cwd) if cwd is not None else None

    def _env(self, env: Mapping[str, str] | None) -> dict[str, str] | None:
        if not env:
            return None
        merged = dict(os.environ)
        merged.update(env)
        return merged


async def _reap(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* if it is still running and wait for it to exit."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
