"""Git command surface with tiered timeouts and bounded retry.

All git work is shelled out through :class:`~agentdeck.runner.CommandRunner`.
Raw process failures never escape this module: they become :class:`GitError`
(or a failed :class:`GitResult` for the read operations where "nothing
changed" and "could not tell" must stay distinguishable).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Generic, TypeVar

from tenacity import RetryCallState

from agentdeck.config.schema import GitConfig
from agentdeck.errors import CommandError, CommandTimeoutError, GitError
from agentdeck.protocol.models import DiffStats
from agentdeck.runner.command import CommandResult, CommandRunner
from agentdeck.utilities.retry import NO_RETRY, RetryPolicy, retry_async

log = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_BASE = "HEAD~1"

# stderr fragments that indicate a transient condition worth retrying
_TRANSIENT_MARKERS = (
    "index.lock",
    "unable to create",
    "could not lock",
    "cannot lock ref",
    "could not resolve host",
    "connection timed out",
    "connection reset",
    "early eof",
    "remote end hung up",
    "resource temporarily unavailable",
)

_FILES_RE = re.compile(r"(\d+) files? changed")
_INSERT_RE = re.compile(r"(\d+) insertions?\(\+\)")
_DELETE_RE = re.compile(r"(\d+) deletions?\(-\)")


class GitErrorCode(StrEnum):
    TIMEOUT = "timeout"
    COMMAND_FAILED = "command_failed"
    NOT_A_REPO = "not_a_repo"


@dataclass(slots=True)
class GitResult(Generic[T]):
    """Success-with-data or failure-with-reason, never both."""

    ok: bool
    data: T | None = None
    error: str | None = None
    code: GitErrorCode | None = None

    @classmethod
    def success(cls, data: T) -> GitResult[T]:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str, code: GitErrorCode = GitErrorCode.COMMAND_FAILED) -> GitResult[T]:
        return cls(ok=False, error=error, code=code)


def parse_shortstat(output: str) -> DiffStats:
    """Parse ``git diff --shortstat`` output; empty output means no changes."""
    def grab(pattern: re.Pattern[str]) -> int:
        match = pattern.search(output)
        return int(match.group(1)) if match else 0

    return DiffStats(
        insertions=grab(_INSERT_RE),
        deletions=grab(_DELETE_RE),
        files_changed=grab(_FILES_RE),
    )


def _to_git_error(exc: CommandError) -> GitError:
    if isinstance(exc, CommandTimeoutError):
        return GitError(str(exc), code=GitErrorCode.TIMEOUT, retryable=True)
    stderr = exc.stderr.lower()
    if "not a git repository" in stderr:
        return GitError(str(exc), code=GitErrorCode.NOT_A_REPO)
    transient = any(marker in stderr for marker in _TRANSIENT_MARKERS)
    return GitError(str(exc), code=GitErrorCode.COMMAND_FAILED, retryable=transient)


class GitOperations:
    """Async wrapper around the ``git`` binary."""

    def __init__(self, runner: CommandRunner, config: GitConfig | None = None) -> None:
        self._runner = runner
        self._config = config or GitConfig()
        self._policy = RetryPolicy(
            retries=self._config.retries,
            min_wait=self._config.min_wait,
            max_wait=self._config.max_wait,
            factor=self._config.factor,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _git(
        self,
        cwd: str | Path,
        *args: str,
        timeout: float,
        retry: bool = True,
        name: str = "",
    ) -> CommandResult:
        label = name or (args[0] if args else "git")

        async def attempt() -> CommandResult:
            try:
                return await self._runner.run(
                    ["git", *args], cwd=cwd, timeout=timeout, check=True
                )
            except CommandError as exc:
                raise _to_git_error(exc) from exc

        def on_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            log.warning(
                "Git operation '%s' failed (attempt %d/%d): %s",
                label,
                state.attempt_number,
                self._policy.max_attempts,
                exc,
            )

        policy = self._policy if retry else NO_RETRY
        return await retry_async(attempt, policy=policy, on_retry=on_retry)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def is_git_repo(self, path: str | Path) -> bool:
        if not Path(path).is_dir():
            return False
        try:
            await self._git(path, "rev-parse", "--git-dir", timeout=self._config.fast_timeout, retry=False)
        except GitError:
            return False
        return True

    async def current_branch(self, repo: str | Path) -> str:
        """Checked-out branch name; empty string on a detached HEAD."""
        result = await self._git(
            repo, "branch", "--show-current", timeout=self._config.fast_timeout, name="current_branch"
        )
        return result.stdout.strip()

    async def current_branch_result(self, repo: str | Path) -> GitResult[str]:
        try:
            return GitResult.success(await self.current_branch(repo))
        except GitError as exc:
            return GitResult.failure(str(exc), GitErrorCode(exc.code))

    async def base_branch(self, repo: str | Path) -> str:
        """``main`` if present, else ``master``, else ``HEAD~1``."""
        try:
            result = await self._git(
                repo,
                "branch",
                "--list",
                "main",
                "master",
                "--format=%(refname:short)",
                timeout=self._config.fast_timeout,
                retry=False,
            )
        except GitError:
            return FALLBACK_BASE
        branches = {line.strip() for line in result.stdout.splitlines()}
        for candidate in ("main", "master"):
            if candidate in branches:
                return candidate
        return FALLBACK_BASE

    async def branch_exists(self, repo: str | Path, branch: str) -> bool:
        try:
            await self._git(
                repo,
                "rev-parse",
                "--verify",
                "--quiet",
                f"refs/heads/{branch}",
                timeout=self._config.fast_timeout,
                retry=False,
            )
        except GitError:
            return False
        return True

    async def diff_stats_result(self, worktree: str | Path, base_branch: str) -> GitResult[DiffStats]:
        """Diff of the worktree branch against ``base_branch``.

        A successful result with zero counts means "no changes"; a failed
        result means the stats could not be computed.
        """
        try:
            result = await self._git(
                worktree,
                "diff",
                "--shortstat",
                f"{base_branch}...HEAD",
                timeout=self._config.medium_timeout,
                name="diff_stats",
            )
        except GitError as exc:
            if exc.code == GitErrorCode.TIMEOUT:
                log.warning("Git diff timed out in %s", worktree)
                return GitResult.failure("Git diff timed out", GitErrorCode.TIMEOUT)
            return GitResult.failure(str(exc), GitErrorCode(exc.code))
        return GitResult.success(parse_shortstat(result.stdout))

    async def changed_files_result(self, worktree: str | Path, base_branch: str) -> GitResult[list[str]]:
        try:
            result = await self._git(
                worktree,
                "diff",
                "--name-only",
                f"{base_branch}...HEAD",
                timeout=self._config.medium_timeout,
                name="changed_files",
            )
        except GitError as exc:
            if exc.code == GitErrorCode.TIMEOUT:
                log.warning("Git diff --name-only timed out in %s", worktree)
                return GitResult.failure("Git diff timed out", GitErrorCode.TIMEOUT)
            return GitResult.failure(str(exc), GitErrorCode(exc.code))
        return GitResult.success([line for line in result.stdout.splitlines() if line.strip()])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_worktree(
        self,
        repo: str | Path,
        branch: str,
        worktree: str | Path,
        base_branch: str,
    ) -> None:
        await self._git(
            repo,
            "worktree",
            "add",
            "-b",
            branch,
            str(worktree),
            base_branch,
            timeout=self._config.slow_timeout,
            name="create_worktree",
        )

    async def remove_worktree(self, repo: str | Path, worktree: str | Path) -> None:
        await self._git(
            repo,
            "worktree",
            "remove",
            "--force",
            str(worktree),
            timeout=self._config.medium_timeout,
            name="remove_worktree",
        )

    async def move_worktree(self, repo: str | Path, old: str | Path, new: str | Path) -> None:
        await self._git(
            repo,
            "worktree",
            "move",
            str(old),
            str(new),
            timeout=self._config.medium_timeout,
            name="move_worktree",
        )

    async def prune_worktrees(self, repo: str | Path) -> None:
        try:
            await self._git(repo, "worktree", "prune", timeout=self._config.fast_timeout, retry=False)
        except GitError as exc:
            log.warning("git worktree prune failed: %s", exc)

    async def delete_branch(self, repo: str | Path, branch: str) -> None:
        await self._git(
            repo, "branch", "-D", branch, timeout=self._config.fast_timeout, name="delete_branch"
        )

    async def rename_branch(self, repo: str | Path, old: str, new: str) -> None:
        await self._git(
            repo, "branch", "-m", old, new, timeout=self._config.fast_timeout, name="rename_branch"
        )

    async def init_repo(self, path: str | Path, *, initial_branch: str = "main") -> None:
        await self._git(
            path, "init", "-b", initial_branch, timeout=self._config.fast_timeout, retry=False
        )

    async def stage_all(self, repo: str | Path) -> None:
        await self._git(repo, "add", "-A", timeout=self._config.medium_timeout, name="stage_all")

    async def commit(self, repo: str | Path, message: str) -> None:
        await self._git(
            repo, "commit", "-m", message, timeout=self._config.medium_timeout, name="commit"
        )
