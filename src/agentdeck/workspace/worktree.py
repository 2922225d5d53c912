"""Per-agent git worktrees and the metadata file that makes them recoverable.

Layout for an agent named ``alpha`` with the default config::

    <repo>/.worktrees/claude-alpha/            worktree on branch claude-alpha
    <repo>/.worktrees/claude-alpha/.agentdeck/agent.json
    <repo>/.worktrees/claude-alpha/.agentdeck/status/<session_id>

The metadata file is the recovery source of truth: :meth:`scan_for_agents`
rebuilds every agent's identity from it without any central store.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from agentdeck.config.schema import DeckConfig
from agentdeck.errors import GitError
from agentdeck.git.operations import GitOperations
from agentdeck.protocol.io import read_json, write_json_atomic
from agentdeck.protocol.models import Agent, PersistedAgent
from agentdeck.workspace.hooks import install_status_hooks as merge_status_hooks

log = logging.getLogger(__name__)

METADATA_FILE = "agent.json"
STATUS_DIR = "status"


class WorktreeManager:
    def __init__(self, git: GitOperations, config: DeckConfig | None = None) -> None:
        self._git = git
        self._config = config or DeckConfig()

    @property
    def prefix(self) -> str:
        return f"{self._config.branch_prefix}-"

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def worktree_root(self, repo: str | Path) -> Path:
        directory = Path(self._config.worktree_directory).expanduser()
        return directory if directory.is_absolute() else Path(repo) / directory

    def branch_name(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def worktree_path(self, repo: str | Path, name: str) -> Path:
        return self.worktree_root(repo) / self.branch_name(name)

    def coordination_dir(self, worktree: str | Path) -> Path:
        return Path(worktree) / self._config.coordination_dir

    def metadata_path(self, worktree: str | Path) -> Path:
        return self.coordination_dir(worktree) / METADATA_FILE

    def status_dir(self, worktree: str | Path) -> Path:
        return self.coordination_dir(worktree) / STATUS_DIR

    def signal_file(self, agent: Agent | PersistedAgent) -> Path:
        return self.status_dir(agent.worktree_path) / agent.session_id

    def install_status_hooks(self, agent: Agent | PersistedAgent) -> Path:
        """Point the agent's hooks at its signal file; returns the settings path."""
        return merge_status_hooks(agent.worktree_path, self.signal_file(agent))

    def exists(self, path: str | Path) -> bool:
        return Path(path).exists()

    # ------------------------------------------------------------------
    # Create / remove
    # ------------------------------------------------------------------

    async def create(self, repo: str | Path, path: str | Path, branch: str, base_branch: str) -> None:
        """Create *branch* from *base_branch* checked out at *path*.

        Raises:
            GitError: the worktree or branch could not be created (including
                when either already exists).
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        await self._git.create_worktree(repo, branch, path, base_branch)
        log.info("Created worktree %s on %s (from %s)", path, branch, base_branch)

    async def remove(self, repo: str | Path, path: str | Path, branch: str) -> None:
        """Remove the worktree and its branch; safe to repeat."""
        target = Path(path)
        try:
            await self._git.remove_worktree(repo, target)
        except GitError as exc:
            log.debug("Worktree removal may have partially failed for %s: %s", target, exc)

        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
            if target.exists():
                log.warning("Could not delete worktree directory %s", target)

        await self._git.prune_worktrees(repo)

        try:
            await self._git.delete_branch(repo, branch)
        except GitError as exc:
            log.debug("Branch deletion may have failed for %s: %s", branch, exc)

    async def move(self, repo: str | Path, old_path: str | Path, new_path: str | Path) -> None:
        Path(new_path).parent.mkdir(parents=True, exist_ok=True)
        await self._git.move_worktree(repo, old_path, new_path)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def save_metadata(self, agent: Agent | PersistedAgent) -> Path:
        record = agent.to_persisted() if isinstance(agent, Agent) else agent
        target = self.metadata_path(record.worktree_path)
        write_json_atomic(target, record.to_dict())
        ignore = target.parent / ".gitignore"
        if not ignore.exists():
            ignore.write_text("*\n", encoding="utf-8")
        return target

    def load_metadata(self, path: str | Path) -> PersistedAgent | None:
        """Metadata for the worktree at *path*, or ``None`` if missing or corrupt."""
        data = read_json(self.metadata_path(path), None)
        if data is None:
            return None
        try:
            return PersistedAgent.from_dict(data)
        except ValueError as exc:
            log.warning("Ignoring invalid agent metadata in %s: %s", path, exc)
            return None

    def scan_for_agents(self, repo: str | Path) -> list[PersistedAgent]:
        """Every managed worktree under the repo that carries valid metadata."""
        root = self.worktree_root(repo)
        if not root.is_dir():
            return []

        found: list[PersistedAgent] = []
        for child in sorted(root.iterdir()):
            if not child.is_dir() or not child.name.startswith(self.prefix):
                continue
            record = self.load_metadata(child)
            if record is None:
                log.debug("Skipping %s: no agent metadata", child)
                continue
            found.append(record)
        found.sort(key=lambda r: r.id)
        return found
