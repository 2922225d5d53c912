"""Per-agent isolation runtimes.

Maps isolation-config names (``"none"``, ``"docker-node"``, ...) to a backend
type plus definition file, creates and destroys runtimes through the
registry, and remembers one ``RuntimeHandle`` per agent id in central storage.
"""

from __future__ import annotations

import logging
from pathlib import Path

from agentdeck.config.schema import DeckConfig, IsolationProfile
from agentdeck.errors import ConfigurationError, IsolationError, IsolationUnavailableError
from agentdeck.isolation.base import DisplayInfo, RuntimeStats
from agentdeck.isolation.registry import IsolationRegistry
from agentdeck.protocol.models import NO_ISOLATION, RuntimeHandle
from agentdeck.storage import RUNTIMES_KEY, Storage

log = logging.getLogger(__name__)


class IsolationManager:
    def __init__(
        self,
        registry: IsolationRegistry,
        config: DeckConfig,
        repo_path: str | Path,
        storage: Storage,
    ) -> None:
        self.registry = registry
        self._config = config
        self._repo = Path(repo_path)
        self._storage = storage
        self._handles: dict[int, RuntimeHandle] = self._load_handles()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def profile(self, name: str) -> IsolationProfile:
        """Resolve a config name; a bare backend type is accepted as its own profile."""
        if name in self._config.isolation:
            return self._config.isolation[name]
        if name == NO_ISOLATION or self.registry.has(name):
            return IsolationProfile(type=name)
        raise ConfigurationError(f"Unknown isolation config: {name}")

    def definition_path(self, profile: IsolationProfile) -> str | None:
        if profile.type == NO_ISOLATION or not profile.definition:
            return None
        path = Path(profile.definition).expanduser()
        if not path.is_absolute():
            path = self._repo / path
        return str(path)

    def config_names(self) -> list[str]:
        return list(self._config.isolation)

    async def available_configs(self) -> list[str]:
        """Config names whose backend is usable on this host."""
        usable = set(await self.registry.available_types())
        return [name for name, profile in self._config.isolation.items() if profile.type.lower() in usable]

    async def display_info(self, name: str) -> DisplayInfo:
        profile = self.profile(name)
        adapter = self.registry.get(profile.type)
        return await adapter.get_display_info(self.definition_path(profile))

    # ------------------------------------------------------------------
    # Runtimes
    # ------------------------------------------------------------------

    async def create(self, agent_id: int, worktree_path: str, config_name: str) -> RuntimeHandle:
        """Start a runtime for *agent_id*.

        Raises:
            ConfigurationError: unknown config name.
            IsolationUnavailableError: the backend is not usable here.
            IsolationError: the backend failed to start the runtime.
        """
        profile = self.profile(config_name)
        adapter = self.registry.get(profile.type)
        if not await adapter.is_available():
            raise IsolationUnavailableError(profile.type)

        existing = self._handles.get(agent_id)
        if existing is not None:
            log.debug("Replacing runtime %s for agent %d", existing.runtime_id, agent_id)
            await self.destroy(agent_id)

        runtime_id = await adapter.create(self.definition_path(profile), worktree_path, agent_id)
        handle = RuntimeHandle(
            runtime_id=runtime_id,
            backend=adapter.type,
            agent_id=agent_id,
            worktree_path=worktree_path,
        )
        self._handles[agent_id] = handle
        self._save_handles()
        return handle

    async def destroy(self, agent_id: int) -> None:
        """Destroy the agent's runtime; safe to repeat.

        The handle is forgotten only once the backend confirms.  On failure it
        stays recorded with ``state="error"`` so a later call retries.
        """
        handle = self._handles.get(agent_id)
        if handle is None:
            return
        try:
            await self.registry.get(handle.backend).destroy(handle.runtime_id)
        except IsolationError:
            handle.state = "error"
            self._save_handles()
            log.warning("Failed to destroy %s runtime %s", handle.backend, handle.runtime_id, exc_info=True)
            raise
        handle.state = "stopped"
        self._handles.pop(agent_id, None)
        self._save_handles()

    async def exec(self, agent_id: int, command: str) -> str:
        handle = self._require(agent_id)
        return await self.registry.get(handle.backend).exec(handle.runtime_id, command)

    async def stats(self, agent_id: int) -> RuntimeStats | None:
        handle = self._handles.get(agent_id)
        if handle is None:
            return None
        return await self.registry.get(handle.backend).get_stats(handle.runtime_id)

    def handle(self, agent_id: int) -> RuntimeHandle | None:
        return self._handles.get(agent_id)

    def handles(self) -> dict[int, RuntimeHandle]:
        return dict(self._handles)

    def _require(self, agent_id: int) -> RuntimeHandle:
        handle = self._handles.get(agent_id)
        if handle is None:
            raise IsolationError(f"No runtime for agent {agent_id}")
        return handle

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_handles(self) -> dict[int, RuntimeHandle]:
        raw = self._storage.get(RUNTIMES_KEY, {})
        handles: dict[int, RuntimeHandle] = {}
        if not isinstance(raw, dict):
            return handles
        for data in raw.values():
            try:
                handle = RuntimeHandle.from_dict(data)
            except (KeyError, TypeError, ValueError):
                log.warning("Dropping malformed runtime record: %r", data)
                continue
            handles[handle.agent_id] = handle
        return handles

    def _save_handles(self) -> None:
        self._storage.set(RUNTIMES_KEY, {str(k): h.to_dict() for k, h in self._handles.items()})
