"""Registry of isolation adapters keyed by backend type."""

from __future__ import annotations

import logging

from agentdeck.errors import IsolationError
from agentdeck.isolation.base import IsolationAdapter
from agentdeck.isolation.docker import DockerAdapter
from agentdeck.isolation.firecracker import FirecrackerAdapter
from agentdeck.isolation.unisolated import UnisolatedAdapter
from agentdeck.runner.command import CommandRunner

log = logging.getLogger(__name__)


class IsolationRegistry:
    def __init__(self, adapters: list[IsolationAdapter] | None = None) -> None:
        self._adapters: dict[str, IsolationAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: IsolationAdapter) -> None:
        """Add or replace the adapter for ``adapter.type``."""
        key = adapter.type.lower()
        if key in self._adapters:
            log.debug("Replacing isolation adapter %s", key)
        self._adapters[key] = adapter

    def get(self, backend: str) -> IsolationAdapter:
        adapter = self._adapters.get(backend.lower())
        if adapter is None:
            raise IsolationError(f"Unsupported isolation backend: {backend}", backend=backend)
        return adapter

    def has(self, backend: str) -> bool:
        return backend.lower() in self._adapters

    def types(self) -> list[str]:
        return list(self._adapters)

    async def available_types(self) -> list[str]:
        """Backend types whose adapter reports itself usable on this host."""
        available: list[str] = []
        for key, adapter in self._adapters.items():
            try:
                if await adapter.is_available():
                    available.append(key)
            except Exception:
                log.exception("Availability check failed for %s", key)
        return available


def default_registry(runner: CommandRunner) -> IsolationRegistry:
    """Registry with every built-in backend."""
    return IsolationRegistry(
        [UnisolatedAdapter(runner), DockerAdapter(runner), FirecrackerAdapter(runner)]
    )
