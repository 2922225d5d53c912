"""Central key-value storage for engine state that outlives a process.

Usage::

    storage = FileStorage(repo / ".agentdeck" / "storage.json")
    storage.set("agents", [...])
    records = storage.get("agents", [])

Every ``set``/``delete`` rewrites the whole document atomically.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from agentdeck.protocol.io import read_json, write_json_atomic

log = logging.getLogger(__name__)

AGENTS_KEY = "agents"
RUNTIMES_KEY = "isolation.runtimes"


class Storage(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...


class FileStorage:
    """JSON document on disk; a missing or corrupt file reads as empty."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        data = read_json(self.path, default={})
        if not isinstance(data, dict):
            log.warning("Ignoring malformed storage file %s", self.path)
            return {}
        return data

    def reload(self) -> None:
        self._data = self._load()

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if it existed."""
        if key not in self._data:
            return False
        del self._data[key]
        self._flush()
        return True

    def keys(self) -> list[str]:
        return list(self._data)

    def _flush(self) -> None:
        write_json_atomic(self.path, self._data)


class MemoryStorage:
    """In-process storage for embedding and tests."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        return True

    def keys(self) -> list[str]:
        return list(self._data)
