"""Read the coding agent's per-session task lists."""

from __future__ import annotations

import logging
from pathlib import Path

from agentdeck.protocol.io import read_json
from agentdeck.protocol.models import TodoItem

log = logging.getLogger(__name__)


class TodoReader:
    """Task lists live in ``<todos_dir>/<session_id>*.json`` as a JSON array."""

    def __init__(self, todos_dir: str | Path = "~/.claude/todos") -> None:
        self._dir = Path(todos_dir).expanduser()

    @property
    def directory(self) -> Path:
        return self._dir

    def get_todos(self, session_id: str) -> list[TodoItem] | None:
        """Newest task list for *session_id*, or ``None`` when there is none."""
        if not session_id or not self._dir.is_dir():
            return None
        try:
            candidates = [p for p in self._dir.glob(f"{session_id}*.json") if p.is_file()]
        except OSError:
            return None
        if not candidates:
            return None

        newest = max(candidates, key=_mtime)
        data = read_json(newest, None)
        if not isinstance(data, list):
            log.debug("Ignoring malformed task list %s", newest)
            return None
        return [item for item in (_to_item(raw) for raw in data) if item is not None]


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _to_item(raw: object) -> TodoItem | None:
    if not isinstance(raw, dict):
        return None
    content = raw.get("content")
    if not isinstance(content, str):
        return None
    return TodoItem(
        status=str(raw.get("status", "pending")),
        content=content,
        active_form=str(raw.get("activeForm") or raw.get("active_form") or ""),
    )
