"""Event bus for agent lifecycle and status events.

A small in-process pub/sub.  The status tracker and the agent factory emit
into it; dashboards and other front ends subscribe.  Events can optionally
be appended to a JSONL file for post-mortem inspection.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

STATUS_CHANGED = "agent.status_changed"
APPROVAL_PENDING = "approval.pending"
APPROVAL_RESOLVED = "approval.resolved"
DIFF_STATS_CHANGED = "agent.diff_stats_changed"
TODOS_CHANGED = "agent.todos_changed"
AGENT_CREATED = "agent.created"
AGENT_DELETED = "agent.deleted"
AGENT_RENAMED = "agent.renamed"

EVENT_TYPES = (
    STATUS_CHANGED,
    APPROVAL_PENDING,
    APPROVAL_RESOLVED,
    DIFF_STATS_CHANGED,
    TODOS_CHANGED,
    AGENT_CREATED,
    AGENT_DELETED,
    AGENT_RENAMED,
)


@dataclass(slots=True)
class DeckEvent:
    """A single engine event."""

    event_type: str
    agent_id: int | None = None
    data: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    timestamp: float = field(default_factory=time.time)


class EventSink(Protocol):
    """Anything the engine can emit events into."""

    def emit(self, event: DeckEvent) -> None: ...


Subscriber = Callable[[DeckEvent], Any]


class EventBus:
    """In-process pub/sub for engine events.

    Subscribers receive every emitted event, or only one type when
    subscribed with ``event_type``.  A subscriber that raises is logged and
    skipped; it never interrupts the emitter.
    """

    def __init__(self, persist_path: str | Path | None = None, *, history_size: int = 500) -> None:
        self._subscribers: list[tuple[str | None, Subscriber]] = []
        self._persist_path = Path(persist_path) if persist_path else None
        self._history: deque[DeckEvent] = deque(maxlen=history_size)

    def emit(self, event: DeckEvent) -> None:
        """Emit an event to all matching subscribers and persist."""
        self._history.append(event)

        for wanted, cb in list(self._subscribers):
            if wanted is not None and wanted != event.event_type:
                continue
            try:
                cb(event)
            except Exception:
                logger.exception("EventBus subscriber error for %s", event.event_type)

        if self._persist_path:
            try:
                self._persist_path.parent.mkdir(parents=True, exist_ok=True)
                with self._persist_path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(asdict(event), default=str) + "\n")
            except OSError as exc:
                logger.debug("EventBus persist error: %s", exc)

    def subscribe(self, callback: Subscriber, event_type: str | None = None) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        entry = (event_type, callback)
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        """Remove every registration of *callback*."""
        self._subscribers = [(t, cb) for t, cb in self._subscribers if cb is not callback]

    @property
    def history(self) -> list[DeckEvent]:
        return list(self._history)

    def recent(self, n: int = 20) -> list[DeckEvent]:
        """Return the *n* most recent events."""
        if n <= 0:
            return []
        return list(self._history)[-n:]


class NullSink:
    """Event sink that drops everything."""

    def emit(self, event: DeckEvent) -> None:
        return None
