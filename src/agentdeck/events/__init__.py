"""Engine event stream."""

from agentdeck.events.bus import (
    AGENT_CREATED,
    AGENT_DELETED,
    AGENT_RENAMED,
    APPROVAL_PENDING,
    APPROVAL_RESOLVED,
    DIFF_STATS_CHANGED,
    EVENT_TYPES,
    STATUS_CHANGED,
    TODOS_CHANGED,
    DeckEvent,
    EventBus,
    EventSink,
    NullSink,
)

__all__ = [
    "AGENT_CREATED",
    "AGENT_DELETED",
    "AGENT_RENAMED",
    "APPROVAL_PENDING",
    "APPROVAL_RESOLVED",
    "DIFF_STATS_CHANGED",
    "EVENT_TYPES",
    "STATUS_CHANGED",
    "TODOS_CHANGED",
    "DeckEvent",
    "EventBus",
    "EventSink",
    "NullSink",
]
