"""Data model and file IO shared across the engine."""

from agentdeck.protocol.io import read_json, write_json_atomic
from agentdeck.protocol.models import (
    AGENT_STATUSES,
    NO_ISOLATION,
    WAITING_STATUSES,
    Agent,
    AgentStatus,
    DiffStats,
    ParsedStatus,
    PendingApproval,
    PersistedAgent,
    RuntimeHandle,
    RuntimeState,
    TodoItem,
)

__all__ = [
    "AGENT_STATUSES",
    "NO_ISOLATION",
    "WAITING_STATUSES",
    "Agent",
    "AgentStatus",
    "DiffStats",
    "ParsedStatus",
    "PendingApproval",
    "PersistedAgent",
    "RuntimeHandle",
    "RuntimeState",
    "TodoItem",
    "read_json",
    "write_json_atomic",
]
