"""Agent creation, persistence and lifecycle."""

from agentdeck.agents.factory import AgentFactory, CreationBatch, CreationError, next_agent_id
from agentdeck.agents.lifecycle import AgentLifecycle
from agentdeck.agents.persistence import AgentPersistence, RestoreResult

__all__ = [
    "AgentFactory",
    "AgentLifecycle",
    "AgentPersistence",
    "CreationBatch",
    "CreationError",
    "RestoreResult",
    "next_agent_id",
]
