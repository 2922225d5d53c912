"""Git operations."""

from agentdeck.git.operations import (
    FALLBACK_BASE,
    GitErrorCode,
    GitOperations,
    GitResult,
    parse_shortstat,
)

__all__ = [
    "FALLBACK_BASE",
    "GitErrorCode",
    "GitOperations",
    "GitResult",
    "parse_shortstat",
]
