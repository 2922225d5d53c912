"""Per-agent worktrees, names and status hooks."""

from agentdeck.workspace.hooks import install_status_hooks
from agentdeck.workspace.names import AGENT_NAMES, get_available_names, is_valid_name
from agentdeck.workspace.worktree import METADATA_FILE, STATUS_DIR, WorktreeManager

__all__ = [
    "AGENT_NAMES",
    "METADATA_FILE",
    "STATUS_DIR",
    "WorktreeManager",
    "get_available_names",
    "install_status_hooks",
    "is_valid_name",
]
