"""Status reconciliation: signal files, task lists, diff stats and watching."""

from agentdeck.status.parser import StatusParser, describe_tool, parse_content
from agentdeck.status.todos import TodoReader
from agentdeck.status.tracker import STATUS_ICONS, AgentStatusTracker, status_icon
from agentdeck.status.watcher import FileWatcher, WatchEvent, is_wsl

__all__ = [
    "STATUS_ICONS",
    "AgentStatusTracker",
    "FileWatcher",
    "StatusParser",
    "TodoReader",
    "WatchEvent",
    "describe_tool",
    "is_wsl",
    "parse_content",
    "status_icon",
]
