"""External process execution."""

from agentdeck.runner.command import DEFAULT_TIMEOUT, CommandResult, CommandRunner
from agentdeck.runner.paths import PATH_STYLES, to_terminal_path, to_windows_path

__all__ = [
    "DEFAULT_TIMEOUT",
    "PATH_STYLES",
    "CommandResult",
    "CommandRunner",
    "to_terminal_path",
    "to_windows_path",
]
