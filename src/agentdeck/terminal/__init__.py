"""Terminal multiplexer sessions."""

from agentdeck.terminal.tmux import TmuxSessions

__all__ = ["TmuxSessions"]
