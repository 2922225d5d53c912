"""agentdeck: lifecycle and status engine for parallel coding agents."""

__version__ = "0.3.0"
