"""Engine configuration."""

from agentdeck.config.loader import build_config, load_config
from agentdeck.config.schema import (
    DeckConfig,
    GitConfig,
    IsolationProfile,
    PollingConfig,
    WatcherConfig,
)

__all__ = [
    "DeckConfig",
    "GitConfig",
    "IsolationProfile",
    "PollingConfig",
    "WatcherConfig",
    "build_config",
    "load_config",
]
