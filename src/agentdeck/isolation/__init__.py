"""Polymorphic isolation backends (none, docker, firecracker)."""

from agentdeck.isolation.base import (
    BLOCKED_HOST_PATHS,
    DisplayInfo,
    IsolationAdapter,
    RuntimeStats,
    is_blocked_path,
    load_definition,
)
from agentdeck.isolation.docker import DockerAdapter, DockerDefinition
from agentdeck.isolation.firecracker import FirecrackerAdapter, FirecrackerDefinition
from agentdeck.isolation.manager import IsolationManager
from agentdeck.isolation.registry import IsolationRegistry, default_registry
from agentdeck.isolation.unisolated import UnisolatedAdapter

__all__ = [
    "BLOCKED_HOST_PATHS",
    "DisplayInfo",
    "DockerAdapter",
    "DockerDefinition",
    "FirecrackerAdapter",
    "FirecrackerDefinition",
    "IsolationAdapter",
    "IsolationManager",
    "IsolationRegistry",
    "RuntimeStats",
    "UnisolatedAdapter",
    "default_registry",
    "is_blocked_path",
    "load_definition",
]
