"""YAML/JSON config loader for agentdeck.

Priority (later wins): defaults < user config < project config < env vars < overrides.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from agentdeck.config.schema import (
    DeckConfig,
    GitConfig,
    IsolationProfile,
    PollingConfig,
    WatcherConfig,
)

PROJECT_DIR = ".agentdeck"
CONFIG_NAMES = ("config.yaml", "config.yml", "config.json")
_SECTIONS = ("polling", "watcher", "git")


def get_user_config_dir() -> Path:
    """User-level config directory (``~/.config/agentdeck``)."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "agentdeck"


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON config file, returning empty dict if missing or malformed."""
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


def find_config_file(directory: Path) -> Path | None:
    for name in CONFIG_NAMES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    return None


def load_config(
    repo_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    *,
    user_dir: Path | None = None,
) -> DeckConfig:
    raw: dict[str, Any] = {}

    user_file = find_config_file(user_dir or get_user_config_dir())
    if user_file:
        _merge(raw, load_config_file(user_file))

    if repo_path is not None:
        project_file = find_config_file(Path(repo_path) / PROJECT_DIR)
        if project_file:
            _merge(raw, load_config_file(project_file))

    _merge(raw, _env_overrides())
    _merge(raw, overrides or {})
    return build_config(raw)


def build_config(raw: dict[str, Any]) -> DeckConfig:
    sections = {
        name: raw.get(name, {}) if isinstance(raw.get(name), dict) else {}
        for name in _SECTIONS
    }
    top = {k: v for k, v in _pick(raw, DeckConfig).items() if k not in (*_SECTIONS, "isolation")}

    config = DeckConfig(
        **top,
        polling=PollingConfig(**_pick(sections["polling"], PollingConfig)),
        watcher=WatcherConfig(**_pick(sections["watcher"], WatcherConfig)),
        git=GitConfig(**_pick(sections["git"], GitConfig)),
    )

    isolation_raw = raw.get("isolation", {})
    if isinstance(isolation_raw, dict):
        for name, item in isolation_raw.items():
            if isinstance(item, str):
                config.isolation[str(name)] = IsolationProfile(type=item)
            elif isinstance(item, dict) and "type" in item:
                config.isolation[str(name)] = IsolationProfile(**_pick(item, IsolationProfile))
    config.isolation.setdefault("none", IsolationProfile())
    return config


def _env_overrides() -> dict[str, Any]:
    result: dict[str, Any] = {}
    if level := os.environ.get("AGENTDECK_LOG_LEVEL"):
        result["log_level"] = level
    if directory := os.environ.get("AGENTDECK_WORKTREE_DIRECTORY"):
        result["worktree_directory"] = directory
    if polling_only := os.environ.get("AGENTDECK_POLLING_ONLY"):
        result["watcher"] = {"polling_only": polling_only.lower() in ("1", "true", "yes")}
    return result


def _merge(target: dict[str, Any], source: dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
