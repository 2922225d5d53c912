"""Install the coding-agent hooks that write status signal files.

Each hook redirects into ``<worktree>/<coordination_dir>/status/<session_id>``:
a bare token for prompt/tool/stop/notification events, and the raw JSON
payload (tool name and input) for permission requests.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any

from agentdeck.protocol.io import read_json, write_json_atomic

SETTINGS_FILE = Path(".claude") / "settings.local.json"

# hook event -> token written, or None to write the payload from stdin
HOOK_TOKENS: dict[str, str | None] = {
    "UserPromptSubmit": "working",
    "PostToolUse": "working",
    "Stop": "idle",
    "Notification": "waiting-input",
    "PermissionRequest": None,
}

_MATCHER_EVENTS = frozenset({"PostToolUse", "PermissionRequest"})


def hook_command(status_file: Path, token: str | None) -> str:
    target = shlex.quote(str(status_file))
    directory = shlex.quote(str(status_file.parent))
    write = f"cat > {target}" if token is None else f"printf %s {token} > {target}"
    return f"mkdir -p {directory} && {write}"


def build_hooks(status_file: Path) -> dict[str, list[dict[str, Any]]]:
    hooks: dict[str, list[dict[str, Any]]] = {}
    for event, token in HOOK_TOKENS.items():
        entry: dict[str, Any] = {
            "hooks": [{"type": "command", "command": hook_command(status_file, token)}],
        }
        if event in _MATCHER_EVENTS:
            entry["matcher"] = "*"
        hooks[event] = [entry]
    return hooks


def install_status_hooks(worktree: str | Path, status_file: str | Path) -> Path:
    """Merge the status hooks into the worktree's local agent settings.

    Hook entries that already write this session's signal file are replaced,
    even if the worktree has moved since; anything else the user configured
    is kept.  Returns the settings path.
    """
    settings_path = Path(worktree) / SETTINGS_FILE
    settings = read_json(settings_path, {})
    if not isinstance(settings, dict):
        settings = {}
    existing = settings.get("hooks")
    if not isinstance(existing, dict):
        existing = {}

    target = Path(status_file)
    marker = f"{target.parent.name}/{target.name}"
    for event, entries in build_hooks(target).items():
        current = existing.get(event)
        kept = [e for e in current if not _targets(e, marker)] if isinstance(current, list) else []
        existing[event] = kept + entries

    settings["hooks"] = existing
    write_json_atomic(settings_path, settings)
    return settings_path


def _targets(entry: Any, marker: str) -> bool:
    if not isinstance(entry, dict):
        return False
    for hook in entry.get("hooks") or []:
        if isinstance(hook, dict) and marker in str(hook.get("command", "")):
            return True
    return False
