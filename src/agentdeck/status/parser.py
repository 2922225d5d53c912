"""Decode hook-written signal files.

A signal file holds either a bare status token (``working``) or the JSON
payload of a permission request::

    {"session_id": "...", "tool_name": "Bash", "tool_input": {"command": "npm install"}}

which maps to ``waiting-approval`` with the description ``Bash: npm install``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agentdeck.protocol.models import AgentStatus, ParsedStatus

log = logging.getLogger(__name__)

MAX_DESCRIPTION = 200

TOKENS: dict[str, AgentStatus] = {
    "idle": "idle",
    "stop": "idle",
    "stopped": "idle",
    "done": "idle",
    "working": "working",
    "busy": "working",
    "waiting-input": "waiting-input",
    "waiting": "waiting-input",
    "input": "waiting-input",
    "notification": "waiting-input",
    "waiting-approval": "waiting-approval",
    "permission": "waiting-approval",
    "approval": "waiting-approval",
}


def describe_tool(tool_name: str, tool_input: Any) -> str:
    """Human-readable summary of a tool call awaiting approval."""
    if isinstance(tool_input, dict):
        detail = tool_input.get("command") or tool_input.get("file_path") or tool_input.get("path")
        if not detail:
            detail = json.dumps(tool_input, separators=(",", ":"), sort_keys=True) if tool_input else ""
    elif tool_input is None:
        detail = ""
    else:
        detail = str(tool_input)
    text = f"{tool_name}: {detail}" if detail else tool_name
    if len(text) > MAX_DESCRIPTION:
        text = text[: MAX_DESCRIPTION - 3] + "..."
    return text


def parse_content(content: str) -> tuple[AgentStatus, str | None] | None:
    """Map signal-file content to ``(status, pending_approval)``.

    Returns ``None`` for empty or unrecognised content.
    """
    text = content.strip()
    if not text:
        return None

    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        tool_name = payload.get("tool_name")
        if isinstance(tool_name, str) and tool_name:
            return "waiting-approval", describe_tool(tool_name, payload.get("tool_input"))
        status = TOKENS.get(str(payload.get("status", "")).lower())
        if status is None:
            return None
        return status, None

    status = TOKENS.get(text.lower())
    if status is None:
        return None
    if status == "waiting-approval":
        return status, "Approval requested"
    return status, None


class StatusParser:
    """Reads the newest signal file under a worktree's status directory."""

    def __init__(self, coordination_dir: str = ".agentdeck") -> None:
        self._coordination_dir = coordination_dir

    def status_dir(self, worktree: str | Path) -> Path:
        return Path(worktree) / self._coordination_dir / "status"

    def signal_file(self, worktree: str | Path, session_id: str) -> Path:
        return self.status_dir(worktree) / session_id

    def latest_signal_file(self, worktree: str | Path) -> tuple[Path, float] | None:
        directory = self.status_dir(worktree)
        newest: tuple[Path, float] | None = None
        try:
            entries = list(directory.iterdir())
        except OSError:
            return None
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue
            if newest is None or mtime > newest[1]:
                newest = (entry, mtime)
        return newest

    def check_status(self, worktree: str | Path) -> ParsedStatus | None:
        """Parse the most recently modified signal file, if any."""
        latest = self.latest_signal_file(worktree)
        if latest is None:
            return None
        path, mtime = latest
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            log.debug("Could not read signal file %s: %s", path, exc)
            return None
        parsed = parse_content(content)
        if parsed is None:
            log.debug("Ignoring unrecognised signal file content in %s", path)
            return None
        status, pending = parsed
        return ParsedStatus(status=status, pending_approval=pending, file_timestamp=mtime)
