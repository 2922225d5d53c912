"""Tests for status hook installation."""

from __future__ import annotations

import json
from pathlib import Path

from agentdeck.workspace.hooks import HOOK_TOKENS, hook_command, install_status_hooks


class TestHookCommand:
    def test_token_write(self, tmp_path: Path) -> None:
        cmd = hook_command(tmp_path / "status" / "abc", "idle")
        assert cmd.startswith("mkdir -p ")
        assert "printf %s idle >" in cmd
        assert str(tmp_path / "status" / "abc") in cmd

    def test_payload_write(self, tmp_path: Path) -> None:
        cmd = hook_command(tmp_path / "status" / "abc", None)
        assert "cat >" in cmd

    def test_paths_are_quoted(self, tmp_path: Path) -> None:
        cmd = hook_command(tmp_path / "with space" / "abc", "idle")
        assert "'" in cmd


class TestInstallStatusHooks:
    def test_writes_all_events(self, tmp_path: Path) -> None:
        status_file = tmp_path / ".agentdeck" / "status" / "session-1"
        path = install_status_hooks(tmp_path, status_file)

        assert path == tmp_path / ".claude" / "settings.local.json"
        hooks = json.loads(path.read_text())["hooks"]
        assert set(hooks) == set(HOOK_TOKENS)
        stop = hooks["Stop"][0]["hooks"][0]
        assert stop["type"] == "command"
        assert "idle" in stop["command"]
        assert hooks["PermissionRequest"][0]["matcher"] == "*"

    def test_preserves_user_settings_and_is_idempotent(self, tmp_path: Path) -> None:
        settings = tmp_path / ".claude" / "settings.local.json"
        settings.parent.mkdir()
        user_hook = {"hooks": [{"type": "command", "command": "echo custom"}]}
        settings.write_text(json.dumps({"model": "x", "hooks": {"Stop": [user_hook]}}))

        status_file = tmp_path / ".agentdeck" / "status" / "session-1"
        install_status_hooks(tmp_path, status_file)
        install_status_hooks(tmp_path, status_file)

        data = json.loads(settings.read_text())
        assert data["model"] == "x"
        stop = data["hooks"]["Stop"]
        assert stop[0] == user_hook
        assert len(stop) == 2

    def test_replaces_corrupt_settings(self, tmp_path: Path) -> None:
        settings = tmp_path / ".claude" / "settings.local.json"
        settings.parent.mkdir()
        settings.write_text("[1, 2")
        install_status_hooks(tmp_path, tmp_path / "s")
        assert "hooks" in json.loads(settings.read_text())

    def test_moved_worktree_replaces_old_entries(self, tmp_path: Path) -> None:
        old, new = tmp_path / "claude-alpha", tmp_path / "claude-delta"
        install_status_hooks(old, old / ".agentdeck" / "status" / "session-1")
        old.rename(new)

        install_status_hooks(new, new / ".agentdeck" / "status" / "session-1")

        stop = json.loads((new / ".claude" / "settings.local.json").read_text())["hooks"]["Stop"]
        assert len(stop) == 1
        assert str(new) in stop[0]["hooks"][0]["command"]
