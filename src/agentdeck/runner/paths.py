"""Path translation between Windows-style paths and POSIX shell dialects."""

from __future__ import annotations

import re

_DRIVE = re.compile(r"^([A-Za-z]):[\\/]*(.*)$")
_WSL_MOUNT = re.compile(r"^/mnt/([a-z])(?:/(.*))?$")
_GITBASH_MOUNT = re.compile(r"^/([a-z])(?:/(.*))?$")

PATH_STYLES = ("native", "wsl", "gitbash")


def to_terminal_path(path: str, style: str = "native") -> str:
    """Convert *path* into the form a shell of the given dialect expects.

    ``C:\\Users\\me`` becomes ``/mnt/c/Users/me`` under WSL and ``/c/Users/me``
    under Git Bash.  POSIX paths and the native style pass through unchanged.
    """
    if style == "native":
        return path
    match = _DRIVE.match(path)
    if not match:
        return path
    drive = match.group(1).lower()
    rest = match.group(2).replace("\\", "/").rstrip("/")
    prefix = f"/mnt/{drive}" if style == "wsl" else f"/{drive}"
    return f"{prefix}/{rest}" if rest else prefix


def to_windows_path(path: str, style: str = "wsl") -> str:
    """Inverse of :func:`to_terminal_path` for the given shell dialect.

    Only ``/mnt/c/...`` is translated for WSL and only ``/c/...`` for Git
    Bash, so an ordinary POSIX path such as ``/a/b`` is left alone under WSL.
    """
    if style == "wsl":
        match = _WSL_MOUNT.match(path)
    elif style == "gitbash":
        match = _GITBASH_MOUNT.match(path)
    else:
        return path
    if not match:
        return path
    drive = match.group(1).upper()
    rest = (match.group(2) or "").replace("/", "\\")
    return f"{drive}:\\{rest}"
