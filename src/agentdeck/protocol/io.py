"""JSON file helpers shared by storage, metadata and hook settings."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


def ensure_parent(path: str | Path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def read_json(path: str | Path, default: Any) -> Any:
    """Parsed document at *path*; *default* if it is missing or unreadable."""
    target = Path(path)
    try:
        text = target.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default
    except (OSError, UnicodeDecodeError) as exc:
        log.debug("Cannot read %s: %s", target, exc)
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        log.debug("Corrupt JSON in %s", target)
        return default


def write_json_atomic(path: str | Path, data: Any) -> None:
    """Fully rewrite *path*; readers see either the old or the new document.

    The temporary file is unique per call, so two writers never share it.
    """
    target = ensure_parent(path)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
