"""Hybrid file watcher: native notifications plus a mandatory backup poll.

Native events (via ``watchdog``) are fast but unreliable on network and
VM-bridged filesystems, where they can stop arriving without any error.
The backup poll therefore always runs, emitting a synthetic ``poll`` event
that consumers treat as "re-check now".  A periodic health check flags the
native side as unhealthy when it has been silent for a whole window; the
flag is advisory and never disables the poll.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_HEALTH_CHECK_INTERVAL = 60.0
DEFAULT_DEBOUNCE = 0.1

WatchEventType = Literal["add", "change", "unlink", "add_dir", "unlink_dir", "poll", "error"]

_NATIVE_KINDS: dict[tuple[str, bool], WatchEventType] = {
    ("created", False): "add",
    ("created", True): "add_dir",
    ("modified", False): "change",
    ("deleted", False): "unlink",
    ("deleted", True): "unlink_dir",
}


@dataclass(slots=True)
class WatchEvent:
    type: WatchEventType
    path: str = ""
    timestamp: float = field(default_factory=time.time)


EventCallback = Callable[[WatchEvent], Any]


@lru_cache(maxsize=1)
def is_wsl() -> bool:
    """True when running under the Windows Subsystem for Linux."""
    if not sys.platform.startswith("linux"):
        return False
    try:
        version = Path("/proc/version").read_text(encoding="utf-8").lower()
    except OSError:
        return False
    return "microsoft" in version or "wsl" in version


class _Forwarder(FileSystemEventHandler):
    """Runs on the observer thread; hands events to the watcher's loop."""

    def __init__(self, watcher: FileWatcher, only: str | None = None) -> None:
        self._watcher = watcher
        self._only = only

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type == "moved":
            self._forward("unlink_dir" if event.is_directory else "unlink", event.src_path)
            self._forward("add_dir" if event.is_directory else "add", event.dest_path)
            return
        kind = _NATIVE_KINDS.get((event.event_type, event.is_directory))
        if kind is not None:
            self._forward(kind, event.src_path)

    def _forward(self, kind: WatchEventType, path: str | bytes) -> None:
        text = path.decode() if isinstance(path, bytes) else path
        if self._only is not None and text != self._only:
            return
        self._watcher._from_thread(kind, text)


class FileWatcher:
    """Watch paths and report changes through *on_event* on the event loop.

    *on_event* may be a plain function or a coroutine function.  Directories
    are watched recursively; a file path is watched through its parent
    directory with events filtered to that file.  Paths that cannot be
    watched natively are left to the backup poll.
    """

    def __init__(
        self,
        paths: Iterable[str | Path],
        on_event: EventCallback,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
        polling_only: bool | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._paths: dict[str, None] = {str(p): None for p in paths}
        self._on_event = on_event
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._health_check_interval = health_check_interval
        self._debounce = debounce
        self._polling_only = is_wsl() if polling_only is None else polling_only
        self._observer_factory = observer_factory

        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._watches: dict[str, ObservedWatch] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._callbacks: set[asyncio.Task[Any]] = set()
        self._pending: dict[str, WatchEvent] = {}
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._last_native_event = 0.0
        self._healthy = True
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            log.debug("FileWatcher already running")
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._healthy = True
        self._last_native_event = self._loop.time()

        if self._polling_only:
            log.info("FileWatcher starting in polling-only mode")
        else:
            self._start_native()

        if self._poll_interval > 0:
            self._tasks.append(asyncio.create_task(self._poll_loop(), name="agentdeck-watch-poll"))
        if not self._polling_only and self._health_check_interval > 0:
            self._tasks.append(asyncio.create_task(self._health_loop(), name="agentdeck-watch-health"))

        log.info("FileWatcher started, watching: %s", ", ".join(self._paths) or "(nothing)")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        observer, self._observer = self._observer, None
        if observer is not None:
            try:
                observer.stop()
            except RuntimeError as exc:
                log.debug("Error closing native watcher: %s", exc)
            else:
                self._join_observer(observer)
            self._watches.clear()

        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        self._pending.clear()
        log.info("FileWatcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def polling_only(self) -> bool:
        return self._polling_only

    def is_healthy(self) -> bool:
        if self._polling_only:
            return True
        return self._healthy

    @property
    def watched_paths(self) -> list[str]:
        return list(self._paths)

    def add_path(self, path: str | Path) -> None:
        key = str(path)
        if key in self._paths:
            return
        self._paths[key] = None
        if self._observer is not None:
            self._schedule(key)
            log.debug("Added path to watcher: %s", key)

    def remove_path(self, path: str | Path) -> None:
        key = str(path)
        if key not in self._paths:
            return
        del self._paths[key]
        watch = self._watches.pop(key, None)
        if watch is not None and self._observer is not None:
            try:
                self._observer.unschedule(watch)
            except KeyError:
                pass
            log.debug("Removed path from watcher: %s", key)

    # ------------------------------------------------------------------
    # Native side
    # ------------------------------------------------------------------

    def _join_observer(self, observer: BaseObserver) -> None:
        # Joining can take up to a second; keep it off the event loop thread
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.run_in_executor(None, observer.join, 1.0)
        else:
            observer.join(timeout=1.0)

    def _start_native(self) -> None:
        try:
            observer = self._observer_factory()
            observer.start()
        except (OSError, RuntimeError) as exc:
            log.warning("Failed to start native watcher, relying on backup polling only: %s", exc)
            self._healthy = False
            self._report_error(exc)
            return
        self._observer = observer
        for path in list(self._paths):
            self._schedule(path)

    def _schedule(self, path: str) -> None:
        assert self._observer is not None
        target = Path(path)
        try:
            if target.is_dir():
                watch = self._observer.schedule(_Forwarder(self), path, recursive=True)
            elif target.parent.is_dir():
                watch = self._observer.schedule(_Forwarder(self, only=path), str(target.parent))
            else:
                log.debug("Path %s does not exist yet; backup poll covers it", path)
                return
        except OSError as exc:
            log.warning("Cannot watch %s natively: %s", path, exc)
            self._report_error(exc)
            return
        self._watches[path] = watch

    def _from_thread(self, kind: WatchEventType, path: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._queue_native, kind, path)
        except RuntimeError:
            # loop closed between the check and the call
            pass

    def _queue_native(self, kind: WatchEventType, path: str) -> None:
        if not self._running or self._loop is None:
            return
        self._last_native_event = self._loop.time()
        self._healthy = True
        self._pending[path] = WatchEvent(kind, path)

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(self._debounce, self._flush)

    def _flush(self) -> None:
        self._debounce_handle = None
        pending, self._pending = self._pending, {}
        for event in pending.values():
            self._dispatch(event)

    # ------------------------------------------------------------------
    # Backup poll and health check
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while True:
            self._dispatch(WatchEvent("poll"))
            await asyncio.sleep(self._poll_interval)

    async def _health_loop(self) -> None:
        assert self._loop is not None
        while True:
            await asyncio.sleep(self._health_check_interval)
            silent_for = self._loop.time() - self._last_native_event
            if silent_for > self._health_check_interval and self._healthy:
                log.warning(
                    "Native watcher appears silent (no events for %ds). Backup polling is still active.",
                    round(silent_for),
                )
                self._healthy = False

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _dispatch(self, event: WatchEvent) -> None:
        try:
            result = self._on_event(event)
        except Exception:
            log.exception("Error in file watch handler")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callbacks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Future[Any]) -> None:
        self._callbacks.discard(task)  # type: ignore[arg-type]
        if not task.cancelled() and task.exception() is not None:
            log.error("Error in file watch handler", exc_info=task.exception())

    def _report_error(self, exc: BaseException) -> None:
        self._dispatch(WatchEvent("error", str(exc)))
        if self._on_error is not None:
            try:
                self._on_error(exc)
            except Exception:
                log.exception("Error in file watch error handler")
