"""Structured logging using structlog.

Engine modules log through ``logging.getLogger(__name__)``; the process
entry point calls :func:`setup_logging` (or :func:`setup_from_config`) once
so those records and structlog's bound loggers share one renderer.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from agentdeck.config.schema import DeckConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Libraries that are chatty at DEBUG; capped at WARNING
NOISY_LOGGERS = ("watchdog", "httpx", "httpcore")


def level_from_name(name: str) -> int:
    return _LEVELS.get(name.lower(), logging.INFO)


def setup_logging(
    *,
    debug: bool = False,
    json_output: bool = False,
    level: str | None = None,
) -> None:
    """Configure stdlib logging and structlog for the engine.

    Args:
        debug: Enable DEBUG level logging (wins over ``level``).
        json_output: Emit one JSON object per line instead of console output.
        level: Level name ("debug", "info", "warn", "error").
    """
    resolved = logging.DEBUG if debug else level_from_name(level or "info")

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=resolved)
    logging.getLogger("agentdeck").setLevel(resolved)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_from_config(config: DeckConfig) -> None:
    setup_logging(json_output=config.log_json, level=config.log_level)


def get_logger(name: str = "agentdeck", **context: Any) -> Any:
    """Structured logger for *name*, bound to *context*."""
    return structlog.get_logger(name, **context)
