"""Shared utilities: logging setup and retry policy."""

from agentdeck.utilities.logger import get_logger, setup_from_config, setup_logging
from agentdeck.utilities.retry import NO_RETRY, RetryPolicy, is_retryable, retry_async

__all__ = [
    "NO_RETRY",
    "RetryPolicy",
    "get_logger",
    "is_retryable",
    "retry_async",
    "setup_from_config",
    "setup_logging",
]
