"""Retry utilities using tenacity."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from agentdeck.errors import DeckError

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: ``retries`` extra attempts after the first."""

    retries: int = 3
    min_wait: float = 0.5
    max_wait: float = 3.0
    factor: float = 2.0

    @property
    def max_attempts(self) -> int:
        return max(1, self.retries + 1)


NO_RETRY = RetryPolicy(retries=0)


def is_retryable(exc: BaseException) -> bool:
    """Check if an exception is retryable."""
    if isinstance(exc, DeckError):
        return exc.retryable
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    return False


def _retrying(
    policy: RetryPolicy,
    on_retry: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(policy.max_attempts),
        "wait": wait_exponential(
            multiplier=policy.min_wait,
            min=policy.min_wait,
            max=policy.max_wait,
            exp_base=policy.factor,
        ),
        "retry": retry_if_exception(is_retryable),
        "reraise": True,
    }
    if on_retry:
        kwargs["before_sleep"] = on_retry
    return AsyncRetrying(**kwargs)


async def retry_async(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy = RetryPolicy(),
    on_retry: Callable[[RetryCallState], None] | None = None,
    **kwargs: Any,
) -> T:
    """Retry an async function with exponential backoff.

    Only exceptions for which :func:`is_retryable` is true are retried;
    anything else propagates on the first failure.  After the last attempt
    the original exception is re-raised.
    """
    async for attempt in _retrying(policy, on_retry):
        with attempt:
            return await fn(*args, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
