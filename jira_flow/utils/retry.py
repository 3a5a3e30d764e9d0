"""Backoff for read-only tracker calls.

Only idempotent reads (issues, transition lists, field values, the field
catalog) are decorated. Transitions, field writes and assignee changes are
never retried: replaying them could fire the tracker's own post-functions
twice.

Two kinds of failure are retried:

- network-level ``httpx.TransportError`` (refused, reset, timed out)
- ``ExternalServiceError`` carrying a throttling or gateway status
  (429, 502, 503, 504)

Any other tracker answer, including a plain 500, is final.

Example:
    >>> @async_retry(max_attempts=3, backoff_factor=2.0)
    ... async def fetch_issue(self, key: str) -> Issue:
    ...     ...

Backoff: the n-th retry waits ``backoff_factor ** n`` seconds, capped at
``max_delay``.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

from jira_flow.exceptions import ExternalServiceError

log = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (httpx.TransportError,)
RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


def is_retryable(error: Exception, exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS) -> bool:
    if isinstance(error, exceptions):
        return True
    return isinstance(error, ExternalServiceError) and error.status_code in RETRYABLE_STATUS_CODES


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    max_delay: float = 30.0,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry an async tracker read with exponential backoff.

    Args:
        max_attempts: Total calls, including the first
        backoff_factor: Base of the exponential delay
        exceptions: Exception types always treated as transient
        max_delay: Upper bound for a single wait, in seconds

    Raises:
        The last error once attempts run out, or the first non-retryable one
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable(e, exceptions):
                        raise
                    if attempt >= max_attempts:
                        log.error("tracker_read_gave_up", call=func.__name__, attempts=attempt, error=str(e))
                        raise
                    delay = min(backoff_factor**attempt, max_delay)
                    log.warning(
                        "tracker_read_retrying",
                        call=func.__name__,
                        attempt=attempt,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
