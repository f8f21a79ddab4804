"""Retry helpers without external dependencies."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

RETRY_EXCEPTIONS: tuple[type[BaseException], ...] = (OSError, asyncio.TimeoutError)


def _default_retryable(exc: BaseException) -> bool:
    return getattr(exc, "retryable", True)


def retry_async(
    func: Callable[..., Awaitable],
    *,
    retries: int = 2,
    base_delay: float = 1.0,
    exceptions: tuple[type[BaseException], ...] = RETRY_EXCEPTIONS,
    is_retryable: Callable[[BaseException], bool] = _default_retryable,
):
    """Wrap ``func`` so matching failures are retried with exponential backoff.

    ``retries`` counts extra attempts after the first call. Exceptions for
    which ``is_retryable`` returns False are raised at once without using up
    the retry budget.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(retries + 1):
            try:
                return await func(*args, **kwargs)
            except exceptions as exc:
                if attempt == retries or not is_retryable(exc):
                    raise
                logger.warning("Attempt %s failed: %s", attempt + 1, exc)
                if delay > 0:
                    await asyncio.sleep(delay + random.random() * delay)
                delay *= 2
    return wrapper
