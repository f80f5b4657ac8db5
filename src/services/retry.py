"""Exponential backoff for provider calls."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from src.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` up to ``max_retries`` times, waiting ``initial_delay * 2**i``.

    Non-retryable provider errors (authentication, payment) are raised after
    the first attempt. When every attempt fails the last error is raised.
    """

    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    attempt = 0
    while True:
        try:
            return await fn()
        except ProviderError as exc:
            if not exc.retryable or attempt == max_retries - 1:
                raise
            delay = initial_delay * (2 ** attempt)
            logger.info(
                f"Retrying in {delay:.2f}s (attempt {attempt + 1}/{max_retries}) "
                f"after {exc.error_type}"
            )
            await sleep(delay)
            attempt += 1
