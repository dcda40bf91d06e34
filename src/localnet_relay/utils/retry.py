"""
Bounded exponential backoff for chain client calls.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from ..errors import TransientChainError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRIABLE_ERRORS: tuple[type[BaseException], ...] = (
    TransientChainError,
    httpx.TransportError,
    asyncio.TimeoutError,
)


async def retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 5.0,
    on_failure: Callable[[BaseException], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    retry_on: tuple[type[BaseException], ...] = RETRIABLE_ERRORS,
) -> T:
    """
    Run ``operation``, retrying transient failures.

    The delay doubles from ``base_delay`` and is capped at ``max_delay``.
    Errors outside ``retry_on`` propagate immediately.

    Args:
        operation: Zero-argument coroutine factory
        retries: Retries after the first attempt
        base_delay: First backoff delay in seconds
        max_delay: Upper bound for a single delay
        on_failure: Called with the last error once retries are exhausted
        sleep: Sleep function, replaceable for deterministic tests
        retry_on: Exception types considered transient

    Returns:
        The operation's result

    Raises:
        The last transient error once retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= retries:
                logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                if on_failure is not None:
                    on_failure(e)
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            attempt += 1
            logger.warning(f"Attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
            await sleep(delay)
