"""Retry utilities with exponential backoff."""

import asyncio
import random
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .shutdown import ShutdownSignal

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delays(
    max_attempts: int,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True
):
    """Yield the delay to wait after each failed attempt except the last."""
    delay = initial_delay
    for _ in range(max_attempts - 1):
        if jitter:
            # Add jitter: ±25% of the delay
            jitter_range = delay * 0.25
            actual_delay = delay + random.uniform(-jitter_range, jitter_range)
        else:
            actual_delay = delay

        yield min(actual_delay, max_delay)
        delay *= backoff_factor


async def retry_until_true(
    func: Callable[[], Awaitable[bool]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    shutdown: Optional[ShutdownSignal] = None,
    description: str = "operation"
) -> bool:
    """
    Call an async predicate until it returns True or attempts run out.

    Args:
        func: Async callable returning True on success
        max_attempts: Maximum number of attempts, at least 1
        initial_delay: Initial delay between attempts (seconds)
        max_delay: Maximum delay between attempts (seconds)
        backoff_factor: Multiplier for delay after each failure
        jitter: Whether to add random jitter to delays
        shutdown: Signal that aborts the remaining attempts
        description: Name used in log lines

    Returns:
        True if any attempt succeeded
    """
    delays = backoff_delays(max_attempts, initial_delay, max_delay, backoff_factor, jitter)

    for attempt in range(1, max_attempts + 1):
        if await func():
            return True

        if attempt == max_attempts:
            break

        delay = next(delays)
        logger.warning(
            f"{description} attempt {attempt}/{max_attempts} failed. "
            f"Retrying in {delay:.2f} seconds..."
        )

        if shutdown is not None:
            if await shutdown.wait(delay):
                logger.info(f"Shutdown requested, abandoning {description}")
                return False
        else:
            await asyncio.sleep(delay)

    logger.error(f"{description} failed after {max_attempts} attempts")
    return False
