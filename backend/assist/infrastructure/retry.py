"""
Exponential backoff for async operations.

Used at the processor transport boundary and around the subscription write
protocol.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    return min(base_delay * (2 ** attempt), max_delay)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
) -> T:
    """
    Await ``operation()`` up to ``attempts`` times.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised
    once the attempts are exhausted. Anything else propagates immediately.
    """
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt + 1 >= attempts:
                logger.error(
                    f"{operation_name} failed after {attempts} attempts: {e}"
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"{operation_name} transient error. Attempt {attempt + 1}/{attempts}. "
                f"Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")
