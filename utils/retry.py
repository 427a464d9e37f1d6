"""
Retry helpers shared by capture, select verification and page scripts.

``retry_async`` retries an operation until it returns a truthy result or the
attempt budget runs out. ``retry_call`` accepts any returned value and only
retries when the call raises. Exceptions raised by the operation count as failed
attempts, except for the types listed in ``propagate`` (cancellation and
other run-ending conditions), which are re-raised immediately.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def linear_backoff(base_delay: float) -> Callable[[int], float]:
    """Delay grows with the attempt number: base, 2*base, 3*base ..."""
    def _delay(attempt: int) -> float:
        return base_delay * attempt
    return _delay


def constant_delay(delay: float) -> Callable[[int], float]:
    def _delay(attempt: int) -> float:
        return delay
    return _delay


async def retry_async(
    operation: Callable[[int], Awaitable[Optional[T]]],
    attempts: int,
    delay: Callable[[int], float],
    description: str = "operation",
    propagate: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Optional[T]:
    """
    Run ``operation`` up to ``attempts`` times.

    Args:
        operation: Coroutine factory receiving the 1-based attempt number
        attempts: Maximum number of calls
        delay: Maps the failed attempt number to the wait before the next one
        description: Used in log messages
        propagate: Exception types that abort retrying and are re-raised
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The first truthy result, or None when every attempt failed
    """
    for attempt in range(1, attempts + 1):
        try:
            result = await operation(attempt)
            if result:
                if attempt > 1:
                    logger.debug(f"  {description} succeeded on attempt {attempt}/{attempts}")
                return result
            logger.warning(f"  {description} attempt {attempt}/{attempts} failed")
        except propagate:
            raise
        except Exception as e:
            logger.warning(f"  {description} attempt {attempt}/{attempts} failed: {e}")

        if attempt < attempts:
            wait = delay(attempt)
            if wait > 0:
                await sleep(wait)

    logger.error(f"  {description} failed after {attempts} attempts")
    return None


async def retry_call(
    operation: Callable[[int], Awaitable[T]],
    attempts: int,
    delay: Callable[[int], float],
    description: str = "operation",
    propagate: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it returns without raising.

    Falsy results (0, empty lists, False) are valid answers here, so only
    exceptions count as failed attempts.

    Raises:
        The last exception once every attempt has failed, or a ``propagate``
        type immediately
    """
    for attempt in range(1, attempts + 1):
        try:
            result = await operation(attempt)
            if attempt > 1:
                logger.debug(f"  {description} succeeded on attempt {attempt}/{attempts}")
            return result
        except propagate:
            raise
        except Exception as e:
            if attempt >= attempts:
                logger.error(f"  {description} failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"  {description} attempt {attempt}/{attempts} raised: {e}")

        wait = delay(attempt)
        if wait > 0:
            await sleep(wait)
