"""
Retry with exponential backoff for calls to an instance's OpenSearch cluster.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Any, Callable, Optional

from ..config import config
from ..opensearch.exceptions import OpenSearchRetryExhaustedError

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, factor: float, max_delay: float) -> float:
    """Delay before retry number ``attempt``, with jitter after the first."""
    if attempt == 1:
        return 1.0
    wait_time = min(factor ** (attempt - 1), max_delay)
    # Spread out workers retrying the same cluster
    return wait_time * (0.5 + random.random() * 0.5)


def async_retry(
    max_attempts: Optional[int] = None,
    backoff_factor: Optional[float] = None,
    max_delay: Optional[int] = None,
    exceptions: tuple = (Exception,)
):
    """
    Retry a coroutine function while it raises one of ``exceptions``.

    Unset arguments fall back to the process configuration, read at call
    time. Once the attempts are used up the last error is wrapped in
    ``OpenSearchRetryExhaustedError``.

    Args:
        max_attempts: Total attempts, -1 to retry forever
        backoff_factor: Base of the exponential delay
        max_delay: Cap on a single delay in seconds
        exceptions: Exception types worth retrying
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempts = max_attempts if max_attempts is not None else config.max_retry_attempts
            factor = backoff_factor if backoff_factor is not None else config.retry_backoff_factor
            cap = max_delay if max_delay is not None else config.retry_max_delay

            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    attempt += 1
                    if attempts != -1 and attempt >= attempts:
                        logger.error("%s failed %d times, giving up: %s", func.__name__, attempt, e)
                        raise OpenSearchRetryExhaustedError(
                            f"{func.__name__} failed after {attempt} attempts: {e}"
                        ) from e

                    wait_time = backoff_delay(attempt, factor, cap)
                    logger.warning("%s failed (attempt %d): %s; retrying in %.2fs",
                                   func.__name__, attempt, e, wait_time)
                    await asyncio.sleep(wait_time)

        return wrapper
    return decorator
