# snapshot_service/resilience.py
"""
Retry helpers for calls against the document store.

Only used where waiting is the right answer (startup connectivity). Scheduled
actions never retry in place; the next trigger is the retry.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, min_wait: float, max_wait: float) -> float:
    """Exponential backoff for 1-based `attempt`, capped at max_wait."""
    return min(min_wait * (2 ** (attempt - 1)), max_wait)


def with_sync_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_exceptions: tuple[type[Exception], ...] = (Exception,),
    operation: str | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Callable:
    """
    Decorator for sync store calls with exponential backoff retry.

    Every failed attempt is logged with an `attempt` field so a slow store
    shows up as one retry sequence per operation; the final failure is
    re-raised unchanged.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        min_wait: Wait before the second attempt (seconds)
        max_wait: Upper bound on any single wait (seconds)
        retry_exceptions: Tuple of exception types to retry on
        operation: Name used in log records (defaults to the function name)
        sleep: Sleep function (defaults to time.sleep)
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = operation or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except retry_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{name} gave up after {attempt} attempts: {e}",
                            extra={"event": "retry_exhausted", "operation": name, "attempt": attempt},
                        )
                        raise

                    wait_time = backoff_delay(attempt, min_wait, max_wait)
                    logger.warning(
                        f"{name} attempt {attempt}/{max_attempts} failed: {e}. Retrying in {wait_time:.1f}s",
                        extra={"event": "retry_scheduled", "operation": name, "attempt": attempt},
                    )
                    (sleep or time.sleep)(wait_time)
                    attempt += 1

        return wrapper

    return decorator
