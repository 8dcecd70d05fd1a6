# pulse_backend/utils/exponential_backoff.py
"""
Exponential backoff utilities for retrying failed upstream calls.
"""
import random
import time
from typing import Any, Callable, Optional, TypeVar

from .logger import log

T = TypeVar('T')


def calculate_delay(attempt: int, initial_delay: float, max_delay: float,
                    multiplier: float, jitter: float = 0.0) -> float:
    """
    Delay before retry number attempt (0-based), capped at max_delay,
    with +/- jitter seconds of noise.
    """
    delay = min(initial_delay * (multiplier ** attempt), max_delay)
    if jitter:
        delay += random.uniform(-jitter, jitter)
    return max(0.0, delay)


def retry_with_backoff(
    func: Callable[..., T],
    *args,
    max_retries: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    multiplier: float = 2.0,
    jitter: float = 0.1,
    exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Any] = time.sleep,
    **kwargs
) -> T:
    """
    Call func, retrying with exponential backoff.

    Args:
        func: Function to retry
        max_retries: Maximum number of retry attempts (total calls = max_retries + 1)
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        multiplier: Multiplier for exponential backoff
        jitter: Random jitter in seconds added to each delay
        exceptions: Exceptions that are candidates for retry
        should_retry: Optional predicate; a caught exception for which it
            returns False is re-raised immediately
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of func
    """
    for attempt in range(max_retries + 1):
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            retryable = should_retry(e) if should_retry is not None else True
            if attempt >= max_retries or not retryable:
                raise
            delay = calculate_delay(attempt, initial_delay, max_delay, multiplier, jitter)
            log(f"[Retry] Attempt {attempt + 1} failed, retrying in {delay:.2f}s: {e}", "DEBUG")
            sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
