# pulse_backend/utils/clock.py
"""
Millisecond clock shared by the cache, health tracker and rate limiters.
"""
import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch time in whole milliseconds."""
    return int(time.time() * 1000)
