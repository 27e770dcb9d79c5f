"""
Sliding-window rate limiter.

Every API call goes through acquire(). The limiter keeps the timestamps of
calls made during the trailing window and blocks until one more call fits.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most max_requests calls in any trailing window_ms window."""

    def __init__(self, max_requests: int, window_ms: int, buffer_ms: int = 100,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if max_requests < 1:
            raise ValueError("max_requests must be positive")
        if window_ms < 1:
            raise ValueError("window_ms must be positive")
        self._max_requests = max_requests
        self._window = window_ms / 1000
        self._buffer = buffer_ms / 1000
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self._window:
            self._calls.popleft()

    def acquire(self) -> None:
        """Block until one more call is allowed, then record it."""
        # Held across the sleep: waiting callers queue up behind the lock.
        with self._lock:
            now = self._clock()
            self._evict(now)
            while len(self._calls) >= self._max_requests:
                wait = self._window - (now - self._calls[0]) + self._buffer
                logger.info(f"Rate limit reached ({len(self._calls)}/{self._max_requests}), "
                            f"waiting {wait:.1f}s...")
                self._sleep(wait)
                now = self._clock()
                self._evict(now)
            self._calls.append(self._clock())

    def __len__(self) -> int:
        return len(self._calls)
