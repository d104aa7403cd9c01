from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 1.0


class RateLimiter:
    """Sliding-window limiter for outbound RTM calls.

    Up to ``burst`` calls are admitted immediately within any trailing one
    second window. Once the window is full, the next call waits until the
    oldest call in the window is ``1 / sustained_rate`` seconds old.
    """

    def __init__(
        self,
        burst: int = 3,
        sustained_rate: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if burst < 1:
            raise ValueError("burst must be at least 1")
        if sustained_rate <= 0:
            raise ValueError("sustained_rate must be positive")
        self.burst = burst
        self.sustained_rate = sustained_rate
        self.min_interval = 1.0 / sustained_rate
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] > WINDOW_SECONDS:
            self._calls.popleft()

    def admit(self) -> float:
        """Block until another call may be issued, record it, and return the time waited."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            waited = 0.0
            if len(self._calls) >= self.burst:
                wait = (self._calls[0] + self.min_interval) - now
                if wait > 0:
                    logger.debug("Rate limit: waiting %.2fs", wait)
                    self._sleep(wait)
                    waited = wait
                now = self._clock()
                self._prune(now)
            self._calls.append(now)
            return waited

    @property
    def recent_calls(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._calls)
