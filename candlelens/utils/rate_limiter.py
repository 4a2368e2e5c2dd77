"""Rate limiting utilities to respect provider quotas."""

import time
from collections import deque
from typing import Callable


class RateLimiter:
    """Sliding one-minute window limiter, one instance per provider."""

    def __init__(
        self,
        calls_per_minute: int = 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.calls_per_minute = max(1, int(calls_per_minute))
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()

    def _expire(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= 60:
            self._timestamps.popleft()

    def would_wait(self) -> float:
        """Seconds the next call would have to wait; records nothing."""
        now = self._clock()
        self._expire(now)
        if len(self._timestamps) < self.calls_per_minute:
            return 0.0
        return max(60 - (now - self._timestamps[0]), 0.0)

    def wait(self) -> float:
        """Block until a request is allowed; return the seconds slept."""
        now = self._clock()
        self._expire(now)
        slept = 0.0
        if len(self._timestamps) >= self.calls_per_minute:
            slept = 60 - (now - self._timestamps[0])
            if slept > 0:
                self._sleep(slept)
            self._timestamps.popleft()
        self._timestamps.append(self._clock())
        return max(slept, 0.0)
