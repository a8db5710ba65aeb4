"""
Rate control primitives.

SlidingWindowRateLimiter caps requests per key per minute (HTTP host).
Throttle admits at most one call per interval and drops the rest
(engagement heatmap updates).
"""

import time
from collections import defaultdict
from typing import Callable, Optional


class SlidingWindowRateLimiter:
    """In-memory sliding window rate limiter per key."""

    def __init__(
        self,
        requests_per_minute: int = 120,
        clock: Callable[[], float] = time.time
    ):
        self.requests_per_minute = requests_per_minute
        self.window_seconds = 60
        self.clock = clock
        # key -> request timestamps in window
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _prune(self, key: str):
        """Remove timestamps older than window."""
        cutoff = self.clock() - self.window_seconds
        self._requests[key] = [t for t in self._requests[key] if t > cutoff]

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed."""
        self._prune(key)
        return len(self._requests[key]) < self.requests_per_minute

    def record(self, key: str):
        """Record a request."""
        self._requests[key].append(self.clock())

    def retry_after_seconds(self, key: str) -> int:
        """Seconds until next request allowed (oldest in window expires)."""
        self._prune(key)
        if len(self._requests[key]) < self.requests_per_minute:
            return 0
        oldest = min(self._requests[key])
        return max(1, int(self.window_seconds - (self.clock() - oldest)))


class Throttle:
    """Leading-edge throttle: first call passes, calls inside the window are dropped."""

    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._last_allowed: Optional[float] = None
        self.dropped = 0

    def try_acquire(self) -> bool:
        """Return True and open a new window if the previous one has elapsed."""
        now = self.clock()
        if self._last_allowed is not None and now - self._last_allowed < self.interval_seconds:
            self.dropped += 1
            return False
        self._last_allowed = now
        return True

    def reset(self):
        self._last_allowed = None
