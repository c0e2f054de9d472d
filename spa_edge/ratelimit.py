"""Per-client fixed window rate limiting."""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        """Whole seconds until the client's window resets."""

        return max(0, math.ceil(self.reset_at - now))


class FixedWindowRateLimiter:
    """Counts hits per key inside a window that starts at the key's first hit.

    Rejected hits are not queued. Counters whose window has passed are swept
    lazily, at most once per window.
    """

    def __init__(self, limit: int = 10, window_seconds: float = 60.0, clock: Callable[[], float] = time.time) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[str, List[float]] = {}
        self._next_sweep = clock() + window_seconds

    def hit(self, key: str) -> RateLimitDecision:
        """Count one hit for ``key`` and report whether it is within quota."""

        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            counter = self._counters.get(key)
            if counter is None or now >= counter[0] + self.window_seconds:
                counter = [now, 0]
                self._counters[key] = counter
            counter[1] += 1
            count = int(counter[1])
            reset_at = counter[0] + self.window_seconds

        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_at=reset_at,
        )

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def now(self) -> float:
        return self._clock()

    def _sweep(self, now: float) -> None:
        expired = [key for key, (start, _) in self._counters.items() if now >= start + self.window_seconds]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + self.window_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)


__all__ = ["FixedWindowRateLimiter", "RateLimitDecision"]
