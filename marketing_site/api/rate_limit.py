"""In-memory sliding-window rate limiter for the form endpoints."""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional


class SlidingWindowRateLimiter:
    """Allows at most ``limit`` hits per ``window_seconds`` for each client key.

    Keys whose window has emptied are dropped, so memory tracks only the
    clients seen during roughly the last window.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            self._prune(key, now)

    def hit(self, key: str) -> Optional[float]:
        """Record a hit; return seconds to wait if the limit is exceeded, else None."""
        now = self._clock()
        self._sweep(now)
        hits = self._prune(key, now)

        if len(hits) >= self.limit:
            return max(hits[0] + self.window_seconds - now, 0.0)

        hits.append(now)
        self._hits[key] = hits
        return None

    def remaining(self, key: str) -> int:
        hits = self._prune(key, self._clock())
        return max(self.limit - len(hits), 0)

    def tracked_keys(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()
