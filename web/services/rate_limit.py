from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional


class SlidingWindowLimiter:
    """Per-key attempt limiter over a sliding time window.

    Allowed calls to `hit()` are counted whatever the outcome of the guarded
    action; rejected calls are not.
    """

    def __init__(self, *, max_attempts: int = 5, window_seconds: float = 15 * 60, clock: Optional[Callable[[], float]] = None):
        self.max_attempts = int(max_attempts)
        self.window_seconds = float(window_seconds)
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def _prune(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, key: str) -> bool:
        """Record an attempt for `key`; return False if it exceeds the limit."""
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            self._prune(hits, now)
            if len(hits) >= self.max_attempts:
                return False
            hits.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until `key` may attempt again; 0 when it is not blocked."""
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return 0
            self._prune(hits, now)
            if len(hits) < self.max_attempts:
                return 0
            return max(1, math.ceil(hits[0] + self.window_seconds - now))

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = []
            for key, hits in self._hits.items():
                self._prune(hits, now)
                if not hits:
                    stale.append(key)
            for key in stale:
                del self._hits[key]
        return len(stale)
