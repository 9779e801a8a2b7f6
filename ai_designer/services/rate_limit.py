from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    """Per-key request counter over a sliding window.

    State lives in this process only, so with several workers the limit applies per worker. Keys with
    no hits left in the window are dropped by a sweep that runs at most once per window.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            self._trim(hits, now)
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = self._clock()

    def _trim(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            self._trim(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now
