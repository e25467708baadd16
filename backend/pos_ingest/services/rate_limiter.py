"""
Per-key request throttling.

The in-process limiter below only counts requests seen by one instance.
Multi-instance deployments install a limiter backed by a shared counter;
callers only ever see allow(key).

This is a soft throttle, not a correctness mechanism: state is lost on
restart and nothing else depends on it.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from typing import Callable


class RateLimiter:
    """allow(key) -> True if the request may proceed (and is counted)."""

    def allow(self, key: str) -> bool:
        raise NotImplementedError


class SlidingWindowRateLimiter(RateLimiter):
    """
    Sliding-window limiter: at most max_requests per key in any
    window_seconds span.

    Memory is bounded by max_keys; the least recently used key is evicted
    first. Rejected requests are not counted.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        *,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._hits: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                hits = deque()
                self._hits[key] = hits
            else:
                self._hits.move_to_end(key)

            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.max_requests:
                return False

            hits.append(now)

            while len(self._hits) > self.max_keys:
                self._hits.popitem(last=False)

            return True

    def remaining(self, key: str) -> int:
        now = self._clock()
        window_start = now - self.window_seconds
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return self.max_requests
            recent = sum(1 for t in hits if t > window_start)
            return max(0, self.max_requests - recent)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
