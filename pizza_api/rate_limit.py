"""
Per-key sliding-window rate limiter, kept in process memory.
Keys are "token:<ip>" and "login:<ip>"; limits come from Settings.
"""
import math
import threading
import time
from collections import deque
from typing import Callable

from pizza_api.errors import APIError


class RateLimited(APIError):
    error = "rate_limited"
    status_code = 429


class RateLimiter:
    def __init__(self, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _sweep(self, now: float) -> None:
        """Forget keys with no hit inside the window. Caller holds the lock."""
        cutoff = now - self.window_seconds
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]
        self._last_sweep = now

    def check_and_consume(self, key: str, limit: int) -> tuple[bool, int | None]:
        """Record a hit for key unless it already has `limit` hits in the window.

        Returns (True, None) when allowed, else (False, seconds until the oldest hit leaves the window).
        A limit of 0 or less disables limiting.
        """
        if limit <= 0:
            return True, None
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits.get(key)
            if hits is not None:
                while hits and hits[0] <= now - self.window_seconds:
                    hits.popleft()
                if not hits:
                    del self._hits[key]
                elif len(hits) >= limit:
                    return False, max(1, math.ceil(hits[0] + self.window_seconds - now))
            self._hits.setdefault(key, deque()).append(now)
            return True, None

    def enforce(self, key: str, limit: int) -> None:
        allowed, retry_after = self.check_and_consume(key, limit)
        if not allowed:
            raise RateLimited(headers={"Retry-After": str(retry_after)})

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
