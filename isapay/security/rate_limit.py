"""
Fixed-window request throttle for the public initiate endpoint.

State is in-process and per instance. In a multi-instance deployment each
instance enforces its own window; swapping the counter dict for a shared
store keeps the ``hit`` interface unchanged.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class RateLimitDecision:
    """Outcome of a single rate-limit check."""

    allowed: bool
    remaining: int
    retry_after: float = 0.0  # seconds until the window resets

    @property
    def retry_after_header(self) -> str:
        """Whole seconds for the Retry-After header, never below 1."""
        return str(max(1, math.ceil(self.retry_after)))


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Allow ``limit`` requests per ``window`` seconds for each key.

    A key's window opens on its first request at t0 and closes at t0 + window;
    the first request at or after t0 + window opens a fresh one.
    """

    def __init__(
        self,
        limit: int = 30,
        window: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
        prune_every: int = 1000,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.limit = limit
        self.window = window
        self._clock = clock or time.monotonic
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._prune_every = prune_every
        self._hits_since_prune = 0

    def hit(self, key: str) -> RateLimitDecision:
        """Record one request for ``key`` and decide whether it may proceed."""
        now = self._clock()
        with self._lock:
            self._maybe_prune(now)
            rec = self._windows.get(key)
            if rec is None or now >= rec.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window)
                return RateLimitDecision(allowed=True, remaining=self.limit - 1)

            if rec.count >= self.limit:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, rec.reset_at - now),
                )

            rec.count += 1
            return RateLimitDecision(allowed=True, remaining=self.limit - rec.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._hits_since_prune = 0

    def _maybe_prune(self, now: float) -> None:
        self._hits_since_prune += 1
        if self._hits_since_prune < self._prune_every:
            return
        self._hits_since_prune = 0
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in expired:
            del self._windows[k]
