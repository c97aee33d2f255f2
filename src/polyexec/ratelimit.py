"""Sliding-window admission control for executions."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from .errors import RateLimitExceeded


GLOBAL_KEY = "*"


class SlidingWindowRateLimiter:
    """Admit at most ``limit`` calls per key within any ``window`` seconds.

    A ``limit`` of zero or less disables the limiter.  With ``scope`` set to
    ``"global"`` every caller shares one window.  Keys whose window has
    emptied are forgotten, at most once per window, so the table only holds
    callers seen recently.
    """

    def __init__(
        self,
        limit: int,
        window: float = 60.0,
        scope: str = "client",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window
        self.scope = scope
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def key_for(self, client: str | None) -> str:
        if self.scope == "global":
            return GLOBAL_KEY
        return client or "unknown"

    def acquire(self, client: str | None) -> None:
        """Record one call for ``client`` or raise :class:`RateLimitExceeded`."""
        if not self.enabled:
            return
        key = self.key_for(client)
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            window = self._windows.setdefault(key, deque())
            self._prune(window, now)
            if len(window) >= self.limit:
                retry_after = max(0.0, self.window - (now - window[0]))
                raise RateLimitExceeded(self.limit, retry_after)
            window.append(now)

    def _prune(self, window: Deque[float], now: float) -> None:
        while window and now - window[0] >= self.window:
            window.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._windows):
            window = self._windows[key]
            self._prune(window, now)
            if not window:
                del self._windows[key]
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        with self._lock:
            return len(self._windows)
