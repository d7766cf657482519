"""Default in-process rate limiter for search calls."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

from catalog_rag.config import RateLimitConfig
from catalog_rag.types import RateDecision


class SlidingWindowRateLimiter:
    """Allows `max_requests` per `(tenant, client address, action)` per window.

    Windows whose newest request has left the horizon are swept at most once
    per window length, so one-off client addresses do not accumulate.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: dict[tuple[str, str, str], deque[float]] = {}
        self._next_sweep = float("-inf")

    async def check(
        self, tenant_id: str, client_address: str | None, action: str
    ) -> RateDecision:
        now = self._clock()
        horizon = now - self.config.window_seconds
        if now >= self._next_sweep:
            self._sweep(horizon)
            self._next_sweep = now + self.config.window_seconds

        key = (tenant_id, client_address or "*", action)
        window = self._windows.setdefault(key, deque())
        while window and window[0] <= horizon:
            window.popleft()

        if len(window) >= self.config.max_requests:
            return RateDecision(
                allowed=False,
                reason=f"{self.config.max_requests} {action} requests per {self.config.window_seconds:g}s exceeded",
            )
        window.append(now)
        return RateDecision(allowed=True)

    def _sweep(self, horizon: float) -> None:
        stale = [
            key for key, window in self._windows.items() if not window or window[-1] <= horizon
        ]
        for key in stale:
            del self._windows[key]
