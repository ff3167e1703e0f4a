"""In-memory per-client rate limiting for the inbound routes."""
from __future__ import annotations

import asyncio
import time
from typing import Dict, Tuple

from fastapi import HTTPException, status

# A bucket untouched for this long has refilled completely.
IDLE_SECONDS = 60.0


class RateLimiter:
    """Token bucket per client key, refilled continuously over a minute."""

    def __init__(self, max_per_minute: int) -> None:
        self.max_per_minute = max_per_minute
        self._allowance: Dict[str, Tuple[float, float]] = {}
        self._last_sweep = time.monotonic()
        self._lock = asyncio.Lock()

    def _forget_idle(self, now: float) -> None:
        if now - self._last_sweep < IDLE_SECONDS:
            return
        self._last_sweep = now
        idle = [key for key, (_, last_seen) in self._allowance.items() if now - last_seen >= IDLE_SECONDS]
        for key in idle:
            del self._allowance[key]

    async def check(self, key: str) -> None:
        if self.max_per_minute <= 0:
            return
        now = time.monotonic()
        async with self._lock:
            self._forget_idle(now)
            tokens, last_seen = self._allowance.get(key, (float(self.max_per_minute), now))
            tokens = min(float(self.max_per_minute), tokens + (now - last_seen) / 60 * self.max_per_minute)
            if tokens < 1:
                self._allowance[key] = (tokens, now)
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Rate limit exceeded. Please try again shortly.",
                )
            self._allowance[key] = (tokens - 1, now)


def create_rate_limiter(max_per_minute: int) -> RateLimiter:
    return RateLimiter(max_per_minute=max_per_minute)
