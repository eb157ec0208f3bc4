"""
backend/app/providers/rate_limiter.py

Purpose:
    Process-local token bucket pacing requests to one statistics provider.

Dependencies:
    - asyncio
    - time
"""

from __future__ import annotations

import asyncio
import time


class RequestRateLimiter:
    """Token bucket refilled at ``rpm`` requests per minute, burst = rpm."""

    def __init__(self, rpm: int | None) -> None:
        self._lock = asyncio.Lock()
        self.configure(rpm)

    def configure(self, rpm: int | None) -> None:
        self.rpm = int(rpm or 0)
        self.capacity = max(1.0, float(self.rpm))
        self.refill_per_second = self.capacity / 60.0
        self.tokens = self.capacity
        self.updated_at = time.monotonic()

    async def acquire(self) -> None:
        if self.rpm <= 0:
            return
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = max(0.0, now - self.updated_at)
                self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_second)
                self.updated_at = now
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return
                wait_seconds = (1.0 - self.tokens) / max(self.refill_per_second, 1e-9)
            await asyncio.sleep(wait_seconds)
