"""Per-host rate limiting utilities."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict


class RateLimiter:
    """Minimum spacing between requests to the same host."""

    def __init__(self, *, rate: float = 1.5) -> None:
        self.rate = rate
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_request: dict[str, float] = defaultdict(lambda: 0.0)

    @classmethod
    def from_delay(cls, delay_seconds: float) -> "RateLimiter":
        if delay_seconds <= 0:
            return cls(rate=0.0)
        return cls(rate=1.0 / delay_seconds)

    @property
    def min_interval(self) -> float:
        if self.rate <= 0:
            return 0.0
        return 1.0 / self.rate

    async def wait_for_host(self, host: str) -> None:
        min_interval = self.min_interval
        if min_interval == 0:
            return
        lock = self._locks[host]
        async with lock:
            now = time.monotonic()
            elapsed = now - self._last_request[host]
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_request[host] = time.monotonic()
