"""Minimum-interval limiter shared between concurrent traversals."""

from __future__ import annotations

import asyncio
import time
from typing import Optional


class RateLimiter:
    """Space out calls to :meth:`wait` by at least ``min_interval`` seconds."""

    def __init__(self, min_interval: float, clock=time.monotonic, sleep=asyncio.sleep) -> None:
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_time: Optional[float] = None

    async def wait(self) -> None:
        async with self._lock:
            if self._last_time is not None:
                wait_for = self._last_time + self.min_interval - self._clock()
                if wait_for > 0:
                    await self._sleep(wait_for)
            self._last_time = self._clock()
