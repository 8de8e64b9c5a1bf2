"""Sliding-window throttle for outbound API requests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

# Extra delay after the oldest request ages out, absorbs clock skew with the server
DEFAULT_SAFETY_MARGIN_SEC = 0.1


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per rolling ``window_seconds``.

    When saturated, ``acquire`` suspends the caller until the oldest request
    in the window has aged out.
    """

    def __init__(
        self,
        max_requests: int = 120,
        window_seconds: float = 60.0,
        *,
        safety_margin: float = DEFAULT_SAFETY_MARGIN_SEC,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._safety_margin = safety_margin
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self._window
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            self._evict(now)

            if len(self._requests) >= self._max_requests:
                wait_time = self._window - (now - self._requests[0]) + self._safety_margin
                logger.debug(
                    "rate_limit_wait",
                    extra={"wait_seconds": round(wait_time, 3), "in_window": len(self._requests)},
                )
                await self._sleep(max(wait_time, 0.0))
                now = self._clock()
                self._evict(now)

            self._requests.append(self._clock())

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._requests)
