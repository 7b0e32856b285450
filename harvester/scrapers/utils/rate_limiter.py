"""Sliding-window request throttle with a bounded concurrency gate.

One limiter instance is shared by every job in the process. A slot is made of
two reservations taken atomically: an in-flight slot (released explicitly) and
an entry in the one-minute request window (which expires on its own).
"""

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Deque, Optional

import structlog

from harvester.core.exceptions import RateLimitExceeded

logger = structlog.get_logger(__name__)

_UNSET = object()


class SlidingWindowRateLimiter:
    """Throttle requests to ``max_requests`` per window and ``max_concurrent`` in flight.

    Waiting callers poll instead of queueing; each poll sleeps until the
    earliest moment a reservation could succeed (capped by the poll interval
    while the concurrency gate is the blocker).
    """

    def __init__(
        self,
        max_requests: int = 15,
        max_concurrent: int = 3,
        acquire_timeout: Optional[float] = 30.0,
        window_seconds: float = 60.0,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            max_requests: Requests allowed per sliding window
            max_concurrent: Requests allowed in flight at once
            acquire_timeout: Seconds a caller may wait for a slot, None waits forever
            window_seconds: Length of the sliding window
            poll_interval: Upper bound on a single wait while the gate is full
            clock: Monotonic time source in seconds
        """
        if max_requests < 1 or max_concurrent < 1:
            raise ValueError("max_requests and max_concurrent must be at least 1")
        self.max_requests = max_requests
        self.max_concurrent = max_concurrent
        self.acquire_timeout = acquire_timeout
        self.window_seconds = window_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._request_times: Deque[float] = deque()
        self._active = 0
        self._waiting = 0
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        """Drop request timestamps that have left the window."""
        cutoff = now - self.window_seconds
        while self._request_times and self._request_times[0] <= cutoff:
            self._request_times.popleft()

    def _try_reserve(self) -> Optional[float]:
        """Reserve both slots if possible.

        Returns:
            None when reserved, otherwise seconds until a retry is worthwhile
        """
        now = self._clock()
        self._prune(now)
        if self._active >= self.max_concurrent:
            return self.poll_interval
        if len(self._request_times) >= self.max_requests:
            oldest = self._request_times[0]
            return max(oldest + self.window_seconds - now, 0.0)
        self._request_times.append(now)
        self._active += 1
        return None

    async def acquire(self, timeout=_UNSET) -> None:
        """Wait for a concurrency slot and a window slot, then take both.

        Args:
            timeout: Override for the configured acquire timeout (None waits forever)

        Raises:
            RateLimitExceeded: If no slot became available within the timeout
        """
        timeout = self.acquire_timeout if timeout is _UNSET else timeout
        deadline = None if timeout is None else self._clock() + timeout

        self._waiting += 1
        try:
            while True:
                async with self._lock:
                    wait = self._try_reserve()
                if wait is None:
                    return

                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        logger.warning(
                            "rate_limit_exceeded",
                            timeout=timeout,
                            active=self._active,
                            requests_in_window=len(self._request_times),
                        )
                        raise RateLimitExceeded(timeout)
                    wait = min(wait, remaining)

                # Never spin: a zero wait still yields to the loop
                await asyncio.sleep(max(wait, 0.001))
        finally:
            self._waiting -= 1

    def release(self) -> None:
        """Free the concurrency slot; the window entry expires on its own."""
        self._active = max(0, self._active - 1)

    @asynccontextmanager
    async def slot(self, timeout=_UNSET) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block, released on any exit."""
        await self.acquire(timeout)
        try:
            yield
        finally:
            self.release()

    def status(self) -> dict:
        """Get current limiter usage and configured limits.

        Returns:
            Dictionary with in-flight, waiting, and windowed request counts
        """
        self._prune(self._clock())
        return {
            "active_requests": self._active,
            "queued_requests": self._waiting,
            "requests_in_last_minute": len(self._request_times),
            "max_concurrent": self.max_concurrent,
            "max_requests_per_minute": self.max_requests,
        }

    def update_config(
        self,
        max_requests: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        acquire_timeout=_UNSET,
    ) -> None:
        """Change limits at runtime; in-flight reservations are kept."""
        if max_requests is not None:
            if max_requests < 1:
                raise ValueError("max_requests must be at least 1")
            self.max_requests = max_requests
        if max_concurrent is not None:
            if max_concurrent < 1:
                raise ValueError("max_concurrent must be at least 1")
            self.max_concurrent = max_concurrent
        if acquire_timeout is not _UNSET:
            self.acquire_timeout = acquire_timeout
        logger.info(
            "rate_limiter_config_updated",
            max_requests=self.max_requests,
            max_concurrent=self.max_concurrent,
            acquire_timeout=self.acquire_timeout,
        )
