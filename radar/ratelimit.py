from __future__ import annotations

import asyncio
import logging
import time
from collections import deque

log = logging.getLogger(__name__)


class RateLimiter:
    """Per-backend rate limiter.

    Enforces a minimum delay between calls, exponential backoff on rate
    limit errors, and optionally a cap of ``max_requests`` per rolling
    ``window`` seconds.  ``acquire`` returns False (without waiting) once
    the window is exhausted.
    """

    def __init__(
        self,
        min_delay: float = 2.0,
        max_delay: float = 120.0,
        max_requests: int | None = None,
        window: float = 0.0,
        name: str = "backend",
    ):
        self._lock = asyncio.Lock()
        self._min_delay = min_delay
        self._current_delay = min_delay
        self._max_delay = max_delay
        self._max_requests = max_requests
        self._window = window
        self._calls: deque[float] = deque()
        self._last_call: float = 0.0
        self.name = name

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self._window:
            self._calls.popleft()

    @property
    def remaining(self) -> int | None:
        if self._max_requests is None:
            return None
        self._prune(time.monotonic())
        return max(0, self._max_requests - len(self._calls))

    async def acquire(self) -> bool:
        """Wait out the spacing delay; False if the request window is full."""
        async with self._lock:
            if self._max_requests is not None:
                self._prune(time.monotonic())
                if len(self._calls) >= self._max_requests:
                    log.warning("%s rate limit reached (%d per %.0fs)", self.name, self._max_requests, self._window)
                    return False
            wait = self._current_delay - (time.monotonic() - self._last_call)
            if wait > 0:
                log.debug("%s rate limiter: waiting %.1fs", self.name, wait)
                await asyncio.sleep(wait)
            self._last_call = time.monotonic()
            if self._max_requests is not None:
                self._calls.append(self._last_call)
            return True

    def backoff(self) -> None:
        """Double the current delay (up to max) after a rate limit error."""
        self._current_delay = min(self._current_delay * 2, self._max_delay)
        log.warning("%s rate limited, backing off to %.0fs between requests", self.name, self._current_delay)

    def reset(self) -> None:
        """Reset delay to baseline after a successful call."""
        self._current_delay = self._min_delay
