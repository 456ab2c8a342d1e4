"""Asynchronous per-provider spacing limiter.

Enforces a minimum interval between granted calls to the same provider key.
Each provider is limited independently; waiting callers are served in arrival
order.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable


class ProviderRateLimiter:
    """Minimum-interval limiter keyed by provider (async)."""

    def __init__(self, min_interval: float, clock: Callable[[], float] | None = None):
        """Initialize limiter.

        Args:
            min_interval: Seconds that must separate two grants for one key
            clock: Monotonic clock (defaults to time.monotonic)

        """
        self.min_interval = min_interval
        self._clock = clock or time.monotonic
        self._last: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _remaining(self, key: str) -> float:
        last = self._last.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - last))

    async def acquire(
        self, key: str, *, blocking: bool = True, timeout: float | None = None
    ) -> bool:
        """Acquire the next slot for ``key``.

        Args:
            key: Provider key (the source host)
            blocking: Wait for the slot; if False, refuse when not immediately free
            timeout: Longest total wait in seconds when blocking (None = unbounded)

        Returns:
            True if granted, False if refused

        """
        lock = self._lock_for(key)

        if not blocking:
            if lock.locked() or self._remaining(key) > 0:
                return False
            async with lock:
                self._last[key] = self._clock()
                return True

        t0 = self._clock()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except TimeoutError:
            return False

        try:
            wait_sec = self._remaining(key)
            if timeout is not None and (self._clock() - t0) + wait_sec > timeout:
                return False
            if wait_sec > 0:
                await asyncio.sleep(wait_sec)
            self._last[key] = self._clock()
            return True
        finally:
            lock.release()

    def last_acquired(self, key: str) -> float | None:
        return self._last.get(key)


__all__ = ["ProviderRateLimiter"]
