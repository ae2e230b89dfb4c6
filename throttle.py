"""
Bounded fan-out for external lookups.

A single semaphore caps how many requests are in flight at once. On top of
that, calls addressed to the same provider are spaced by a fixed delay so a
rate-limited upstream (public RPC, indexer API) is never hit back-to-back.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List

logger = logging.getLogger("Throttle")


class BoundedFanout:
    def __init__(self, max_concurrency: int = 5, request_delay: float = 0.2):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.request_delay = request_delay
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._provider_locks: Dict[str, asyncio.Lock] = {}
        self._last_call: Dict[str, float] = {}

    def _lock_for(self, provider: str) -> asyncio.Lock:
        lock = self._provider_locks.get(provider)
        if lock is None:
            lock = asyncio.Lock()
            self._provider_locks[provider] = lock
        return lock

    async def _pace(self, provider: str) -> None:
        """Wait until request_delay has passed since the last call to provider."""
        if self.request_delay <= 0:
            return
        async with self._lock_for(provider):
            last = self._last_call.get(provider)
            now = time.monotonic()
            if last is not None:
                wait = self.request_delay - (now - last)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_call[provider] = time.monotonic()

    async def run(self, provider: str, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run one call under the concurrency cap and the provider's pacing."""
        async with self._semaphore:
            await self._pace(provider)
            return await fn(*args, **kwargs)

    async def map(self, provider: str, fn: Callable[[Any], Awaitable[Any]],
                  items: Iterable[Any], return_exceptions: bool = False) -> List[Any]:
        """Apply fn to every item, preserving input order in the result."""
        tasks = [self.run(provider, fn, item) for item in items]
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
