"""
RPC endpoint manager with failover.

Keeps one AsyncWeb3 connection open against the current endpoint. Rate-limit
responses (429 / 403 / quota messages) earn a strike; three strikes rotate to
the next endpoint, anything less just cools down.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from web3 import AsyncWeb3

logger = logging.getLogger("RPCManager")

RATE_LIMIT_MARKERS = ("429", "403", "too many requests", "rate limit", "exceeded", "quota", "capacity")
MAX_STRIKES = 3
COOLDOWN_SECONDS = 2


class AsyncRPCManager:
    def __init__(self, primary: str, fallbacks: Sequence[str] = ()):
        self.endpoints: List[str] = [primary] + [f for f in fallbacks if f and f != primary]
        self.current_index = 0
        self.strike_count = 0
        self.w3: Optional[AsyncWeb3] = None

    @property
    def current_endpoint(self) -> str:
        return self.endpoints[self.current_index]

    @staticmethod
    def is_rate_limit_error(error: Exception) -> bool:
        text = str(error).lower()
        return any(marker in text for marker in RATE_LIMIT_MARKERS)

    async def _close_current(self) -> None:
        if self.w3 is None:
            return
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is None:
            return
        try:
            await disconnect()
            logger.info("🔒 Previous RPC session closed cleanly.")
        except Exception as e:
            logger.debug(f"Session close failed: {e}")

    async def connect(self) -> AsyncWeb3:
        await self._close_current()
        url = self.current_endpoint
        logger.info(f"🔌 Connecting to RPC: {url[:40]}...")
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))
        if not await self.w3.is_connected():
            raise ConnectionError(f"Failed to connect to {url[:40]}")
        logger.info(f"🟢 Connected to RPC [{self.current_index + 1}/{len(self.endpoints)}]")
        return self.w3

    async def handle_rate_limit(self) -> None:
        self.strike_count += 1
        if self.strike_count >= MAX_STRIKES:
            self.strike_count = 0
            self.current_index = (self.current_index + 1) % len(self.endpoints)
            logger.warning(f"🔄 {MAX_STRIKES} strikes! Switching to RPC [{self.current_index + 1}/{len(self.endpoints)}]")
            await self.connect()
        else:
            logger.warning(f"⏳ Rate limited (Strike {self.strike_count}/{MAX_STRIKES}). "
                           f"Cooling down {COOLDOWN_SECONDS}s...")
            await asyncio.sleep(COOLDOWN_SECONDS)

    async def get_w3(self) -> AsyncWeb3:
        if self.w3 is None:
            await self.connect()
        return self.w3

    async def close(self) -> None:
        await self._close_current()
        self.w3 = None
