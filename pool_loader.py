"""
Pool snapshot loading.

The snapshot is produced by an external ETL job: a JSON object keyed by venue
id, each value shaped like an indexer API page:

    {"uniswap_v3": {"data": [<pool>, ...], "included": [<token>, ...]}, ...}
"""

import json
import logging
import math
import os
from typing import Any, Dict

import aiofiles

from arb_errors import SnapshotLoadError

logger = logging.getLogger("PoolLoader")

TOP_POOLS_PER_VENUE = 10


def token_address(token_id: str) -> str:
    """'eth_0xAbC...' -> '0xabc...'"""
    return token_id.rpartition("_")[2].lower()


def _liquidity(pool: Dict[str, Any]) -> float:
    try:
        value = float((pool.get("attributes") or {}).get("reserve_in_usd") or 0)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


class PoolSnapshotLoader:
    def __init__(self, path: str):
        self.path = path

    async def load(self) -> Dict[str, Dict[str, Any]]:
        """Read and sanity-check the snapshot. Any failure aborts the cycle."""
        if not os.path.exists(self.path):
            raise SnapshotLoadError("Pool snapshot not found", {"path": self.path})

        try:
            async with aiofiles.open(self.path, mode="r") as f:
                content = await f.read()
        except OSError as e:
            raise SnapshotLoadError(f"Pool snapshot unreadable: {e}", {"path": self.path}) from e

        if not content.strip():
            raise SnapshotLoadError("Pool snapshot is empty", {"path": self.path})

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SnapshotLoadError(f"Pool snapshot is not valid JSON: {e}", {"path": self.path}) from e

        return self.validate(data)

    @staticmethod
    def validate(data: Any) -> Dict[str, Dict[str, Any]]:
        if not isinstance(data, dict):
            raise SnapshotLoadError("Pool snapshot must be an object keyed by venue id")

        venues = {}
        for venue_id, page in data.items():
            if not isinstance(page, dict):
                logger.warning(f"⚠️ Venue {venue_id} has no page object, skipped")
                continue
            if not page.get("data") or not page.get("included"):
                logger.debug(f"Venue {venue_id} has no pools or no token directory")
                continue
            venues[venue_id] = page

        if not venues:
            raise SnapshotLoadError("Pool snapshot contains no usable venue")

        pools = sum(len(page["data"]) for page in venues.values())
        logger.info(f"📂 Loaded snapshot: {len(venues)} venues, {pools} pools")
        return venues


def top_tokens(snapshot: Dict[str, Dict[str, Any]], min_liquidity_usd: float,
               per_venue: int = TOP_POOLS_PER_VENUE) -> Dict[str, str]:
    """Symbol (lowercase) → address for tokens of the deepest pools of each venue."""
    tokens: Dict[str, str] = {}
    for venue_id, page in snapshot.items():
        directory = {t.get("id"): t for t in page.get("included", []) if isinstance(t, dict)}
        pools = [p for p in page.get("data", []) if isinstance(p, dict) and _liquidity(p) >= min_liquidity_usd]
        pools.sort(key=_liquidity, reverse=True)

        for pool in pools[:per_venue]:
            relationships = pool.get("relationships") or {}
            for side in ("base_token", "quote_token"):
                token_id = ((relationships.get(side) or {}).get("data") or {}).get("id")
                token = directory.get(token_id)
                if not token:
                    continue
                symbol = (token.get("attributes") or {}).get("symbol")
                if symbol and symbol.lower() not in tokens:
                    tokens[symbol.lower()] = token_address(token_id)

    logger.info(f"🔍 Using {len(tokens)} top tokens by liquidity")
    return tokens
