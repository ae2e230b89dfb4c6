"""
═══════════════════════════════════════════════════════════════════════════════
Price extraction & pair aggregation
═══════════════════════════════════════════════════════════════════════════════
Every usable pool record becomes two directional PricePoints:

  direct   base  → quote   price = base_usd / quote_usd
  inverse  quote → base    price = 1 / direct

Points are then grouped by their unordered token-address pair so the scanner
can compare the same pair across venues.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from arb_errors import DataError
from arb_models import PairGroup, PricePoint
from pool_loader import token_address
from venue_registry import VenueRegistry

logger = logging.getLogger("PriceExtractor")


@dataclass
class ExtractionStats:
    records: int = 0
    emitted: int = 0
    skipped: Counter = field(default_factory=Counter)


def build_token_directory(included: List[Dict[str, Any]]) -> Dict[str, Tuple[str, str]]:
    """token id → (address, symbol) for every token entry of a venue page."""
    directory = {}
    for item in included:
        if not isinstance(item, dict):
            continue
        if item.get("type", "token") != "token":
            continue
        token_id = item.get("id")
        symbol = (item.get("attributes") or {}).get("symbol")
        if token_id and symbol:
            directory[token_id] = (token_address(token_id), symbol)
    return directory


def _positive_float(value: Any, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise DataError(f"{field_name} is not a number", {"value": value})
    if not math.isfinite(number) or number <= 0:
        raise DataError(f"{field_name} must be a positive finite number", {"value": value})
    return number


def parse_liquidity(value: Any) -> float:
    """reserve_in_usd as a finite, non-negative float. Missing counts as 0."""
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        raise DataError("reserve_in_usd is not a number", {"value": value})
    if not math.isfinite(number) or number < 0:
        raise DataError("reserve_in_usd must be a non-negative finite number", {"value": value})
    return number


def parse_pool_record(
    venue_id: str,
    pool: Dict[str, Any],
    tokens: Dict[str, Tuple[str, str]],
    registry: VenueRegistry,
) -> Tuple[PricePoint, PricePoint]:
    """Turn one pool record into its (direct, inverse) price points.

    Raises DataError when the record cannot be priced. Liquidity filtering is
    done by the caller.
    """
    attributes = pool.get("attributes") or {}

    name = attributes.get("name") or ""
    if "/" not in name:
        raise DataError("pair name has no separator", {"name": name})

    relationships = pool.get("relationships") or {}
    base_id = ((relationships.get("base_token") or {}).get("data") or {}).get("id")
    quote_id = ((relationships.get("quote_token") or {}).get("data") or {}).get("id")
    if base_id not in tokens or quote_id not in tokens:
        raise DataError("token reference not in directory", {"base": base_id, "quote": quote_id})

    base_usd = _positive_float(attributes.get("base_token_price_usd"), "base_token_price_usd")
    quote_usd = _positive_float(attributes.get("quote_token_price_usd"), "quote_token_price_usd")

    liquidity = parse_liquidity(attributes.get("reserve_in_usd"))
    pool_address = attributes.get("address") or ""
    venue_type = registry.type_code(venue_id)
    base_address, base_symbol = tokens[base_id]
    quote_address, quote_symbol = tokens[quote_id]

    direct_price = base_usd / quote_usd
    direct = PricePoint(
        venue=venue_id,
        base_token=base_address,
        base_symbol=base_symbol,
        quote_token=quote_address,
        quote_symbol=quote_symbol,
        price=direct_price,
        liquidity_usd=liquidity,
        pool_address=pool_address,
        venue_type=venue_type,
    )
    inverse = PricePoint(
        venue=venue_id,
        base_token=quote_address,
        base_symbol=quote_symbol,
        quote_token=base_address,
        quote_symbol=base_symbol,
        price=1.0 / direct_price,
        liquidity_usd=liquidity,
        pool_address=pool_address,
        venue_type=venue_type,
    )
    return direct, inverse


def extract_prices(
    snapshot: Dict[str, Dict[str, Any]],
    registry: VenueRegistry,
    min_liquidity_usd: float,
) -> Tuple[List[PricePoint], ExtractionStats]:
    points: List[PricePoint] = []
    stats = ExtractionStats()

    for venue_id, page in snapshot.items():
        tokens = build_token_directory(page.get("included") or [])

        for pool in page.get("data") or []:
            stats.records += 1
            if not isinstance(pool, dict):
                stats.skipped["malformed"] += 1
                continue

            try:
                liquidity = parse_liquidity((pool.get("attributes") or {}).get("reserve_in_usd"))
            except DataError:
                stats.skipped["malformed"] += 1
                continue
            if liquidity < min_liquidity_usd:
                stats.skipped["low_liquidity"] += 1
                continue

            try:
                points.extend(parse_pool_record(venue_id, pool, tokens, registry))
            except DataError as e:
                stats.skipped["malformed"] += 1
                logger.debug(f"Skipping pool {pool.get('id')} on {venue_id}: {e}")

    stats.emitted = len(points)
    logger.info(
        f"📊 Extracted {len(points)} price points from {stats.records} pools "
        f"across {len(snapshot)} venues (skipped: {dict(stats.skipped) or 'none'})"
    )
    return points, stats


def group_pairs(points: List[PricePoint]) -> Dict[Tuple[str, str], PairGroup]:
    """Group points by unordered token pair. Input order is kept inside each group."""
    buckets: Dict[Tuple[str, str], List[PricePoint]] = {}
    for point in points:
        buckets.setdefault(point.pair_key, []).append(point)
    return {key: PairGroup(key=key, points=tuple(members)) for key, members in buckets.items()}
