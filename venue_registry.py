"""
Venue classification.

Maps the venue identifiers found in a pool snapshot to a display name and the
numeric venue-type code understood by the on-chain price aggregator:

    0 generic / Uniswap V2    1 Uniswap V3 / SushiSwap V3    2 SushiSwap
    3 Uniswap V4              4 PancakeSwap                   5 Balancer
    6 Curve

The registry is built once per cycle and is read-only afterwards.
"""

import logging
import re
from types import MappingProxyType
from typing import Iterable, Mapping

from arb_models import VenueInfo

logger = logging.getLogger("VenueRegistry")

GENERIC_VENUE_TYPE = 0

# Checked in order: specific versions before the family name they contain.
# Exact entries only match the bare id; other Sushi or Curve variants stay generic.
KNOWN_VENUES = (
    ("uniswapv4", "Uniswap V4", 3, False),
    ("uniswapv3", "Uniswap V3", 1, False),
    ("sushiswapv3", "SushiSwap V3", 1, False),
    ("uniswapv2", "Uniswap V2", 0, False),
    ("sushiswap", "SushiSwap", 2, True),
    ("pancakeswapv3", "PancakeSwap V3", 4, False),
    ("pancakeswap", "PancakeSwap", 4, False),
    ("balancer", "Balancer", 5, False),
    ("curve", "Curve", 6, True),
)

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_venue_id(venue_id: str) -> str:
    return _SEPARATORS.sub("", venue_id).lower()


def humanize_venue_id(venue_id: str) -> str:
    return _SEPARATORS.sub(" ", venue_id).strip()


def classify_venue(venue_id: str) -> VenueInfo:
    normalized = normalize_venue_id(venue_id)
    for needle, name, code, exact in KNOWN_VENUES:
        if (normalized == needle) if exact else (needle in normalized):
            return VenueInfo(name=name, type_code=code)
    return VenueInfo(name=humanize_venue_id(venue_id), type_code=GENERIC_VENUE_TYPE)


class VenueRegistry:
    """Immutable venue-id → VenueInfo mapping for one cycle."""

    def __init__(self, venues: Mapping[str, VenueInfo]):
        self._venues = MappingProxyType(dict(venues))

    @classmethod
    def build(cls, venue_ids: Iterable[str]) -> "VenueRegistry":
        registry = cls({venue_id: classify_venue(venue_id) for venue_id in venue_ids})
        known = sum(1 for info in registry.values() if info.type_code != GENERIC_VENUE_TYPE)
        logger.info(f"🏪 {len(registry)} venues resolved ({known} with a dedicated venue type)")
        return registry

    def get(self, venue_id: str) -> VenueInfo:
        info = self._venues.get(venue_id)
        if info is None:
            return classify_venue(venue_id)
        return info

    def name(self, venue_id: str) -> str:
        return self.get(venue_id).name

    def type_code(self, venue_id: str) -> int:
        return self.get(venue_id).type_code

    def values(self):
        return self._venues.values()

    def items(self):
        return self._venues.items()

    def __contains__(self, venue_id: str) -> bool:
        return venue_id in self._venues

    def __len__(self) -> int:
        return len(self._venues)

    def __iter__(self):
        return iter(self._venues)
