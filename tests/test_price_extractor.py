"""
tests/test_price_extractor.py - Price points and pair grouping.
"""

import math

import pytest

from arb_errors import DataError
from conftest import DAI, DEFAULT_TOKENS, USDC, WETH, pool_record, venue_page
from price_extractor import extract_prices, group_pairs, parse_liquidity
from venue_registry import VenueRegistry


@pytest.fixture
def snapshot():
    return {
        "uniswap_v3": venue_page(
            [
                pool_record(WETH, USDC, 3000.0, 1.0, liquidity=5_000_000, pool_id="a"),
                pool_record(WETH, DAI, 3010.0, 1.001, liquidity=5_000, pool_id="b"),
            ],
            DEFAULT_TOKENS,
        ),
        "sushiswap": venue_page(
            [pool_record(WETH, USDC, 3030.0, 1.0, liquidity=2_000_000, pool_id="c")],
            DEFAULT_TOKENS,
        ),
    }


@pytest.fixture
def registry(snapshot):
    return VenueRegistry.build(snapshot.keys())


# =============================================================================
# EXTRACTION
# =============================================================================

def test_low_liquidity_pools_produce_nothing(snapshot, registry):
    points, stats = extract_prices(snapshot, registry, min_liquidity_usd=10_000)

    assert all(p.liquidity_usd >= 10_000 for p in points)
    assert not any(p.base_token == DAI or p.quote_token == DAI for p in points)
    assert stats.skipped["low_liquidity"] == 1


def test_each_valid_pool_yields_direct_and_inverse(snapshot, registry):
    points, stats = extract_prices(snapshot, registry, min_liquidity_usd=10_000)

    assert len(points) == 4
    assert stats.emitted == 4
    direct, inverse = points[0], points[1]
    assert (direct.base_token, direct.quote_token) == (WETH, USDC)
    assert (inverse.base_token, inverse.quote_token) == (USDC, WETH)
    assert direct.base_symbol == "WETH" and inverse.base_symbol == "USDC"
    assert direct.price == pytest.approx(3000.0)
    assert direct.price * inverse.price == pytest.approx(1.0, rel=1e-9)
    assert direct.venue_type == 1


def test_token_addresses_drop_chain_prefix_and_lowercase(registry):
    mixed = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
    tokens = [
        {"id": f"eth_{mixed}", "type": "token", "attributes": {"symbol": "WETH"}},
        {"id": f"eth_{USDC}", "type": "token", "attributes": {"symbol": "USDC"}},
    ]
    pool = pool_record(mixed, USDC, 3000.0, 1.0)
    points, _ = extract_prices({"uniswap_v3": venue_page([pool], tokens)}, registry, 10_000)

    assert points[0].base_token == WETH


@pytest.mark.parametrize("mutate", [
    lambda p: p["attributes"].update(name="WETHUSDC"),
    lambda p: p["attributes"].update(base_token_price_usd="0"),
    lambda p: p["attributes"].update(quote_token_price_usd="-1"),
    lambda p: p["attributes"].update(quote_token_price_usd="n/a"),
    lambda p: p["attributes"].update(base_token_price_usd="inf"),
    lambda p: p["attributes"].update(quote_token_price_usd="NaN"),
    lambda p: p["attributes"].update(reserve_in_usd="NaN"),
    lambda p: p["attributes"].update(reserve_in_usd="inf"),
    lambda p: p["attributes"].update(reserve_in_usd="-5"),
    lambda p: p["relationships"]["base_token"]["data"].update(id="eth_0xunknown"),
    lambda p: p.pop("relationships"),
])
def test_malformed_records_are_skipped(registry, mutate):
    good = pool_record(WETH, USDC, 3000.0, 1.0, pool_id="good")
    bad = pool_record(WETH, USDC, 3000.0, 1.0, pool_id="bad")
    mutate(bad)

    points, stats = extract_prices(
        {"uniswap_v3": venue_page([bad, good], DEFAULT_TOKENS)}, registry, 10_000
    )

    assert len(points) == 2
    assert stats.skipped["malformed"] == 1
    assert stats.records == 2


@pytest.mark.parametrize("raw", ["NaN", "inf", "-inf", "-1", "lots"])
def test_liquidity_must_be_finite_and_non_negative(raw):
    with pytest.raises(DataError):
        parse_liquidity(raw)


def test_missing_liquidity_counts_as_zero():
    assert parse_liquidity(None) == 0.0
    assert parse_liquidity("") == 0.0


def test_nan_liquidity_pool_never_reaches_the_scanner(snapshot, registry):
    snapshot["curve"] = venue_page(
        [pool_record(WETH, USDC, 2500.0, 1.0, liquidity=float("nan"), pool_id="nan")], DEFAULT_TOKENS
    )

    points, stats = extract_prices(snapshot, registry, min_liquidity_usd=10_000)

    assert all(math.isfinite(p.liquidity_usd) and math.isfinite(p.price) for p in points)
    assert not any(p.venue == "curve" for p in points)
    assert stats.skipped["malformed"] == 1


def test_non_token_directory_entries_are_ignored(registry):
    tokens = [
        {"id": f"eth_{WETH}", "type": "dex", "attributes": {"symbol": "WETH"}},
        {"id": f"eth_{USDC}", "type": "token", "attributes": {"symbol": "USDC"}},
    ]
    points, stats = extract_prices(
        {"uniswap_v3": venue_page([pool_record(WETH, USDC, 3000.0, 1.0)], tokens)}, registry, 10_000
    )
    assert points == []
    assert stats.skipped["malformed"] == 1


# =============================================================================
# GROUPING
# =============================================================================

def test_group_pairs_by_unordered_key(snapshot, registry):
    points, _ = extract_prices(snapshot, registry, 10_000)
    groups = group_pairs(points)

    assert list(groups) == [tuple(sorted((WETH, USDC)))]
    group = next(iter(groups.values()))
    assert len(group.points) == 4
    assert group.venues == {"uniswap_v3", "sushiswap"}
    assert group.scannable


def test_single_venue_group_is_kept_but_not_scannable(registry):
    snapshot = {"uniswap_v3": venue_page([pool_record(WETH, USDC, 3000.0, 1.0)], DEFAULT_TOKENS)}
    points, _ = extract_prices(snapshot, registry, 10_000)
    groups = group_pairs(points)

    assert len(groups) == 1
    assert not next(iter(groups.values())).scannable
