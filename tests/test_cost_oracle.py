"""
tests/test_cost_oracle.py - Gas price, native price fallback chain, gas cost.
"""

import pytest

from arb_errors import OracleError
from arb_models import PricePoint
from conftest import GWEI, USDC, WETH
from contracts import CHAINLINK_ETH_USD_FEED
from cost_oracle import CostOracle, gas_cost_usd


def point(base_symbol, quote_symbol, price, venue="uniswap_v3"):
    return PricePoint(
        venue=venue, base_token=WETH, base_symbol=base_symbol, quote_token=USDC,
        quote_symbol=quote_symbol, price=price, liquidity_usd=1e6, pool_address="0xpool", venue_type=1,
    )


@pytest.fixture
def feed_ok(fake_w3):
    fake_w3.eth.contracts[CHAINLINK_ETH_USD_FEED.lower()] = {
        "latestRoundData": (1, 2500 * 10**8, 0, 0, 1),
        "decimals": 8,
    }
    return fake_w3


@pytest.fixture
def feed_down(fake_w3):
    fake_w3.eth.contracts[CHAINLINK_ETH_USD_FEED.lower()] = {
        "latestRoundData": ConnectionError("feed unreachable"),
        "decimals": 8,
    }
    return fake_w3


def test_gas_cost_formula():
    # 50 gwei * 300k gas = 0.015 ETH
    assert gas_cost_usd(50 * GWEI, 300_000, 2000.0) == pytest.approx(30.0)


@pytest.mark.asyncio
async def test_snapshot_uses_feed(feed_ok, settings):
    costs = await CostOracle(feed_ok, settings).snapshot([])

    assert costs.native_usd == pytest.approx(2500.0)
    assert costs.native_price_source == "feed"
    assert costs.gas_price_wei == 20 * GWEI
    assert costs.gas_cost_usd == pytest.approx(20 * GWEI * 300_000 / 1e18 * 2500)


@pytest.mark.asyncio
async def test_snapshot_falls_back_to_stable_quoted_points(feed_down, settings):
    points = [point("WETH", "USDC", 3000.0), point("WETH", "DAI", 3100.0), point("LINK", "USDC", 15.0)]

    costs = await CostOracle(feed_down, settings).snapshot(points)

    assert costs.native_usd == pytest.approx(3050.0)
    assert costs.native_price_source == "snapshot"


@pytest.mark.asyncio
async def test_snapshot_raises_when_every_source_fails(feed_down, settings):
    with pytest.raises(OracleError):
        await CostOracle(feed_down, settings).snapshot([point("LINK", "USDC", 15.0)])


@pytest.mark.asyncio
async def test_gas_price_falls_back_to_default(feed_ok, settings):
    feed_ok.eth.gas_price_value = TimeoutError("node down")

    costs = await CostOracle(feed_ok, settings).snapshot([])

    assert costs.gas_price_wei == 50 * GWEI


@pytest.mark.asyncio
async def test_fee_data_derives_eip1559_fields(fake_w3, settings):
    fee = await CostOracle(fake_w3, settings).fetch_fee_data()

    assert fee.gas_price == 20 * GWEI
    assert fee.max_priority_fee_per_gas == 1_500_000_000
    assert fee.max_fee_per_gas == 2 * 10 * GWEI + 1_500_000_000


@pytest.mark.asyncio
async def test_fee_data_without_base_fee(fake_w3, settings):
    fake_w3.eth.base_fee = None

    fee = await CostOracle(fake_w3, settings).fetch_fee_data()

    assert fee.max_fee_per_gas is None
    assert fee.max_priority_fee_per_gas is None
