"""
═══════════════════════════════════════════════════════════════════════════════
CostOracle — gas price, native-asset USD price, gas cost estimate
═══════════════════════════════════════════════════════════════════════════════
Fallback chain:
  gas price     eth_gasPrice        → DEFAULT_GAS_PRICE_GWEI
  native price  Chainlink feed      → average of native/stable snapshot points
                                    → OracleError (cycle aborts)
═══════════════════════════════════════════════════════════════════════════════
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from web3 import AsyncWeb3

from arb_errors import OracleError
from arb_models import CostSnapshot, FeeData, PricePoint
from arb_settings import Settings
from contracts import PRICE_FEED_ABI

logger = logging.getLogger("CostOracle")

DEFAULT_PRIORITY_FEE_WEI = 1_500_000_000  # 1.5 gwei


def gas_cost_usd(gas_price_wei: int, gas_limit: int, native_usd: float) -> float:
    return gas_price_wei * gas_limit / 10**18 * native_usd


class CostOracle:
    def __init__(self, w3: AsyncWeb3, settings: Settings):
        self.w3 = w3
        self.settings = settings

    async def fetch_fee_data(self) -> FeeData:
        """gasPrice plus EIP-1559 fields derived from the latest base fee."""
        gas_price = await self.w3.eth.gas_price
        max_fee = priority = None
        try:
            block = await self.w3.eth.get_block("latest")
            base_fee = block.get("baseFeePerGas")
            if base_fee is not None:
                priority = DEFAULT_PRIORITY_FEE_WEI
                max_fee = base_fee * 2 + priority
        except Exception as e:
            logger.debug(f"No EIP-1559 fee data: {e}")
        return FeeData(gas_price=gas_price, max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)

    async def gas_price_wei(self) -> int:
        try:
            gas_price = await self.w3.eth.gas_price
            if gas_price and gas_price > 0:
                return int(gas_price)
            logger.warning("⚠️ Node returned a zero gas price, using default")
        except Exception as e:
            logger.warning(f"⚠️ Gas price fetch failed ({e}), using default")
        return self.settings.default_gas_price_wei

    async def native_price_from_feed(self) -> float:
        feed = self.w3.eth.contract(
            address=self.w3.to_checksum_address(self.settings.native_usd_feed),
            abi=PRICE_FEED_ABI,
        )
        round_data, decimals = await asyncio.gather(
            feed.functions.latestRoundData().call(),
            feed.functions.decimals().call(),
        )
        answer = round_data[1]
        if answer <= 0:
            raise OracleError("Price feed returned a non-positive answer", {"answer": answer})
        return answer / 10**decimals

    def native_price_from_snapshot(self, points: Iterable[PricePoint]) -> Optional[float]:
        natives = {s.upper() for s in self.settings.native_symbols}
        stables = {s.upper() for s in self.settings.stablecoins}
        quotes: List[float] = [
            p.price for p in points
            if p.base_symbol.upper() in natives and p.quote_symbol.upper() in stables and p.price > 0
        ]
        if not quotes:
            return None
        return sum(quotes) / len(quotes)

    async def snapshot(self, points: List[PricePoint]) -> CostSnapshot:
        """Resolve gas and native price concurrently, then price the fixed gas limit."""
        gas_price, feed_price = await asyncio.gather(
            self.gas_price_wei(),
            self.native_price_from_feed(),
            return_exceptions=True,
        )
        if isinstance(gas_price, BaseException):
            raise gas_price

        source = "feed"
        if isinstance(feed_price, BaseException):
            logger.warning(f"⚠️ Price feed unavailable ({feed_price}), falling back to snapshot prices")
            native_usd = self.native_price_from_snapshot(points)
            source = "snapshot"
            if native_usd is None:
                raise OracleError(
                    "Native asset price unavailable from feed and snapshot",
                    {"feed_error": str(feed_price)},
                )
        else:
            native_usd = feed_price

        cost = gas_cost_usd(gas_price, self.settings.gas_limit, native_usd)
        logger.info(
            f"⛽ Gas {gas_price / 10**9:.2f} gwei | 📈 ETH ${native_usd:,.2f} ({source}) | "
            f"Cost @ {self.settings.gas_limit:,} gas: ${cost:.2f}"
        )
        return CostSnapshot(
            gas_price_wei=gas_price,
            native_usd=native_usd,
            gas_cost_usd=cost,
            gas_limit=self.settings.gas_limit,
            native_price_source=source,
        )
