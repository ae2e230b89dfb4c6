"""
═══════════════════════════════════════════════════════════════════════════════
ExecutionGate — revalidate before commit
═══════════════════════════════════════════════════════════════════════════════
The snapshot that produced an opportunity can be minutes old. Before anything
is signed, the best candidate is re-checked against the chain:

  1. net profit clears MIN_PROFIT_USD × safety multiplier   → InsufficientMargin
  2. aggregator bytecode present, venue type answers        → ContractUnavailable
  3. live buy/sell quotes still show a spread                → NotProfitable
  4. gas price under the ceiling                             → GasTooHigh

Step 3 yields Profitable / NotProfitable / Indeterminate. What happens on
Indeterminate is the caller's policy: fail-closed unless GATE_FAIL_OPEN.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
from enum import Enum
from typing import List, Optional, Tuple

from web3 import AsyncWeb3

from arb_errors import ContractError, ValidationError
from arb_models import ExecutionDecision, Opportunity, Profitability, RejectReason, Revalidation
from arb_settings import Settings
from contracts import DEX_AGGREGATOR_ABI
from opportunity_scanner import profit_percent
from throttle import BoundedFanout

logger = logging.getLogger("ExecutionGate")

PRICE_DECIMALS = 18


class GatePolicy(str, Enum):
    FAIL_CLOSED = "fail-closed"
    FAIL_OPEN = "fail-open"


class ExecutionGate:
    def __init__(self, w3: AsyncWeb3, settings: Settings, fanout: BoundedFanout,
                 policy: Optional[GatePolicy] = None):
        self.w3 = w3
        self.settings = settings
        self.fanout = fanout
        if policy is None:
            policy = GatePolicy.FAIL_OPEN if settings.gate_fail_open else GatePolicy.FAIL_CLOSED
        self.policy = policy
        self.provider = settings.primary_rpc

    # ───────────────────────────────────────────────────────────────────────
    # Contract probes
    # ───────────────────────────────────────────────────────────────────────

    def _aggregator(self):
        return self.w3.eth.contract(
            address=self.w3.to_checksum_address(self.settings.aggregator_contract),
            abi=DEX_AGGREGATOR_ABI,
        )

    async def ensure_contract(self) -> None:
        """Raise ContractError if the aggregator has no bytecode at its address."""
        address = self.settings.aggregator_contract
        if not address:
            raise ContractError("DEX aggregator address not configured",
                                RejectReason.CONTRACT_UNAVAILABLE)
        code = await self.fanout.run(
            self.provider, self.w3.eth.get_code, self.w3.to_checksum_address(address)
        )
        if not code or bytes(code) in (b"", b"\x00"):
            raise ContractError("DEX aggregator not deployed on this network",
                                RejectReason.CONTRACT_UNAVAILABLE, {"address": address})

    async def _live_price(self, base: str, quote: str, venue_type: int) -> float:
        aggregator = self._aggregator()
        raw = await self.fanout.run(
            self.provider,
            aggregator.functions.getTokenPrice(
                self.w3.to_checksum_address(base),
                self.w3.to_checksum_address(quote),
                venue_type,
            ).call,
        )
        return raw / 10**PRICE_DECIMALS

    # ───────────────────────────────────────────────────────────────────────
    # Revalidation
    # ───────────────────────────────────────────────────────────────────────

    async def revalidate(self, opp: Opportunity) -> Revalidation:
        """Live re-pricing of one opportunity.

        A missing contract raises ContractError. Any other failure to obtain a
        usable quote is reported as INDETERMINATE, never as PROFITABLE.
        """
        await self.ensure_contract()

        try:
            venue_name = await self.fanout.run(
                self.provider, self._aggregator().functions.getDexName(opp.buy_venue_type).call
            )
            logger.info(f"🔗 Aggregator answers for venue type {opp.buy_venue_type} ({venue_name})")
        except Exception as e:
            return Revalidation(Profitability.INDETERMINATE, detail=f"getDexName failed: {e}")

        try:
            buy_price, sell_price = await self.fanout.map(
                self.provider,
                lambda venue_type: self._live_price(opp.base_token, opp.quote_token, venue_type),
                [opp.buy_venue_type, opp.sell_venue_type],
            )
        except Exception as e:
            return Revalidation(Profitability.INDETERMINATE, detail=f"getTokenPrice failed: {e}")

        if buy_price <= 0 or sell_price <= 0:
            return Revalidation(
                Profitability.INDETERMINATE,
                live_buy_price=buy_price,
                live_sell_price=sell_price,
                detail="aggregator returned a zero price",
            )

        live_pct = profit_percent(buy_price, sell_price, self.settings.max_slippage_percent)
        logger.info(
            f"🔄 Re-check {opp.token_pair}: cached {opp.profit_percent:.2f}% "
            f"(buy {opp.buy_price:.8g} / sell {opp.sell_price:.8g}) → live {live_pct:.2f}% "
            f"(buy {buy_price:.8g} / sell {sell_price:.8g})"
        )
        status = (Profitability.PROFITABLE if live_pct > self.settings.min_profit_percent
                  else Profitability.NOT_PROFITABLE)
        return Revalidation(status, buy_price, sell_price, live_pct)

    def _apply_policy(self, result: Revalidation) -> Tuple[bool, str]:
        if result.status == Profitability.PROFITABLE:
            return True, ""
        if result.status == Profitability.NOT_PROFITABLE:
            return False, "live spread below minimum"
        if self.policy == GatePolicy.FAIL_OPEN:
            logger.warning(f"⚠️ Revalidation indeterminate ({result.detail}), proceeding (fail-open)")
            return True, result.detail
        return False, result.detail

    async def check_gas(self) -> int:
        gas_price = await self.fanout.run(self.provider, lambda: self.w3.eth.gas_price)
        if gas_price > self.settings.max_gas_price_wei:
            raise ValidationError(
                f"Gas price too high ({gas_price / 10**9:.2f} gwei > "
                f"{self.settings.max_gas_price_gwei} gwei)",
                RejectReason.GAS_TOO_HIGH,
                {"gas_price": gas_price},
            )
        return gas_price

    # ───────────────────────────────────────────────────────────────────────
    # Gate
    # ───────────────────────────────────────────────────────────────────────

    async def evaluate(self, ranked: List[Opportunity]) -> ExecutionDecision:
        threshold = self.settings.execution_threshold_usd
        if not ranked or not ranked[0].net_profit_usd > threshold:
            best = ranked[0].net_profit_usd if ranked else 0.0
            logger.info(f"⛔ Best net profit ${best:.2f} does not clear execution threshold ${threshold:.2f}")
            return ExecutionDecision.reject(
                RejectReason.INSUFFICIENT_MARGIN,
                ranked[0] if ranked else None,
                f"best ${best:.2f} <= ${threshold:.2f}",
            )

        opp = ranked[0]
        logger.info(f"⚡ Revalidating best opportunity {opp.token_pair} {opp.venue_pair} "
                    f"(net ${opp.net_profit_usd:.2f})")

        try:
            result = await self.revalidate(opp)
        except ValidationError as e:
            logger.warning(f"⛔ {e}")
            return ExecutionDecision.reject(e.reason, opp, str(e))
        except Exception as e:
            result = Revalidation(Profitability.INDETERMINATE, detail=f"contract probe failed: {e}")

        proceed, detail = self._apply_policy(result)
        if not proceed:
            reason = (RejectReason.NOT_PROFITABLE if result.status == Profitability.NOT_PROFITABLE
                      else RejectReason.INDETERMINATE)
            logger.info(f"⛔ Rejected {opp.token_pair}: {reason.value} ({detail})")
            return ExecutionDecision.reject(reason, opp, detail)

        try:
            gas_price = await self.check_gas()
        except ValidationError as e:
            logger.warning(f"⛔ {e}")
            return ExecutionDecision.reject(e.reason, opp, str(e))
        except Exception as e:
            logger.warning(f"⛔ Gas price unavailable: {e}")
            return ExecutionDecision.reject(RejectReason.INDETERMINATE, opp, f"gas price unavailable: {e}")

        logger.info(f"✅ Gate passed for {opp.token_pair} at {gas_price / 10**9:.2f} gwei")
        return ExecutionDecision(approved=True, opportunity=opp, detail=detail)
