"""
═══════════════════════════════════════════════════════════════════════════════
Opportunity scanning & ranking
═══════════════════════════════════════════════════════════════════════════════
For each pair, the K cheapest quotes are matched against the K most
expensive ones (same direction, different venue). Each combination is
scored under a liquidity-fraction heuristic:

  effective_buy   = buy  × (1 + slippage%)
  effective_sell  = sell × (1 − slippage%)
  profit%         = (effective_sell − effective_buy) / effective_buy × 100
  trade_size      = min(buy_liq, sell_liq) × TRADE_SIZE_FRACTION
  gross           = trade_size × profit% / 100 × REALIZATION_FACTOR
  flash-loan fee  = trade_size × FLASH_LOAN_FEE_RATE
  net             = gross − gas − flash-loan fee

TRADE_SIZE_FRACTION and REALIZATION_FACTOR are empirical discounts standing
in for a real price-impact simulation. Tune them, don't trust them.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Tuple

from arb_models import CostSnapshot, Opportunity, PairGroup, PricePoint
from arb_settings import Settings
from venue_registry import VenueRegistry

logger = logging.getLogger("Scanner")

STABLE_AMOUNT_QUANTUM = Decimal("0.01")
TOKEN_AMOUNT_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class ScanParameters:
    top_k: int = 3
    slippage_percent: float = 0.2
    min_profit_percent: float = 0.001
    trade_size_fraction: float = 0.003
    realization_factor: float = 0.8
    flash_loan_fee_rate: float = 0.0005
    stablecoins: Tuple[str, ...] = ("USDC", "USDT", "DAI")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScanParameters":
        return cls(
            top_k=settings.scan_top_k,
            slippage_percent=settings.max_slippage_percent,
            min_profit_percent=settings.min_profit_percent,
            trade_size_fraction=settings.trade_size_fraction,
            realization_factor=settings.realization_factor,
            flash_loan_fee_rate=settings.flash_loan_fee_rate,
            stablecoins=settings.stablecoins,
        )


def profit_percent(buy_price: float, sell_price: float, slippage_percent: float) -> float:
    """Spread between two quotes after a symmetric slippage haircut."""
    effective_buy = buy_price * (1 + slippage_percent / 100)
    effective_sell = sell_price * (1 - slippage_percent / 100)
    return (effective_sell - effective_buy) / effective_buy * 100


def _quantize(value: float, quantum: Decimal) -> Decimal:
    return Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def _split_directions(points: Iterable[PricePoint]) -> Dict[Tuple[str, str], List[PricePoint]]:
    directions: Dict[Tuple[str, str], List[PricePoint]] = {}
    for point in points:
        directions.setdefault((point.base_token, point.quote_token), []).append(point)
    return directions


def evaluate_combination(
    buy: PricePoint,
    sell: PricePoint,
    costs: CostSnapshot,
    params: ScanParameters,
    registry: VenueRegistry,
):
    """Score one buy/sell pair. Returns None when it is not an opportunity."""
    if buy.venue == sell.venue:
        return None
    if buy.base_token != sell.base_token or buy.quote_token != sell.quote_token:
        return None

    pct = profit_percent(buy.price, sell.price, params.slippage_percent)
    if pct <= params.min_profit_percent:
        return None

    trade_size = min(buy.liquidity_usd, sell.liquidity_usd) * params.trade_size_fraction
    gross = trade_size * pct / 100 * params.realization_factor
    fee = trade_size * params.flash_loan_fee_rate
    net = gross - costs.gas_cost_usd - fee

    stables = {s.upper() for s in params.stablecoins}
    if buy.quote_symbol.upper() in stables:
        asset, asset_symbol = buy.quote_token, buy.quote_symbol
        amount = _quantize(trade_size / 2, STABLE_AMOUNT_QUANTUM)
    else:
        asset, asset_symbol = buy.base_token, buy.base_symbol
        amount = _quantize(trade_size / buy.price / 2, TOKEN_AMOUNT_QUANTUM)

    return Opportunity(
        token_pair=f"{buy.base_symbol}/{buy.quote_symbol}",
        base_token=buy.base_token,
        quote_token=buy.quote_token,
        buy_venue=buy.venue,
        sell_venue=sell.venue,
        buy_venue_type=buy.venue_type,
        sell_venue_type=sell.venue_type,
        buy_venue_name=registry.name(buy.venue),
        sell_venue_name=registry.name(sell.venue),
        buy_price=buy.price,
        sell_price=sell.price,
        profit_percent=pct,
        trade_size_usd=trade_size,
        gross_profit_usd=gross,
        gas_cost_usd=costs.gas_cost_usd,
        flash_loan_fee_usd=fee,
        net_profit_usd=net,
        flash_loan_asset=asset,
        flash_loan_symbol=asset_symbol,
        flash_loan_amount=amount,
    )


def scan_pair(
    group: PairGroup,
    costs: CostSnapshot,
    params: ScanParameters,
    registry: VenueRegistry,
) -> List[Opportunity]:
    if not group.scannable:
        return []

    found = []
    for points in _split_directions(group.points).values():
        if len(points) < 2:
            continue
        buys = sorted(points, key=lambda p: p.price)[:params.top_k]
        sells = sorted(points, key=lambda p: p.price, reverse=True)[:params.top_k]
        for buy in buys:
            for sell in sells:
                opportunity = evaluate_combination(buy, sell, costs, params, registry)
                if opportunity is not None:
                    found.append(opportunity)
    return found


def scan_opportunities(
    groups: Dict[Tuple[str, str], PairGroup],
    costs: CostSnapshot,
    params: ScanParameters,
    registry: VenueRegistry,
) -> List[Opportunity]:
    logger.info(f"🔍 Scanning {len(groups)} token pairs for cross-venue spreads...")
    opportunities: List[Opportunity] = []
    for group in groups.values():
        opportunities.extend(scan_pair(group, costs, params, registry))
    logger.info(f"💡 Found {len(opportunities)} candidate opportunities")
    return opportunities


def rank_opportunities(opportunities: Iterable[Opportunity]) -> List[Opportunity]:
    """Net profit desc, then profit% desc, then venue pair name. Full ties keep input order."""
    return sorted(
        opportunities,
        key=lambda o: (-o.net_profit_usd, -o.profit_percent, o.venue_pair),
    )


def format_opportunity(rank: int, opp: Opportunity) -> str:
    return (
        f"[{rank}] {opp.token_pair}: {opp.profit_percent:.2f}% spread\n"
        f"   Buy on {opp.buy_venue_name} at {opp.buy_price:.8g}\n"
        f"   Sell on {opp.sell_venue_name} at {opp.sell_price:.8g}\n"
        f"   Gross: ${opp.gross_profit_usd:.2f} | Gas ${opp.gas_cost_usd:.2f} | "
        f"FL fee ${opp.flash_loan_fee_usd:.2f}\n"
        f"   Net: ${opp.net_profit_usd:.2f} | Loan {opp.flash_loan_amount} {opp.flash_loan_symbol}"
    )


def report_top(opportunities: List[Opportunity], top_n: int) -> None:
    if not opportunities:
        logger.info("😴 No profitable arbitrage opportunities this cycle")
        return
    logger.info("🔝 TOP ARBITRAGE OPPORTUNITIES:")
    for i, opp in enumerate(opportunities[:top_n], start=1):
        logger.info(format_opportunity(i, opp))
