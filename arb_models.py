"""
═══════════════════════════════════════════════════════════════════════════════
Data model for one monitoring cycle
═══════════════════════════════════════════════════════════════════════════════
Everything here is frozen. Each pipeline stage builds a fresh collection of
these values and hands it to the next stage; nothing is mutated after
construction and nothing survives past its cycle except the ExecutionDecision.
═══════════════════════════════════════════════════════════════════════════════
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class RejectReason(str, Enum):
    INSUFFICIENT_MARGIN = "InsufficientMargin"
    CONTRACT_UNAVAILABLE = "ContractUnavailable"
    NOT_PROFITABLE = "NotProfitable"
    GAS_TOO_HIGH = "GasTooHigh"
    INDETERMINATE = "Indeterminate"
    EXECUTION_DISABLED = "ExecutionDisabled"
    SUBMISSION_FAILED = "SubmissionFailed"
    REVERTED = "Reverted"
    CONFIRM_TIMEOUT = "ConfirmTimeout"


class Profitability(str, Enum):
    """Outcome of a live revalidation."""
    PROFITABLE = "Profitable"
    NOT_PROFITABLE = "NotProfitable"
    INDETERMINATE = "Indeterminate"


class DispatchState(str, Enum):
    BUILD = "BUILD"
    SIGN = "SIGN"
    BROADCAST = "BROADCAST"
    AWAIT_CONFIRM = "AWAIT_CONFIRM"
    SETTLED = "SETTLED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE VALUES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VenueInfo:
    name: str
    type_code: int


@dataclass(frozen=True)
class PricePoint:
    """One directional quote: how many quote tokens one base token buys on a venue."""
    venue: str
    base_token: str
    base_symbol: str
    quote_token: str
    quote_symbol: str
    price: float
    liquidity_usd: float
    pool_address: str
    venue_type: int

    @property
    def pair_key(self) -> Tuple[str, str]:
        return tuple(sorted((self.base_token, self.quote_token)))


@dataclass(frozen=True)
class PairGroup:
    key: Tuple[str, str]
    points: Tuple[PricePoint, ...]

    @property
    def venues(self) -> frozenset:
        return frozenset(p.venue for p in self.points)

    @property
    def scannable(self) -> bool:
        return len(self.points) >= 2 and len(self.venues) >= 2


@dataclass(frozen=True)
class FeeData:
    gas_price: int
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


@dataclass(frozen=True)
class CostSnapshot:
    gas_price_wei: int
    native_usd: float
    gas_cost_usd: float
    gas_limit: int
    native_price_source: str = "feed"


@dataclass(frozen=True)
class Opportunity:
    token_pair: str
    base_token: str
    quote_token: str
    buy_venue: str
    sell_venue: str
    buy_venue_type: int
    sell_venue_type: int
    buy_venue_name: str
    sell_venue_name: str
    buy_price: float
    sell_price: float
    profit_percent: float
    trade_size_usd: float
    gross_profit_usd: float
    gas_cost_usd: float
    flash_loan_fee_usd: float
    net_profit_usd: float
    flash_loan_asset: str
    flash_loan_symbol: str
    flash_loan_amount: Decimal

    @property
    def venue_pair(self) -> str:
        return f"{self.buy_venue}->{self.sell_venue}"


@dataclass(frozen=True)
class Revalidation:
    status: Profitability
    live_buy_price: Optional[float] = None
    live_sell_price: Optional[float] = None
    live_profit_percent: Optional[float] = None
    detail: str = ""


@dataclass(frozen=True)
class BalanceDelta:
    native_before: int
    native_after: int
    token_symbol: str
    token_decimals: int
    token_before: int
    token_after: int

    @property
    def native_change(self) -> int:
        return self.native_after - self.native_before

    @property
    def token_change(self) -> int:
        return self.token_after - self.token_before

    def describe(self) -> str:
        native = Decimal(self.native_change) / Decimal(10 ** 18)
        token = Decimal(self.token_change) / Decimal(10 ** self.token_decimals)
        return f"ETH {native:+.6f} | {self.token_symbol} {token:+.6f}"


@dataclass(frozen=True)
class ExecutionDecision:
    approved: bool
    reason: Optional[RejectReason] = None
    state: Optional[DispatchState] = None
    opportunity: Optional[Opportunity] = None
    tx_hash: Optional[str] = None
    confirmed_block: Optional[int] = None
    balance_delta: Optional[BalanceDelta] = None
    detail: str = ""
    relay_accepted: Dict[int, bool] = field(default_factory=dict)

    @classmethod
    def reject(cls, reason: RejectReason, opportunity: Optional[Opportunity] = None,
               detail: str = "") -> "ExecutionDecision":
        return cls(approved=False, reason=reason, opportunity=opportunity, detail=detail)
