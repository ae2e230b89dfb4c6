"""
═══════════════════════════════════════════════════════════════════════════════
Dispatcher — flash-loan transaction state machine
═══════════════════════════════════════════════════════════════════════════════
  BUILD → SIGN → BROADCAST → AWAIT_CONFIRM → SETTLED | FAILED | UNKNOWN

One transaction is signed once and sent through two channels at the same
time: the public mempool and a private relay bundle for each of the next N
blocks. Both carry the same nonce, so at most one copy can ever be mined;
the other is dropped by the network ("nonce too low" / "already known").

The receipt wait is bounded by CONFIRM_TIMEOUT_BLOCKS. Running out of blocks
gives UNKNOWN, not FAILED: the transaction can still land later.
═══════════════════════════════════════════════════════════════════════════════
"""

import asyncio
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional, Tuple

from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from arb_errors import SubmissionError
from arb_models import (
    BalanceDelta,
    DispatchState,
    ExecutionDecision,
    FeeData,
    Opportunity,
    RejectReason,
)
from arb_settings import Settings
from contracts import ERC20_ABI, ETHERSCAN_TX_URL, FLASH_LOAN_ABI
from cost_oracle import DEFAULT_PRIORITY_FEE_WEI, CostOracle
from notifier import TelegramNotifier
from private_relay import PrivateRelayClient
from throttle import BoundedFanout

logger = logging.getLogger("Dispatcher")

NONCE_CONFLICT_MARKERS = ("nonce too low", "already known", "nonce already used", "replacement transaction underpriced")

# Consecutive failed block-number polls before the wait gives up as UNKNOWN
MAX_BLOCK_POLL_FAILURES = 10


def is_nonce_conflict(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in NONCE_CONFLICT_MARKERS)


def aggressive_fees(fee_data: FeeData, settings: Settings) -> Tuple[int, int]:
    """(maxFeePerGas, maxPriorityFeePerGas), both capped by the gas ceiling."""
    ceiling = settings.max_gas_price_wei
    priority = int((fee_data.max_priority_fee_per_gas or DEFAULT_PRIORITY_FEE_WEI)
                   * settings.priority_fee_multiplier)
    if fee_data.max_fee_per_gas is not None:
        max_fee = fee_data.max_fee_per_gas - (fee_data.max_priority_fee_per_gas or 0) + priority
    else:
        max_fee = fee_data.gas_price * 2
    max_fee = min(max_fee, ceiling)
    priority = min(priority, max_fee)
    return max_fee, priority


def to_raw_amount(amount: Decimal, decimals: int) -> int:
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


class Dispatcher:
    def __init__(
        self,
        w3: AsyncWeb3,
        settings: Settings,
        fanout: BoundedFanout,
        account,
        relay: Optional[PrivateRelayClient] = None,
        notifier: Optional[TelegramNotifier] = None,
    ):
        self.w3 = w3
        self.settings = settings
        self.fanout = fanout
        self.account = account
        self.relay = relay
        self.notifier = notifier
        self.provider = settings.primary_rpc
        self.transitions: List[DispatchState] = []

    def _enter(self, state: DispatchState) -> None:
        self.transitions.append(state)
        logger.info(f"🧭 Dispatch → {state.value}")

    async def _alert(self, msg: str, is_error: bool = False) -> None:
        if self.notifier is not None:
            await self.notifier.send_async(msg, is_error=is_error)

    async def _fail(self, opp: Opportunity, reason: RejectReason, detail: str,
              tx_hash: Optional[str] = None, relay_accepted: Optional[Dict[int, bool]] = None) -> ExecutionDecision:
        self._enter(DispatchState.FAILED)
        logger.error(f"❌ Dispatch failed for {opp.token_pair}: {detail}")
        await self._alert(
            f"⚠️ <b>Arb Execution Failed</b>\n"
            f"📊 <code>{opp.token_pair}</code>\n"
            f"<code>{detail[:300]}</code>",
            is_error=True,
        )
        return ExecutionDecision(
            approved=True,
            reason=reason,
            state=DispatchState.FAILED,
            opportunity=opp,
            tx_hash=tx_hash,
            detail=detail,
            relay_accepted=relay_accepted or {},
        )

    # ═══════════════════════════════════════════════════════════════════════
    # BALANCES
    # ═══════════════════════════════════════════════════════════════════════

    def _token(self, address: str):
        return self.w3.eth.contract(address=self.w3.to_checksum_address(address), abi=ERC20_ABI)

    async def token_metadata(self, token) -> Tuple[str, int]:
        symbol, decimals = await asyncio.gather(
            self.fanout.run(self.provider, token.functions.symbol().call),
            self.fanout.run(self.provider, token.functions.decimals().call),
        )
        return symbol, decimals

    async def balances(self, token) -> Tuple[int, int]:
        native, held = await asyncio.gather(
            self.fanout.run(self.provider, self.w3.eth.get_balance, self.account.address),
            self.fanout.run(self.provider, token.functions.balanceOf(self.account.address).call),
        )
        return native, held

    # ═══════════════════════════════════════════════════════════════════════
    # BUILD / SIGN
    # ═══════════════════════════════════════════════════════════════════════

    async def build(self, opp: Opportunity, decimals: int) -> Dict[str, Any]:
        fee_data = await CostOracle(self.w3, self.settings).fetch_fee_data()
        max_fee, priority = aggressive_fees(fee_data, self.settings)
        amount = to_raw_amount(opp.flash_loan_amount, decimals)
        if amount <= 0:
            raise SubmissionError("Flash-loan amount rounds to zero", {"amount": str(opp.flash_loan_amount)})

        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        contract = self.w3.eth.contract(
            address=self.w3.to_checksum_address(self.settings.flash_loan_contract),
            abi=FLASH_LOAN_ABI,
        )
        tx = await contract.functions.executeFlashLoanSimple(
            self.w3.to_checksum_address(opp.flash_loan_asset),
            amount,
        ).build_transaction({
            "from": self.account.address,
            "nonce": nonce,
            "gas": self.settings.gas_limit,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority,
            "chainId": self.settings.chain_id,
        })
        logger.info(
            f"🛠️ Built flash loan: {opp.flash_loan_amount} {opp.flash_loan_symbol} | nonce {nonce} | "
            f"maxFee {max_fee / 10**9:.2f} gwei | tip {priority / 10**9:.2f} gwei"
        )
        return tx

    # ═══════════════════════════════════════════════════════════════════════
    # BROADCAST
    # ═══════════════════════════════════════════════════════════════════════

    async def broadcast_public(self, raw_tx: bytes) -> str:
        """'sent' or 'nonce-conflict'. Any other failure raises SubmissionError."""
        try:
            await self.w3.eth.send_raw_transaction(raw_tx)
            logger.info("🚀 Public broadcast accepted")
            return "sent"
        except Exception as e:
            if is_nonce_conflict(e):
                logger.info(f"♻️ Public broadcast hit a nonce conflict ({e}), same transaction already in flight")
                return "nonce-conflict"
            raise SubmissionError(f"Public broadcast failed: {e}") from e

    async def _relay_or_none(self, raw_hex: str, first_block: int) -> Dict[int, bool]:
        if self.relay is None:
            return {}
        return await self.relay.send_bundle_for_blocks(raw_hex, first_block, self.settings.relay_target_blocks)

    # ═══════════════════════════════════════════════════════════════════════
    # AWAIT_CONFIRM
    # ═══════════════════════════════════════════════════════════════════════

    async def await_receipt(self, tx_hash: str, start_block: int):
        """Poll until a receipt appears or CONFIRM_TIMEOUT_BLOCKS pass. None on timeout.

        The block count is the bound, so a node that keeps failing to report it
        also ends the wait after MAX_BLOCK_POLL_FAILURES attempts in a row.
        """
        failures = 0
        while True:
            try:
                receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
                if receipt is not None:
                    return receipt
            except TransactionNotFound:
                pass
            except Exception as e:
                logger.warning(f"⚠️ Receipt poll error: {e}")

            try:
                current = await self.w3.eth.block_number
                failures = 0
                if current - start_block >= self.settings.confirm_timeout_blocks:
                    return None
            except Exception as e:
                failures += 1
                logger.warning(f"⚠️ Block number poll error ({failures}/{MAX_BLOCK_POLL_FAILURES}): {e}")
                if failures >= MAX_BLOCK_POLL_FAILURES:
                    return None

            await asyncio.sleep(self.settings.receipt_poll_seconds)

    # ═══════════════════════════════════════════════════════════════════════
    # STATE MACHINE
    # ═══════════════════════════════════════════════════════════════════════

    async def dispatch(self, opp: Opportunity) -> ExecutionDecision:
        self.transitions = []
        logger.info(
            f"🚀 EXECUTING FLASH-LOAN ARBITRAGE: {opp.token_pair} | buy {opp.buy_venue_name} @ {opp.buy_price:.8g} "
            f"| sell {opp.sell_venue_name} @ {opp.sell_price:.8g} | expected net ${opp.net_profit_usd:.2f}"
        )

        # ── BUILD ──
        self._enter(DispatchState.BUILD)
        token = self._token(opp.flash_loan_asset)
        try:
            (symbol, decimals), (native_before, token_before) = await asyncio.gather(
                self.token_metadata(token), self.balances(token)
            )
            logger.info(f"💼 Initial balances: {Web3.from_wei(native_before, 'ether')} ETH | "
                        f"{Decimal(token_before) / Decimal(10 ** decimals)} {symbol}")
            tx = await self.build(opp, decimals)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self._fail(opp, RejectReason.SUBMISSION_FAILED, f"build failed: {e}")

        # ── SIGN ──
        self._enter(DispatchState.SIGN)
        try:
            signed = self.account.sign_transaction(tx)
        except Exception as e:
            return await self._fail(opp, RejectReason.SUBMISSION_FAILED, f"signing failed: {e}")
        raw_tx = signed.raw_transaction
        raw_hex = Web3.to_hex(raw_tx)
        tx_hash = Web3.to_hex(signed.hash)

        # ── BROADCAST ──
        self._enter(DispatchState.BROADCAST)
        relay_accepted: Dict[int, bool] = {}
        relay_task: Optional[asyncio.Task] = None
        try:
            try:
                current_block = await self.w3.eth.block_number
            except Exception as e:
                return await self._fail(opp, RejectReason.SUBMISSION_FAILED, f"block number unavailable: {e}", tx_hash)

            relay_task = asyncio.ensure_future(self._relay_or_none(raw_hex, current_block + 1))
            public_task = asyncio.ensure_future(self.broadcast_public(raw_tx))

            public_error: Optional[Exception] = None
            try:
                await public_task
            except SubmissionError as e:
                public_error = e
                logger.warning(f"⚠️ {e}")

            if public_error is not None:
                try:
                    relay_accepted = await relay_task
                except Exception as e:
                    logger.warning(f"⚠️ Relay channel failed: {e}")
                if not any(relay_accepted.values()):
                    return await self._fail(opp, RejectReason.SUBMISSION_FAILED,
                                            f"both channels failed: {public_error}", tx_hash, relay_accepted)

            logger.info(f"📤 TX {tx_hash} in flight | {ETHERSCAN_TX_URL}{tx_hash}")
            await self._alert(
                f"🔄 <b>Arb Broadcast</b>\n"
                f"📊 Pair: <code>{opp.token_pair}</code>\n"
                f"🔀 Route: {opp.buy_venue_name} → {opp.sell_venue_name}\n"
                f"💰 Expected: +${opp.net_profit_usd:.2f}\n"
                f"🔗 <a href='{ETHERSCAN_TX_URL}{tx_hash}'>Etherscan</a>"
            )

            # ── AWAIT_CONFIRM ──
            self._enter(DispatchState.AWAIT_CONFIRM)
            receipt = await self.await_receipt(tx_hash, current_block)

            if relay_task.done() and not relay_task.cancelled() and relay_task.exception() is None:
                relay_accepted = relay_task.result()
        finally:
            if relay_task is not None and not relay_task.done():
                relay_task.cancel()
                try:
                    await relay_task
                except (asyncio.CancelledError, Exception):
                    pass

        if receipt is None:
            self._enter(DispatchState.UNKNOWN)
            logger.warning(f"⌛ No receipt for {tx_hash} after {self.settings.confirm_timeout_blocks} blocks "
                           f"(outcome unknown, it may still be mined)")
            await self._alert(f"⌛ <b>Arb Outcome Unknown</b>\n<code>{tx_hash}</code>", is_error=True)
            return ExecutionDecision(
                approved=True,
                reason=RejectReason.CONFIRM_TIMEOUT,
                state=DispatchState.UNKNOWN,
                opportunity=opp,
                tx_hash=tx_hash,
                detail="confirmation timeout",
                relay_accepted=relay_accepted,
            )

        block_number = receipt["blockNumber"]
        if receipt["status"] != 1:
            return await self._fail(opp, RejectReason.REVERTED, f"transaction reverted in block {block_number}",
                                    tx_hash, relay_accepted)

        # ── SETTLED ──
        self._enter(DispatchState.SETTLED)
        delta = None
        try:
            native_after, token_after = await self.balances(token)
            delta = BalanceDelta(native_before, native_after, symbol, decimals, token_before, token_after)
            logger.info(f"📊 Balance change: {delta.describe()}")
        except Exception as e:
            logger.warning(f"⚠️ Could not read final balances: {e}")

        logger.info(f"✅ Confirmed in block {block_number}: {tx_hash}")
        await self._alert(
            f"✅ <b>Arb Settled</b>\n"
            f"📊 <code>{opp.token_pair}</code> in block {block_number}\n"
            f"💼 {delta.describe() if delta else 'balances unavailable'}"
        )
        return ExecutionDecision(
            approved=True,
            state=DispatchState.SETTLED,
            opportunity=opp,
            tx_hash=tx_hash,
            confirmed_block=block_number,
            balance_delta=delta,
            relay_accepted=relay_accepted,
        )
