"""
═══════════════════════════════════════════════════════════════════════════════
🔭 Cross-venue flash-loan arbitrage monitor
═══════════════════════════════════════════════════════════════════════════════
One cycle:

  snapshot → venue registry → price points → pair groups → cost snapshot
           → scan → rank → report → execution gate → dispatcher

Cycles are independent: every value is rebuilt from the snapshot, and only
the ExecutionDecision outlives the cycle (in the log and the alert channel).
A failed cycle is logged and the loop moves on to the next one.
═══════════════════════════════════════════════════════════════════════════════
"""

import asyncio
import logging
import sys
import traceback
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from eth_account import Account
from web3 import AsyncWeb3

from arb_errors import ConfigError, OracleError, SnapshotLoadError
from arb_models import CostSnapshot, ExecutionDecision, Opportunity, RejectReason
from arb_settings import Settings, load_settings, log_settings_warnings
from cost_oracle import CostOracle
from dispatcher import Dispatcher
from execution_gate import ExecutionGate
from notifier import TelegramNotifier
from opportunity_scanner import ScanParameters, rank_opportunities, report_top, scan_opportunities
from pool_loader import PoolSnapshotLoader, top_tokens
from price_extractor import ExtractionStats, extract_prices, group_pairs
from private_relay import PrivateRelayClient
from rpc_manager import AsyncRPCManager
from throttle import BoundedFanout
from venue_registry import VenueRegistry

logger = logging.getLogger("ArbMonitor")


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING
# ═══════════════════════════════════════════════════════════════════════════════

def setup_logging(log_file: str = "arb_monitor.log", level: int = logging.INFO) -> None:
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=level,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CYCLE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class CycleReport:
    opportunities: List[Opportunity] = field(default_factory=list)
    decision: Optional[ExecutionDecision] = None
    costs: Optional[CostSnapshot] = None
    stats: Optional[ExtractionStats] = None
    top_tokens: Dict[str, str] = field(default_factory=dict)
    error: Optional[Exception] = None

    @property
    def aborted(self) -> bool:
        return self.error is not None


async def run_cycle(
    settings: Settings,
    w3: AsyncWeb3,
    fanout: BoundedFanout,
    notifier: Optional[TelegramNotifier] = None,
    account=None,
    relay: Optional[PrivateRelayClient] = None,
) -> CycleReport:
    try:
        snapshot = await PoolSnapshotLoader(settings.pool_data_path).load()
    except SnapshotLoadError as e:
        logger.error(f"❌ Cycle aborted, snapshot unavailable: {e}")
        if notifier:
            await notifier.send_async(f"⚠️ <b>Snapshot Load Failed</b>\n<code>{e}</code>", is_error=True)
        return CycleReport(error=e)

    tokens = top_tokens(snapshot, settings.min_liquidity_usd)
    registry = VenueRegistry.build(snapshot.keys())
    points, stats = extract_prices(snapshot, registry, settings.min_liquidity_usd)
    groups = group_pairs(points)

    try:
        costs = await CostOracle(w3, settings).snapshot(points)
    except OracleError as e:
        logger.error(f"❌ Cycle aborted, no reliable cost data: {e}")
        if notifier:
            await notifier.send_async(f"⚠️ <b>Oracle Failure</b>\n<code>{e}</code>", is_error=True)
        return CycleReport(stats=stats, top_tokens=tokens, error=e)

    params = ScanParameters.from_settings(settings)
    ranked = rank_opportunities(scan_opportunities(groups, costs, params, registry))
    report_top(ranked, settings.report_top_n)
    report = CycleReport(opportunities=ranked, costs=costs, stats=stats, top_tokens=tokens)
    if not ranked:
        return report

    if not settings.can_execute or account is None:
        logger.info("👀 Execution disabled, monitoring only")
        report.decision = ExecutionDecision.reject(RejectReason.EXECUTION_DISABLED, ranked[0])
        return report

    decision = await ExecutionGate(w3, settings, fanout).evaluate(ranked)
    if decision.approved:
        dispatcher = Dispatcher(w3, settings, fanout, account, relay=relay, notifier=notifier)
        decision = await dispatcher.dispatch(decision.opportunity)
    report.decision = decision

    logger.info(
        f"🏁 Decision: approved={decision.approved} "
        f"state={decision.state.value if decision.state else '-'} "
        f"reason={decision.reason.value if decision.reason else '-'}"
        + (f" tx={decision.tx_hash}" if decision.tx_hash else "")
    )
    return report


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN LOOP
# ═══════════════════════════════════════════════════════════════════════════════

async def main(settings: Settings) -> None:
    logger.info("═══════════════════════════════════════════════════════════")
    logger.info("🔭 Flash-loan Arbitrage Monitor")
    logger.info("═══════════════════════════════════════════════════════════")
    log_settings_warnings(settings)

    rpc_manager = AsyncRPCManager(settings.primary_rpc, settings.fallback_rpcs)
    await rpc_manager.connect()
    fanout = BoundedFanout(settings.max_concurrent_requests, settings.request_delay_seconds)
    notifier = TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)

    account = Account.from_key(settings.private_key) if settings.private_key else None
    relay = None
    if settings.relay_enabled:
        relay = PrivateRelayClient(settings.relay_url, settings.flashbots_signing_key)
        logger.info(f"🛡️ Private relay: {settings.relay_url}")

    logger.info(f"📂 Pool data: {settings.pool_data_path}")
    logger.info(f"💰 Min profit: {settings.min_profit_percent}% / ${settings.min_profit_usd} "
                f"(execute above ${settings.execution_threshold_usd:.2f})")
    logger.info(f"⛽ Gas ceiling: {settings.max_gas_price_gwei} gwei")
    logger.info(f"⚙️  Execution: {'ENABLED' if settings.can_execute and account else 'DISABLED'}")
    if account is not None:
        logger.info(f"👛 Wallet: {account.address}")
    logger.info("═══════════════════════════════════════════════════════════")

    await notifier.send_async(
        f"🔭 <b>Arbitrage Monitor Started</b>\n"
        f"⚙️ Execution: {'on' if settings.can_execute and account else 'off'}\n"
        f"🔗 RPC: <code>{rpc_manager.current_endpoint[:40]}...</code>"
    )

    cycle = 0
    try:
        while True:
            cycle += 1
            logger.info(f"🔄 Cycle {cycle}")
            try:
                w3 = await rpc_manager.get_w3()
                await run_cycle(settings, w3, fanout, notifier, account, relay)
            except Exception as e:
                if rpc_manager.is_rate_limit_error(e):
                    await rpc_manager.handle_rate_limit()
                else:
                    logger.error(f"❌ Cycle error: {e}")
                    logger.debug(traceback.format_exc())
                    await notifier.send_async(f"🆘 <b>Monitor Cycle Error</b>\n<code>{e}</code>", is_error=True)

            if settings.run_once:
                break
            await asyncio.sleep(settings.scan_interval_seconds)
    finally:
        await rpc_manager.close()


def run() -> None:
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.critical(f"❌ {e} — exiting")
        sys.exit(1)

    setup_logging(settings.log_file)
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("⏹️  Arbitrage monitor stopped.")


if __name__ == "__main__":
    run()
