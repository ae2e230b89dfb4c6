"""
═══════════════════════════════════════════════════════════════════════════════
Environment configuration
═══════════════════════════════════════════════════════════════════════════════
All knobs come from .env / the process environment (python-dotenv). The
values are read once into a frozen Settings object which is passed to every
component; nothing downstream touches os.environ.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from arb_errors import ConfigError
from contracts import CHAINLINK_ETH_USD_FEED

logger = logging.getLogger("Settings")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Settings:
    primary_rpc: str
    fallback_rpcs: Tuple[str, ...] = ()
    private_key: str = ""
    flash_loan_contract: str = ""
    aggregator_contract: str = ""
    flashbots_signing_key: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    pool_data_path: str = "data/dexespools.json"
    execution_enabled: bool = True

    # Profit model
    min_profit_percent: float = 0.001
    min_profit_usd: float = 0.01
    execution_safety_multiplier: float = 1.5
    max_gas_price_gwei: float = 40.0
    max_slippage_percent: float = 0.2
    min_liquidity_usd: float = 10_000.0
    flash_loan_fee_rate: float = 0.0005
    gas_limit: int = 300_000
    default_gas_price_gwei: float = 50.0
    trade_size_fraction: float = 0.003
    realization_factor: float = 0.8
    scan_top_k: int = 3
    stablecoins: Tuple[str, ...] = ("USDC", "USDT", "DAI")
    native_symbols: Tuple[str, ...] = ("WETH",)
    native_usd_feed: str = CHAINLINK_ETH_USD_FEED

    # Dispatch
    relay_url: str = "https://relay.flashbots.net"
    relay_target_blocks: int = 3
    confirm_timeout_blocks: int = 25
    receipt_poll_seconds: float = 2.0
    priority_fee_multiplier: float = 2.0
    chain_id: int = 1

    # Throttling
    max_concurrent_requests: int = 5
    request_delay_seconds: float = 0.2

    # Gate policy
    gate_fail_open: bool = False

    # Loop
    scan_interval_seconds: float = 60.0
    report_top_n: int = 5
    run_once: bool = False
    log_file: str = "arb_monitor.log"

    @property
    def can_execute(self) -> bool:
        return bool(self.execution_enabled and self.private_key and self.flash_loan_contract)

    @property
    def relay_enabled(self) -> bool:
        return bool(self.flashbots_signing_key and self.relay_url)

    @property
    def max_gas_price_wei(self) -> int:
        return int(self.max_gas_price_gwei * 10**9)

    @property
    def default_gas_price_wei(self) -> int:
        return int(self.default_gas_price_gwei * 10**9)

    @property
    def execution_threshold_usd(self) -> float:
        return self.min_profit_usd * self.execution_safety_multiplier


# ═══════════════════════════════════════════════════════════════════════════════
# PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number", {"value": raw})


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.replace("_", ""))
    except ValueError:
        raise ConfigError(f"{name} must be an integer", {"value": raw})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean", {"value": raw})


def _env_list(name: str, default: Tuple[str, ...] = (), upper: bool = False) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    items = [r.strip() for r in raw.split(",") if r.strip()]
    if upper:
        items = [i.upper() for i in items]
    return tuple(items)


def _address(name: str) -> str:
    value = _env_str(name)
    if value.lower() == ZERO_ADDRESS:
        return ""
    return value


# ═══════════════════════════════════════════════════════════════════════════════
# LOADER
# ═══════════════════════════════════════════════════════════════════════════════

def load_settings(env_path: Optional[str] = None) -> Settings:
    """Read .env (if present) plus the environment into a Settings value."""
    load_dotenv(env_path)

    primary_rpc = _env_str("PRIMARY_RPC") or _env_str("RPC_URL")
    if not primary_rpc:
        raise ConfigError("PRIMARY_RPC not found in environment")

    defaults = Settings(primary_rpc=primary_rpc)
    settings = Settings(
        primary_rpc=primary_rpc,
        fallback_rpcs=_env_list("FALLBACK_RPCS"),
        private_key=_env_str("PRIVATE_KEY"),
        flash_loan_contract=_address("FLASH_LOAN_CONTRACT"),
        aggregator_contract=_address("DEX_AGGREGATOR_CONTRACT"),
        flashbots_signing_key=_env_str("FLASHBOTS_SIGNING_KEY"),
        telegram_bot_token=_env_str("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_env_str("TELEGRAM_CHAT_ID"),
        pool_data_path=_env_str("POOL_DATA_PATH", defaults.pool_data_path),
        execution_enabled=_env_bool("EXECUTION_ENABLED", defaults.execution_enabled),
        min_profit_percent=_env_float("MIN_PROFIT_PERCENT", defaults.min_profit_percent),
        min_profit_usd=_env_float("MIN_PROFIT_USD", defaults.min_profit_usd),
        execution_safety_multiplier=_env_float(
            "EXECUTION_SAFETY_MULTIPLIER", defaults.execution_safety_multiplier
        ),
        max_gas_price_gwei=_env_float("MAX_GAS_PRICE_GWEI", defaults.max_gas_price_gwei),
        max_slippage_percent=_env_float("MAX_SLIPPAGE_PERCENT", defaults.max_slippage_percent),
        min_liquidity_usd=_env_float("MIN_LIQUIDITY_USD", defaults.min_liquidity_usd),
        flash_loan_fee_rate=_env_float("FLASH_LOAN_FEE_RATE", defaults.flash_loan_fee_rate),
        gas_limit=_env_int("GAS_LIMIT_ARBITRAGE", defaults.gas_limit),
        default_gas_price_gwei=_env_float("DEFAULT_GAS_PRICE_GWEI", defaults.default_gas_price_gwei),
        trade_size_fraction=_env_float("TRADE_SIZE_FRACTION", defaults.trade_size_fraction),
        realization_factor=_env_float("REALIZATION_FACTOR", defaults.realization_factor),
        scan_top_k=_env_int("SCAN_TOP_K", defaults.scan_top_k),
        stablecoins=_env_list("STABLECOINS", defaults.stablecoins, upper=True),
        native_symbols=_env_list("NATIVE_ASSET_SYMBOLS", defaults.native_symbols, upper=True),
        native_usd_feed=_env_str("NATIVE_USD_FEED", defaults.native_usd_feed),
        relay_url=_env_str("RELAY_URL", defaults.relay_url),
        relay_target_blocks=_env_int("RELAY_TARGET_BLOCKS", defaults.relay_target_blocks),
        confirm_timeout_blocks=_env_int("CONFIRM_TIMEOUT_BLOCKS", defaults.confirm_timeout_blocks),
        receipt_poll_seconds=_env_float("RECEIPT_POLL_SECONDS", defaults.receipt_poll_seconds),
        priority_fee_multiplier=_env_float("PRIORITY_FEE_MULTIPLIER", defaults.priority_fee_multiplier),
        chain_id=_env_int("CHAIN_ID", defaults.chain_id),
        max_concurrent_requests=_env_int("MAX_CONCURRENT_REQUESTS", defaults.max_concurrent_requests),
        request_delay_seconds=_env_float("REQUEST_DELAY_SECONDS", defaults.request_delay_seconds),
        gate_fail_open=_env_bool("GATE_FAIL_OPEN", defaults.gate_fail_open),
        scan_interval_seconds=_env_float("SCAN_INTERVAL_SECONDS", defaults.scan_interval_seconds),
        report_top_n=_env_int("REPORT_TOP_N", defaults.report_top_n),
        run_once=_env_bool("RUN_ONCE", defaults.run_once),
        log_file=_env_str("LOG_FILE", defaults.log_file),
    )

    if settings.scan_top_k < 1:
        raise ConfigError("SCAN_TOP_K must be at least 1", {"value": settings.scan_top_k})
    if settings.max_concurrent_requests < 1:
        raise ConfigError("MAX_CONCURRENT_REQUESTS must be at least 1",
                          {"value": settings.max_concurrent_requests})
    if settings.relay_target_blocks < 1:
        raise ConfigError("RELAY_TARGET_BLOCKS must be at least 1",
                          {"value": settings.relay_target_blocks})

    return settings


def log_settings_warnings(settings: Settings) -> None:
    """Emit the start-up warnings for optional pieces that are missing."""
    if not settings.private_key:
        logger.warning("⚠️  PRIVATE_KEY not set — execution will be disabled (scan-only mode)")
    if not settings.flash_loan_contract:
        logger.warning("⚠️  FLASH_LOAN_CONTRACT not set — deploy contract first, then add to .env")
    if not settings.aggregator_contract:
        logger.warning("⚠️  DEX_AGGREGATOR_CONTRACT not set — live revalidation will reject every candidate")
    if not settings.flashbots_signing_key:
        logger.warning("⚠️  FLASHBOTS_SIGNING_KEY not set — private relay disabled, public broadcast only")
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        logger.warning("⚠️  TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID not set — Telegram alerts disabled")
    if not settings.execution_enabled:
        logger.info("👀 EXECUTION_ENABLED=false — monitoring only")
