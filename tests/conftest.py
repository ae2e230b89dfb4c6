"""
Pytest configuration and shared fakes for the arbitrage monitor tests.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from web3 import Web3  # noqa: E402

from arb_settings import Settings  # noqa: E402

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"
LINK = "0x514910771af9ca656af840dff83e8264ecf986ca"

AGGREGATOR = "0x1111111111111111111111111111111111111111"
FLASH_LOAN = "0x2222222222222222222222222222222222222222"
WALLET = "0x3333333333333333333333333333333333333333"

GWEI = 10**9


# =============================================================================
# SNAPSHOT BUILDERS
# =============================================================================

def token_record(address: str, symbol: str) -> Dict[str, Any]:
    return {"id": f"eth_{address}", "type": "token", "attributes": {"symbol": symbol}}


def pool_record(
    base: str,
    quote: str,
    base_usd: float,
    quote_usd: float,
    liquidity: float = 1_000_000,
    name: str = "BASE / QUOTE",
    address: str = "0xpool",
    pool_id: str = "pool",
) -> Dict[str, Any]:
    return {
        "id": pool_id,
        "type": "pool",
        "attributes": {
            "name": name,
            "address": address,
            "reserve_in_usd": str(liquidity),
            "base_token_price_usd": str(base_usd),
            "quote_token_price_usd": str(quote_usd),
        },
        "relationships": {
            "base_token": {"data": {"id": f"eth_{base}", "type": "token"}},
            "quote_token": {"data": {"id": f"eth_{quote}", "type": "token"}},
        },
    }


def venue_page(pools: List[Dict[str, Any]], tokens: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"data": pools, "included": tokens}


DEFAULT_TOKENS = [token_record(WETH, "WETH"), token_record(USDC, "USDC"), token_record(DAI, "DAI")]


# =============================================================================
# FAKE WEB3
# =============================================================================

class FakeCall:
    def __init__(self, result: Any = None, error: Optional[Exception] = None, name: str = "", args=()):
        self.result = result
        self.error = error
        self.name = name
        self.args = args

    async def call(self):
        if self.error is not None:
            raise self.error
        return self.result

    async def build_transaction(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        tx = {"to": FLASH_LOAN, "data": "0xdeadbeef", "value": 0}
        tx.update(params)
        tx["args"] = self.args
        return tx


class FakeFunctions:
    """Attribute access returns a callable producing FakeCall objects."""

    def __init__(self, results: Dict[str, Any]):
        self._results = results
        self.calls: List[tuple] = []

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        results = self._results

        def fn(*args):
            self.calls.append((name, args))
            value = results.get(name)
            if callable(value) and not isinstance(value, Exception):
                value = value(*args)
            if isinstance(value, Exception):
                return FakeCall(error=value, name=name, args=args)
            return FakeCall(result=value, name=name, args=args)

        return fn


class FakeContract:
    def __init__(self, address: str, results: Dict[str, Any]):
        self.address = address
        self.functions = FakeFunctions(results)


class FakeEth:
    def __init__(self):
        self.gas_price_value: Any = 20 * GWEI
        self.block_numbers: List[Any] = [100]
        self.block_number_calls = 0
        self.base_fee: Optional[int] = 10 * GWEI
        self.code: Dict[str, bytes] = {}
        self.contracts: Dict[str, Dict[str, Any]] = {}
        self.balances: List[int] = [10**18]
        self.nonce = 7
        self.send_error: Optional[Exception] = None
        self.sent: List[bytes] = []
        self.receipts: List[Any] = []
        self.get_code_error: Optional[Exception] = None

    @property
    async def gas_price(self):
        if isinstance(self.gas_price_value, Exception):
            raise self.gas_price_value
        return self.gas_price_value

    @property
    async def block_number(self):
        self.block_number_calls += 1
        value = self.block_numbers.pop(0) if len(self.block_numbers) > 1 else self.block_numbers[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def get_block(self, block_id):
        return {"number": self.block_numbers[0], "baseFeePerGas": self.base_fee}

    async def get_code(self, address):
        if self.get_code_error is not None:
            raise self.get_code_error
        return self.code.get(address.lower(), b"")

    async def get_transaction_count(self, address, block_id="latest"):
        return self.nonce

    async def get_balance(self, address):
        if len(self.balances) > 1:
            return self.balances.pop(0)
        return self.balances[0]

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        if self.send_error is not None:
            raise self.send_error
        return b"\x00" * 32

    async def get_transaction_receipt(self, tx_hash):
        from web3.exceptions import TransactionNotFound

        if self.receipts:
            receipt = self.receipts.pop(0)
        else:
            receipt = None
        if receipt is None:
            raise TransactionNotFound(f"Transaction with hash {tx_hash} not found")
        return receipt

    def contract(self, address, abi):
        return FakeContract(address, self.contracts.get(address.lower(), {}))


class FakeWeb3:
    def __init__(self):
        self.eth = FakeEth()

    @staticmethod
    def to_checksum_address(value):
        return Web3.to_checksum_address(value)


@pytest.fixture
def fake_w3():
    return FakeWeb3()


@pytest.fixture
def settings():
    return Settings(
        primary_rpc="http://localhost:8545",
        private_key="0x" + "11" * 32,
        flash_loan_contract=FLASH_LOAN,
        aggregator_contract=AGGREGATOR,
        request_delay_seconds=0,
        receipt_poll_seconds=0,
        confirm_timeout_blocks=5,
    )
