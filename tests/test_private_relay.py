"""
tests/test_private_relay.py - Bundle payloads, signing and per-block resubmission.
"""

import json
from unittest.mock import AsyncMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from arb_errors import RelayError
from private_relay import PrivateRelayClient

SIGNING_KEY = "0x" + "22" * 32
RAW_TX = "0x02f8ab0102"


@pytest.fixture
def relay():
    return PrivateRelayClient("https://relay.example", SIGNING_KEY)


def test_bundle_payload_shape(relay):
    payload = relay.build_bundle_payload(RAW_TX, 18_000_000)

    assert payload["method"] == "eth_sendBundle"
    assert payload["params"] == [{"txs": [RAW_TX], "blockNumber": hex(18_000_000)}]


def test_signature_header_recovers_signer(relay):
    body = json.dumps(relay.build_bundle_payload(RAW_TX, 1))

    address, signature = relay.signature_header(body).split(":")

    message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
    assert address == Account.from_key(SIGNING_KEY).address
    assert Account.recover_message(message, signature=signature) == address


@pytest.mark.asyncio
async def test_send_bundle_returns_result(relay):
    relay._post = AsyncMock(return_value={"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0xabc"}})

    result = await relay.send_bundle(RAW_TX, 100)

    assert result == {"bundleHash": "0xabc"}
    sent_body = json.loads(relay._post.call_args.args[0])
    assert sent_body["params"][0]["blockNumber"] == hex(100)


@pytest.mark.asyncio
async def test_send_bundle_raises_on_rpc_error(relay):
    relay._post = AsyncMock(return_value={"error": {"code": -32000, "message": "bundle rejected"}})

    with pytest.raises(RelayError):
        await relay.send_bundle(RAW_TX, 100)


@pytest.mark.asyncio
async def test_resubmits_for_each_target_block(relay):
    async def post(body):
        block = int(json.loads(body)["params"][0]["blockNumber"], 16)
        if block == 102:
            raise RelayError("relay busy")
        return {"result": {"bundleHash": hex(block)}}

    relay._post = post

    accepted = await relay.send_bundle_for_blocks(RAW_TX, 101, 3)

    assert accepted == {101: True, 102: False, 103: True}
