"""
Private relay client (Flashbots-style eth_sendBundle).

A bundle only targets one block, so the same signed transaction is
resubmitted for each of the next N blocks. Requests are authenticated with
an X-Flashbots-Signature header: "<signer address>:<signature of keccak(body)>".
The signing key identifies the searcher only; it never holds funds.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from arb_errors import RelayError

logger = logging.getLogger("PrivateRelay")

RELAY_TIMEOUT_SECONDS = 10


class PrivateRelayClient:
    def __init__(self, relay_url: str, signing_key: str, timeout: float = RELAY_TIMEOUT_SECONDS):
        self.relay_url = relay_url
        self.signer = Account.from_key(signing_key)
        self.timeout = timeout
        self._request_id = 0

    def signature_header(self, body: str) -> str:
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = Account.sign_message(message, private_key=self.signer.key)
        return f"{self.signer.address}:{Web3.to_hex(signed.signature)}"

    def build_bundle_payload(self, raw_tx: str, block_number: int) -> Dict[str, Any]:
        self._request_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_sendBundle",
            "params": [{"txs": [raw_tx], "blockNumber": hex(block_number)}],
        }

    async def _post(self, body: str) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self.signature_header(body),
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.relay_url, data=body, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RelayError(f"Relay HTTP {response.status}", {"body": text[:200]})
                return await response.json(content_type=None)

    async def send_bundle(self, raw_tx: str, block_number: int) -> Dict[str, Any]:
        """Submit one bundle for one block. Raises RelayError when it is refused."""
        body = json.dumps(self.build_bundle_payload(raw_tx, block_number))
        try:
            result = await self._post(body)
        except RelayError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RelayError(f"Relay unreachable: {e}", {"block": block_number}) from e

        if "error" in result:
            raise RelayError(f"Relay rejected bundle: {result['error']}", {"block": block_number})
        logger.info(f"📦 Bundle accepted by relay for block {block_number}")
        return result.get("result") or {}

    async def send_bundle_for_blocks(self, raw_tx: str, first_block: int, count: int) -> Dict[int, bool]:
        """Submit the same transaction for blocks first_block .. first_block + count - 1."""
        targets: List[int] = [first_block + i for i in range(count)]
        results = await asyncio.gather(
            *(self.send_bundle(raw_tx, block) for block in targets),
            return_exceptions=True,
        )
        accepted = {}
        for block, result in zip(targets, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"⚠️ Bundle for block {block} failed: {result}")
                accepted[block] = False
            else:
                accepted[block] = True
        return accepted
