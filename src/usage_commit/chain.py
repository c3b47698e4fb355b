"""Chain node access: capability protocol, web3 client, startup probe, key loading."""

import asyncio
import logging
from typing import Any, Protocol, Sequence

import httpx
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

import usage_commit.constants as C
from usage_commit.errors import ChainConnectionError, ContractInterfaceError, SigningKeyError
from usage_commit.models import ChainRecord

log = logging.getLogger("usage_commit.chain")


class ChainClient(Protocol):
    """What the engine needs from a node. Errors propagate as raised by the transport."""

    contract_address: str

    async def get_nonce(self, address: str) -> int: ...
    async def get_gas_price(self) -> int: ...
    async def get_chain_id(self) -> int: ...
    def encode_call(self, records: Sequence[ChainRecord]) -> str: ...
    async def send_raw_transaction(self, raw: bytes) -> str | None: ...
    async def get_receipt(self, tx_hash: str) -> Any | None: ...


def load_account(private_key: str) -> LocalAccount:
    """Parse a hex private key, with or without 0x prefix, into a signing account."""
    key = private_key.strip()
    if key.startswith(("0x", "0X")):
        key = key[2:]
    try:
        return Account.from_key(bytes.fromhex(key))
    except Exception as e:
        # Don't echo the key material
        raise SigningKeyError(f"Error converting private key: {e.__class__.__name__}") from None


def call_args(records: Sequence[ChainRecord]) -> list[list]:
    """Split records into the four parallel arrays the contract takes."""
    return [
        [r.user_id for r in records],
        [r.duration_seconds for r in records],
        [r.consumer_reward_fixed for r in records],
        [r.owner_reward_fixed for r in records],
    ]


async def probe_node(url: str, max_retries: int = 30, retry_delay: float = 2.0, timeout: float = C.RPC_TIMEOUT) -> str:
    """Probe the JSON-RPC endpoint with retries until it answers.

    Returns the node's client version string.
    """
    payload = {"jsonrpc": "2.0", "id": 1, "method": "web3_clientVersion", "params": []}

    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                body = r.json()
                if "error" in body:
                    raise ChainConnectionError(f"node returned error: {body['error']}")
                log.info(f"RPC endpoint responding (attempt {attempt}/{max_retries}): {body.get('result')}")
                return body.get("result", "")
        except (httpx.HTTPError, ValueError, ChainConnectionError) as e:
            if attempt < max_retries:
                log.info(f"RPC not ready yet (attempt {attempt}/{max_retries}): {e.__class__.__name__} - retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
            else:
                log.error(f"RPC failed after {max_retries} attempts")
                raise ChainConnectionError(f"cannot reach chain node at {url}: {e}") from e
    raise ChainConnectionError(f"cannot reach chain node at {url}")


class Web3ChainClient:
    def __init__(self, rpc_url: str, contract_address: str, *, abi: list[dict] | None = None, timeout: float = C.RPC_TIMEOUT):
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        if not Web3.is_address(contract_address):
            raise ContractInterfaceError(f"invalid contract address: {contract_address!r}")
        self.contract_address = Web3.to_checksum_address(contract_address)
        abi = abi or C.CONTRACT_ABI
        if not any(e.get("type") == "function" and e.get("name") == C.CONTRACT_METHOD for e in abi):
            raise ContractInterfaceError(f"ABI has no {C.CONTRACT_METHOD} function")
        try:
            self.contract = self.w3.eth.contract(address=self.contract_address, abi=abi)
        except Exception as e:
            raise ContractInterfaceError(f"Error parsing ABI: {e}") from e

    async def ensure_connected(self) -> None:
        if not await self.w3.is_connected():
            raise ChainConnectionError(f"Error connecting to Ethereum client at {self.rpc_url}")

    async def get_nonce(self, address: str) -> int:
        return await self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), "pending")

    async def get_gas_price(self) -> int:
        return await self.w3.eth.gas_price

    async def get_chain_id(self) -> int:
        return await self.w3.eth.chain_id

    def encode_call(self, records: Sequence[ChainRecord]) -> str:
        return self.contract.encode_abi(C.CONTRACT_METHOD, args=call_args(records))

    async def send_raw_transaction(self, raw: bytes) -> str | None:
        tx_hash = await self.w3.eth.send_raw_transaction(raw)
        return Web3.to_hex(tx_hash) if tx_hash else None

    async def get_receipt(self, tx_hash: str) -> Any | None:
        """Return the receipt, or None while the transaction is not mined yet."""
        try:
            return await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
