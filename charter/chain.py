"""
Foundation Client - On-Chain Transaction Layer

Mirrors the in-process hub against a deployed Foundation:
- marshal / governance writes (charterFund, setMarshal, setFreeze, commit, remit)
- reads (custody, marshalFrozen)
- deployment verification against predicted CREATE2 addresses

Design:
- Sync Web3 calls wrapped in asyncio.run_in_executor() (web3.py async is fragile)
- Embedded minimal ABI: only the functions we call, no compiled JSON needed
- Gas estimation + 20% buffer, nonce auto from chain
- Non-fatal: RPC/tx failure -> log warning -> ChainTxResult(success=False)
- Fatal: AddressMismatch always raises (abort before use)
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .address import custody_key, expect_address
from .custody import CustodyRecord
from .protocol import AddressMismatch

logger = logging.getLogger("charter.chain")


# ============================================================
# MINIMAL ABI
# ============================================================

FOUNDATION_ABI = [
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "bytes32"},
        ],
        "name": "charterFund",
        "outputs": [{"name": "fund", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "marshal", "type": "address"},
            {"name": "authorized", "type": "bool"},
        ],
        "name": "setMarshal",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "frozen", "type": "bool"}],
        "name": "setFreeze",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # commit(fund, user, token, amount, fee, deadline, metadata): dispatched to the fund
    {
        "inputs": [
            {"name": "fund", "type": "address"},
            {"name": "user", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "fee", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
            {"name": "metadata", "type": "bytes"},
        ],
        "name": "commit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "marshalFrozen",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]

FUND_ABI = [
    {
        "inputs": [{"name": "key", "type": "bytes32"}],
        "name": "custody",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "fee", "type": "uint256"},
            {"name": "metadata", "type": "bytes"},
        ],
        "name": "remit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass
class ChainTxResult:
    """Result of an on-chain transaction attempt."""
    success: bool
    tx_hash: str = ""
    error: str = ""
    gas_used: int = 0


class FoundationClient:
    """
    Usage:
        client = FoundationClient()
        if client.initialize(rpc_url, private_key, foundation_address):
            client.verify_deployment(predicted_foundation)
            result = await client.commit(fund, user, token, 25_000)
    """

    def __init__(self):
        self._initialized: bool = False
        self._w3 = None
        self._private_key: str = ""
        self._sender: str = ""
        self._chain_id: int = 0
        self._foundation = None
        self._foundation_address: str = ""
        self._tx_count: int = 0
        self._last_error: str = ""

    def initialize(self, rpc_url: str, private_key: str, foundation_address: str,
                   chain_id: Optional[int] = None, w3=None) -> bool:
        from web3 import Web3
        from eth_account import Account

        if not private_key:
            logger.warning("No PRIVATE_KEY: foundation client disabled")
            return False
        if not foundation_address:
            logger.warning("No FOUNDATION_ADDRESS: foundation client disabled")
            return False

        try:
            self._sender = Account.from_key(private_key).address
        except Exception as e:
            logger.error(f"Invalid PRIVATE_KEY: {e}")
            return False
        self._private_key = private_key

        self._w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        if w3 is None and not self._w3.is_connected():
            logger.warning(f"Cannot connect to RPC ({rpc_url}): foundation client disabled")
            return False

        self._chain_id = chain_id or self._w3.eth.chain_id
        self._foundation_address = Web3.to_checksum_address(foundation_address)
        self._foundation = self._w3.eth.contract(address=self._foundation_address, abi=FOUNDATION_ABI)
        self._initialized = True
        logger.info(
            f"Foundation client ready: chain={self._chain_id} | "
            f"foundation={self._foundation_address[:10]}... | sender={self._sender[:10]}..."
        )
        return True

    def _fund(self, fund_address: str):
        from web3 import Web3
        return self._w3.eth.contract(address=Web3.to_checksum_address(fund_address), abi=FUND_ABI)

    # ============================================================
    # DEPLOYMENT VERIFICATION
    # ============================================================

    def verify_deployment(self, predicted: str, observed: Optional[str] = None) -> str:
        """
        Confirm code lives at the predicted address. Raises AddressMismatch.

        `observed` is the address reported by the deployment (receipt or
        event); when given it must equal the prediction as well.
        """
        from web3 import Web3

        if self._w3 is None:
            raise RuntimeError("foundation client not initialized")
        if observed is not None:
            expect_address(predicted, observed)
        code = self._w3.eth.get_code(Web3.to_checksum_address(predicted))
        if len(code) == 0 or bytes(code) == b"\x00":
            raise AddressMismatch(f"no code at predicted address {predicted}")
        return Web3.to_checksum_address(predicted)

    # ============================================================
    # WRITES
    # ============================================================

    async def _send_tx(self, build_fn, label: str) -> ChainTxResult:
        if not self._initialized:
            return ChainTxResult(success=False, error="foundation client not initialized")

        w3 = self._w3

        def _execute():
            tx = build_fn().build_transaction({
                "from": self._sender,
                "nonce": w3.eth.get_transaction_count(self._sender),
                "gasPrice": w3.eth.gas_price,
                "chainId": self._chain_id,
            })
            try:
                tx["gas"] = int(w3.eth.estimate_gas(tx) * 1.2)
            except Exception as gas_err:
                logger.warning(f"Gas estimation failed for {label}, using default 300k: {gas_err}")
                tx["gas"] = 300_000
            signed = w3.eth.account.sign_transaction(tx, self._private_key)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
            return receipt, tx_hash.hex()

        try:
            receipt, tx_hash_hex = await asyncio.get_running_loop().run_in_executor(None, _execute)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"TX ERROR [{label}]: {error}")
            self._last_error = error
            return ChainTxResult(success=False, error=error)

        if receipt["status"] != 1:
            error = f"TX reverted: {tx_hash_hex}"
            logger.warning(f"TX FAILED [{label}]: {error}")
            self._last_error = error
            return ChainTxResult(success=False, tx_hash=tx_hash_hex, error=error)

        self._tx_count += 1
        gas_used = receipt.get("gasUsed", 0)
        logger.info(f"TX SUCCESS [{label}]: {tx_hash_hex[:16]}... | gas={gas_used}")
        return ChainTxResult(success=True, tx_hash=tx_hash_hex, gas_used=gas_used)

    async def charter_fund(self, owner: str, salt: bytes) -> ChainTxResult:
        from web3 import Web3
        return await self._send_tx(
            lambda: self._foundation.functions.charterFund(Web3.to_checksum_address(owner), salt), "charterFund",
        )

    async def set_marshal(self, marshal: str, authorized: bool) -> ChainTxResult:
        from web3 import Web3
        return await self._send_tx(
            lambda: self._foundation.functions.setMarshal(Web3.to_checksum_address(marshal), authorized), "setMarshal",
        )

    async def set_freeze(self, frozen: bool) -> ChainTxResult:
        return await self._send_tx(lambda: self._foundation.functions.setFreeze(frozen), "setFreeze")

    async def commit(self, fund: str, user: str, asset: str, amount: int,
                     fee: int = 0, deadline: int = 0, metadata: bytes = b"") -> ChainTxResult:
        from web3 import Web3
        fn = lambda: self._foundation.functions.commit(
            Web3.to_checksum_address(fund), Web3.to_checksum_address(user),
            Web3.to_checksum_address(asset), amount, fee, deadline, metadata,
        )
        return await self._send_tx(fn, "commit")

    async def remit(self, fund: str, user: str, asset: str, amount: int,
                    fee: int = 0, metadata: bytes = b"") -> ChainTxResult:
        from web3 import Web3
        fn = lambda: self._fund(fund).functions.remit(
            Web3.to_checksum_address(user), Web3.to_checksum_address(asset), amount, fee, metadata,
        )
        return await self._send_tx(fn, "remit")

    # ============================================================
    # READS
    # ============================================================

    async def custody(self, fund: str, user: str, asset: str) -> Optional[CustodyRecord]:
        if not self._initialized:
            return None
        key = custody_key(user, asset)
        try:
            packed = await asyncio.get_running_loop().run_in_executor(
                None, self._fund(fund).functions.custody(key).call,
            )
        except Exception as e:
            logger.warning(f"custody read failed for {fund[:10]}...: {e}")
            self._last_error = f"custody: {e}"
            return None
        return CustodyRecord.unpack(packed)

    async def marshal_frozen(self) -> Optional[bool]:
        if not self._initialized:
            return None
        try:
            return await asyncio.get_running_loop().run_in_executor(
                None, self._foundation.functions.marshalFrozen().call,
            )
        except Exception as e:
            logger.warning(f"marshalFrozen read failed: {e}")
            self._last_error = f"marshalFrozen: {e}"
            return None

    def get_status(self) -> dict:
        return {
            "initialized": self._initialized,
            "sender": self._sender[:10] + "..." if self._sender else "",
            "foundation": self._foundation_address,
            "chain_id": self._chain_id,
            "tx_count": self._tx_count,
            "last_error": self._last_error,
        }
