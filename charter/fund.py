"""
Chartered Fund - per-owner custody ledger.

Tracks each (user, asset) balance as a packed CustodyRecord and moves it
between two states:
  owned   freely withdrawable by the user (request_rescission)
  escrow  committed by a marshal, settled only by a marshal (remit)

Transitions:
  contribute          anyone, credits themself          owned  += amount
  contribute_for      marshal, credits a user           owned  += amount
  commit              marshal                           owned  -> escrow
  remit               marshal, pays user, keeps fee     escrow -= amount + fee
  request_rescission  the depositing user               owned  -> 0, paid out

Every transition is atomic with its asset movement:
- state is written BEFORE the external transfer
- any transfer error restores the previous record and surfaces as TransferFailed
- a per-fund latch rejects re-entry from transfer hooks (ReentrantCall)

Logic is resolved through the hub's beacon at call time; storage (custody
words, owner, accrued fees) never moves across an upgrade.
"""

import time
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Optional

from eth_utils import to_checksum_address

from .address import custody_key
from .assets import AssetTransfer
from .custody import CustodyRecord
from .events import EventLog
from .protocol import (
    DeadlineExpired,
    InsufficientEscrow,
    InsufficientOwned,
    ReentrantCall,
    TransferFailed,
)
from .registry import AuthorizationRegistry

logger = logging.getLogger("charter.fund")


def _require_amount(name: str, amount: int, allow_zero: bool = False) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValueError(f"{name} must be an int, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {amount}")


class CharteredFund:

    def __init__(
        self,
        address: str,
        owner: str,
        hub: str,
        registry: AuthorizationRegistry,
        beacon,
        assets: AssetTransfer,
        events: Optional[EventLog] = None,
        lock: Optional[threading.RLock] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.address = to_checksum_address(address)
        self.owner = to_checksum_address(owner)
        self.hub = to_checksum_address(hub)
        self.registry = registry
        self.beacon = beacon
        self.assets = assets
        self.events = events if events is not None else registry.events
        self._lock = lock if lock is not None else threading.RLock()
        self._clock = clock

        # Storage: custody key -> packed (owned, escrow) word
        self._custody: dict[bytes, int] = {}
        self._fees: dict[str, int] = {}
        self._entered: bool = False

    @property
    def implementation(self) -> str:
        return self.beacon.implementation

    # ============================================================
    # READS
    # ============================================================

    def custody(self, key: bytes) -> int:
        return self._custody.get(bytes(key), 0)

    def record(self, user: str, asset: str) -> CustodyRecord:
        return CustodyRecord.unpack(self.custody(custody_key(user, asset)))

    def accrued_fees(self, asset: str) -> int:
        return self._fees.get(to_checksum_address(asset), 0)

    def get_status(self) -> dict:
        return {
            "address": self.address,
            "owner": self.owner,
            "hub": self.hub,
            "implementation": self.implementation,
            "records": len(self._custody),
            "accrued_fees": dict(self._fees),
        }

    # ============================================================
    # INTERNALS
    # ============================================================

    @contextmanager
    def _entry(self, operation: str):
        """Serialize against the hub and latch out re-entry until every exit path."""
        with self._lock:
            if self._entered:
                raise ReentrantCall(f"{operation} re-entered fund {self.address}")
            self._entered = True
            try:
                yield
            finally:
                self._entered = False

    def _settle(self, key: bytes, before: CustodyRecord, after: CustodyRecord,
                move: Optional[Callable[[], None]] = None,
                fee_asset: str = "", fee: int = 0) -> None:
        """Write the new record, then move value; undo the write if the move fails."""
        self._custody[key] = after.pack()
        if fee:
            self._fees[fee_asset] = self._fees.get(fee_asset, 0) + fee
        if move is None:
            return
        try:
            move()
        except Exception as e:
            # Any failure of the asset capability means no value moved
            self._custody[key] = before.pack()
            if fee:
                self._fees[fee_asset] -= fee
            logger.warning(f"Transfer failed in fund {self.address[:10]}...: ledger rolled back ({type(e).__name__})")
            if isinstance(e, TransferFailed):
                raise
            raise TransferFailed(f"{type(e).__name__}: {e}") from e

    def _credit(self, operation: str, user: str, asset: str, amount: int, payer: str) -> CustodyRecord:
        key = custody_key(user, asset)
        before = CustodyRecord.unpack(self.custody(key))
        after = before.credit(amount)
        self._settle(key, before, after,
                     lambda: self.assets.transfer(asset, payer, self.address, amount))
        self.events.emit("ContributionRecorded", self.address,
                         user=user, asset=asset, amount=amount, payer=payer)
        logger.info(f"{operation.upper()} +{amount} [{asset[:10]}...] for {user[:10]}... | owned={after.owned}")
        return after

    # ============================================================
    # TRANSITIONS
    # ============================================================

    def contribute(self, sender: str, asset: str, amount: int) -> CustodyRecord:
        """Deposit amount of asset, credited to the sender's own owned balance."""
        _require_amount("amount", amount)
        sender = to_checksum_address(sender)
        asset = to_checksum_address(asset)
        with self._entry("contribute"):
            return self._credit("contribute", sender, asset, amount, payer=sender)

    def contribute_for(self, sender: str, user: str, asset: str, amount: int) -> CustodyRecord:
        """Marshal deposits on behalf of user; value is pulled from the marshal."""
        _require_amount("amount", amount)
        sender = to_checksum_address(sender)
        user = to_checksum_address(user)
        asset = to_checksum_address(asset)
        with self._entry("contribute_for"):
            self.registry.require_marshal(sender)
            return self._credit("contribute_for", user, asset, amount, payer=sender)

    def commit(self, sender: str, user: str, asset: str, amount: int,
               fee: int = 0, deadline: int = 0, metadata: bytes = b"") -> CustodyRecord:
        """Move amount from the user's owned balance into escrow."""
        _require_amount("amount", amount)
        _require_amount("fee", fee, allow_zero=True)
        sender = to_checksum_address(sender)
        user = to_checksum_address(user)
        asset = to_checksum_address(asset)
        with self._entry("commit"):
            self.registry.require_marshal(sender)
            if deadline and self._clock() > deadline:
                raise DeadlineExpired(f"commit deadline {deadline} has passed")

            key = custody_key(user, asset)
            before = CustodyRecord.unpack(self.custody(key))
            if before.owned < amount:
                raise InsufficientOwned(f"owned {before.owned} < commit {amount}")
            after = before.lock(amount)
            self._settle(key, before, after)

            self.events.emit("CommitmentConfirmed", self.address,
                             user=user, asset=asset, amount=amount, fee=fee,
                             deadline=deadline, metadata=bytes(metadata), marshal=sender)
            logger.info(
                f"COMMIT {amount} [{asset[:10]}...] for {user[:10]}... | "
                f"owned={after.owned} escrow={after.escrow}"
            )
            return after

    def remit(self, sender: str, user: str, asset: str, amount: int,
              fee: int = 0, metadata: bytes = b"") -> CustodyRecord:
        """Settle escrow: pay amount to the user, retain fee in the fund."""
        _require_amount("amount", amount)
        _require_amount("fee", fee, allow_zero=True)
        sender = to_checksum_address(sender)
        user = to_checksum_address(user)
        asset = to_checksum_address(asset)
        with self._entry("remit"):
            self.registry.require_marshal(sender)

            key = custody_key(user, asset)
            before = CustodyRecord.unpack(self.custody(key))
            if before.escrow < amount + fee:
                raise InsufficientEscrow(f"escrow {before.escrow} < remit {amount} + fee {fee}")
            after = before.release(amount + fee)
            self._settle(key, before, after,
                         lambda: self.assets.transfer(asset, self.address, user, amount),
                         fee_asset=asset, fee=fee)

            self.events.emit("RemittanceProcessed", self.address,
                             user=user, asset=asset, amount=amount, fee=fee,
                             metadata=bytes(metadata), marshal=sender)
            logger.info(f"REMIT {amount} (+fee {fee}) [{asset[:10]}...] to {user[:10]}... | escrow={after.escrow}")
            return after

    def request_rescission(self, sender: str, asset: str) -> int:
        """User withdraws their whole owned balance. Never gated by freeze."""
        sender = to_checksum_address(sender)
        asset = to_checksum_address(asset)
        with self._entry("request_rescission"):
            key = custody_key(sender, asset)
            before = CustodyRecord.unpack(self.custody(key))
            amount = before.owned
            if amount == 0:
                raise InsufficientOwned(f"{sender} owns nothing of {asset} in {self.address}")
            after = before.debit_owned(amount)
            self._settle(key, before, after,
                         lambda: self.assets.transfer(asset, self.address, sender, amount))

            self.events.emit("RescissionRequested", self.address,
                             user=sender, asset=asset, amount=amount)
            logger.info(f"RESCIND {amount} [{asset[:10]}...] to {sender[:10]}... | escrow={after.escrow}")
            return amount
