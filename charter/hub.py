"""
Foundation Hub - charters per-owner funds at deterministic addresses.

The hub owns the AuthorizationRegistry and the governance reference. Each
fund is a beacon proxy deployed by the hub with CREATE2:

  init_calldata = initialize(hub, owner)
  fund_address  = create2(hub, salt, keccak(proxyCode ++ abi.encode(beacon, init_calldata)))

salt defaults to owner20 ++ 0^12, so (owner, salt) -> address is a pure,
reproducible mapping (predict_fund_address) that off-chain tooling can
compute before the charter transaction is ever sent.

All hub and fund operations share one re-entrant lock: every operation is
one atomic step relative to every other.

Designed for: charter custodial escrow vaults
"""

import time
import logging
import threading
from typing import Callable, Optional

from eth_utils import to_checksum_address

from .address import (
    SaltLike,
    compute_beacon_proxy_address,
    encode_initialize_call,
    owner_salt,
    to_salt,
)
from .assets import AssetTransfer
from .events import EventLog
from .fund import CharteredFund
from .protocol import AlreadyChartered, UnknownFund
from .registry import AuthorizationRegistry

logger = logging.getLogger("charter.hub")


class UpgradeableBeacon:
    """Points every fund proxy at the current implementation."""

    def __init__(self, address: str, implementation: str):
        self.address = to_checksum_address(address)
        self.implementation = to_checksum_address(implementation)

    def upgrade_to(self, implementation: str) -> None:
        self.implementation = to_checksum_address(implementation)


class Foundation:
    """
    Hub of the custody system.

    Usage:
        hub = Foundation(address, StaticGovernance(gov), beacon, assets, proxy_code)
        hub.set_marshal(gov, marshal, True)
        fund_address = hub.charter_fund(marshal, owner)
        hub.fund(fund_address).contribute(user, asset, 1_000)
    """

    def __init__(
        self,
        address: str,
        governance: Callable[[], str],
        beacon: UpgradeableBeacon,
        assets: AssetTransfer,
        proxy_creation_code: bytes,
        events: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.address = to_checksum_address(address)
        self.beacon = beacon
        self.assets = assets
        self.proxy_creation_code = bytes(proxy_creation_code)
        self.events = events if events is not None else EventLog()
        self.registry = AuthorizationRegistry(governance, self.events, address=self.address)
        self._clock = clock
        self._lock = threading.RLock()

        self._funds: dict[str, CharteredFund] = {}
        self._charters: dict[tuple[str, bytes], str] = {}    # (owner, salt) -> fund

    @property
    def governance(self) -> str:
        return self.registry.governance

    # ============================================================
    # AUTHORIZATION (delegates to the registry)
    # ============================================================

    def set_marshal(self, sender: str, marshal: str, authorized: bool) -> None:
        with self._lock:
            self.registry.set_marshal(sender, marshal, authorized)

    def set_freeze(self, sender: str, frozen: bool) -> None:
        with self._lock:
            self.registry.set_freeze(sender, frozen)

    def is_marshal(self, identity: str) -> bool:
        return self.registry.is_authorized(identity)

    def marshal_frozen(self) -> bool:
        return self.registry.is_frozen()

    # ============================================================
    # CHARTER
    # ============================================================

    def predict_fund_address(self, owner: str, salt: Optional[SaltLike] = None) -> str:
        owner = to_checksum_address(owner)
        salt_bytes = owner_salt(owner) if salt is None else to_salt(salt)
        return compute_beacon_proxy_address(
            beacon=self.beacon.address,
            init_calldata=encode_initialize_call(self.address, owner),
            salt=salt_bytes,
            deployer=self.address,
            proxy_creation_code=self.proxy_creation_code,
        )

    def charter_fund(self, sender: str, owner: str, salt: Optional[SaltLike] = None) -> str:
        """Deploy a new fund for owner at its deterministic address (marshal only)."""
        owner = to_checksum_address(owner)
        salt_bytes = owner_salt(owner) if salt is None else to_salt(salt)
        with self._lock:
            self.registry.require_marshal(sender)
            fund_address = self.predict_fund_address(owner, salt_bytes)
            if fund_address in self._funds:
                raise AlreadyChartered(f"fund already chartered at {fund_address}")

            self._funds[fund_address] = CharteredFund(
                address=fund_address,
                owner=owner,
                hub=self.address,
                registry=self.registry,
                beacon=self.beacon,
                assets=self.assets,
                events=self.events,
                lock=self._lock,
                clock=self._clock,
            )
            self._charters[(owner, salt_bytes)] = fund_address
            self.events.emit("FundChartered", self.address, owner=owner, fund=fund_address, salt=salt_bytes)
            logger.info(f"CHARTERED fund {fund_address} for owner {owner[:10]}... (salt={salt_bytes.hex()[:16]}...)")
            return fund_address

    def fund(self, address: str) -> CharteredFund:
        fund = self._funds.get(to_checksum_address(address))
        if fund is None:
            raise UnknownFund(f"no fund chartered at {address}")
        return fund

    def funds_of(self, owner: str) -> list[str]:
        owner = to_checksum_address(owner)
        return [addr for (o, _), addr in self._charters.items() if o == owner]

    def chartered(self, owner: str, salt: Optional[SaltLike] = None) -> Optional[str]:
        owner = to_checksum_address(owner)
        salt_bytes = owner_salt(owner) if salt is None else to_salt(salt)
        return self._charters.get((owner, salt_bytes))

    # ============================================================
    # MARSHAL ENTRY POINTS
    # ============================================================

    def commit(self, sender: str, fund: str, user: str, asset: str, amount: int,
               fee: int = 0, deadline: int = 0, metadata: bytes = b""):
        """Hub-level commit: dispatches to the named fund."""
        return self.fund(fund).commit(sender, user, asset, amount, fee, deadline, metadata)

    # ============================================================
    # UPGRADE (governance only)
    # ============================================================

    def upgrade(self, sender: str, implementation: str) -> None:
        with self._lock:
            self.registry.require_governance(sender)
            previous = self.beacon.implementation
            self.beacon.upgrade_to(implementation)
            self.events.emit("Upgraded", self.address, implementation=self.beacon.implementation)
            logger.info(f"UPGRADED fund implementation {previous[:10]}... -> {self.beacon.implementation}")

    # ============================================================
    # STATUS
    # ============================================================

    def get_status(self) -> dict:
        return {
            "address": self.address,
            "governance": self.governance,
            "beacon": self.beacon.address,
            "implementation": self.beacon.implementation,
            "frozen": self.marshal_frozen(),
            "marshals": self.registry.marshals(),
            "funds": len(self._funds),
        }
