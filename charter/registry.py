"""
Authorization Registry - marshal table + global freeze gate.

One registry is shared by the hub and every fund it charters, so a single
set_freeze(True) halts all marshal-gated operations system-wide. Writes
are visible to the next operation of every fund (no caching).

Only the current governance identity may mutate it. Governance is an
opaque provider: a zero-arg callable returning the identity.
"""

import logging
from typing import Callable, Optional

from eth_utils import to_checksum_address

from .events import EventLog
from .protocol import Frozen, Unauthorized

logger = logging.getLogger("charter.registry")


class StaticGovernance:
    """Governance identity fixed at construction."""

    def __init__(self, address: str):
        self.address = to_checksum_address(address)

    def __call__(self) -> str:
        return self.address


class AuthorizationRegistry:

    def __init__(self, governance: Callable[[], str], events: Optional[EventLog] = None, address: str = ""):
        self._governance = governance
        self.events = events if events is not None else EventLog()
        self.address = address
        self._marshals: dict[str, bool] = {}
        self._frozen: bool = False

    @property
    def governance(self) -> str:
        return to_checksum_address(self._governance())

    def require_governance(self, sender: str) -> None:
        if to_checksum_address(sender) != self.governance:
            raise Unauthorized(f"{sender} is not the governance identity")

    # ============================================================
    # MUTATIONS (governance only)
    # ============================================================

    def set_marshal(self, sender: str, marshal: str, authorized: bool) -> None:
        self.require_governance(sender)
        marshal = to_checksum_address(marshal)
        self._marshals[marshal] = bool(authorized)
        self.events.emit("MarshalSet", self.address, marshal=marshal, authorized=bool(authorized))
        logger.info(f"MARSHAL {'GRANTED' if authorized else 'REVOKED'}: {marshal}")

    def set_freeze(self, sender: str, frozen: bool) -> None:
        self.require_governance(sender)
        self._frozen = bool(frozen)
        self.events.emit("FreezeSet", self.address, frozen=bool(frozen))
        if frozen:
            logger.warning("MARSHAL GATE FROZEN: all marshal-gated operations halted")
        else:
            logger.info("Marshal gate thawed")

    # ============================================================
    # QUERIES
    # ============================================================

    def is_authorized(self, identity: str) -> bool:
        return self._marshals.get(to_checksum_address(identity), False)

    def is_frozen(self) -> bool:
        return self._frozen

    def require_marshal(self, sender: str) -> None:
        """Gate for marshal operations: Unauthorized first, then Frozen."""
        if not self.is_authorized(sender):
            raise Unauthorized(f"{sender} is not an authorized marshal")
        if self._frozen:
            raise Frozen("marshal operations are frozen")

    def marshals(self) -> list[str]:
        return sorted(m for m, ok in self._marshals.items() if ok)
