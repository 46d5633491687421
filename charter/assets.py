"""
Asset Transfer - the external value-movement capability a fund relies on.

A transfer either completes as a unit or raises TransferFailed with no
balance moved. Recipients may register a receive hook (the analogue of a
contract's receive / token callback); a hook can call back into a fund,
which is why funds treat every transfer as a potential reentry point.
"""

import logging
from typing import Callable, Optional, Protocol

from eth_utils import to_checksum_address

from .protocol import PROTOCOL, TransferFailed

logger = logging.getLogger("charter.assets")

NATIVE_ASSET = PROTOCOL.NATIVE_ASSET

ReceiveHook = Callable[[str, str, int], None]   # (asset, sender, amount)


class AssetTransfer(Protocol):
    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        ...

    def balance_of(self, holder: str, asset: str) -> int:
        ...


class InMemoryAssets:
    """
    Balance book for native value and tokens, keyed by (holder, asset).

    Used by the hub when it runs off-chain and by the test suite.

    A failing receive hook reverts only this transfer. Operations the hook
    already completed (a contribution into another fund, say) are separate,
    already-settled transfers and stay in place: each keeps its own ledger
    and balances consistent, but there is no chain-wide revert across them.
    """

    def __init__(self):
        self._balances: dict[tuple[str, str], int] = {}
        self._hooks: dict[str, ReceiveHook] = {}

    def mint(self, holder: str, asset: str, amount: int) -> None:
        key = (to_checksum_address(holder), to_checksum_address(asset))
        self._balances[key] = self._balances.get(key, 0) + amount

    def balance_of(self, holder: str, asset: str) -> int:
        return self._balances.get((to_checksum_address(holder), to_checksum_address(asset)), 0)

    def on_receive(self, recipient: str, hook: Optional[ReceiveHook]) -> None:
        recipient = to_checksum_address(recipient)
        if hook is None:
            self._hooks.pop(recipient, None)
        else:
            self._hooks[recipient] = hook

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        asset = to_checksum_address(asset)
        sender = to_checksum_address(sender)
        recipient = to_checksum_address(recipient)
        if amount < 0:
            raise TransferFailed(f"negative transfer amount: {amount}")

        src = (sender, asset)
        dst = (recipient, asset)
        available = self._balances.get(src, 0)
        if available < amount:
            raise TransferFailed(
                f"{sender[:10]}... holds {available} of {asset[:10]}..., needs {amount}"
            )

        self._balances[src] = available - amount
        self._balances[dst] = self._balances.get(dst, 0) + amount

        hook = self._hooks.get(recipient)
        if hook is None:
            return
        try:
            hook(asset, sender, amount)
        except Exception as e:
            # Hook failure reverts the whole transfer
            self._balances[dst] -= amount
            self._balances[src] += amount
            logger.warning(f"Receive hook of {recipient[:10]}... reverted: {type(e).__name__}: {e}")
            raise TransferFailed(f"receive hook reverted: {e}") from e
