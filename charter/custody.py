"""
Custody Record - packed (owned, escrow) balance pair.

One 256-bit word per (user, asset):
  bits [0, 128)   owned   freely rescindable by the user
  bits [128, 256) escrow  committed, only a marshal can move it
"""

from dataclasses import dataclass

from .protocol import PROTOCOL, CustodyOverflow

MAX_UINT128 = PROTOCOL.MAX_UINT128


def _check_half(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > MAX_UINT128:
        raise CustodyOverflow(f"{name} out of uint128 range: {value}")


def pack_amount(owned: int, escrow: int) -> int:
    _check_half("owned", owned)
    _check_half("escrow", escrow)
    return (escrow << PROTOCOL.HALF_BITS) | owned


def split_amount(packed: int) -> tuple[int, int]:
    """Inverse of pack_amount: word -> (owned, escrow)."""
    if packed < 0 or packed > PROTOCOL.MAX_UINT256:
        raise CustodyOverflow(f"packed custody word out of uint256 range: {packed}")
    return packed & MAX_UINT128, packed >> PROTOCOL.HALF_BITS


@dataclass(frozen=True)
class CustodyRecord:
    owned: int = 0
    escrow: int = 0

    def __post_init__(self):
        _check_half("owned", self.owned)
        _check_half("escrow", self.escrow)

    @classmethod
    def unpack(cls, packed: int) -> "CustodyRecord":
        owned, escrow = split_amount(packed)
        return cls(owned=owned, escrow=escrow)

    def pack(self) -> int:
        return pack_amount(self.owned, self.escrow)

    @property
    def total(self) -> int:
        return self.owned + self.escrow

    # Transitions return a new record; the constructor rejects any half
    # that leaves [0, 2^128).

    def credit(self, amount: int) -> "CustodyRecord":
        return CustodyRecord(self.owned + amount, self.escrow)

    def debit_owned(self, amount: int) -> "CustodyRecord":
        return CustodyRecord(self.owned - amount, self.escrow)

    def lock(self, amount: int) -> "CustodyRecord":
        """Move amount from owned into escrow."""
        return CustodyRecord(self.owned - amount, self.escrow + amount)

    def release(self, amount: int) -> "CustodyRecord":
        return CustodyRecord(self.owned, self.escrow - amount)

    def to_dict(self) -> dict:
        return {"owned": self.owned, "escrow": self.escrow, "packed": self.pack()}
