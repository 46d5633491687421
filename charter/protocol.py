"""
Charter Protocol - Layer 0 (Constants & Error Taxonomy)

Fixed protocol parameters shared by the hub, the chartered funds and the
salt miner, plus every error the ledger can raise.

Every error derives from ProtocolError. A rejected operation leaves all
balances, authorization state and addresses exactly as they were.

Designed for: charter custodial escrow vaults
"""

from dataclasses import dataclass
from typing import Final


class ProtocolError(Exception):
    """Base class for every protocol-level rejection."""
    pass


# ============================================================
# AUTHORIZATION
# ============================================================

class Unauthorized(ProtocolError):
    """Caller lacks the marshal or governance capability."""
    pass


class Frozen(ProtocolError):
    """The authorization registry gate is closed."""
    pass


# ============================================================
# BALANCES
# ============================================================

class InsufficientOwned(ProtocolError):
    pass


class InsufficientEscrow(ProtocolError):
    pass


class CustodyOverflow(ProtocolError):
    """A 128-bit half of a custody record would overflow."""
    pass


class DeadlineExpired(ProtocolError):
    pass


class ReentrantCall(ProtocolError):
    """A fund operation was re-entered while another one was in flight."""
    pass


class TransferFailed(ProtocolError):
    """External asset movement did not complete. Always rolled back."""
    pass


# ============================================================
# DEPLOYMENT
# ============================================================

class SaltNotFound(ProtocolError):
    """Mining exhausted (or was cancelled over) its assigned range."""
    pass


class AddressMismatch(ProtocolError):
    """A computed deterministic address disagrees with an observed deployment.

    Fatal: parameters or code fingerprint drifted. Abort before use.
    """
    pass


class AlreadyChartered(ProtocolError):
    pass


class UnknownFund(ProtocolError):
    pass


# ============================================================
# PROTOCOL CONSTANTS
# ============================================================

@dataclass(frozen=True)
class ProtocolConstants:
    """Frozen dataclass = immutable at runtime."""

    # --- CUSTODY PACKING ---
    HALF_BITS: Final[int] = 128                        # owned = low half, escrow = high half
    MAX_UINT128: Final[int] = (1 << 128) - 1
    MAX_UINT256: Final[int] = (1 << 256) - 1

    # --- ADDRESSES ---
    ADDRESS_BYTES: Final[int] = 20
    SALT_BYTES: Final[int] = 32
    SALT_NONCE_BITS: Final[int] = 96                   # identity-prefixed salts: prefix20 ‖ uint96
    CREATE2_PREFIX: Final[bytes] = b"\xff"
    NATIVE_ASSET: Final[str] = "0x0000000000000000000000000000000000000000"

    # Nick's Deterministic Deployment Proxy, pre-deployed on 200+ EVM chains
    DETERMINISTIC_DEPLOYER: Final[str] = "0x4e59b44847b379578588920cA78FbF26c0B4956C"

    # --- FUND INITIALIZER ---
    INITIALIZE_SIGNATURE: Final[str] = "initialize(address,address)"

    # --- MINING ---
    MINER_CANCEL_POLL: Final[int] = 4096               # candidates between cancel checks
    MINER_DEFAULT_CHUNK: Final[int] = 1_000_000


PROTOCOL = ProtocolConstants()
