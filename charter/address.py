"""
Address Deriver - Deterministic Deployment Addresses

Pure functions. No state, no I/O.

CREATE2 (EIP-1014):
  address = keccak256(0xff ++ deployer ++ salt ++ keccak256(initcode))[12:]

Beacon proxies are deployed with
  initcode = proxyCreationCode ++ abi.encode(beacon, initCalldata)
so the code fingerprint is keyed by (beacon, init calldata) on top of the
fixed proxy template. Fund init calldata is initialize(hub, owner).

Mined salts are later submitted for real deployment, so everything here
must stay bit-exact with the on-chain derivation.
"""

from typing import Union

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from .protocol import PROTOCOL, AddressMismatch

SaltLike = Union[int, bytes, str]


# ============================================================
# ENCODING HELPERS
# ============================================================

def address_bytes(address: str) -> bytes:
    """20-byte form of an account identifier (any casing accepted)."""
    return bytes.fromhex(to_checksum_address(address)[2:])


def to_salt(salt: SaltLike) -> bytes:
    """Normalize an int / bytes / 0x-hex salt to exactly 32 bytes."""
    if isinstance(salt, bool):
        raise TypeError("salt must be int, bytes or hex string")
    if isinstance(salt, int):
        if salt < 0 or salt > PROTOCOL.MAX_UINT256:
            raise ValueError(f"salt out of uint256 range: {salt}")
        return salt.to_bytes(PROTOCOL.SALT_BYTES, "big")
    if isinstance(salt, str):
        raw = salt[2:] if salt.lower().startswith("0x") else salt
        if len(raw) > 2 * PROTOCOL.SALT_BYTES:
            raise ValueError(f"salt longer than 32 bytes: {salt}")
        return bytes.fromhex(raw.rjust(2 * PROTOCOL.SALT_BYTES, "0"))
    if isinstance(salt, (bytes, bytearray)):
        if len(salt) > PROTOCOL.SALT_BYTES:
            raise ValueError(f"salt longer than 32 bytes: {len(salt)}")
        return bytes(salt).rjust(PROTOCOL.SALT_BYTES, b"\x00")
    raise TypeError("salt must be int, bytes or hex string")


def pack_salt(prefix: str, nonce: int) -> bytes:
    """prefix20 ++ uint96(nonce): a salt that embeds an identity in its high bits."""
    if nonce < 0 or nonce >= 1 << PROTOCOL.SALT_NONCE_BITS:
        raise ValueError(f"salt nonce out of uint96 range: {nonce}")
    return address_bytes(prefix) + nonce.to_bytes(PROTOCOL.SALT_NONCE_BITS // 8, "big")


def owner_salt(owner: str) -> bytes:
    """Default charter salt: the owner's identity with a zero nonce."""
    return pack_salt(owner, 0)


def encode_initialize_call(first: str, second: str) -> bytes:
    """
    initialize(address,address) calldata.

    Funds are initialized with (hub, owner); the hub proxy with (governance, beacon).
    """
    selector = function_signature_to_4byte_selector(PROTOCOL.INITIALIZE_SIGNATURE)
    return selector + encode(["address", "address"], [to_checksum_address(first), to_checksum_address(second)])


# ============================================================
# DERIVATION
# ============================================================

def compute_create2_address(deployer: str, salt: SaltLike, init_code_hash: bytes) -> str:
    """
    Predict a CREATE2 deployment address.

    Formula: keccak256(0xff ++ deployer ++ salt ++ init_code_hash)[12:]
    """
    if len(init_code_hash) != 32:
        raise ValueError(f"init code hash must be 32 bytes, got {len(init_code_hash)}")
    preimage = (
        PROTOCOL.CREATE2_PREFIX
        + address_bytes(deployer)
        + to_salt(salt)
        + bytes(init_code_hash)
    )
    return to_checksum_address("0x" + keccak(preimage).hex()[-40:])


def proxy_init_code(proxy_creation_code: bytes, target: str, init_calldata: bytes) -> bytes:
    """
    initcode of a proxy whose constructor takes (address, bytes).

    Both the ERC1967 proxy (target = implementation) and the beacon proxy
    (target = beacon) share this constructor shape.
    """
    constructor_args = encode(["address", "bytes"], [to_checksum_address(target), bytes(init_calldata)])
    return bytes(proxy_creation_code) + constructor_args


def beacon_proxy_init_code_hash(beacon: str, init_calldata: bytes, proxy_creation_code: bytes) -> bytes:
    """Code fingerprint of a beacon proxy constructed with (beacon, init_calldata)."""
    return keccak(proxy_init_code(proxy_creation_code, beacon, init_calldata))


def compute_beacon_proxy_address(
    beacon: str,
    init_calldata: bytes,
    salt: SaltLike,
    deployer: str,
    proxy_creation_code: bytes,
) -> str:
    init_code_hash = beacon_proxy_init_code_hash(beacon, init_calldata, proxy_creation_code)
    return compute_create2_address(deployer, salt, init_code_hash)


def custody_key(user: str, asset: str) -> bytes:
    """keccak256(abi.encodePacked(user, asset)) - identifies one balance record."""
    return keccak(address_bytes(user) + address_bytes(asset))


def expect_address(predicted: str, observed: str) -> str:
    """Abort-before-use gate: raise AddressMismatch unless both addresses agree."""
    if to_checksum_address(predicted) != to_checksum_address(observed):
        raise AddressMismatch(f"predicted {predicted} but observed {observed}")
    return to_checksum_address(observed)
