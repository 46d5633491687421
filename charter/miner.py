"""
Salt Miner - vanity address search over an explicit integer range.

mine(predicate, range(start, end), space) walks candidates in ascending
order, turns each into a salt, derives the CREATE2 address and returns the
first one whose address satisfies the predicate. Exhaustive, no skipping,
no randomness: the same range always yields the same salt.

Parallel search splits the range into disjoint partitions
  partition(x, L) = [L*x, L*(x+1))
that share no mutable state. mine_parallel consumes partition results in
ascending order, so its answer equals mining the whole range directly.
Cancellation is cooperative; a late cancel only wastes work.

Predicates run in worker processes when workers > 1, so they must be
picklable (PrefixPredicate is).
"""

import os
import logging
import multiprocessing
from collections import deque
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from eth_utils import keccak, to_checksum_address

from .address import address_bytes, compute_create2_address, pack_salt
from .protocol import PROTOCOL, SaltNotFound

logger = logging.getLogger("charter.miner")

Predicate = Callable[[str], bool]


# ============================================================
# SEARCH SPACE + PREDICATES
# ============================================================

@dataclass(frozen=True)
class SaltSpace:
    """
    How a candidate integer becomes a salt and then an address.

    prefix set   -> salt = prefix20 ++ uint96(i)   (identity-embedded salt)
    prefix None  -> salt = uint256(i)
    """
    deployer: str
    init_code_hash: bytes
    prefix: Optional[str] = None

    def salt(self, index: int) -> bytes:
        if self.prefix:
            return pack_salt(self.prefix, index)
        if index < 0 or index > PROTOCOL.MAX_UINT256:
            raise ValueError(f"salt index out of uint256 range: {index}")
        return index.to_bytes(PROTOCOL.SALT_BYTES, "big")

    def address(self, index: int) -> str:
        return compute_create2_address(self.deployer, self.salt(index), self.init_code_hash)


@dataclass(frozen=True)
class PrefixPredicate:
    """True when the top `bits` bits of the 160-bit address equal `value`."""
    bits: int
    value: int

    def __post_init__(self):
        if not 0 < self.bits <= 160:
            raise ValueError(f"prefix bits must be in 1..160, got {self.bits}")
        if not 0 <= self.value < 1 << self.bits:
            raise ValueError(f"prefix value {self.value:#x} does not fit in {self.bits} bits")

    @classmethod
    def from_hex(cls, prefix: str) -> "PrefixPredicate":
        raw = prefix[2:] if prefix.lower().startswith("0x") else prefix
        if not raw:
            raise ValueError("empty vanity prefix")
        return cls(bits=4 * len(raw), value=int(raw, 16))

    def __call__(self, address: str) -> bool:
        return int(address, 16) >> (160 - self.bits) == self.value


@dataclass(frozen=True)
class MinedSalt:
    index: int
    salt: bytes
    address: str

    def to_dict(self) -> dict:
        return {"index": self.index, "salt": "0x" + self.salt.hex(), "address": self.address}


def partition(index: int, chunk: int) -> range:
    if index < 0 or chunk <= 0:
        raise ValueError(f"invalid partition index={index} chunk={chunk}")
    return range(chunk * index, chunk * (index + 1))


# ============================================================
# SEQUENTIAL SEARCH
# ============================================================

def mine(predicate: Predicate, search: range, space: SaltSpace, cancel=None) -> MinedSalt:
    """
    Return the smallest index in `search` whose address satisfies predicate.

    The predicate receives the lowercase 0x-hex address. `cancel` is any
    object with is_set(), polled every MINER_CANCEL_POLL candidates.
    Raises SaltNotFound when the range is exhausted or the search is cancelled.
    """
    if search.step != 1:
        raise ValueError(f"search range must be contiguous, got step {search.step}")

    head = PROTOCOL.CREATE2_PREFIX + address_bytes(space.deployer)
    tail = bytes(space.init_code_hash)
    poll = PROTOCOL.MINER_CANCEL_POLL

    for n, index in enumerate(search):
        if cancel is not None and n % poll == 0 and cancel.is_set():
            raise SaltNotFound(f"search cancelled at {index} in [{search.start}, {search.stop})")
        salt = space.salt(index)
        address = "0x" + keccak(head + salt + tail).hex()[-40:]
        if predicate(address):
            found = MinedSalt(index=index, salt=salt, address=to_checksum_address(address))
            logger.info(f"SALT FOUND: index={index} salt=0x{salt.hex()} -> {found.address}")
            return found

    raise SaltNotFound(f"no matching salt in [{search.start}, {search.stop})")


def mine_partition(predicate: Predicate, space: SaltSpace, index: int, chunk: int, cancel=None) -> MinedSalt:
    return mine(predicate, partition(index, chunk), space, cancel)


def _mine_bounds(predicate: Predicate, space: SaltSpace, start: int, end: int, cancel) -> Optional[MinedSalt]:
    """Worker entry point: a miss is a normal outcome for one partition."""
    try:
        return mine(predicate, range(start, end), space, cancel)
    except SaltNotFound:
        return None


# ============================================================
# PARALLEL SEARCH
# ============================================================

def mine_parallel(
    predicate: Predicate,
    space: SaltSpace,
    start: int,
    end: int,
    chunk: int = PROTOCOL.MINER_DEFAULT_CHUNK,
    workers: Optional[int] = None,
) -> MinedSalt:
    """
    Mine [start, end) across worker processes, chunk candidates per partition.

    Results are consumed in ascending partition order: the first hit seen
    has every lower partition already exhausted, so it is the global minimum.
    """
    if chunk <= 0:
        raise ValueError(f"chunk must be positive, got {chunk}")
    workers = workers if workers is not None else (os.cpu_count() or 1)
    if workers <= 1:
        return mine(predicate, range(start, end), space)

    partitions = (end - start + chunk - 1) // chunk if end > start else 0
    logger.info(f"Mining [{start}, {end}) in {partitions} partitions of {chunk} on {workers} workers")

    with multiprocessing.Manager() as manager:
        cancel = manager.Event()
        pool = ProcessPoolExecutor(max_workers=workers)
        try:
            lows = iter(range(start, end, chunk))
            pending = deque()

            def _fill():
                # Bounded look-ahead keeps huge ranges lazy
                while len(pending) < workers * 2:
                    lo = next(lows, None)
                    if lo is None:
                        return
                    pending.append(pool.submit(_mine_bounds, predicate, space, lo, min(lo + chunk, end), cancel))

            _fill()
            while pending:
                result = pending.popleft().result()
                if result is not None:
                    cancel.set()
                    return result
                _fill()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    raise SaltNotFound(f"no matching salt in [{start}, {end})")
