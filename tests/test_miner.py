import threading

import pytest
from eth_utils import keccak

from charter.address import compute_create2_address
from charter.miner import (
    MinedSalt,
    PrefixPredicate,
    SaltSpace,
    mine,
    mine_parallel,
    mine_partition,
    partition,
)
from charter.protocol import PROTOCOL, SaltNotFound

from conftest import OWNER

SPACE = SaltSpace(deployer=PROTOCOL.DETERMINISTIC_DEPLOYER, init_code_hash=keccak(b"charter fund proxy"))


def _first_match(predicate, search, space=SPACE):
    for i in search:
        if predicate(space.address(i).lower()):
            return i
    return None


def test_mine_returns_smallest_matching_index():
    predicate = PrefixPredicate(bits=8, value=0x42)
    expected = _first_match(predicate, range(0, 4_000))
    assert expected is not None

    found = mine(predicate, range(0, 4_000), SPACE)

    assert found.index == expected
    assert found.salt == SPACE.salt(expected)
    assert found.address == SPACE.address(expected)
    assert found.address == compute_create2_address(SPACE.deployer, found.salt, SPACE.init_code_hash)


def test_mine_respects_range_start():
    predicate = PrefixPredicate(bits=8, value=0x42)
    first = mine(predicate, range(0, 4_000), SPACE)

    later = mine(predicate, range(first.index + 1, 8_000), SPACE)

    assert later.index > first.index
    assert later.index == _first_match(predicate, range(first.index + 1, 8_000))


def test_exhausted_range_raises():
    with pytest.raises(SaltNotFound):
        mine(lambda address: False, range(0, 100), SPACE)
    with pytest.raises(SaltNotFound):
        mine(lambda address: True, range(10, 10), SPACE)


def test_non_contiguous_range_is_rejected():
    with pytest.raises(ValueError):
        mine(lambda address: True, range(0, 10, 2), SPACE)


def test_predicate_sees_lowercase_hex():
    seen = []

    def record(address):
        seen.append(address)
        return True

    mine(record, range(5, 6), SPACE)
    assert seen == [SPACE.address(5).lower()]


def test_sixteen_bit_prefix_is_found_and_reproducible():
    predicate = PrefixPredicate.from_hex("0xc0de")
    search = range(0, 1_000_000)

    first = mine(predicate, search, SPACE)
    second = mine(predicate, search, SPACE)

    assert first == second
    assert first.address.lower().startswith("0xc0de")


def test_partitions_cover_the_range_without_overlap():
    assert partition(0, 1_000) == range(0, 1_000)
    assert partition(3, 1_000) == range(3_000, 4_000)
    with pytest.raises(ValueError):
        partition(-1, 1_000)
    with pytest.raises(ValueError):
        partition(0, 0)


def test_partitioned_search_agrees_with_direct_search():
    predicate = PrefixPredicate(bits=8, value=0x17)
    direct = mine(predicate, range(0, 5_000), SPACE)

    result = None
    for x in range(5):
        try:
            result = mine_partition(predicate, SPACE, x, 1_000)
            break
        except SaltNotFound:
            continue

    assert result == direct


def test_cancelled_search_stops():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SaltNotFound):
        mine(lambda address: False, range(0, 10_000), SPACE, cancel=cancel)


def test_prefix_predicate():
    predicate = PrefixPredicate.from_hex("0xAB")
    assert predicate == PrefixPredicate(bits=8, value=0xAB)
    assert predicate("0xab00000000000000000000000000000000000000")
    assert predicate("0xABffffffffffffffffffffffffffffffffffffff")
    assert not predicate("0xac00000000000000000000000000000000000000")

    nibble = PrefixPredicate.from_hex("0")
    assert nibble.bits == 4
    assert nibble("0x0fffffffffffffffffffffffffffffffffffffff")
    assert not nibble("0x1000000000000000000000000000000000000000")

    with pytest.raises(ValueError):
        PrefixPredicate.from_hex("0x")
    with pytest.raises(ValueError):
        PrefixPredicate(bits=4, value=16)
    with pytest.raises(ValueError):
        PrefixPredicate(bits=0, value=0)


def test_identity_embedded_space():
    space = SaltSpace(deployer=SPACE.deployer, init_code_hash=SPACE.init_code_hash, prefix=OWNER)
    found = mine(PrefixPredicate(bits=4, value=0x5), range(0, 1_000), space)

    assert found.salt[:20] == bytes.fromhex(OWNER[2:])
    assert int.from_bytes(found.salt[20:], "big") == found.index


def test_mined_salt_to_dict():
    mined = MinedSalt(index=3, salt=SPACE.salt(3), address=SPACE.address(3))
    assert mined.to_dict() == {"index": 3, "salt": "0x" + "00" * 31 + "03", "address": SPACE.address(3)}


def test_parallel_search_matches_sequential():
    predicate = PrefixPredicate(bits=8, value=0x99)
    sequential = mine(predicate, range(0, 6_000), SPACE)

    parallel = mine_parallel(predicate, SPACE, 0, 6_000, chunk=500, workers=2)

    assert parallel == sequential


def test_parallel_search_miss_raises():
    with pytest.raises(SaltNotFound):
        mine_parallel(PrefixPredicate(bits=160, value=0), SPACE, 0, 200, chunk=100, workers=2)
