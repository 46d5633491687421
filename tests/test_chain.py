import asyncio
from unittest.mock import MagicMock

import pytest

from charter.chain import FoundationClient
from charter.protocol import AddressMismatch

from conftest import HUB_ADDRESS, OWNER, TOKEN_X, USER

PRIVATE_KEY = "0x" + "11" * 32
FUND = "0x4444444444444444444444444444444444444444"


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.chain_id = 31337
    w3.eth.get_transaction_count.return_value = 0
    w3.eth.gas_price = 1
    w3.eth.estimate_gas.return_value = 100_000
    w3.eth.send_raw_transaction.return_value = b"\xab" * 32
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "gasUsed": 21_000}
    return w3


@pytest.fixture
def client(w3):
    client = FoundationClient()
    assert client.initialize("http://unused", PRIVATE_KEY, HUB_ADDRESS, w3=w3)
    return client


def test_initialize_requires_key_and_address(w3):
    assert not FoundationClient().initialize("http://unused", "", HUB_ADDRESS, w3=w3)
    assert not FoundationClient().initialize("http://unused", PRIVATE_KEY, "", w3=w3)
    assert not FoundationClient().initialize("http://unused", "0xnothex", HUB_ADDRESS, w3=w3)


def test_status_after_initialize(client):
    status = client.get_status()
    assert status["initialized"] is True
    assert status["chain_id"] == 31337
    assert status["foundation"] == HUB_ADDRESS


def test_verify_deployment(client, w3):
    w3.eth.get_code.return_value = b"\x60\x80"
    assert client.verify_deployment(FUND, observed=FUND.lower()) == FUND

    with pytest.raises(AddressMismatch):
        client.verify_deployment(FUND, observed=USER)

    w3.eth.get_code.return_value = b""
    with pytest.raises(AddressMismatch):
        client.verify_deployment(FUND)


def test_verify_requires_initialize():
    with pytest.raises(RuntimeError):
        FoundationClient().verify_deployment(FUND)


def test_custody_read_splits_packed_word(client, w3):
    w3.eth.contract.return_value.functions.custody.return_value.call.return_value = (5 << 128) | 7

    record = asyncio.run(client.custody(FUND, USER, TOKEN_X))

    assert (record.owned, record.escrow) == (7, 5)


def test_writes_return_tx_results(client, w3):
    w3.eth.contract.return_value.functions.charterFund.return_value.build_transaction.return_value = {}

    result = asyncio.run(client.charter_fund(OWNER, b"\x00" * 32))

    assert result.success
    assert result.tx_hash == "ab" * 32
    assert result.gas_used == 21_000
    assert client.get_status()["tx_count"] == 1


def test_reverted_write_is_reported(client, w3):
    w3.eth.contract.return_value.functions.setFreeze.return_value.build_transaction.return_value = {}
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}

    result = asyncio.run(client.set_freeze(True))

    assert not result.success
    assert "reverted" in result.error


def test_uninitialized_client_is_inert():
    client = FoundationClient()
    assert asyncio.run(client.custody(FUND, USER, TOKEN_X)) is None
    assert asyncio.run(client.marshal_frozen()) is None
    assert not asyncio.run(client.set_freeze(True)).success
