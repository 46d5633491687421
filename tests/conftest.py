import pytest
from eth_utils import to_checksum_address

from charter.assets import InMemoryAssets, NATIVE_ASSET
from charter.hub import Foundation, UpgradeableBeacon
from charter.registry import StaticGovernance

GOV = to_checksum_address("0x00000000000000000000000000000000000000a1")
MARSHAL = to_checksum_address("0x00000000000000000000000000000000000000b2")
OUTSIDER = to_checksum_address("0x00000000000000000000000000000000000000c5")
USER = "0x1111111111111111111111111111111111111111"
OWNER = "0x2222222222222222222222222222222222222222"
TOKEN_X = "0x3333333333333333333333333333333333333333"
ETH = NATIVE_ASSET

HUB_ADDRESS = to_checksum_address("0x000000000000000000000000000000000000f0f0")
BEACON_ADDRESS = to_checksum_address("0x000000000000000000000000000000000000beef")
IMPL_V1 = to_checksum_address("0x00000000000000000000000000000000000000e1")
IMPL_V2 = to_checksum_address("0x00000000000000000000000000000000000000e2")
PROXY_CODE = bytes.fromhex("608060405260405161")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def assets():
    return InMemoryAssets()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub(assets, clock):
    foundation = Foundation(
        address=HUB_ADDRESS,
        governance=StaticGovernance(GOV),
        beacon=UpgradeableBeacon(BEACON_ADDRESS, IMPL_V1),
        assets=assets,
        proxy_creation_code=PROXY_CODE,
        clock=clock,
    )
    foundation.set_marshal(GOV, MARSHAL, True)
    return foundation


@pytest.fixture
def fund(hub):
    return hub.fund(hub.charter_fund(MARSHAL, OWNER))
