import pytest

from charter.address import custody_key
from charter.assets import InMemoryAssets
from charter.custody import MAX_UINT128, split_amount
from charter.protocol import (
    DeadlineExpired,
    Frozen,
    InsufficientEscrow,
    InsufficientOwned,
    ReentrantCall,
    TransferFailed,
    Unauthorized,
    CustodyOverflow,
)
from charter.hub import Foundation, UpgradeableBeacon
from charter.registry import StaticGovernance

from conftest import (
    BEACON_ADDRESS, ETH, GOV, HUB_ADDRESS, IMPL_V1, MARSHAL, OUTSIDER, OWNER, PROXY_CODE, TOKEN_X, USER,
)


def _holdings(assets, fund, user, asset):
    """External balances of the user and the fund, plus the user's ledger total."""
    record = fund.record(user, asset)
    return assets.balance_of(user, asset), assets.balance_of(fund.address, asset), record.owned, record.escrow


# ============================================================
# WORKED SCENARIOS
# ============================================================

def test_contribute_credits_owned_balance(fund, assets):
    assets.mint(USER, TOKEN_X, 1_000_000)

    record = fund.contribute(USER, TOKEN_X, 1_000_000)

    assert (record.owned, record.escrow) == (1_000_000, 0)
    assert split_amount(fund.custody(custody_key(USER, TOKEN_X))) == (1_000_000, 0)
    assert assets.balance_of(USER, TOKEN_X) == 0
    assert assets.balance_of(fund.address, TOKEN_X) == 1_000_000


def test_commit_moves_owned_into_escrow(fund, assets):
    assets.mint(USER, TOKEN_X, 50_000)
    fund.contribute(USER, TOKEN_X, 50_000)

    record = fund.commit(MARSHAL, USER, TOKEN_X, 25_000)

    assert (record.owned, record.escrow) == (25_000, 25_000)
    assert assets.balance_of(fund.address, TOKEN_X) == 50_000


def test_remit_pays_user_and_retains_fee(fund, assets):
    assets.mint(USER, TOKEN_X, 1_000)
    fund.contribute(USER, TOKEN_X, 1_000)
    fund.commit(MARSHAL, USER, TOKEN_X, 1_000)
    before = assets.balance_of(USER, TOKEN_X)

    record = fund.remit(MARSHAL, USER, TOKEN_X, 500, fee=10)

    assert record.escrow == 490
    assert record.owned == 0
    assert assets.balance_of(USER, TOKEN_X) == before + 500
    assert assets.balance_of(fund.address, TOKEN_X) == 500
    assert fund.accrued_fees(TOKEN_X) == 10


def test_rescission_returns_native_balance(fund, assets):
    assets.mint(USER, ETH, 2)
    fund.contribute(USER, ETH, 2)

    amount = fund.request_rescission(USER, ETH)

    assert amount == 2
    assert fund.record(USER, ETH).owned == 0
    assert assets.balance_of(USER, ETH) == 2
    assert assets.balance_of(fund.address, ETH) == 0


def test_rescission_leaves_escrow_in_place(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 30)

    assert fund.request_rescission(USER, TOKEN_X) == 70

    record = fund.record(USER, TOKEN_X)
    assert (record.owned, record.escrow) == (0, 30)
    assert assets.balance_of(fund.address, TOKEN_X) == 30


def test_contribute_for_pulls_from_marshal(fund, assets):
    assets.mint(MARSHAL, TOKEN_X, 400)

    fund.contribute_for(MARSHAL, USER, TOKEN_X, 400)

    assert fund.record(USER, TOKEN_X).owned == 400
    assert fund.record(MARSHAL, TOKEN_X).owned == 0
    assert assets.balance_of(MARSHAL, TOKEN_X) == 0


def test_value_is_conserved_across_a_full_cycle(fund, assets):
    assets.mint(USER, TOKEN_X, 10_000)
    fund.contribute(USER, TOKEN_X, 10_000)
    fund.commit(MARSHAL, USER, TOKEN_X, 6_000)
    fund.remit(MARSHAL, USER, TOKEN_X, 2_000, fee=100)
    fund.request_rescission(USER, TOKEN_X)

    record = fund.record(USER, TOKEN_X)
    # what the fund holds = ledger balances + retained fees
    assert assets.balance_of(fund.address, TOKEN_X) == record.total + fund.accrued_fees(TOKEN_X)
    assert assets.balance_of(USER, TOKEN_X) + assets.balance_of(fund.address, TOKEN_X) == 10_000
    assert (record.owned, record.escrow) == (0, 3_900)


def test_balances_are_keyed_per_user_and_asset(fund, assets):
    assets.mint(USER, TOKEN_X, 10)
    assets.mint(USER, ETH, 20)
    assets.mint(OUTSIDER, TOKEN_X, 30)
    fund.contribute(USER, TOKEN_X, 10)
    fund.contribute(USER, ETH, 20)
    fund.contribute(OUTSIDER, TOKEN_X, 30)

    assert fund.record(USER, TOKEN_X).owned == 10
    assert fund.record(USER, ETH).owned == 20
    assert fund.record(OUTSIDER, TOKEN_X).owned == 30


# ============================================================
# EVENTS
# ============================================================

def test_each_transition_emits_exactly_one_event(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    start = len(fund.events)

    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 60, fee=5, metadata=b"\x01")
    fund.remit(MARSHAL, USER, TOKEN_X, 50, fee=5)
    fund.request_rescission(USER, TOKEN_X)

    names = [e.name for e in fund.events.filter(emitter=fund.address)]
    assert names == ["ContributionRecorded", "CommitmentConfirmed", "RemittanceProcessed", "RescissionRequested"]
    assert len(fund.events) - start == 4

    commit_event = fund.events.filter("CommitmentConfirmed")[0]
    assert commit_event.args["amount"] == 60
    assert commit_event.args["fee"] == 5
    assert commit_event.args["metadata"] == b"\x01"
    assert commit_event.args["marshal"] == MARSHAL


def test_failed_operations_emit_nothing(fund):
    start = len(fund.events)
    with pytest.raises(InsufficientOwned):
        fund.commit(MARSHAL, USER, TOKEN_X, 1)
    assert len(fund.events) == start


# ============================================================
# AUTHORIZATION + FREEZE
# ============================================================

@pytest.mark.parametrize("operation", ["contribute_for", "commit", "remit"])
def test_marshal_operations_reject_outsiders(fund, assets, operation):
    assets.mint(USER, TOKEN_X, 100)
    assets.mint(OUTSIDER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 50)
    before = _holdings(assets, fund, USER, TOKEN_X)

    with pytest.raises(Unauthorized):
        if operation == "contribute_for":
            fund.contribute_for(OUTSIDER, USER, TOKEN_X, 10)
        elif operation == "commit":
            fund.commit(OUTSIDER, USER, TOKEN_X, 10)
        else:
            fund.remit(OUTSIDER, USER, TOKEN_X, 10)

    assert _holdings(assets, fund, USER, TOKEN_X) == before


def test_freeze_halts_marshal_operations_but_not_rescission(hub, fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 40)
    hub.set_freeze(GOV, True)
    before = _holdings(assets, fund, USER, TOKEN_X)

    with pytest.raises(Frozen):
        fund.commit(MARSHAL, USER, TOKEN_X, 10)
    with pytest.raises(Frozen):
        fund.remit(MARSHAL, USER, TOKEN_X, 10)
    with pytest.raises(Frozen):
        fund.contribute_for(MARSHAL, USER, TOKEN_X, 10)
    assert _holdings(assets, fund, USER, TOKEN_X) == before

    # self-service paths stay open while frozen
    assets.mint(USER, TOKEN_X, 5)
    fund.contribute(USER, TOKEN_X, 5)
    assert fund.request_rescission(USER, TOKEN_X) == 65

    hub.set_freeze(GOV, False)
    assert fund.remit(MARSHAL, USER, TOKEN_X, 40).escrow == 0


def test_outsider_sees_unauthorized_even_when_frozen(hub, fund):
    hub.set_freeze(GOV, True)
    with pytest.raises(Unauthorized):
        fund.commit(OUTSIDER, USER, TOKEN_X, 1)


def test_revoked_marshal_is_rejected_on_next_call(hub, fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 10)

    hub.set_marshal(GOV, MARSHAL, False)
    with pytest.raises(Unauthorized):
        fund.commit(MARSHAL, USER, TOKEN_X, 10)


# ============================================================
# BALANCE CHECKS
# ============================================================

def test_commit_beyond_owned_is_rejected(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)

    with pytest.raises(InsufficientOwned):
        fund.commit(MARSHAL, USER, TOKEN_X, 101)
    assert fund.record(USER, TOKEN_X).owned == 100


def test_remit_beyond_escrow_counts_the_fee(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 100)

    with pytest.raises(InsufficientEscrow):
        fund.remit(MARSHAL, USER, TOKEN_X, 95, fee=6)
    assert fund.record(USER, TOKEN_X).escrow == 100

    assert fund.remit(MARSHAL, USER, TOKEN_X, 95, fee=5).escrow == 0


def test_rescinding_nothing_is_rejected(fund):
    with pytest.raises(InsufficientOwned):
        fund.request_rescission(USER, TOKEN_X)


@pytest.mark.parametrize("amount", [0, -1, 1.5, True])
def test_amounts_must_be_positive_ints(fund, amount):
    with pytest.raises(ValueError):
        fund.contribute(USER, TOKEN_X, amount)


def test_expired_deadline_rejects_commit(fund, assets, clock):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)

    with pytest.raises(DeadlineExpired):
        fund.commit(MARSHAL, USER, TOKEN_X, 10, deadline=int(clock.now) - 1)
    assert fund.record(USER, TOKEN_X).escrow == 0

    fund.commit(MARSHAL, USER, TOKEN_X, 10, deadline=int(clock.now) + 60)
    assert fund.record(USER, TOKEN_X).escrow == 10


def test_contribution_overflowing_owned_is_rejected(fund, assets):
    assets.mint(USER, TOKEN_X, MAX_UINT128 + 1)
    fund.contribute(USER, TOKEN_X, MAX_UINT128)

    with pytest.raises(CustodyOverflow):
        fund.contribute(USER, TOKEN_X, 1)
    assert fund.record(USER, TOKEN_X).owned == MAX_UINT128
    assert assets.balance_of(USER, TOKEN_X) == 1


# ============================================================
# TRANSFER FAILURE + REENTRANCY
# ============================================================

def test_unfunded_contribution_leaves_no_record(fund, assets):
    with pytest.raises(TransferFailed):
        fund.contribute(USER, TOKEN_X, 10)
    assert fund.custody(custody_key(USER, TOKEN_X)) == 0


def test_failed_payout_rolls_back_rescission(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)

    def refuse(asset, sender, amount):
        raise RuntimeError("recipient refuses value")

    assets.on_receive(USER, refuse)
    with pytest.raises(TransferFailed):
        fund.request_rescission(USER, TOKEN_X)

    assert fund.record(USER, TOKEN_X).owned == 100
    assert assets.balance_of(fund.address, TOKEN_X) == 100


def test_failed_payout_rolls_back_remit_and_fee(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    fund.commit(MARSHAL, USER, TOKEN_X, 100)

    def refuse(asset, sender, amount):
        raise RuntimeError("recipient refuses value")

    assets.on_receive(USER, refuse)
    with pytest.raises(TransferFailed):
        fund.remit(MARSHAL, USER, TOKEN_X, 50, fee=5)

    assert fund.record(USER, TOKEN_X).escrow == 100
    assert fund.accrued_fees(TOKEN_X) == 0


def test_reentry_from_receive_hook_is_rejected(fund, assets):
    assets.mint(USER, TOKEN_X, 100)
    fund.contribute(USER, TOKEN_X, 100)
    attempts = []

    def reenter(asset, sender, amount):
        attempts.append(amount)
        fund.request_rescission(USER, TOKEN_X)

    assets.on_receive(USER, reenter)
    with pytest.raises(TransferFailed) as excinfo:
        fund.request_rescission(USER, TOKEN_X)

    assert isinstance(excinfo.value.__cause__, ReentrantCall)
    assert attempts == [100]
    assert fund.record(USER, TOKEN_X).owned == 100
    assert assets.balance_of(USER, TOKEN_X) == 0

    # latch is released after the failed call
    assets.on_receive(USER, None)
    assert fund.request_rescission(USER, TOKEN_X) == 100


class FlakyAssets(InMemoryAssets):
    """Balance book whose transfers can be made to fail with an arbitrary error."""

    def __init__(self):
        super().__init__()
        self.error: Exception | None = None

    def transfer(self, asset, sender, recipient, amount):
        if self.error is not None:
            raise self.error
        super().transfer(asset, sender, recipient, amount)


@pytest.fixture
def flaky():
    return FlakyAssets()


@pytest.fixture
def flaky_fund(flaky):
    foundation = Foundation(
        address=HUB_ADDRESS,
        governance=StaticGovernance(GOV),
        beacon=UpgradeableBeacon(BEACON_ADDRESS, IMPL_V1),
        assets=flaky,
        proxy_creation_code=PROXY_CODE,
    )
    foundation.set_marshal(GOV, MARSHAL, True)
    return foundation.fund(foundation.charter_fund(MARSHAL, OWNER))


def test_connection_error_on_deposit_rolls_back(flaky_fund, flaky):
    flaky.mint(USER, TOKEN_X, 10)
    flaky.error = ConnectionError("rpc node unreachable")
    start = len(flaky_fund.events)

    with pytest.raises(TransferFailed) as excinfo:
        flaky_fund.contribute(USER, TOKEN_X, 10)

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert flaky_fund.custody(custody_key(USER, TOKEN_X)) == 0
    assert len(flaky_fund.events) == start

    flaky.error = None
    assert flaky_fund.contribute(USER, TOKEN_X, 10).owned == 10


def test_unexpected_error_on_remit_restores_escrow_and_fee(flaky_fund, flaky):
    flaky.mint(USER, TOKEN_X, 100)
    flaky_fund.contribute(USER, TOKEN_X, 100)
    flaky_fund.commit(MARSHAL, USER, TOKEN_X, 100)
    flaky.error = TimeoutError("transfer timed out")

    with pytest.raises(TransferFailed):
        flaky_fund.remit(MARSHAL, USER, TOKEN_X, 50, fee=5)

    assert flaky_fund.record(USER, TOKEN_X).escrow == 100
    assert flaky_fund.accrued_fees(TOKEN_X) == 0
    assert flaky.balance_of(flaky_fund.address, TOKEN_X) == 100


def test_hook_side_effects_in_another_fund_stay_consistent(hub, fund, assets):
    other = hub.fund(hub.charter_fund(MARSHAL, OWNER, 1))
    assets.mint(USER, TOKEN_X, 150)
    fund.contribute(USER, TOKEN_X, 100)

    def deposit_elsewhere_then_refuse(asset, sender, amount):
        other.contribute(USER, TOKEN_X, 50)
        raise RuntimeError("recipient refuses value")

    assets.on_receive(USER, deposit_elsewhere_then_refuse)
    with pytest.raises(TransferFailed):
        fund.request_rescission(USER, TOKEN_X)

    # the outer payout is undone
    assert fund.record(USER, TOKEN_X).owned == 100
    assert assets.balance_of(fund.address, TOKEN_X) == 100
    # the nested deposit settled on its own and still balances
    assert other.record(USER, TOKEN_X).owned == 50
    assert assets.balance_of(other.address, TOKEN_X) == 50
    assert assets.balance_of(USER, TOKEN_X) == 0


def test_implementation_follows_beacon(hub, fund):
    assert fund.implementation == hub.beacon.implementation
