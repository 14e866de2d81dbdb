# MIT License
# Copyright (c) 2025 Hashborn

"""
Staking pool state machine tests: stake -> claim* -> unstake, error paths,
duration cap, staggered stakers, atomicity and administration.
"""

import dataclasses
import pytest
from protocol.config.economic_model import DEVNET, DECIMALS, FEE_SINK_ADDRESS, POOL_ADDRESS, SECONDS_PER_DAY
from protocol.types.common import (
    AuthorizationError,
    PositionNotFound,
    StateError,
    TransferError,
    ValidationError,
)
from stakepool.core import events
from tests.conftest import (
    ADMIN,
    ALICE,
    BOB,
    CAROL,
    GENESIS_TIME,
    ONE_MILLION,
    USER_BALANCE,
    build_pool,
    full_rate_increment,
)


def snapshot_of(pool):
    """Everything an operation may touch, for atomicity checks."""
    return (
        pool.state.model_dump(),
        {p.id: p.model_dump() for p in pool.ledger},
        pool.token.state.model_dump(),
        pool.receipts.state.model_dump(),
        pool.snapshots.counts(),
        pool.accumulator.pending_expiries(),
    )


# ═══════════════════════════════════════════════════════
# STAKE
# ═══════════════════════════════════════════════════════

def test_stake_opens_position(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 364, auto_compound=False)

    position = pool.pool_entry(position_id)
    assert position_id == 1
    assert position.amount == ONE_MILLION
    assert position.shares == 110_000_000
    assert position.reward_debt == 0
    assert position.started_at == GENESIS_TIME
    assert position.end_time == GENESIS_TIME + 364 * SECONDS_PER_DAY
    assert not position.is_unstaked

    assert pool.receipts.owner_of(position_id) == ALICE
    assert pool.state.allocated_shares == 110_000_000
    assert pool.state.active_allocated_shares == 110_000_000
    assert pool.state.total_locked == ONE_MILLION
    assert pool.token.balance_of(ALICE) == USER_BALANCE - ONE_MILLION
    assert pool.token.balance_of(POOL_ADDRESS) == DEVNET.initial_pool_balance + ONE_MILLION


def test_stake_auto_compound_uses_apy_shares(pool):
    position_id = pool.stake(ALICE, ONE_MILLION, 364, auto_compound=True)
    position = pool.pool_entry(position_id)

    assert position.is_auto_compounding_enabled
    assert position.shares == 10 * pool.apy(364)


def test_later_stake_captures_reward_debt(rich_pool, clock):
    rich_pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance_days(10)
    position_id = rich_pool.stake(BOB, ONE_MILLION, 364)

    position = rich_pool.pool_entry(position_id)
    acc = full_rate_increment(DEVNET, 10 * SECONDS_PER_DAY)
    assert rich_pool.state.acc_rewards_per_share == acc
    assert position.reward_debt == position.shares * acc // 10**18
    assert rich_pool.pending_rewards(position_id) == 0


@pytest.mark.parametrize("duration", [0, 6, 371, 728])
def test_stake_rejects_out_of_range_duration(pool, duration):
    with pytest.raises(ValidationError, match="Invalid staking duration"):
        pool.stake(ALICE, ONE_MILLION, duration)


@pytest.mark.parametrize("duration", [8, 10, 100, 363])
def test_stake_rejects_partial_weeks(pool, duration):
    with pytest.raises(ValidationError, match="full week"):
        pool.stake(ALICE, ONE_MILLION, duration)


def test_stake_rejects_amount_over_cap(pool):
    with pytest.raises(ValidationError, match="Max. staking amount exceeded"):
        pool.stake(ALICE, ONE_MILLION + 1, 364)


def test_stake_rejects_missing_allowance(pool):
    pool.token.approve(ALICE, POOL_ADDRESS, ONE_MILLION - 1)
    with pytest.raises(ValidationError, match="Amount exceeds allowance"):
        pool.stake(ALICE, ONE_MILLION, 364)


def test_stake_rejects_non_positive_amount(pool):
    with pytest.raises(ValidationError):
        pool.stake(ALICE, 0, 364)


def test_failed_stake_transfer_changes_nothing(pool, clock):
    pool.token.approve(CAROL, POOL_ADDRESS, ONE_MILLION)
    clock.advance(100)
    before = snapshot_of(pool)

    with pytest.raises(TransferError, match="Failed to transfer initial stake"):
        pool.stake(CAROL, ONE_MILLION, 364)

    assert snapshot_of(pool) == before
    assert pool.receipts.last_id() == 0


def test_max_staking_amount_throttles_when_pool_depletes(pool):
    assert pool.max_staking_amount() == ONE_MILLION

    pool.emergency_withdraw(ADMIN, ADMIN, 24_000_000 * DECIMALS)

    assert pool.pool_balance() == 96_000_000 * DECIMALS
    assert pool.max_staking_amount() == 960_000 * DECIMALS
    with pytest.raises(ValidationError, match="Max. staking amount exceeded"):
        pool.stake(ALICE, 960_001 * DECIMALS, 364)


# ═══════════════════════════════════════════════════════
# PENDING REWARDS
# ═══════════════════════════════════════════════════════

def test_pending_rewards_grow_then_freeze(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 28)

    previous = 0
    for _ in range(4):
        clock.advance_days(7)
        current = pool.pending_rewards(position_id)
        assert current > previous
        previous = current

    at_end = previous
    clock.advance_days(100)
    assert pool.pending_rewards(position_id) == at_end


def test_duration_cap_ignores_later_pool_activity(pool, clock):
    first = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    at_end = pool.pending_rewards(first)

    clock.advance_days(3)
    pool.stake(BOB, ONE_MILLION, 364)
    clock.advance_days(10)
    pool.update_pool()
    clock.advance_days(30)

    assert pool.pending_rewards(first) == at_end


def test_full_term_auto_compound_reaches_max_rewards(rich_pool, clock):
    position_id = rich_pool.stake(ALICE, ONE_MILLION, 364, auto_compound=True)
    max_rewards = rich_pool.calculator.max_rewards(ONE_MILLION, 364, auto_compound=True)
    expected = max_rewards - max_rewards * DEVNET.protocol_fee_percent // 100

    clock.advance_days(364)
    at_end = rich_pool.pending_rewards(position_id)
    # Emission per share is calibrated to 0.01 token per term up to integer rounding
    assert at_end == pytest.approx(expected, rel=1e-12)

    clock.advance_days(364)
    assert rich_pool.pending_rewards(position_id) == at_end
    rich_pool.update_pool()
    assert rich_pool.pending_rewards(position_id) == at_end

    payout = rich_pool.unstake(ALICE, position_id)
    assert payout == ONE_MILLION + at_end


def test_staggered_stakers_earn_the_same_curve(rich_pool, clock):
    delta = 5 * SECONDS_PER_DAY
    tau = 20 * SECONDS_PER_DAY

    first = rich_pool.stake(ALICE, ONE_MILLION, 91)
    clock.advance(delta)
    second = rich_pool.stake(BOB, ONE_MILLION, 91)
    clock.advance(tau)

    shares = rich_pool.pool_entry(second).shares
    gross_after_tau = shares * full_rate_increment(DEVNET, tau) // 10**18
    expected = gross_after_tau - gross_after_tau * 3 // 100
    assert abs(rich_pool.pending_rewards(second) - expected) <= 2

    # Both positions end up with the same total over their own term
    clock.advance_days(200)
    assert abs(rich_pool.pending_rewards(first) - rich_pool.pending_rewards(second)) <= 2


def test_pool_balance_excludes_accrued_rewards(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 364, auto_compound=True)
    clock.advance_days(30)
    pool.update_pool()

    breakdown = pool.pending_breakdown(position_id)
    assert pool.state.reserved_rewards == breakdown.gross
    assert pool.pool_balance() == DEVNET.initial_pool_balance - breakdown.gross
    assert pool.state.current_pool_factor < DEVNET.full_pool_factor


def test_unknown_position(pool):
    with pytest.raises(PositionNotFound):
        pool.pending_rewards(42)
    with pytest.raises(KeyError):
        pool.pool_entry(42)


# ═══════════════════════════════════════════════════════
# CLAIM
# ═══════════════════════════════════════════════════════

def test_claim_pays_net_reward(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance_days(1)

    breakdown = pool.pending_breakdown(position_id)
    balance_before = pool.token.balance_of(ALICE)

    net = pool.claim_rewards(ALICE, position_id)

    assert net == breakdown.net > 0
    assert breakdown.fee == breakdown.gross * 3 // 100
    assert pool.token.balance_of(ALICE) == balance_before + net

    position = pool.pool_entry(position_id)
    assert position.claimed_rewards == breakdown.net
    assert position.collected_fees == breakdown.fee
    assert position.last_claimed_at == clock.now
    assert pool.pending_rewards(position_id) == 0


def test_claim_respects_interval(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance(DEVNET.claim_interval - 1)
    with pytest.raises(StateError, match="Claim interval not elapsed"):
        pool.claim_rewards(ALICE, position_id)

    clock.advance(1)
    pool.claim_rewards(ALICE, position_id)
    with pytest.raises(StateError, match="Claim interval not elapsed"):
        pool.claim_rewards(ALICE, position_id)


def test_auto_compound_cannot_claim_before_end(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 28, auto_compound=True)
    clock.advance_days(27)
    with pytest.raises(StateError, match="Cannot claim before staking end"):
        pool.claim_rewards(ALICE, position_id)


def test_claim_at_end_closes_position(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 28, auto_compound=True)
    clock.advance_days(28)
    balance_before = pool.token.balance_of(ALICE)

    net = pool.claim_rewards(ALICE, position_id)

    position = pool.pool_entry(position_id)
    assert position.is_unstaked
    assert pool.token.balance_of(ALICE) == balance_before + ONE_MILLION + net
    assert pool.state.allocated_shares == 0
    assert pool.state.active_allocated_shares == 0
    assert pool.state.total_locked == 0
    assert pool.state.reserved_fees == position.collected_fees * 50 // 100
    assert pool.pending_rewards(position_id) == 0

    with pytest.raises(StateError, match="already unstaked"):
        pool.claim_rewards(ALICE, position_id)


def test_claim_by_non_owner_is_rejected(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance_days(1)
    with pytest.raises(AuthorizationError, match="Caller is not entry owner"):
        pool.claim_rewards(BOB, position_id)


def test_claim_multiple_uses_one_transfer(pool, clock, monkeypatch):
    first = pool.stake(ALICE, ONE_MILLION // 2, 364)
    second = pool.stake(ALICE, ONE_MILLION // 2, 182)
    clock.advance_days(2)

    expected = pool.pending_rewards(first) + pool.pending_rewards(second)
    calls = []
    original = pool.token.transfer

    def counting_transfer(sender, to, amount):
        calls.append(amount)
        return original(sender, to, amount)

    monkeypatch.setattr(pool.token, "transfer", counting_transfer)

    assert pool.claim_multiple_rewards(ALICE, [first, second]) == expected
    assert calls == [expected]


def test_claim_multiple_is_all_or_nothing(pool, clock):
    mine = pool.stake(ALICE, ONE_MILLION, 364)
    theirs = pool.stake(BOB, ONE_MILLION, 364)
    clock.advance_days(2)
    before = snapshot_of(pool)

    with pytest.raises(AuthorizationError):
        pool.claim_multiple_rewards(ALICE, [mine, theirs])

    assert snapshot_of(pool) == before


def test_claim_multiple_rejects_bad_id_lists(pool):
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    with pytest.raises(ValidationError):
        pool.claim_multiple_rewards(ALICE, [])
    with pytest.raises(ValidationError, match="Duplicate"):
        pool.claim_multiple_rewards(ALICE, [position_id, position_id])


def test_failed_reward_transfer_changes_nothing(pool, clock, monkeypatch):
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance_days(3)
    before = snapshot_of(pool)

    def failing_transfer(sender, to, amount):
        raise TransferError("ledger offline")

    monkeypatch.setattr(pool.token, "transfer", failing_transfer)

    with pytest.raises(TransferError, match="Failed to transfer rewards"):
        pool.claim_rewards(ALICE, position_id)

    assert snapshot_of(pool) == before


def test_claim_with_nothing_accrued_is_rejected(clock):
    pool = build_pool(clock, DEVNET.initial_pool_balance, dataclasses.replace(DEVNET, claim_interval=0))
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance(10)
    assert pool.claim_rewards(ALICE, position_id) > 0
    before = snapshot_of(pool)

    with pytest.raises(StateError, match=f"No rewards to claim for position {position_id}"):
        pool.claim_rewards(ALICE, position_id)

    assert snapshot_of(pool) == before


def test_claim_clamps_reserved_rewards_at_zero(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance_days(1)
    pool.set_reserved_rewards(ADMIN, 0)

    assert pool.claim_rewards(ALICE, position_id) > 0
    assert pool.state.reserved_rewards == 0

    clock.advance(DEVNET.claim_interval)
    # Accrual continues, so a later claim succeeds
    assert pool.claim_rewards(ALICE, position_id) > 0
    assert pool.state.reserved_rewards == 0


# ═══════════════════════════════════════════════════════
# UNSTAKE
# ═══════════════════════════════════════════════════════

def test_unstake_locked_position_is_rejected(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    clock.advance(-1)
    with pytest.raises(StateError, match="Staking entry is locked"):
        pool.unstake(ALICE, position_id)


def test_unstake_returns_principal_and_rewards(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(10)
    pending = pool.pending_rewards(position_id)

    payout = pool.unstake(ALICE, position_id)

    assert payout == ONE_MILLION + pending
    assert pool.token.balance_of(ALICE) == USER_BALANCE + pending
    assert pool.pending_rewards(position_id) == 0
    assert pool.state.total_locked == 0


def test_unstake_is_not_reentrant(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    pool.unstake(ALICE, position_id)
    before = snapshot_of(pool)

    with pytest.raises(StateError, match="already unstaked"):
        pool.unstake(ALICE, position_id)

    assert snapshot_of(pool) == before


def test_unstake_by_non_owner_is_rejected(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    with pytest.raises(AuthorizationError):
        pool.unstake(BOB, position_id)


def test_closed_position_stays_queryable(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    pool.unstake(ALICE, position_id)

    info = pool.position(position_id)
    assert info.owner == ALICE
    assert info.position.is_unstaked
    assert info.pending_rewards == 0
    assert not info.is_locked


# ═══════════════════════════════════════════════════════
# POOL UPDATE / HISTORY
# ═══════════════════════════════════════════════════════

def test_update_pool_twice_is_noop(pool, clock):
    pool.stake(ALICE, ONE_MILLION, 364)
    clock.advance_days(1)

    first = pool.update_pool().acc_rewards_per_share
    second = pool.update_pool().acc_rewards_per_share
    assert first == second > 0


def test_history_lookups(rich_pool, clock):
    rich_pool.stake(ALICE, ONE_MILLION, 7)
    staked_at = clock.now
    clock.advance_days(10)
    rich_pool.update_pool()

    end_time = staked_at + 7 * SECONDS_PER_DAY
    assert rich_pool.acc_rewards_per_share_at(end_time) == full_rate_increment(DEVNET, 7 * SECONDS_PER_DAY)
    assert rich_pool.last_reward_timestamp_at(end_time) == end_time
    assert rich_pool.last_reward_timestamp_at(end_time + 1) == clock.now
    assert rich_pool.pool_factor_at(end_time) == DEVNET.full_pool_factor

    with pytest.raises(ValidationError):
        rich_pool.acc_rewards_per_share_at(0)
    with pytest.raises(ValidationError):
        rich_pool.acc_rewards_per_share_at(clock.now + 1)


# ═══════════════════════════════════════════════════════
# PAUSE / ADMIN
# ═══════════════════════════════════════════════════════

def test_paused_pool_rejects_operations(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    pool.pause(ADMIN)
    clock.advance_days(7)

    with pytest.raises(StateError, match="paused"):
        pool.stake(ALICE, ONE_MILLION, 7)
    with pytest.raises(StateError, match="paused"):
        pool.claim_rewards(ALICE, position_id)
    with pytest.raises(StateError, match="paused"):
        pool.unstake(ALICE, position_id)

    pool.unpause(ADMIN)
    pool.unstake(ALICE, position_id)


def test_admin_operations_require_role(pool):
    with pytest.raises(AuthorizationError):
        pool.pause(ALICE)
    with pytest.raises(AuthorizationError):
        pool.set_reserved_fees(ALICE, 1)
    with pytest.raises(AuthorizationError):
        pool.emergency_withdraw(ALICE, ALICE, 1)


def test_pause_twice_is_rejected(pool):
    pool.pause(ADMIN)
    with pytest.raises(StateError):
        pool.pause(ADMIN)
    pool.unpause(ADMIN)
    with pytest.raises(StateError):
        pool.unpause(ADMIN)


def test_withdraw_reserved_fees(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    pool.unstake(ALICE, position_id)

    reserved = pool.state.reserved_fees
    assert reserved > 0
    assert pool.withdraw_reserved_fees(ADMIN) == reserved
    assert pool.token.balance_of(FEE_SINK_ADDRESS) == reserved
    assert pool.state.reserved_fees == 0

    with pytest.raises(StateError):
        pool.withdraw_reserved_fees(ADMIN)


def test_set_reserved_bookkeeping(pool):
    pool.set_reserved_rewards(ADMIN, 5 * DECIMALS)
    pool.set_reserved_fees(ADMIN, 7 * DECIMALS)
    assert pool.state.reserved_rewards == 5 * DECIMALS
    assert pool.state.reserved_fees == 7 * DECIMALS
    assert pool.pool_balance() == DEVNET.initial_pool_balance - 12 * DECIMALS

    with pytest.raises(ValidationError):
        pool.set_reserved_rewards(ADMIN, -1)


def test_emergency_withdraw_cannot_touch_principal(pool):
    pool.stake(ALICE, ONE_MILLION, 364)
    with pytest.raises(ValidationError, match="Withdraw amount exceeds available balance"):
        pool.emergency_withdraw(ADMIN, ADMIN, DEVNET.initial_pool_balance + 1)

    pool.emergency_withdraw(ADMIN, ADMIN, DEVNET.initial_pool_balance)
    assert pool.token.balance_of(POOL_ADDRESS) == ONE_MILLION


# ═══════════════════════════════════════════════════════
# QUERIES / EVENTS
# ═══════════════════════════════════════════════════════

def test_position_queries(pool, clock):
    a = pool.stake(ALICE, ONE_MILLION, 7)
    b = pool.stake(BOB, ONE_MILLION, 14)
    c = pool.stake(ALICE, ONE_MILLION, 21, auto_compound=True)

    assert pool.position_ids_of(ALICE) == [a, c]
    assert [i.position.id for i in pool.positions_of(BOB)] == [b]
    assert [i.position.id for i in pool.positions_bulk(1, 3)] == [a, b, c]
    assert pool.positions_bulk(2, 0) == []

    info = pool.position(c)
    assert info.is_locked
    assert info.end_time == clock.now + 21 * SECONDS_PER_DAY

    with pytest.raises(ValidationError, match="start \\+ amount exceeds total supply"):
        pool.positions_bulk(2, 3)


def test_rate_queries(pool):
    assert pool.apr(364) == 110 * 10**5
    assert pool.apy(364) > pool.apr(364)
    assert len(pool.apys()) == 52
    assert pool.aprs()[-1] == pool.apr(364)
    assert pool.pool_factor() == DEVNET.full_pool_factor
    assert pool.pool_factor(0) == DEVNET.floor_pool_factor


def test_operations_emit_events(pool, clock):
    received = []
    for event_type in (events.POSITION_STAKED, events.REWARDS_CLAIMED, events.POSITION_UNSTAKED):
        pool.events.subscribe(event_type, lambda _type=event_type, **data: received.append((_type, data)))

    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(7)
    pool.unstake(ALICE, position_id)

    assert [t for t, _ in received] == [
        events.POSITION_STAKED,
        events.REWARDS_CLAIMED,
        events.POSITION_UNSTAKED,
    ]
    assert received[0][1]["position_id"] == position_id
    assert received[2][1]["amount"] == ONE_MILLION


def test_failing_listener_does_not_break_operation(pool):
    def broken(**data):
        raise RuntimeError("listener bug")

    pool.events.subscribe(events.POSITION_STAKED, broken)
    assert pool.stake(ALICE, ONE_MILLION, 7) == 1


def test_event_history(pool, clock):
    position_id = pool.stake(ALICE, ONE_MILLION, 7)
    clock.advance_days(1)
    pool.update_pool()
    pool.update_pool()

    updates = pool.events.recent(events.POOL_UPDATED)
    assert len(updates) == 1
    assert updates[0].data["timestamp"] == clock.now
    assert pool.events.recent()[0].data["position_id"] == position_id

    with pytest.raises(ValueError):
        pool.events.subscribe("block_mined", lambda **data: None)
