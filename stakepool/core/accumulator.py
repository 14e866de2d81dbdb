# MIT License
# Copyright (c) 2025 Hashborn

"""
Reward Accumulator

Tracks accRewardsPerShare, the cumulative reward owed to one share since
genesis. Emission is lazy: nothing happens until update(now) catches the
accumulator up from lastRewardTimestamp to now.

Catch-up is split at every position end time inside the window. Each
segment accrues at the pool factor that held at its start, then the factor
is recomputed from the new pool balance and a snapshot is written. Shares of
positions whose term ended at the boundary stop counting towards
reservedRewards, and the snapshot at their end time is what their historic
reward lookup reads.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple, Union

from protocol.config.economic_model import EconomicConfig, REWARD_PRECISION
from protocol.math.fixed_point import mul_div
from protocol.math.pool_factor import pool_factor
from protocol.types.pool import PoolState
from .snapshots import (
    SnapshotStore,
    ACC_REWARDS_PER_SHARE,
    POOL_FACTOR,
    LAST_REWARD_TIMESTAMP,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Live:
    """Accumulator value at the query instant."""
    value: int


@dataclass(frozen=True)
class Historic:
    """Accumulator value frozen at a position's end time."""
    value: int
    as_of: int


AccumulatedValue = Union[Live, Historic]


@dataclass
class PoolUpdate:
    """
    Result of catching the accumulator up, not yet committed.

    Callers may keep mutating `state` (position totals, reserves) before
    handing the update to RewardAccumulator.apply().
    """
    state: PoolState
    snapshots: List[Tuple[str, int, int]] = field(default_factory=list)
    retired: List[int] = field(default_factory=list)
    scheduled: Dict[int, int] = field(default_factory=dict)

    def schedule(self, end_time: int, shares: int):
        self.scheduled[end_time] = self.scheduled.get(end_time, 0) + shares


class RewardAccumulator:
    def __init__(
        self,
        config: EconomicConfig,
        state: PoolState,
        snapshots: SnapshotStore,
        held_balance: Callable[[], int],
    ):
        self.config = config
        self.state = state
        self.snapshots = snapshots
        # Staked-asset balance held by the pool
        self.held_balance = held_balance
        # end_time -> shares still counted in active_allocated_shares
        self.expiries: Dict[int, int] = {}
        self._end_times: List[int] = []

    # ═══════════════════════════════════════════════════════
    # BALANCE / FACTOR
    # ═══════════════════════════════════════════════════════

    def pool_balance(self, state: PoolState = None) -> int:
        """Held balance minus principal and everything already promised."""
        if state is None:
            state = self.state
        balance = self.held_balance() - state.total_locked - state.reserved_rewards - state.reserved_fees
        return max(balance, 0)

    def pool_factor(self, state: PoolState = None) -> int:
        return pool_factor(self.pool_balance(state), self.config)

    # ═══════════════════════════════════════════════════════
    # CATCH-UP
    # ═══════════════════════════════════════════════════════

    def preview(self, now: int) -> PoolUpdate:
        """Computes update(now) on a copy of the state. Never mutates."""
        update = PoolUpdate(state=self.state.model_copy())
        state = update.state

        if state.last_reward_timestamp >= now:
            return update

        if state.allocated_shares == 0:
            state.last_reward_timestamp = now
            update.snapshots.append((LAST_REWARD_TIMESTAMP, now, now))
            return update

        start = bisect.bisect_right(self._end_times, state.last_reward_timestamp)
        stop = bisect.bisect_right(self._end_times, now)
        for end_time in self._end_times[start:stop]:
            self._accrue(update, end_time)
            state.active_allocated_shares -= self.expiries[end_time]
            update.retired.append(end_time)

        if state.last_reward_timestamp < now:
            self._accrue(update, now)

        return update

    def _accrue(self, update: PoolUpdate, until: int):
        state = update.state
        elapsed = until - state.last_reward_timestamp

        increment = mul_div(
            elapsed * self.config.emission_per_second,
            state.current_pool_factor * REWARD_PRECISION,
            self.config.full_pool_factor * self.config.total_pool_shares,
        )
        state.acc_rewards_per_share += increment
        state.reserved_rewards += mul_div(increment, state.active_allocated_shares, REWARD_PRECISION)
        state.last_reward_timestamp = until

        previous_factor = state.current_pool_factor
        state.current_pool_factor = self.pool_factor(state)

        if increment:
            update.snapshots.append((ACC_REWARDS_PER_SHARE, until, state.acc_rewards_per_share))
        if state.current_pool_factor != previous_factor:
            update.snapshots.append((POOL_FACTOR, until, state.current_pool_factor))
        update.snapshots.append((LAST_REWARD_TIMESTAMP, until, until))

        logger.debug(
            f"Accrued {elapsed}s until {until}: acc +{increment}, "
            f"factor {previous_factor} -> {state.current_pool_factor}, "
            f"active shares {state.active_allocated_shares}"
        )

    def apply(self, update: PoolUpdate):
        """Commits a previewed update, including any scheduled expiries."""
        self.state = update.state

        for metric, id, value in update.snapshots:
            self.snapshots.record(metric, id, value)

        for end_time in update.retired:
            del self.expiries[end_time]
            self._end_times.remove(end_time)

        for end_time, shares in update.scheduled.items():
            self.schedule_expiry(end_time, shares)

    def update(self, now: int) -> PoolState:
        self.apply(self.preview(now))
        return self.state

    def schedule_expiry(self, end_time: int, shares: int):
        """Registers shares leaving active_allocated_shares at end_time."""
        if end_time not in self.expiries:
            bisect.insort(self._end_times, end_time)
            self.expiries[end_time] = 0
        self.expiries[end_time] += shares

    # ═══════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════

    def current_value(self, now: int) -> int:
        """accRewardsPerShare at now, projected when the state is stale."""
        if self.state.last_reward_timestamp >= now:
            return self.state.acc_rewards_per_share
        return self.preview(now).state.acc_rewards_per_share

    def accumulated_for(self, end_time: int, now: int, update: PoolUpdate = None) -> AccumulatedValue:
        """
        Accumulator value a position ending at end_time may use at now.

        Past the end time the value is frozen: read from the snapshot
        written at the end time, or projected up to the end time when the
        accumulator has not reached it yet. The projection walks the same
        segments as preview(now), so it agrees with an uncommitted update.
        Before the end time the value of `update` (if given) is used.
        """
        if now > end_time:
            if self.state.last_reward_timestamp >= end_time:
                value = self.snapshots.value_at(
                    ACC_REWARDS_PER_SHARE, end_time, now, self.state.acc_rewards_per_share
                )
            else:
                value = self.preview(end_time).state.acc_rewards_per_share
            return Historic(value=value, as_of=end_time)

        if update is not None:
            return Live(value=update.state.acc_rewards_per_share)
        return Live(value=self.current_value(now))

    def pending_expiries(self) -> Dict[int, int]:
        return dict(self.expiries)

    def load_expiries(self, expiries: Dict[int, int]):
        self.expiries = {}
        self._end_times = []
        for end_time, shares in expiries.items():
            self.schedule_expiry(end_time, shares)
