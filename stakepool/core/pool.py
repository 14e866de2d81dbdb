# MIT License
# Copyright (c) 2025 Hashborn

"""
Staking Pool

Orchestrates the position state machine (stake -> claim* -> unstake) on top
of the reward accumulator, the position ledger and the asset collaborators.

Every mutating operation follows the same path:
1. preview the accumulator catch-up to now (a copy, nothing committed)
2. validate and compute every effect on copies
3. perform at most one transfer on the staked asset
4. commit the accumulator update and the new position records together

A failure in steps 1-3 therefore leaves the pool exactly as it was.
"""

import json
import logging
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from protocol.config.economic_model import (
    ECONOMIC_CONFIG,
    EconomicConfig,
    FEE_SINK_ADDRESS,
    POOL_ADDRESS,
)
from protocol.math.compound import CompoundCalculator
from protocol.math.pool_factor import pool_factor as pool_factor_curve
from protocol.types.common import (
    Role,
    StateError,
    TransferError,
    ValidationError,
    AuthorizationError,
)
from protocol.types.pool import PoolState
from protocol.types.position import Position, PositionInfo
from .accumulator import RewardAccumulator, PoolUpdate
from .assets import TokenLedger, ReceiptRegistry, AccessControl, TokenState, ReceiptState, AccessState
from .events import (
    EventBus,
    event_bus,
    POSITION_STAKED,
    REWARDS_CLAIMED,
    POSITION_UNSTAKED,
    POOL_UPDATED,
    POOL_PAUSED,
    POOL_UNPAUSED,
    FEES_WITHDRAWN,
    EMERGENCY_WITHDRAWN,
)
from .ledger import PositionLedger, RewardBreakdown
from .snapshots import SnapshotStore, METRICS, ACC_REWARDS_PER_SHARE, POOL_FACTOR, LAST_REWARD_TIMESTAMP

logger = logging.getLogger(__name__)


def system_clock() -> int:
    return int(time.time())


class StakingPool:
    def __init__(
        self,
        token: TokenLedger,
        receipts: ReceiptRegistry = None,
        access: AccessControl = None,
        economic_config: EconomicConfig = None,
        address: str = POOL_ADDRESS,
        fee_sink: str = FEE_SINK_ADDRESS,
        clock: Callable[[], int] = system_clock,
        db=None,
        events: EventBus = None,
    ):
        self.config = economic_config or ECONOMIC_CONFIG
        self.token = token
        self.receipts = receipts or ReceiptRegistry()
        self.access = access or AccessControl()
        self.address = address
        self.fee_sink = fee_sink
        self.clock = clock
        self.db = db
        self.events = events or event_bus

        self.calculator = CompoundCalculator(self.config)
        self.snapshots = SnapshotStore()
        self.accumulator = RewardAccumulator(
            self.config,
            PoolState(current_pool_factor=self.config.full_pool_factor),
            self.snapshots,
            lambda: self.token.balance_of(self.address),
        )
        self.ledger = PositionLedger(self.config)

        # Persistence bookkeeping
        self._dirty_positions: Set[int] = set()
        self._persisted_snapshots: Dict[str, int] = {m: 0 for m in METRICS}

    @property
    def state(self) -> PoolState:
        return self.accumulator.state

    def _now(self) -> int:
        return int(self.clock())

    # ═══════════════════════════════════════════════════════
    # GUARDS
    # ═══════════════════════════════════════════════════════

    def _require_not_paused(self):
        if self.state.paused:
            raise StateError("Pool operations are currently paused")

    def _require_owner(self, caller: str, position_id: int) -> Position:
        position = self.ledger.get(position_id)
        if self.receipts.owner_of(position_id) != caller:
            raise AuthorizationError("Caller is not entry owner")
        if position.is_unstaked:
            raise StateError("Staking entry was already unstaked")
        return position

    def _validate_duration(self, duration: int):
        if duration < self.config.min_duration or duration > self.config.max_duration:
            raise ValidationError("Invalid staking duration")
        if not self.config.is_full_week(duration):
            raise ValidationError("Staking duration needs to be a full week")

    def _max_staking_amount(self, state: PoolState) -> int:
        balance = self.accumulator.pool_balance(state)
        threshold = self.config.initial_pool_balance * self.config.staking_cap_threshold_percent
        if balance * 100 > threshold:
            return self.config.max_staking_amount
        return balance * self.config.depleted_staking_cap_percent // 100

    # ═══════════════════════════════════════════════════════
    # STAKE
    # ═══════════════════════════════════════════════════════

    def stake(self, caller: str, amount: int, duration: int, auto_compound: bool = False) -> int:
        """
        Lock `amount` for `duration` days and open a position.

        Returns:
            Position id (the id of the receipt minted to the caller)
        """
        now = self._now()
        self._require_not_paused()
        self._validate_duration(duration)
        if amount <= 0:
            raise ValidationError("Staking amount must be positive")

        update = self.accumulator.preview(now)
        state = update.state

        if amount > self._max_staking_amount(state):
            raise ValidationError("Max. staking amount exceeded")
        if self.token.allowance(caller, self.address) < amount:
            raise ValidationError("Amount exceeds allowance")

        multiplier = self.calculator.multiplier(duration, auto_compound)
        shares = self.calculator.shares(amount, multiplier)
        if shares == 0:
            raise ValidationError("Staking amount too small to earn shares")

        try:
            self.token.transfer_from(self.address, caller, self.address, amount)
        except TransferError as e:
            raise TransferError(f"Failed to transfer initial stake: {e}") from e

        position = Position(
            id=self.receipts.mint(caller),
            amount=amount,
            duration=duration,
            shares=shares,
            reward_debt=self.ledger.reward_debt_for(shares, state.acc_rewards_per_share),
            last_claimed_at=now,
            started_at=now,
            is_auto_compounding_enabled=auto_compound,
        )

        state.allocated_shares += shares
        state.active_allocated_shares += shares
        state.total_locked += amount
        update.schedule(position.end_time, shares)

        self._commit(update, [position], new=True)

        logger.info(
            f"Staked {amount} for {duration}d by {caller}: position {position.id}, "
            f"{shares} shares, auto_compound={auto_compound}"
        )
        self.events.emit(
            POSITION_STAKED,
            position_id=position.id,
            owner=caller,
            amount=amount,
            duration=duration,
            shares=shares,
            auto_compound=auto_compound,
        )
        return position.id

    # ═══════════════════════════════════════════════════════
    # CLAIM / UNSTAKE
    # ═══════════════════════════════════════════════════════

    def _breakdown(self, position: Position, now: int, update: PoolUpdate = None) -> RewardBreakdown:
        accumulated = self.accumulator.accumulated_for(position.end_time, now, update)
        return self.ledger.pending_breakdown(position, accumulated.value)

    def _settle(
        self,
        position: Position,
        breakdown: RewardBreakdown,
        state: PoolState,
        now: int,
        close: bool,
    ) -> Tuple[Position, int]:
        """
        Applies a payout of `breakdown` (and optionally the close) to copies.

        Returns:
            (updated position, amount owed to the owner)
        """
        updated = position.model_copy(update={
            'claimed_rewards': position.claimed_rewards + breakdown.net,
            'collected_fees': position.collected_fees + breakdown.fee,
            'last_claimed_at': now,
        })

        if breakdown.gross > state.reserved_rewards:
            logger.warning(
                f"Reserved rewards {state.reserved_rewards} below claimed {breakdown.gross}, clamping to 0"
            )
        state.reserved_rewards = max(state.reserved_rewards - breakdown.gross, 0)
        payout = breakdown.net

        if close:
            # Expired shares already left active_allocated_shares at end_time
            state.allocated_shares -= position.shares
            state.total_locked -= position.amount
            state.reserved_fees += updated.collected_fees * self.config.fee_release_percent // 100
            updated.is_unstaked = True
            payout += position.amount

        return updated, payout

    def claim_rewards(self, caller: str, position_id: int) -> int:
        return self.claim_multiple_rewards(caller, [position_id])

    def claim_multiple_rewards(self, caller: str, position_ids: List[int]) -> int:
        """
        Pays out the pending rewards of several positions in one transfer.

        Positions at or past their end time are closed by the claim and
        their principal is returned with the rewards. Either every listed
        position is claimed or none is.

        Returns:
            Total net reward paid
        """
        now = self._now()
        self._require_not_paused()
        if not position_ids:
            raise ValidationError("No positions given")
        if len(set(position_ids)) != len(position_ids):
            raise ValidationError("Duplicate position ids")

        update = self.accumulator.preview(now)
        state = update.state

        settled: List[Tuple[Position, RewardBreakdown, bool]] = []
        total_net = 0
        total_payout = 0
        for position_id in position_ids:
            position = self._require_owner(caller, position_id)
            closing = now >= position.end_time

            if not closing:
                if position.is_auto_compounding_enabled:
                    raise StateError("Cannot claim before staking end")
                if now - position.last_claimed_at < self.config.claim_interval:
                    raise StateError("Claim interval not elapsed")

            breakdown = self._breakdown(position, now, update)
            if breakdown.net == 0:
                raise StateError(f"No rewards to claim for position {position_id}")

            updated, payout = self._settle(position, breakdown, state, now, closing)
            settled.append((updated, breakdown, closing))
            total_net += breakdown.net
            total_payout += payout

        try:
            self.token.transfer(self.address, caller, total_payout)
        except TransferError as e:
            raise TransferError(f"Failed to transfer rewards: {e}") from e

        self._commit(update, [p for p, _, _ in settled])

        for updated, breakdown, closed in settled:
            logger.info(
                f"Position {updated.id} claimed {breakdown.net} (fee {breakdown.fee})"
                + (", closed" if closed else "")
            )
            self.events.emit(
                REWARDS_CLAIMED,
                position_id=updated.id,
                owner=caller,
                net=breakdown.net,
                fee=breakdown.fee,
            )
            if closed:
                self.events.emit(
                    POSITION_UNSTAKED,
                    position_id=updated.id,
                    owner=caller,
                    amount=updated.amount,
                    rewards=breakdown.net,
                )
        return total_net

    def unstake(self, caller: str, position_id: int) -> int:
        """
        Closes a position after its lock period, paying principal and rewards.

        Returns:
            Principal plus net reward transferred to the owner
        """
        now = self._now()
        self._require_not_paused()
        position = self._require_owner(caller, position_id)
        if position.is_locked(now):
            raise StateError("Staking entry is locked")

        update = self.accumulator.preview(now)
        breakdown = self._breakdown(position, now, update)
        updated, payout = self._settle(position, breakdown, update.state, now, close=True)

        try:
            self.token.transfer(self.address, caller, payout)
        except TransferError as e:
            raise TransferError(f"Failed to transfer token: {e}") from e

        self._commit(update, [updated])

        logger.info(
            f"Unstaked position {position_id}: principal {position.amount}, "
            f"rewards {breakdown.net} (fee {breakdown.fee})"
        )
        if breakdown.net:
            self.events.emit(
                REWARDS_CLAIMED,
                position_id=position_id,
                owner=caller,
                net=breakdown.net,
                fee=breakdown.fee,
            )
        self.events.emit(
            POSITION_UNSTAKED,
            position_id=position_id,
            owner=caller,
            amount=position.amount,
            rewards=breakdown.net,
        )
        return payout

    def update_pool(self) -> PoolState:
        """Catches the accumulator up to now. Calling it twice in a row is a no-op."""
        now = self._now()
        before = self.state.last_reward_timestamp
        state = self.accumulator.update(now)
        self._after_commit()

        if state.last_reward_timestamp != before:
            self.events.emit(
                POOL_UPDATED,
                timestamp=state.last_reward_timestamp,
                acc_rewards_per_share=state.acc_rewards_per_share,
                pool_factor=state.current_pool_factor,
            )
        return state

    # ═══════════════════════════════════════════════════════
    # COMMIT / PERSISTENCE
    # ═══════════════════════════════════════════════════════

    def _commit(self, update: PoolUpdate, positions: List[Position], new: bool = False):
        self.accumulator.apply(update)
        for position in positions:
            if new:
                self.ledger.add(position)
            else:
                self.ledger.replace(position)
            self._dirty_positions.add(position.id)

        # Trailing catch-up; a no-op unless the clock moved during the operation
        self.accumulator.update(self._now())
        self._after_commit()

    def _after_commit(self):
        if self.db is not None:
            self.persist()

    def persist(self):
        """Writes pool state, changed positions, collaborators and new snapshots to the DB."""
        if self.db is None:
            raise StateError("No database configured")

        self.db.set_state("pool:state", self.state.model_dump_json())
        self.db.set_state(
            "pool:expiries",
            json.dumps({str(k): v for k, v in self.accumulator.pending_expiries().items()}),
        )
        for position_id in sorted(self._dirty_positions):
            self.db.set_state(f"pos:{position_id}", self.ledger.get(position_id).model_dump_json())
        self._dirty_positions.clear()

        self.db.set_state("token:state", self.token.state.model_dump_json())
        self.db.set_state("receipts:state", self.receipts.state.model_dump_json())
        self.db.set_state("access:state", self.access.state.model_dump_json())

        for metric in METRICS:
            start = self._persisted_snapshots[metric]
            entries = self.snapshots[metric].entries(start)
            if entries:
                self.db.append_snapshots(metric, entries)
                self._persisted_snapshots[metric] = start + len(entries)

    def load_state(self) -> bool:
        """
        Restores everything persist() wrote.

        Returns:
            False when the DB holds no pool yet
        """
        if self.db is None:
            raise StateError("No database configured")

        raw_state = self.db.get_state("pool:state")
        if not raw_state:
            return False

        self.accumulator.state = PoolState.model_validate_json(raw_state)
        raw_expiries = self.db.get_state("pool:expiries")
        if raw_expiries:
            self.accumulator.load_expiries({int(k): v for k, v in json.loads(raw_expiries).items()})

        positions = {}
        for raw in self.db.get_state_by_prefix("pos:").values():
            position = Position.model_validate_json(raw)
            positions[position.id] = position
        self.ledger = PositionLedger(self.config, positions)

        raw_token = self.db.get_state("token:state")
        if raw_token:
            self.token.state = TokenState.model_validate_json(raw_token)
        raw_receipts = self.db.get_state("receipts:state")
        if raw_receipts:
            self.receipts.state = ReceiptState.model_validate_json(raw_receipts)
        raw_access = self.db.get_state("access:state")
        if raw_access:
            self.access.state = AccessState.model_validate_json(raw_access)

        self.snapshots = SnapshotStore()
        self.accumulator.snapshots = self.snapshots
        for metric in METRICS:
            for ts, value in self.db.get_snapshots(metric):
                self.snapshots.record(metric, ts, value)
        self._persisted_snapshots = self.snapshots.counts()

        logger.info(
            f"Loaded pool state: {len(self.ledger)} positions, "
            f"last reward timestamp {self.state.last_reward_timestamp}"
        )
        return True

    # ═══════════════════════════════════════════════════════
    # ADMINISTRATION
    # ═══════════════════════════════════════════════════════

    def _admin_update(self, caller: str) -> PoolUpdate:
        self.access.require(Role.ADMIN.value, caller)
        return self.accumulator.preview(self._now())

    def pause(self, caller: str):
        update = self._admin_update(caller)
        if update.state.paused:
            raise StateError("Pool is already paused")
        update.state.paused = True
        self._commit(update, [])
        logger.info(f"Pool paused by {caller}")
        self.events.emit(POOL_PAUSED, caller=caller)

    def unpause(self, caller: str):
        update = self._admin_update(caller)
        if not update.state.paused:
            raise StateError("Pool is not paused")
        update.state.paused = False
        self._commit(update, [])
        logger.info(f"Pool unpaused by {caller}")
        self.events.emit(POOL_UNPAUSED, caller=caller)

    def set_reserved_rewards(self, caller: str, amount: int):
        update = self._admin_update(caller)
        if amount < 0:
            raise ValidationError("Reserved rewards must not be negative")
        update.state.reserved_rewards = amount
        self._commit(update, [])
        logger.info(f"Reserved rewards set to {amount} by {caller}")

    def set_reserved_fees(self, caller: str, amount: int):
        update = self._admin_update(caller)
        if amount < 0:
            raise ValidationError("Reserved fees must not be negative")
        update.state.reserved_fees = amount
        self._commit(update, [])
        logger.info(f"Reserved fees set to {amount} by {caller}")

    def withdraw_reserved_fees(self, caller: str) -> int:
        """Sends all reserved fees to the fee sink."""
        update = self._admin_update(caller)
        amount = update.state.reserved_fees
        if amount == 0:
            raise StateError("No reserved fees to withdraw")

        try:
            self.token.transfer(self.address, self.fee_sink, amount)
        except TransferError as e:
            raise TransferError(f"Failed to transfer fees: {e}") from e

        update.state.reserved_fees = 0
        self._commit(update, [])
        logger.info(f"Withdrew {amount} reserved fees to {self.fee_sink}")
        self.events.emit(FEES_WITHDRAWN, to=self.fee_sink, amount=amount)
        return amount

    def emergency_withdraw(self, caller: str, to: str, amount: int):
        """Withdraws staked-asset tokens that are not locked as principal."""
        update = self._admin_update(caller)
        available = self.token.balance_of(self.address) - update.state.total_locked
        if amount <= 0 or amount > available:
            raise ValidationError("Withdraw amount exceeds available balance")

        try:
            self.token.transfer(self.address, to, amount)
        except TransferError as e:
            raise TransferError(f"Failed to transfer token: {e}") from e

        self._commit(update, [])
        logger.warning(f"Emergency withdrawal of {amount} to {to} by {caller}")
        self.events.emit(EMERGENCY_WITHDRAWN, to=to, amount=amount, caller=caller)

    # ═══════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════

    def _projected(self) -> PoolState:
        return self.accumulator.preview(self._now()).state

    def pool_entry(self, position_id: int) -> Position:
        return self.ledger.get(position_id)

    def pending_breakdown(self, position_id: int) -> RewardBreakdown:
        return self._breakdown(self.ledger.get(position_id), self._now())

    def pending_rewards(self, position_id: int) -> int:
        """Net reward the owner would receive by claiming now."""
        return self.pending_breakdown(position_id).net

    def pool_factor(self, balance: Optional[int] = None) -> int:
        if balance is not None:
            return pool_factor_curve(balance, self.config)
        return self._projected().current_pool_factor

    def pool_balance(self) -> int:
        return self.accumulator.pool_balance(self._projected())

    def max_staking_amount(self) -> int:
        return self._max_staking_amount(self._projected())

    def apy(self, duration: int, factor: Optional[int] = None) -> int:
        return self.calculator.apy(duration, factor)

    def apr(self, duration: int, factor: Optional[int] = None) -> int:
        return self.calculator.apr(duration, factor)

    def apys(self) -> List[int]:
        return self.calculator.apys()

    def aprs(self) -> List[int]:
        return self.calculator.aprs()

    def _value_at(self, metric: str, timestamp: int, live: int) -> int:
        try:
            return self.snapshots.value_at(metric, timestamp, self._now(), live)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def acc_rewards_per_share_at(self, timestamp: int) -> int:
        return self._value_at(ACC_REWARDS_PER_SHARE, timestamp, self.state.acc_rewards_per_share)

    def pool_factor_at(self, timestamp: int) -> int:
        return self._value_at(POOL_FACTOR, timestamp, self.state.current_pool_factor)

    def last_reward_timestamp_at(self, timestamp: int) -> int:
        return self._value_at(LAST_REWARD_TIMESTAMP, timestamp, self.state.last_reward_timestamp)

    def position(self, position_id: int) -> PositionInfo:
        entry = self.ledger.get(position_id)
        now = self._now()
        return PositionInfo(
            position=entry,
            owner=self.receipts.owner_of(position_id),
            pending_rewards=self._breakdown(entry, now).net,
            end_time=entry.end_time,
            is_locked=entry.is_open and entry.is_locked(now),
        )

    def position_ids_of(self, owner: str) -> List[int]:
        return self.receipts.tokens_of(owner)

    def positions_of(self, owner: str) -> List[PositionInfo]:
        return [self.position(position_id) for position_id in self.position_ids_of(owner)]

    def positions_bulk(self, start: int, amount: int) -> List[PositionInfo]:
        """Positions start, start+1, ... start+amount-1 (ids begin at 1)."""
        if start < 1 or amount < 0:
            raise ValidationError("Invalid position range")
        if start + amount - 1 > self.receipts.last_id():
            raise ValidationError("start + amount exceeds total supply")
        return [self.position(position_id) for position_id in range(start, start + amount)]
