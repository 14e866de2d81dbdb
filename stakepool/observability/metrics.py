# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports staking pool metrics in Prometheus format.

Metrics:
- Pool factor, accumulator, share totals
- Locked principal, reserved rewards and fees, pool balance
- Operation counters (stake, claim, unstake, admin)
- Claimed rewards and collected fees

Token amounts are exported in whole tokens (float), not minimal units.
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

from protocol.config.economic_model import DECIMALS, REWARD_PRECISION
from protocol.types.common import OperationType

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# POOL METRICS
# ═══════════════════════════════════════════════════════════════════

pool_factor = Gauge(
    'stakepool_pool_factor_percent',
    'Current emission multiplier in percent',
    registry=metrics_registry
)

acc_rewards_per_share = Gauge(
    'stakepool_acc_rewards_per_share',
    'Cumulative reward per share since genesis (tokens)',
    registry=metrics_registry
)

last_reward_timestamp = Gauge(
    'stakepool_last_reward_timestamp',
    'Unix time the accumulator was last caught up to',
    registry=metrics_registry
)

allocated_shares = Gauge(
    'stakepool_allocated_shares',
    'Shares of all open positions',
    registry=metrics_registry
)

active_allocated_shares = Gauge(
    'stakepool_active_allocated_shares',
    'Shares of open positions still inside their term',
    registry=metrics_registry
)

pool_paused = Gauge(
    'stakepool_paused',
    'Whether pool operations are paused (1) or not (0)',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# BALANCE METRICS
# ═══════════════════════════════════════════════════════════════════

total_locked = Gauge(
    'stakepool_total_locked',
    'Principal locked in open positions',
    registry=metrics_registry
)

reserved_rewards = Gauge(
    'stakepool_reserved_rewards',
    'Rewards accrued to positions but not paid yet',
    registry=metrics_registry
)

reserved_fees = Gauge(
    'stakepool_reserved_fees',
    'Fees set aside for the fee sink',
    registry=metrics_registry
)

pool_balance = Gauge(
    'stakepool_pool_balance',
    'Remaining reward pool balance',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# POSITION METRICS
# ═══════════════════════════════════════════════════════════════════

positions_total = Gauge(
    'stakepool_positions_total',
    'Number of positions ever opened',
    registry=metrics_registry
)

positions_open = Gauge(
    'stakepool_positions_open',
    'Number of open positions',
    registry=metrics_registry
)

operations_total = Counter(
    'stakepool_operations_total',
    'Total number of committed pool operations',
    ['operation'],
    registry=metrics_registry
)

staked_total = Counter(
    'stakepool_staked_tokens_total',
    'Total tokens staked',
    registry=metrics_registry
)

rewards_claimed_total = Counter(
    'stakepool_rewards_claimed_tokens_total',
    'Total net rewards paid out',
    registry=metrics_registry
)

fees_collected_total = Counter(
    'stakepool_fees_collected_tokens_total',
    'Total protocol fees withheld from claims',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def _tokens(amount: int) -> float:
    return amount / DECIMALS


def update_metrics(pool):
    """
    Update all gauges from pool state.
    Called when metrics are scraped. Counters are driven by events.

    Args:
        pool: StakingPool instance
    """
    state = pool.state

    pool_factor.set(state.current_pool_factor / DECIMALS)
    acc_rewards_per_share.set(state.acc_rewards_per_share / REWARD_PRECISION / DECIMALS)
    last_reward_timestamp.set(state.last_reward_timestamp)
    allocated_shares.set(state.allocated_shares)
    active_allocated_shares.set(state.active_allocated_shares)
    pool_paused.set(1 if state.paused else 0)

    total_locked.set(_tokens(state.total_locked))
    reserved_rewards.set(_tokens(state.reserved_rewards))
    reserved_fees.set(_tokens(state.reserved_fees))
    pool_balance.set(_tokens(pool.accumulator.pool_balance()))

    positions_total.set(len(pool.ledger))
    positions_open.set(len(pool.ledger.open_positions()))


def register_event_metrics(bus):
    """
    Subscribe operation counters to pool events.

    Args:
        bus: EventBus the pool emits on
    """
    from stakepool.core import events

    def on_staked(amount, **_):
        operations_total.labels(operation=OperationType.STAKE.value).inc()
        staked_total.inc(_tokens(amount))

    def on_claimed(net, fee, **_):
        operations_total.labels(operation=OperationType.CLAIM.value).inc()
        rewards_claimed_total.inc(_tokens(net))
        fees_collected_total.inc(_tokens(fee))

    def on_unstaked(**_):
        operations_total.labels(operation=OperationType.UNSTAKE.value).inc()

    def on_updated(**_):
        operations_total.labels(operation=OperationType.UPDATE_POOL.value).inc()

    def on_paused(**_):
        operations_total.labels(operation=OperationType.PAUSE.value).inc()

    def on_unpaused(**_):
        operations_total.labels(operation=OperationType.UNPAUSE.value).inc()

    def on_emergency_withdrawn(**_):
        operations_total.labels(operation=OperationType.EMERGENCY_WITHDRAW.value).inc()

    def on_fees_withdrawn(**_):
        operations_total.labels(operation=OperationType.WITHDRAW_FEES.value).inc()

    bus.subscribe(events.POSITION_STAKED, on_staked)
    bus.subscribe(events.REWARDS_CLAIMED, on_claimed)
    bus.subscribe(events.POSITION_UNSTAKED, on_unstaked)
    bus.subscribe(events.POOL_UPDATED, on_updated)
    bus.subscribe(events.POOL_PAUSED, on_paused)
    bus.subscribe(events.POOL_UNPAUSED, on_unpaused)
    bus.subscribe(events.FEES_WITHDRAWN, on_fees_withdrawn)
    bus.subscribe(events.EMERGENCY_WITHDRAWN, on_emergency_withdrawn)
