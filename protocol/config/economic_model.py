# MIT License
# Copyright (c) 2025 Hashborn

"""
Staking Pool Economic Model
Single source of truth for all economic parameters.

Units:
- Token amounts: minimal units (18 decimals)
- Pool factor: percent with 18 decimals (100 * DECIMALS = full emission)
- APR / APY multipliers: percent with 5 decimals (PERCENT_PRECISION)
- Durations: days, full weeks only
"""

import os
from dataclasses import dataclass
from typing import Dict

DECIMALS = 10**18
DENOM = "stk"

# Multipliers are percentages carrying 5 decimals (20060293 == 200.60293 %)
PERCENT_PRECISION = 10**5

# Scale of accRewardsPerShare
REWARD_PRECISION = 10**18

SECONDS_PER_DAY = 86_400
DAYS_PER_WEEK = 7

# Account holding staked principal and the reward pool
POOL_ADDRESS = "stk1stakingpool000000000000000000000000000000000000"

# Default owner of the fee sink (governance-controlled in future)
FEE_SINK_ADDRESS = "stk1feesink00000000000000000000000000000000000000000"

@dataclass
class EconomicConfig:
    """Economic parameters for a network."""

    # ═══════════════════════════════════════════════════════
    # EMISSION
    # ═══════════════════════════════════════════════════════
    emission_per_second: int            # Rewards emitted per second at 100% pool factor
    total_pool_shares: int              # Share supply the emission is spread over

    # ═══════════════════════════════════════════════════════
    # POOL FACTOR CURVE
    # ═══════════════════════════════════════════════════════
    initial_pool_balance: int           # Reference balance (pMax), full emission at or above
    full_pool_factor: int               # Ceiling (100%)
    floor_pool_factor: int              # Floor at an empty pool (e.g. 15%)

    # ═══════════════════════════════════════════════════════
    # DURATIONS (days)
    # ═══════════════════════════════════════════════════════
    min_duration: int
    max_duration: int

    # ═══════════════════════════════════════════════════════
    # MULTIPLIERS
    # ═══════════════════════════════════════════════════════
    apr_roi_percent: int                # Yearly return of a simple position at full factor
    apy_roi_percent: int                # Nominal yearly rate of a compounding position
    compound_interval: int              # Compounding periods per max duration

    # ═══════════════════════════════════════════════════════
    # FEES
    # ═══════════════════════════════════════════════════════
    protocol_fee_percent: int           # Withheld from every claimed gross reward
    fee_release_percent: int            # Share of collected fees moved to reserved fees on close

    # ═══════════════════════════════════════════════════════
    # STAKING LIMITS
    # ═══════════════════════════════════════════════════════
    max_staking_amount: int             # Absolute cap while the pool is healthy
    staking_cap_threshold_percent: int  # Pool balance (% of initial) above which the absolute cap applies
    depleted_staking_cap_percent: int   # Cap as % of pool balance below the threshold

    # ═══════════════════════════════════════════════════════
    # CLAIMS
    # ═══════════════════════════════════════════════════════
    claim_interval: int                 # Seconds between claims of non-compounding positions

    def __post_init__(self):
        if self.floor_pool_factor >= self.full_pool_factor:
            raise ValueError("floor_pool_factor must be below full_pool_factor")
        if self.min_duration <= 0 or self.min_duration > self.max_duration:
            raise ValueError("Invalid duration bounds")
        if self.total_pool_shares <= 0 or self.initial_pool_balance <= 0:
            raise ValueError("total_pool_shares and initial_pool_balance must be positive")
        if not 0 <= self.protocol_fee_percent < 100:
            raise ValueError("protocol_fee_percent must be within [0, 100)")
        # Every accrual second must move the accumulator, even at the floor,
        # so that a snapshot exists at each position end time.
        if self.min_acc_increment_per_second() == 0:
            raise ValueError("Emission too small for REWARD_PRECISION at the floor factor")

    # ═══════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════

    @property
    def max_duration_seconds(self) -> int:
        return self.max_duration * SECONDS_PER_DAY

    def end_time(self, started_at: int, duration: int) -> int:
        return started_at + duration * SECONDS_PER_DAY

    def is_full_week(self, duration: int) -> bool:
        return duration % DAYS_PER_WEEK == 0

    def min_acc_increment_per_second(self) -> int:
        return (
            self.emission_per_second * self.floor_pool_factor * REWARD_PRECISION
            // (self.full_pool_factor * self.total_pool_shares)
        )

    def split_fee(self, gross: int) -> Dict[str, int]:
        """
        Split a gross reward into the protocol fee and the net payout.
        Returns: {'fee': int, 'net': int}
        """
        fee = gross * self.protocol_fee_percent // 100
        return {
            'fee': fee,
            'net': gross - fee,
        }


# ═══════════════════════════════════════════════════════════════════════════
# DEVNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
DEVNET = EconomicConfig(
    # Emission: ~7.65 tokens/s, 1 share earns 0.01 token per 364 days at 100%
    emission_per_second=7_654_263_202_075_702_075,
    total_pool_shares=24_072_351_600,

    # Pool factor curve
    initial_pool_balance=120_000_000 * DECIMALS,   # 120M tokens
    full_pool_factor=100 * DECIMALS,               # 100%
    floor_pool_factor=15 * DECIMALS,               # 15%

    # Durations
    min_duration=7,                                # 1 week
    max_duration=364,                              # 52 weeks

    # Multipliers
    apr_roi_percent=110,                           # 110% simple
    apy_roi_percent=110,                           # 110% nominal, compounded daily
    compound_interval=365,

    # Fees
    protocol_fee_percent=3,                        # 3%
    fee_release_percent=50,                        # 50% of fees to the fee sink on close

    # Staking limits
    max_staking_amount=1_000_000 * DECIMALS,       # 1M tokens
    staking_cap_threshold_percent=80,              # Above 80% of the initial balance
    depleted_staking_cap_percent=1,                # Otherwise 1% of the pool balance

    # Claims
    claim_interval=3_600,                          # 1 hour
)


# ═══════════════════════════════════════════════════════════════════════════
# TESTNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
TESTNET = EconomicConfig(
    # Emission
    emission_per_second=7_654_263_202_075_702_075,
    total_pool_shares=24_072_351_600,

    # Pool factor curve
    initial_pool_balance=120_000_000 * DECIMALS,
    full_pool_factor=100 * DECIMALS,
    floor_pool_factor=15 * DECIMALS,

    # Durations
    min_duration=7,
    max_duration=364,

    # Multipliers
    apr_roi_percent=110,
    apy_roi_percent=110,
    compound_interval=365,

    # Fees
    protocol_fee_percent=3,
    fee_release_percent=50,

    # Staking limits
    max_staking_amount=1_000_000 * DECIMALS,
    staking_cap_threshold_percent=80,
    depleted_staking_cap_percent=1,

    # Claims
    claim_interval=SECONDS_PER_DAY,                # 1 day
)


# ═══════════════════════════════════════════════════════════════════════════
# MAINNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
MAINNET = EconomicConfig(
    # Emission
    emission_per_second=7_654_263_202_075_702_075,
    total_pool_shares=24_072_351_600,

    # Pool factor curve
    initial_pool_balance=120_000_000 * DECIMALS,
    full_pool_factor=100 * DECIMALS,
    floor_pool_factor=15 * DECIMALS,

    # Durations
    min_duration=7,
    max_duration=364,

    # Multipliers
    apr_roi_percent=110,
    apy_roi_percent=110,
    compound_interval=365,

    # Fees
    protocol_fee_percent=3,
    fee_release_percent=50,

    # Staking limits
    max_staking_amount=1_000_000 * DECIMALS,
    staking_cap_threshold_percent=80,
    depleted_staking_cap_percent=1,

    # Claims
    claim_interval=SECONDS_PER_DAY,
)


NETWORKS: Dict[str, EconomicConfig] = {
    "devnet": DEVNET,
    "testnet": TESTNET,
    "mainnet": MAINNET,
}


def get_economic_config(name: str = None) -> EconomicConfig:
    """Resolve a preset by name, falling back to STAKEPOOL_NETWORK and then devnet."""
    name = name or os.environ.get("STAKEPOOL_NETWORK", "devnet")
    try:
        return NETWORKS[name]
    except KeyError:
        raise ValueError(f"Unknown network '{name}' (expected one of {', '.join(NETWORKS)})")


# ═══════════════════════════════════════════════════════════════════════════
# CURRENT NETWORK (selected at runtime)
# ═══════════════════════════════════════════════════════════════════════════
ECONOMIC_CONFIG = get_economic_config()
