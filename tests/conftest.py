# MIT License
# Copyright (c) 2025 Hashborn

import pytest
from protocol.config.economic_model import DEVNET, DECIMALS, POOL_ADDRESS, REWARD_PRECISION, SECONDS_PER_DAY
from protocol.types.common import Role
from stakepool.core.assets import TokenLedger, ReceiptRegistry, AccessControl
from stakepool.core.events import EventBus
from stakepool.core.pool import StakingPool

GENESIS_TIME = 1_700_000_000

ADMIN = "stk1admin"
ALICE = "stk1alice"
BOB = "stk1bob"
CAROL = "stk1carol"   # No tokens

USER_BALANCE = 10_000_000 * DECIMALS
ONE_MILLION = 1_000_000 * DECIMALS


class FakeClock:
    """Caller-controlled clock; the pool only ever sees what it returns."""

    def __init__(self, now: int = GENESIS_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds

    def advance_days(self, days: int):
        self.now += days * SECONDS_PER_DAY


def full_rate_increment(config, seconds: int) -> int:
    """Accumulator increase over `seconds` at the full pool factor."""
    return seconds * config.emission_per_second * REWARD_PRECISION // config.total_pool_shares


def build_pool(clock, pool_funding: int, config=DEVNET) -> StakingPool:
    token = TokenLedger()
    token.mint(POOL_ADDRESS, pool_funding)
    for user in (ALICE, BOB):
        token.mint(user, USER_BALANCE)
        token.approve(user, POOL_ADDRESS, USER_BALANCE)

    access = AccessControl()
    access.grant_role(Role.ADMIN.value, ADMIN)

    return StakingPool(
        token=token,
        receipts=ReceiptRegistry(),
        access=access,
        economic_config=config,
        clock=clock,
        events=EventBus(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool(clock):
    """Pool funded with exactly the reference balance (pMax)."""
    return build_pool(clock, DEVNET.initial_pool_balance)


@pytest.fixture
def rich_pool(clock):
    """Pool funded with twice pMax, so the pool factor stays at 100%."""
    return build_pool(clock, 2 * DEVNET.initial_pool_balance)
