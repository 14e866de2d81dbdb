# MIT License
# Copyright (c) 2025 Hashborn

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List

from protocol.config.economic_model import EconomicConfig, REWARD_PRECISION
from protocol.math.fixed_point import mul_div
from protocol.types.common import PositionNotFound
from protocol.types.position import Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardBreakdown:
    gross: int   # Outstanding reward before the protocol fee
    fee: int
    net: int     # Amount the owner receives


NO_REWARDS = RewardBreakdown(gross=0, fee=0, net=0)


class PositionLedger:
    """
    Position records keyed by receipt id.

    Positions are replaced wholesale on every change so a failed operation
    never leaves a half-updated record behind.
    """

    def __init__(self, config: EconomicConfig, positions: Dict[int, Position] = None):
        self.config = config
        self._positions: Dict[int, Position] = positions if positions is not None else {}

    def __contains__(self, position_id: int) -> bool:
        return position_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[Position]:
        return iter(self._positions.values())

    def add(self, position: Position):
        if position.id in self._positions:
            raise ValueError(f"Position {position.id} already exists")
        self._positions[position.id] = position

    def get(self, position_id: int) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFound(f"Position {position_id} not found")

    def replace(self, position: Position):
        current = self.get(position.id)
        if current.is_unstaked:
            raise ValueError(f"Position {position.id} is closed and immutable")
        self._positions[position.id] = position

    def open_positions(self) -> List[Position]:
        return [p for p in self._positions.values() if p.is_open]

    def reward_debt_for(self, shares: int, accumulated: int) -> int:
        return mul_div(shares, accumulated, REWARD_PRECISION)

    def pending_breakdown(self, position: Position, accumulated: int) -> RewardBreakdown:
        """
        Outstanding reward of a position for an accumulator value.

        Everything already paid out (net and fees) is subtracted before the
        fee is taken, so every claim is charged only on what it adds.
        """
        if position.is_unstaked:
            return NO_REWARDS

        raw = mul_div(position.shares, accumulated, REWARD_PRECISION)
        outstanding = raw - position.reward_debt - position.claimed_rewards - position.collected_fees
        if outstanding < 0:
            logger.warning(
                f"Position {position.id}: paid out exceeds accrued by {-outstanding}, clamping to 0"
            )
            return NO_REWARDS

        split = self.config.split_fee(outstanding)
        return RewardBreakdown(gross=outstanding, fee=split['fee'], net=split['net'])
