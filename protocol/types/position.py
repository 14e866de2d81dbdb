from pydantic import BaseModel
from ..config.economic_model import SECONDS_PER_DAY

class Position(BaseModel):
    """One staking commitment, represented externally by a receipt."""
    id: int
    amount: int                  # Principal in minimal units
    duration: int                # Lock duration in days (full weeks only)
    shares: int                  # Fixed weight in the reward pool
    reward_debt: int             # Accumulator baseline at creation (already scaled down)
    claimed_rewards: int = 0     # Net rewards paid out
    collected_fees: int = 0      # Protocol fee withheld from claims
    last_claimed_at: int         # Unix time of the last claim (starts at started_at)
    started_at: int              # Unix time of the stake
    is_unstaked: bool = False
    is_auto_compounding_enabled: bool = False

    @property
    def end_time(self) -> int:
        return self.started_at + self.duration * SECONDS_PER_DAY

    @property
    def is_open(self) -> bool:
        return not self.is_unstaked

    def is_locked(self, now: int) -> bool:
        return now < self.end_time


class PositionInfo(BaseModel):
    """Position joined with its receipt owner and live reward figures."""
    position: Position
    owner: str
    pending_rewards: int
    end_time: int
    is_locked: bool
