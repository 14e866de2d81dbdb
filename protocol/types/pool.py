from pydantic import BaseModel

class PoolState(BaseModel):
    """Global pool bookkeeping. Only the reward accumulator and the controller mutate it."""
    current_pool_factor: int           # Emission multiplier, percent with 18 decimals
    last_reward_timestamp: int = 0
    allocated_shares: int = 0          # Shares of all open positions
    active_allocated_shares: int = 0   # Shares of open positions still inside their term
    acc_rewards_per_share: int = 0     # Scaled by REWARD_PRECISION, never decreases
    total_locked: int = 0              # Principal of all open positions
    reserved_rewards: int = 0          # Rewards accrued to positions but not paid yet
    reserved_fees: int = 0             # Fees set aside for the fee sink
    paused: bool = False
