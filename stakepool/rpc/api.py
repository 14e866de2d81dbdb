from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Optional, List
from protocol.types.common import (
    ProtocolError,
    ValidationError,
    StateError,
    AuthorizationError,
    TransferError,
    PositionNotFound,
)
from protocol.types.position import Position, PositionInfo
from ..core.pool import StakingPool
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Staking Pool RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
pool: Optional[StakingPool] = None
network: str = "devnet"

# Order matters: PositionNotFound is also a KeyError but must map to 404
ERROR_STATUS = [
    (PositionNotFound, 404),
    (ValidationError, 400),
    (AuthorizationError, 403),
    (StateError, 409),
    (TransferError, 422),
]


class StakeRequest(BaseModel):
    caller: str
    amount: str            # Minimal units as decimal string
    duration: int          # Days
    auto_compound: bool = False

class ClaimRequest(BaseModel):
    caller: str
    position_ids: List[int]

class UnstakeRequest(BaseModel):
    caller: str
    position_id: int

class ApproveRequest(BaseModel):
    owner: str
    amount: str


def _require_pool() -> StakingPool:
    if not pool:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return pool

def _require_devnet():
    if network != "devnet":
        raise HTTPException(status_code=403, detail="Transaction endpoints are only enabled on devnet")

def _http_error(e: ProtocolError) -> HTTPException:
    for error_type, status in ERROR_STATUS:
        if isinstance(e, error_type):
            return HTTPException(status_code=status, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))

def _parse_amount(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid amount: {value}")

def _position_json(position: Position) -> dict:
    return {
        "id": position.id,
        "amount": str(position.amount),
        "duration": position.duration,
        "shares": str(position.shares),
        "reward_debt": str(position.reward_debt),
        "claimed_rewards": str(position.claimed_rewards),
        "collected_fees": str(position.collected_fees),
        "last_claimed_at": position.last_claimed_at,
        "started_at": position.started_at,
        "is_unstaked": position.is_unstaked,
        "is_auto_compounding_enabled": position.is_auto_compounding_enabled,
    }

def _info_json(info: PositionInfo) -> dict:
    return {
        "position": _position_json(info.position),
        "owner": info.owner,
        "pending_rewards": str(info.pending_rewards),
        "end_time": info.end_time,
        "is_locked": info.is_locked,
    }


@app.get("/status")
async def get_status():
    p = _require_pool()
    state = p.state
    return {
        "network": network,
        "paused": state.paused,
        "last_reward_timestamp": state.last_reward_timestamp,
        "current_pool_factor": str(state.current_pool_factor),
        "acc_rewards_per_share": str(state.acc_rewards_per_share),
        "allocated_shares": str(state.allocated_shares),
        "active_allocated_shares": str(state.active_allocated_shares),
        "total_locked": str(state.total_locked),
        "reserved_rewards": str(state.reserved_rewards),
        "reserved_fees": str(state.reserved_fees),
        "positions": len(p.ledger),
    }

@app.get("/pool/factor")
async def get_pool_factor(balance: Optional[str] = None):
    p = _require_pool()
    value = p.pool_factor(_parse_amount(balance) if balance is not None else None)
    return {"pool_factor": str(value)}

@app.get("/pool/balance")
async def get_pool_balance():
    p = _require_pool()
    return {"pool_balance": str(p.pool_balance())}

@app.get("/pool/max-stake")
async def get_max_staking_amount():
    p = _require_pool()
    return {"max_staking_amount": str(p.max_staking_amount())}

@app.get("/pool/apy/{duration}")
async def get_apy(duration: int, factor: Optional[str] = None):
    p = _require_pool()
    try:
        value = p.apy(duration, _parse_amount(factor) if factor is not None else None)
    except ProtocolError as e:
        raise _http_error(e)
    return {"duration": duration, "apy": str(value)}

@app.get("/pool/apr/{duration}")
async def get_apr(duration: int, factor: Optional[str] = None):
    p = _require_pool()
    try:
        value = p.apr(duration, _parse_amount(factor) if factor is not None else None)
    except ProtocolError as e:
        raise _http_error(e)
    return {"duration": duration, "apr": str(value)}

@app.get("/pool/apys")
async def get_apys():
    p = _require_pool()
    return {"apys": [str(v) for v in p.apys()]}

@app.get("/pool/aprs")
async def get_aprs():
    p = _require_pool()
    return {"aprs": [str(v) for v in p.aprs()]}

@app.get("/pool/history/{metric}/{timestamp}")
async def get_history(metric: str, timestamp: int):
    """Point-in-time value of acc_rewards_per_share, pool_factor or last_reward_timestamp."""
    p = _require_pool()
    lookups = {
        "acc_rewards_per_share": p.acc_rewards_per_share_at,
        "pool_factor": p.pool_factor_at,
        "last_reward_timestamp": p.last_reward_timestamp_at,
    }
    if metric not in lookups:
        raise HTTPException(status_code=404, detail=f"Unknown metric: {metric}")
    try:
        value = lookups[metric](timestamp)
    except ProtocolError as e:
        raise _http_error(e)
    return {"metric": metric, "timestamp": timestamp, "value": str(value)}

@app.post("/pool/update")
async def update_pool():
    p = _require_pool()
    state = p.update_pool()
    return {
        "last_reward_timestamp": state.last_reward_timestamp,
        "acc_rewards_per_share": str(state.acc_rewards_per_share),
        "current_pool_factor": str(state.current_pool_factor),
    }

@app.get("/position/{position_id}")
async def get_position(position_id: int):
    p = _require_pool()
    try:
        return _info_json(p.position(position_id))
    except ProtocolError as e:
        raise _http_error(e)

@app.get("/position/{position_id}/pending")
async def get_pending_rewards(position_id: int):
    p = _require_pool()
    try:
        breakdown = p.pending_breakdown(position_id)
    except ProtocolError as e:
        raise _http_error(e)
    return {
        "position_id": position_id,
        "pending_rewards": str(breakdown.net),
        "fee": str(breakdown.fee),
        "gross": str(breakdown.gross),
    }

@app.get("/positions")
async def get_positions_bulk(start: int = 1, amount: int = 10):
    p = _require_pool()
    try:
        infos = p.positions_bulk(start, amount)
    except ProtocolError as e:
        raise _http_error(e)
    return {"positions": [_info_json(i) for i in infos]}

@app.get("/owner/{address}/positions")
async def get_positions_of(address: str):
    p = _require_pool()
    return {
        "owner": address,
        "position_ids": p.position_ids_of(address),
        "positions": [_info_json(i) for i in p.positions_of(address)],
    }

@app.get("/balance/{address}")
async def get_balance(address: str):
    p = _require_pool()
    return {
        "address": address,
        "balance": str(p.token.balance_of(address)),
        "allowance": str(p.token.allowance(address, p.address)),
    }

@app.get("/events")
async def get_events(event_type: Optional[str] = None, limit: int = 50):
    """Recently emitted pool events, oldest first."""
    p = _require_pool()
    try:
        events = p.events.recent(event_type, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "events": [
            {
                "seq": e.seq,
                "type": e.event_type,
                "data": {k: str(v) if isinstance(v, int) and not isinstance(v, bool) else v
                         for k, v in e.data.items()},
            }
            for e in events
        ]
    }

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    try:
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        from stakepool.observability.metrics import metrics_registry, update_metrics

        if pool:
            update_metrics(pool)

        metrics_data = generate_latest(metrics_registry)

        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Metrics error: {str(e)}")

# --- Devnet transaction endpoints ---

@app.post("/tx/approve")
async def tx_approve(req: ApproveRequest):
    p = _require_pool()
    _require_devnet()
    try:
        p.token.approve(req.owner, p.address, _parse_amount(req.amount))
    except ProtocolError as e:
        raise _http_error(e)
    return {"status": "approved", "owner": req.owner, "amount": req.amount}

@app.post("/tx/stake")
async def tx_stake(req: StakeRequest):
    p = _require_pool()
    _require_devnet()
    try:
        position_id = p.stake(req.caller, _parse_amount(req.amount), req.duration, req.auto_compound)
    except ProtocolError as e:
        raise _http_error(e)
    return {"status": "staked", "position_id": position_id}

@app.post("/tx/claim")
async def tx_claim(req: ClaimRequest):
    p = _require_pool()
    _require_devnet()
    try:
        rewards = p.claim_multiple_rewards(req.caller, req.position_ids)
    except ProtocolError as e:
        raise _http_error(e)
    return {"status": "claimed", "rewards": str(rewards)}

@app.post("/tx/unstake")
async def tx_unstake(req: UnstakeRequest):
    p = _require_pool()
    _require_devnet()
    try:
        payout = p.unstake(req.caller, req.position_id)
    except ProtocolError as e:
        raise _http_error(e)
    return {"status": "unstaked", "payout": str(payout)}


def start_rpc_server(pool_instance: StakingPool, network_name: str = "devnet", host: str = "0.0.0.0", port: int = 8000):
    global pool, network
    pool = pool_instance
    network = network_name
    import uvicorn
    uvicorn.run(app, host=host, port=port)
