# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import requests
import os
from decimal import Decimal, InvalidOperation
from protocol.config.economic_model import DECIMALS, DENOM, PERCENT_PRECISION

DEFAULT_NODE = "http://localhost:8000"

def get_node_url(args):
    return args.node or os.environ.get("STAKEPOOL_NODE", DEFAULT_NODE)

def to_units(amount: str) -> int:
    """Token amount ('1.5') to minimal units."""
    try:
        return int(Decimal(amount) * DECIMALS)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")

def format_tokens(units) -> str:
    return f"{Decimal(int(units)) / DECIMALS} {DENOM}"

def format_percent(multiplier) -> str:
    return f"{Decimal(int(multiplier)) / PERCENT_PRECISION}%"

def _get(args, path, params=None):
    url = get_node_url(args)
    try:
        resp = requests.get(f"{url}{path}", params=params)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

def _post(args, path, payload=None):
    url = get_node_url(args)
    try:
        resp = requests.post(f"{url}{path}", json=payload or {})
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

# --- Query Commands ---
def cmd_query_status(args):
    data = _get(args, "/status")
    print(f"Network:          {data['network']}")
    print(f"Paused:           {data['paused']}")
    print(f"Pool factor:      {Decimal(int(data['current_pool_factor'])) / DECIMALS}%")
    print(f"Total locked:     {format_tokens(data['total_locked'])}")
    print(f"Reserved rewards: {format_tokens(data['reserved_rewards'])}")
    print(f"Reserved fees:    {format_tokens(data['reserved_fees'])}")
    print(f"Positions:        {data['positions']}")

def cmd_query_balance(args):
    data = _get(args, f"/balance/{args.address}")
    print(f"Balance:   {format_tokens(data['balance'])}")
    print(f"Allowance: {format_tokens(data['allowance'])}")

def cmd_query_position(args):
    data = _get(args, f"/position/{args.position_id}")
    print(json.dumps(data, indent=2))

def cmd_query_pending(args):
    data = _get(args, f"/position/{args.position_id}/pending")
    print(f"Pending rewards: {format_tokens(data['pending_rewards'])} (fee {format_tokens(data['fee'])})")

def cmd_query_positions(args):
    data = _get(args, f"/owner/{args.address}/positions")
    print(f"{'ID':<6} {'Amount':<28} {'Days':<6} {'Pending':<28} {'Status'}")
    print("-" * 80)
    for info in data['positions']:
        p = info['position']
        status = "closed" if p['is_unstaked'] else ("locked" if info['is_locked'] else "unlocked")
        print(f"{p['id']:<6} {format_tokens(p['amount']):<28} {p['duration']:<6} "
              f"{format_tokens(info['pending_rewards']):<28} {status}")

def cmd_query_rates(args):
    apr = _get(args, f"/pool/apr/{args.duration}")
    apy = _get(args, f"/pool/apy/{args.duration}")
    print(f"APR ({args.duration}d): {format_percent(apr['apr'])}")
    print(f"APY ({args.duration}d): {format_percent(apy['apy'])}")

def cmd_query_factor(args):
    params = {"balance": str(to_units(args.balance))} if args.balance else None
    data = _get(args, "/pool/factor", params)
    print(f"Pool factor: {Decimal(int(data['pool_factor'])) / DECIMALS}%")

# --- Tx Commands (devnet) ---
def cmd_tx_approve(args):
    _post(args, "/tx/approve", {"owner": args.from_address, "amount": str(to_units(args.amount))})
    print(f"Approved {args.amount} {DENOM} for staking from {args.from_address}")

def cmd_tx_stake(args):
    res = _post(args, "/tx/stake", {
        "caller": args.from_address,
        "amount": str(to_units(args.amount)),
        "duration": args.duration,
        "auto_compound": args.auto_compound,
    })
    print(f"Success! Position ID: {res['position_id']}")

def cmd_tx_claim(args):
    res = _post(args, "/tx/claim", {"caller": args.from_address, "position_ids": args.position_ids})
    print(f"Claimed {format_tokens(res['rewards'])}")

def cmd_tx_unstake(args):
    res = _post(args, "/tx/unstake", {"caller": args.from_address, "position_id": args.position_id})
    print(f"Unstaked position {args.position_id}, received {format_tokens(res['payout'])}")

# --- Pool Commands ---
def cmd_pool_update(args):
    res = _post(args, "/pool/update")
    print(f"Pool updated to {res['last_reward_timestamp']}")
    print(f"accRewardsPerShare: {res['acc_rewards_per_share']}")

def main():
    parser = argparse.ArgumentParser(prog="stakepool", description="Staking Pool Client CLI")
    parser.add_argument("--node", help="Node URL (default: http://localhost:8000)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # query
    p_query = subparsers.add_parser("query", help="Query pool state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    sp_query.add_parser("status", help="Pool summary")

    pq_bal = sp_query.add_parser("balance", help="Get token balance and allowance")
    pq_bal.add_argument("address", help="Account address")

    pq_pos = sp_query.add_parser("position", help="Get position by id")
    pq_pos.add_argument("position_id", type=int, help="Position id")

    pq_pending = sp_query.add_parser("pending", help="Get pending rewards of a position")
    pq_pending.add_argument("position_id", type=int, help="Position id")

    pq_positions = sp_query.add_parser("positions", help="List positions of an owner")
    pq_positions.add_argument("address", help="Owner address")

    pq_rates = sp_query.add_parser("rates", help="APR / APY for a duration")
    pq_rates.add_argument("duration", type=int, help="Duration in days")

    pq_factor = sp_query.add_parser("factor", help="Pool factor (current or for a balance)")
    pq_factor.add_argument("--balance", help="Pool balance in tokens")

    # tx
    p_tx = subparsers.add_parser("tx", help="Send devnet transactions")
    sp_tx = p_tx.add_subparsers(dest="subcommand")

    pt_approve = sp_tx.add_parser("approve", help="Allow the pool to pull tokens")
    pt_approve.add_argument("amount", help=f"Amount in {DENOM}")
    pt_approve.add_argument("--from", dest="from_address", required=True, help="Owner address")

    pt_stake = sp_tx.add_parser("stake", help="Open a staking position")
    pt_stake.add_argument("amount", help=f"Amount to stake in {DENOM}")
    pt_stake.add_argument("duration", type=int, help="Duration in days (full weeks)")
    pt_stake.add_argument("--auto-compound", action="store_true", help="Use the compounding (APY) multiplier")
    pt_stake.add_argument("--from", dest="from_address", required=True, help="Staker address")

    pt_claim = sp_tx.add_parser("claim", help="Claim rewards of one or more positions")
    pt_claim.add_argument("position_ids", type=int, nargs="+", help="Position ids")
    pt_claim.add_argument("--from", dest="from_address", required=True, help="Owner address")

    pt_unstake = sp_tx.add_parser("unstake", help="Close an unlocked position")
    pt_unstake.add_argument("position_id", type=int, help="Position id")
    pt_unstake.add_argument("--from", dest="from_address", required=True, help="Owner address")

    # pool
    p_pool = subparsers.add_parser("pool", help="Pool maintenance")
    sp_pool = p_pool.add_subparsers(dest="subcommand")
    sp_pool.add_parser("update", help="Catch the reward accumulator up to now")

    args = parser.parse_args()

    try:
        if args.command == "query":
            if args.subcommand == "status": cmd_query_status(args)
            elif args.subcommand == "balance": cmd_query_balance(args)
            elif args.subcommand == "position": cmd_query_position(args)
            elif args.subcommand == "pending": cmd_query_pending(args)
            elif args.subcommand == "positions": cmd_query_positions(args)
            elif args.subcommand == "rates": cmd_query_rates(args)
            elif args.subcommand == "factor": cmd_query_factor(args)
            else: p_query.print_help()

        elif args.command == "tx":
            if args.subcommand == "approve": cmd_tx_approve(args)
            elif args.subcommand == "stake": cmd_tx_stake(args)
            elif args.subcommand == "claim": cmd_tx_claim(args)
            elif args.subcommand == "unstake": cmd_tx_unstake(args)
            else: p_tx.print_help()

        elif args.command == "pool":
            if args.subcommand == "update": cmd_pool_update(args)
            else: p_pool.print_help()

        else:
            parser.print_help()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
