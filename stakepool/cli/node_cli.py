import argparse
import os
import sys
import logging
from protocol.config.economic_model import NETWORKS, DECIMALS, POOL_ADDRESS, get_economic_config
from protocol.types.common import Role
from ..core.assets import TokenLedger, ReceiptRegistry, AccessControl
from ..core.events import event_bus
from ..core.pool import StakingPool
from ..storage.db import StorageDB
from ..observability.metrics import register_event_metrics
from ..rpc import api # import module to set globals

logger = logging.getLogger(__name__)

DEFAULT_ADMIN = "stk1admin0000000000000000000000000000000000000000000"

def open_pool(args) -> StakingPool:
    """Builds a pool backed by <datadir>/pool.db and restores any saved state."""
    os.makedirs(args.datadir, exist_ok=True)
    db = StorageDB(os.path.join(args.datadir, "pool.db"))
    pool = StakingPool(
        token=TokenLedger(),
        receipts=ReceiptRegistry(),
        access=AccessControl(),
        economic_config=get_economic_config(args.network),
        db=db,
        events=event_bus,
    )
    pool.load_state()
    return pool

def cmd_init(args):
    """Initialize node: data dir, funded reward pool, admin role."""
    pool = open_pool(args)

    if pool.db.get_state("pool:state"):
        print(f"Pool already initialized in {args.datadir}")
        return

    if args.fund and args.network != "devnet":
        print("Error: --fund is only available on devnet")
        sys.exit(1)

    pool.token.mint(POOL_ADDRESS, pool.config.initial_pool_balance)
    pool.access.grant_role(Role.ADMIN.value, args.admin)
    print(f"Funded reward pool with {pool.config.initial_pool_balance // DECIMALS} tokens")
    print(f"Admin: {args.admin}")

    for address in args.fund:
        pool.token.mint(address, args.fund_amount * DECIMALS)
        print(f"Funded {address} with {args.fund_amount} tokens")

    pool.persist()
    print(f"Initialized {args.network} pool in {args.datadir}")

def cmd_run(args):
    pool = open_pool(args)
    if not pool.db.get_state("pool:state"):
        print(f"Error: no pool in {args.datadir}, run 'init' first")
        sys.exit(1)

    register_event_metrics(event_bus)
    logger.info(f"Starting {args.network} staking pool RPC on {args.host}:{args.port}")
    try:
        api.start_rpc_server(pool, network_name=args.network, host=args.host, port=args.port)
    except KeyboardInterrupt:
        pass

def main():
    parser = argparse.ArgumentParser(description="Staking Pool Node CLI")
    parser.add_argument("--datadir", default="./.stakepool", help="Data directory")
    parser.add_argument("--network", choices=list(NETWORKS), default=os.environ.get("STAKEPOOL_NETWORK", "devnet"), help="Network preset")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    init_parser = subparsers.add_parser("init", help="Initialize pool state")
    init_parser.add_argument("--admin", default=DEFAULT_ADMIN, help="Address granted the ADMIN role")
    init_parser.add_argument("--fund", action="append", default=[], help="Devnet address to fund (repeatable)")
    init_parser.add_argument("--fund-amount", type=int, default=10_000_000, help="Tokens per funded address")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the RPC node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
