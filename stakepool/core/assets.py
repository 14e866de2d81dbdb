# MIT License
# Copyright (c) 2025 Hashborn

"""
In-memory collaborators of the staking pool.

TokenLedger  - fungible staked asset (balances, allowances)
ReceiptRegistry - one receipt per position; the owner is the only party
                  allowed to claim or unstake it
AccessControl - role gate for administrative operations

Their state lives in pydantic models so a node can persist it next to the
pool state.
"""

import logging
from typing import Dict, List

from pydantic import BaseModel

from protocol.types.common import AuthorizationError, PositionNotFound, TransferError, ValidationError

logger = logging.getLogger(__name__)


class TokenState(BaseModel):
    balances: Dict[str, int] = {}
    allowances: Dict[str, Dict[str, int]] = {}  # owner -> spender -> amount
    total_supply: int = 0


class TokenLedger:
    def __init__(self, state: TokenState = None):
        self.state = state or TokenState()

    def balance_of(self, address: str) -> int:
        return self.state.balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowances.get(owner, {}).get(spender, 0)

    def approve(self, owner: str, spender: str, amount: int):
        if amount < 0:
            raise ValidationError("Allowance must not be negative")
        self.state.allowances.setdefault(owner, {})[spender] = amount

    def mint(self, to: str, amount: int):
        if amount < 0:
            raise ValidationError("Mint amount must not be negative")
        self.state.balances[to] = self.balance_of(to) + amount
        self.state.total_supply += amount

    def transfer(self, sender: str, to: str, amount: int):
        """All-or-nothing transfer. Raises TransferError without touching balances."""
        if amount < 0:
            raise TransferError("Transfer amount must not be negative")
        balance = self.balance_of(sender)
        if balance < amount:
            raise TransferError(f"Insufficient balance: {balance} < {amount}")

        self.state.balances[sender] = balance - amount
        self.state.balances[to] = self.balance_of(to) + amount

    def transfer_from(self, spender: str, owner: str, to: str, amount: int):
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise TransferError(f"Insufficient allowance: {allowed} < {amount}")

        self.transfer(owner, to, amount)
        self.state.allowances[owner][spender] = allowed - amount


class ReceiptState(BaseModel):
    owners: Dict[int, str] = {}
    next_id: int = 1


class ReceiptRegistry:
    """Receipt ids are sequential from 1 and double as position ids."""

    def __init__(self, state: ReceiptState = None):
        self.state = state or ReceiptState()

    def mint(self, owner: str) -> int:
        receipt_id = self.state.next_id
        self.state.owners[receipt_id] = owner
        self.state.next_id += 1
        return receipt_id

    def owner_of(self, receipt_id: int) -> str:
        try:
            return self.state.owners[receipt_id]
        except KeyError:
            raise PositionNotFound(f"Receipt {receipt_id} does not exist")

    def last_id(self) -> int:
        return self.state.next_id - 1

    def tokens_of(self, owner: str) -> List[int]:
        return sorted(rid for rid, o in self.state.owners.items() if o == owner)


class AccessState(BaseModel):
    roles: Dict[str, List[str]] = {}  # role -> accounts


class AccessControl:
    def __init__(self, state: AccessState = None):
        self.state = state or AccessState()

    def has_role(self, role: str, account: str) -> bool:
        return account in self.state.roles.get(role, [])

    def grant_role(self, role: str, account: str):
        members = self.state.roles.setdefault(role, [])
        if account not in members:
            members.append(account)
            logger.info(f"Granted {role} to {account}")

    def require(self, role: str, account: str):
        if not self.has_role(role, account):
            raise AuthorizationError(f"{account} is missing role {role}")
