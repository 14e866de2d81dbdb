# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum

class OperationType(str, Enum):
    STAKE = "STAKE"
    CLAIM = "CLAIM"
    UNSTAKE = "UNSTAKE"
    UPDATE_POOL = "UPDATE_POOL"

    # Administrative
    PAUSE = "PAUSE"
    UNPAUSE = "UNPAUSE"
    WITHDRAW_FEES = "WITHDRAW_FEES"
    EMERGENCY_WITHDRAW = "EMERGENCY_WITHDRAW"

class Role(str, Enum):
    ADMIN = "ADMIN"

class ProtocolError(Exception):
    pass

class ValidationError(ProtocolError):
    """Bad input. Raised before any mutation; the caller may retry with corrected input."""
    pass

class StateError(ProtocolError):
    """Operation not allowed in the current pool or position state."""
    pass

class AuthorizationError(ProtocolError):
    pass

class TransferError(ProtocolError):
    """The staked-asset collaborator refused a transfer."""
    pass

class PositionNotFound(ProtocolError, KeyError):
    def __str__(self):
        return Exception.__str__(self)
