from .store import StateStore
from .contract import ExecutionContext, HostedContract
from .token import AuthorizationToken, authorization_record_key
from .delegate import BatchCallDelegation
from .devnet import DevnetReceipt, LocalDevnet

__all__ = [
    "StateStore",
    "ExecutionContext",
    "HostedContract",
    "AuthorizationToken",
    "authorization_record_key",
    "BatchCallDelegation",
    "DevnetReceipt",
    "LocalDevnet",
]
