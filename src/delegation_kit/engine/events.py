"""
Typed contract events.

Hosted contracts emit these into the execution context of the running call;
the host attaches the events of successful calls to the transaction receipt
and discards the events of reverted ones.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


class ContractEvent(BaseModel, BaseEvent):
    """Event emitted by a hosted contract at ``emitter``."""
    emitter: str

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_log(self) -> Dict[str, Any]:
        """Receipt log entry: ``{"address", "event", "args"}``."""
        args = self.model_dump(mode="json", exclude={"emitter"})
        return {"address": self.emitter, "event": self.name, "args": args}

    def __repr__(self) -> str:
        return f"{self.name}({self.model_dump(exclude={'emitter'})})"


# ==================== ERC-20 ====================

class Transfer(ContractEvent):
    """ERC-20 ``Transfer(address indexed from, address indexed to, uint256 value)``."""
    from_address: str
    to_address: str
    value: int


class Approval(ContractEvent):
    """ERC-20 ``Approval(address indexed owner, address indexed spender, uint256 value)``."""
    owner: str
    spender: str
    value: int


# ==================== EIP-3009 ====================

class AuthorizationUsed(ContractEvent):
    """``AuthorizationUsed(address indexed authorizer, bytes32 indexed nonce)``."""
    authorizer: str
    nonce: str

    def __repr__(self) -> str:
        return f"AuthorizationUsed(authorizer={self.authorizer}, nonce={self.nonce[:10]}...)"


class AuthorizationCanceled(ContractEvent):
    """``AuthorizationCanceled(address indexed authorizer, bytes32 indexed nonce)``."""
    authorizer: str
    nonce: str

    def __repr__(self) -> str:
        return f"AuthorizationCanceled(authorizer={self.authorizer}, nonce={self.nonce[:10]}...)"
