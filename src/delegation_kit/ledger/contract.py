"""
Hosted contract base and execution context.

A hosted contract is a Python object living at an address of the
in-process chain. Calldata is routed to its methods by ABI selector:
``FUNCTIONS`` maps a canonical signature to a method name, and methods
listed in ``VIEWS`` are called without the execution context.

Example::

    class Counter(HostedContract):
        FUNCTIONS = {"increment()": "increment", "count()": "count"}
        VIEWS = frozenset({"count"})
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional, Tuple

from ..adapters.evm.batch import decode_function_args, function_selector
from ..engine.events import ContractEvent
from ..engine.exceptions import EncodingError, ExecutionRevertedError
from .store import StateStore

if TYPE_CHECKING:
    from .devnet import LocalDevnet


@dataclass
class ExecutionContext:
    """
    Per-call environment, passed explicitly to every state-changing method.

    Attributes:
        sender: ``msg.sender`` of the current call.
        this: Address whose code is executing. For a delegated account this
            is the authorizer, not the delegate contract.
        timestamp: Block timestamp.
        chain_id: Chain id of the host.
        value: Native value sent with the call.
        origin: Transaction sender (``tx.origin``).
        host: Chain the call runs on; needed for nested calls.
        events: Events emitted by this call, merged into the parent on success.
    """
    sender: str
    this: str
    timestamp: int
    chain_id: int
    value: int = 0
    origin: Optional[str] = None
    host: Optional["LocalDevnet"] = None
    events: List[ContractEvent] = field(default_factory=list)

    def emit(self, event: ContractEvent) -> None:
        self.events.append(event)


class HostedContract:
    """Base class for contracts run by the in-process chain."""

    FUNCTIONS: Dict[str, str] = {}
    VIEWS: FrozenSet[str] = frozenset()

    def __init__(self, *, store: StateStore, address: str, chain_id: int):
        self.store = store
        self.address = address
        self.chain_id = chain_id

    def slot(self, name: str) -> str:
        """Storage namespace of this contract."""
        return f"{self.address}.{name}"

    @classmethod
    def selectors(cls) -> Dict[bytes, Tuple[str, str]]:
        return {function_selector(sig): (sig, method) for sig, method in cls.FUNCTIONS.items()}

    def dispatch(self, ctx: ExecutionContext, data: bytes) -> Any:
        """
        Route ``data`` to the matching method.

        Raises:
            ExecutionRevertedError: Unknown selector or undecodable arguments.
        """
        if len(data) < 4:
            raise ExecutionRevertedError("missing function selector")
        entry = self.selectors().get(bytes(data[:4]))
        if entry is None:
            raise ExecutionRevertedError(f"unknown function selector 0x{bytes(data[:4]).hex()}")
        signature, method_name = entry
        try:
            args = decode_function_args(signature, bytes(data))
        except EncodingError as e:
            raise ExecutionRevertedError(f"malformed calldata for {signature}") from e

        method = getattr(self, method_name)
        if method_name in self.VIEWS:
            return method(*args)
        return method(ctx, *args)
