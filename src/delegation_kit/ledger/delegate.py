"""
Batch call delegate.

Contract an EOA delegates to with an EIP-7702 authorization. When a
transaction targets the delegated EOA, ``execute`` runs with ``this`` set
to the EOA, so every sub-call is made with the EOA as ``msg.sender``.

Sub-calls run in order. The first revert aborts the batch and, because the
whole call runs inside one store transaction, undoes the earlier sub-calls.
"""

import logging
from typing import Sequence, Tuple, Union

from eth_utils import to_checksum_address

from ..adapters.evm.batch import EXECUTE_SIGNATURE
from ..adapters.evm.schemas import Call
from ..engine.exceptions import ExecutionRevertedError
from .contract import ExecutionContext, HostedContract

logger = logging.getLogger(__name__)

CallLike = Union[Call, Tuple[bytes, str, int]]


class BatchCallDelegation(HostedContract):
    """Stateless delegate exposing ``execute((bytes,address,uint256)[])``."""

    FUNCTIONS = {EXECUTE_SIGNATURE: "execute"}

    def execute(self, ctx: ExecutionContext, calls: Sequence[CallLike]) -> None:
        if ctx.host is None:
            raise ExecutionRevertedError("batch execution requires a host")

        for index, call in enumerate(calls):
            if isinstance(call, Call):
                data, to, value = call.data, call.to, call.value
            else:
                data, to, value = call
            try:
                ctx.host.message_call(
                    sender=ctx.this,
                    to=to_checksum_address(to),
                    value=value,
                    data=bytes(data),
                    origin=ctx.origin,
                    events=ctx.events,
                )
            except ExecutionRevertedError as e:
                logger.warning("Batch call %d from %s reverted: %s", index, ctx.this, e.reason)
                raise ExecutionRevertedError(f"call {index} reverted: {e.reason}") from e
