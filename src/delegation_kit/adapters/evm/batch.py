"""
Batch Call Encoder

ABI-encodes an ordered list of :class:`Call` triples into calldata for the
delegate contract's ``execute((bytes,address,uint256)[])`` entry point,
plus the small ABI helpers the rest of the package shares (selectors,
argument type parsing, single-function calldata).

Order is preserved: the delegate executes ``calls[0]`` first.

Example::

    calls = [
        Call(to=token, data=encode_erc20_transfer(recipient, 10**18)),
        Call(to=token, data=encode_erc20_transfer(other, 10**18)),
    ]
    data = encode_batch_calls(calls)
"""

from typing import Any, List, Sequence, Tuple

from eth_abi import encode as abi_encode, decode as abi_decode
from eth_abi.exceptions import DecodingError as ABIDecodingError, EncodingError as ABIEncodingError
from eth_utils import keccak, to_checksum_address

from ...engine.exceptions import EncodingError
from .schemas import Call, TransferAuthorization

EXECUTE_SIGNATURE = "execute((bytes,address,uint256)[])"
CALL_TUPLE_TYPE = "(bytes,address,uint256)[]"


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 of the canonical function signature."""
    return keccak(text=signature)[:4]


EXECUTE_SELECTOR = function_selector(EXECUTE_SIGNATURE)


def signature_types(signature: str) -> List[str]:
    """
    Split the argument list of a canonical signature into ABI type strings.

    ``"execute((bytes,address,uint256)[])"`` -> ``["(bytes,address,uint256)[]"]``
    """
    open_idx = signature.find("(")
    if open_idx < 0 or not signature.endswith(")"):
        raise EncodingError(f"Malformed function signature: {signature!r}")
    inner = signature[open_idx + 1:-1]
    types, depth, current = [], 0, ""
    for ch in inner:
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        current += ch
    if current:
        types.append(current)
    return types


def encode_function_call(signature: str, args: Sequence[Any]) -> bytes:
    """
    Build calldata: selector followed by the ABI-encoded arguments.

    Raises:
        EncodingError: If the arguments do not match the signature's types.
    """
    try:
        return function_selector(signature) + abi_encode(signature_types(signature), list(args))
    except (ABIEncodingError, TypeError, ValueError) as e:
        raise EncodingError(f"Cannot encode arguments for {signature}: {e}") from e


def decode_function_args(signature: str, data: bytes) -> Tuple[Any, ...]:
    """Decode calldata produced by :func:`encode_function_call` (selector checked)."""
    if data[:4] != function_selector(signature):
        raise EncodingError(f"Calldata selector does not match {signature}")
    try:
        return tuple(abi_decode(signature_types(signature), data[4:]))
    except (ABIDecodingError, ValueError) as e:
        raise EncodingError(f"Cannot decode arguments for {signature}: {e}") from e


def encode_batch_calls(calls: Sequence[Call], selector: bytes = EXECUTE_SELECTOR) -> bytes:
    """
    Encode ``calls`` for the delegate's batch entry point.

    Raises:
        EncodingError: If a call cannot be ABI-encoded.
    """
    items = [(call.data, call.to, call.value) for call in calls]
    try:
        return selector + abi_encode([CALL_TUPLE_TYPE], [items])
    except (ABIEncodingError, TypeError, ValueError) as e:
        raise EncodingError(f"Cannot encode batch: {e}") from e


def decode_batch_calls(calldata: bytes, selector: bytes = EXECUTE_SELECTOR) -> List[Call]:
    """Inverse of :func:`encode_batch_calls`."""
    if calldata[:4] != selector:
        raise EncodingError("Calldata does not start with the batch selector")
    try:
        (items,) = abi_decode([CALL_TUPLE_TYPE], calldata[4:])
    except (ABIDecodingError, ValueError) as e:
        raise EncodingError(f"Cannot decode batch: {e}") from e
    return [Call(data=data, to=to_checksum_address(to), value=value) for data, to, value in items]


# ---------------------------------------------------------------------------
# Common sub-call builders
# ---------------------------------------------------------------------------

TRANSFER_SIGNATURE = "transfer(address,uint256)"
TRANSFER_WITH_AUTHORIZATION_SIGNATURE = (
    "transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,uint8,bytes32,bytes32)"
)
RECEIVE_WITH_AUTHORIZATION_SIGNATURE = (
    "receiveWithAuthorization(address,address,uint256,uint256,uint256,bytes32,uint8,bytes32,bytes32)"
)
CANCEL_AUTHORIZATION_SIGNATURE = "cancelAuthorization(address,bytes32,uint8,bytes32,bytes32)"


def encode_erc20_transfer(recipient: str, amount: int) -> bytes:
    return encode_function_call(TRANSFER_SIGNATURE, [to_checksum_address(recipient), amount])


def encode_authorization_consumption(authorization: TransferAuthorization) -> bytes:
    """Calldata consuming a signed transfer/receive authorization on its token."""
    if authorization.signature is None:
        raise EncodingError("Authorization is not signed")
    signature = (
        RECEIVE_WITH_AUTHORIZATION_SIGNATURE
        if authorization.authorization_type == "ReceiveWithAuthorization"
        else TRANSFER_WITH_AUTHORIZATION_SIGNATURE
    )
    sig = authorization.signature
    return encode_function_call(signature, [
        authorization.authorizer,
        authorization.recipient,
        authorization.value,
        authorization.validAfter,
        authorization.validBefore,
        bytes.fromhex(authorization.nonce[2:]),
        sig.v,
        sig.r_int.to_bytes(32, "big"),
        sig.s_int.to_bytes(32, "big"),
    ])
