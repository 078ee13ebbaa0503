"""
RLP Codec

Thin layer over ``rlp`` (pyrlp) that turns Python values into the canonical
byte strings a set-code transaction is built from, and back.

Every numeric field is encoded as its minimal big-endian byte string with
zero mapped to the empty string (never ``b"\\x00"``); addresses are exactly
20 bytes. Malformed values raise :class:`EncodingError` here, before any
digest is computed or any key is touched.

Example::

    fields = [int_to_rlp_bytes(1), address_to_rlp_bytes(delegate), int_to_rlp_bytes(0)]
    payload = bytes([SET_CODE_AUTHORIZATION_MAGIC]) + encode(fields)
"""

from typing import Any, List, Union

import rlp
from rlp.exceptions import DecodingError as RLPDecodingError, EncodingError as RLPEncodingError
from eth_utils import is_hex, to_checksum_address

from ...engine.exceptions import EncodingError

RLPItem = Union[bytes, List["RLPItem"]]


def int_to_rlp_bytes(value: int, *, field: str = "value", max_bits: int = 256) -> bytes:
    """
    Encode a non-negative integer as minimal big-endian bytes.

    Zero becomes ``b""``. ``max_bits`` bounds the value (256 for uint256
    fields, 64 for account nonces).

    Raises:
        EncodingError: If ``value`` is not an int, is negative or too large.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{field} must be an int, got {type(value).__name__}")
    if value < 0:
        raise EncodingError(f"{field} must be non-negative, got {value}")
    if value.bit_length() > max_bits:
        raise EncodingError(f"{field} exceeds {max_bits} bits")
    if value == 0:
        return b""
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def rlp_bytes_to_int(data: bytes, *, field: str = "value") -> int:
    """
    Decode a minimal big-endian integer.

    Raises:
        EncodingError: On a leading zero byte (non-canonical encoding).
    """
    if data[:1] == b"\x00":
        raise EncodingError(f"{field} has a non-canonical leading zero byte")
    return int.from_bytes(data, "big")


def hex_to_bytes(value: Union[str, bytes], *, field: str = "data") -> bytes:
    """Accept raw bytes or a ``0x``-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        if len(text) % 2 or (text and not is_hex(text)):
            raise EncodingError(f"{field} is not valid hex: {value!r}")
        return bytes.fromhex(text)
    raise EncodingError(f"{field} must be bytes or hex string, got {type(value).__name__}")


def address_to_rlp_bytes(address: Union[str, bytes], *, field: str = "address") -> bytes:
    """
    Encode an address as exactly 20 bytes.

    Raises:
        EncodingError: If the address is not 20 bytes long.
    """
    raw = hex_to_bytes(address, field=field)
    if len(raw) != 20:
        raise EncodingError(f"{field} must be 20 bytes, got {len(raw)}")
    return raw


def bytes32_to_rlp_bytes(value: Union[str, bytes, int], *, field: str = "value") -> bytes:
    """Encode a 32-byte word as a minimal integer (signature ``r``/``s``)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return int_to_rlp_bytes(value, field=field)
    raw = hex_to_bytes(value, field=field)
    if len(raw) > 32:
        raise EncodingError(f"{field} exceeds 32 bytes")
    return int_to_rlp_bytes(int.from_bytes(raw, "big"), field=field)


def rlp_bytes_to_address(data: bytes, *, field: str = "address") -> str:
    if len(data) != 20:
        raise EncodingError(f"{field} must be 20 bytes, got {len(data)}")
    return to_checksum_address(data)


def _check_item(item: Any) -> None:
    if isinstance(item, (bytes, bytearray)):
        return
    if isinstance(item, (list, tuple)):
        for child in item:
            _check_item(child)
        return
    raise EncodingError(
        f"RLP items must be bytes or sequences, got {type(item).__name__}; "
        f"normalize numbers and addresses first"
    )


def encode(item: RLPItem) -> bytes:
    """
    RLP-encode a byte string or a nested sequence of byte strings.

    Numbers must already be normalized through :func:`int_to_rlp_bytes` so
    the zero-as-empty rule cannot be bypassed.

    Raises:
        EncodingError: If ``item`` contains anything other than bytes/sequences.
    """
    _check_item(item)
    try:
        return rlp.encode(item)
    except RLPEncodingError as e:
        raise EncodingError(f"RLP encoding failed: {e}") from e


def _normalize(item: Any) -> RLPItem:
    if isinstance(item, (list, tuple)):
        return [_normalize(child) for child in item]
    return bytes(item)


def decode(data: bytes) -> RLPItem:
    """
    Decode canonical RLP into bytes and nested lists.

    Raises:
        EncodingError: If the input is not canonical RLP.
    """
    try:
        return _normalize(rlp.decode(bytes(data), strict=True))
    except RLPDecodingError as e:
        raise EncodingError(f"RLP decoding failed: {e}") from e
