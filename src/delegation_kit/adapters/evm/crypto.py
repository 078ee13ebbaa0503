"""
Digest & Signature Engine

keccak-256 digests and secp256k1 signing/recovery over raw 32-byte
digests. Signing goes through ``eth_account`` (deterministic RFC 6979
nonces, low-s output); recovery goes through ``eth_keys``.

Recovery is exposed two ways:

recover_address
    Returns the signer or raises :class:`SignatureRecoveryError`.

is_valid_signer
    Boolean capability check used at every entry point that must decide
    whether a signature authorizes an action. A malformed signature is
    reported as ``False`` rather than escaping as an exception.
"""

import logging
from typing import Union

from eth_account import Account
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from eth_utils import keccak

from ...engine.exceptions import SigningError, SignatureRecoveryError
from .constants import SECP256K1_N, SECP256K1_HALF_N
from .schemas import EVMECDSASignature

logger = logging.getLogger(__name__)


def digest(payload: bytes) -> bytes:
    """Return the 32-byte keccak-256 digest of ``payload``."""
    return keccak(payload)


def address_of(private_key: Union[str, bytes]) -> str:
    """
    Derive the checksum address controlled by ``private_key``.

    Raises:
        SigningError: If the key is malformed or out of range.
    """
    try:
        return Account.from_key(private_key).address
    except (ValueError, TypeError, KeyValidationError) as e:
        raise SigningError(f"Invalid private key: {e}") from e


def sign_digest(
    private_key: Union[str, bytes],
    message_hash: bytes,
    *,
    signature_type: str = "Transaction",
) -> EVMECDSASignature:
    """
    Sign a 32-byte digest.

    The same key and digest always yield the same signature.

    Raises:
        SigningError: If the key is malformed or the digest is not 32 bytes.
    """
    if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != 32:
        raise SigningError("message_hash must be exactly 32 bytes")
    try:
        account = Account.from_key(private_key)
    except (ValueError, TypeError, KeyValidationError) as e:
        raise SigningError(f"Invalid private key: {e}") from e

    signed = account.unsafe_sign_hash(bytes(message_hash))
    return EVMECDSASignature.from_vrs(
        v=signed.v, r=signed.r, s=signed.s, signature_type=signature_type
    )


def recover_address(message_hash: bytes, signature: EVMECDSASignature) -> str:
    """
    Recover the checksum address that produced ``signature`` over ``message_hash``.

    High-s signatures are rejected so every (digest, signer) pair has one
    accepted signature.

    Raises:
        SignatureRecoveryError: If no signer can be recovered.
    """
    y_parity, r, s = signature.y_parity, signature.r_int, signature.s_int
    if y_parity not in (0, 1):
        raise SignatureRecoveryError(f"y_parity must be 0 or 1, got {y_parity}")
    if not 0 < r < SECP256K1_N:
        raise SignatureRecoveryError("r is out of range")
    if not 0 < s <= SECP256K1_HALF_N:
        raise SignatureRecoveryError("s is zero or in the upper half of the curve order")
    if len(message_hash) != 32:
        raise SignatureRecoveryError("message_hash must be exactly 32 bytes")

    try:
        public_key = keys.Signature(vrs=(y_parity, r, s)).recover_public_key_from_msg_hash(
            bytes(message_hash)
        )
    except (BadSignature, KeyValidationError, ValueError) as e:
        raise SignatureRecoveryError(f"Signature recovery failed: {e}") from e
    return public_key.to_checksum_address()


def is_valid_signer(message_hash: bytes, signature: EVMECDSASignature, expected_signer: str) -> bool:
    """Return True when ``signature`` over ``message_hash`` recovers to ``expected_signer``."""
    try:
        recovered = recover_address(message_hash, signature)
    except SignatureRecoveryError as e:
        logger.debug("Rejecting unrecoverable signature: %s", e)
        return False
    return recovered.lower() == expected_signer.lower()
