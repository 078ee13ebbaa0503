"""
Delegated Transaction Builder

Assembles, signs and serializes EIP-7702 set-code transactions::

    payload = 0x04 || rlp([chain_id, nonce, max_priority_fee_per_gas,
                           max_fee_per_gas, gas_limit, to, value, data,
                           access_list, authorization_list])
    raw     = 0x04 || rlp([..same ten fields.., y_parity, r, s])

Authorization entries are ``[chain_id, address, nonce, y_parity, r, s]``.
Every numeric field, including ``y_parity`` and a zero priority fee, is
encoded with the zero-as-empty rule. Building is pure: identical inputs
yield byte-identical output.
"""

import logging
from typing import List, Optional, Sequence, Union

from eth_utils import to_checksum_address
from pydantic import ValidationError

from ...engine.exceptions import EncodingError, SignatureRecoveryError
from .constants import SET_CODE_TX_TYPE
from .crypto import address_of, digest, recover_address, sign_digest
from .encoding import (
    RLPItem,
    address_to_rlp_bytes,
    bytes32_to_rlp_bytes,
    decode,
    encode,
    hex_to_bytes,
    int_to_rlp_bytes,
    rlp_bytes_to_address,
    rlp_bytes_to_int,
)
from .schemas import (
    AccessListEntry,
    DelegatedTransaction,
    EVMECDSASignature,
    SetCodeAuthorization,
    SignedDelegatedTransaction,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Field encoding
# ---------------------------------------------------------------------------

def _signature_fields(signature: EVMECDSASignature) -> List[bytes]:
    if signature.y_parity not in (0, 1):
        raise EncodingError(f"y_parity must be 0 or 1, got {signature.y_parity}")
    return [
        int_to_rlp_bytes(signature.y_parity, field="y_parity"),
        bytes32_to_rlp_bytes(signature.r, field="r"),
        bytes32_to_rlp_bytes(signature.s, field="s"),
    ]


def authorization_fields(authorization: SetCodeAuthorization) -> List[bytes]:
    """``[chain_id, address, nonce, y_parity, r, s]`` for one list entry."""
    if authorization.signature is None:
        raise EncodingError("Authorization list entries must be signed")
    return [
        int_to_rlp_bytes(authorization.chain_id, field="chain_id"),
        address_to_rlp_bytes(authorization.address, field="address"),
        int_to_rlp_bytes(authorization.nonce, field="nonce", max_bits=64),
    ] + _signature_fields(authorization.signature)


def _access_list_fields(access_list: Sequence[AccessListEntry]) -> List[RLPItem]:
    return [
        [
            address_to_rlp_bytes(entry.address),
            [hex_to_bytes(key, field="storage_key") for key in entry.storage_keys],
        ]
        for entry in access_list
    ]


def transaction_fields(tx: DelegatedTransaction) -> List[RLPItem]:
    """The ten unsigned fields, in wire order."""
    return [
        int_to_rlp_bytes(tx.chain_id, field="chain_id"),
        int_to_rlp_bytes(tx.nonce, field="nonce", max_bits=64),
        int_to_rlp_bytes(tx.max_priority_fee_per_gas, field="max_priority_fee_per_gas"),
        int_to_rlp_bytes(tx.max_fee_per_gas, field="max_fee_per_gas"),
        int_to_rlp_bytes(tx.gas_limit, field="gas_limit", max_bits=64),
        address_to_rlp_bytes(tx.to, field="to"),
        int_to_rlp_bytes(tx.value, field="value"),
        bytes(tx.data),
        _access_list_fields(tx.access_list),
        [authorization_fields(auth) for auth in tx.authorization_list],
    ]


def transaction_signing_payload(tx: DelegatedTransaction) -> bytes:
    return bytes([SET_CODE_TX_TYPE]) + encode(transaction_fields(tx))


def transaction_digest(tx: DelegatedTransaction) -> bytes:
    """Digest the sender signs."""
    return digest(transaction_signing_payload(tx))


def serialize_transaction(tx: DelegatedTransaction) -> bytes:
    """Wire bytes of a signed transaction."""
    if tx.signature is None:
        raise EncodingError("Transaction is not signed")
    return bytes([SET_CODE_TX_TYPE]) + encode(transaction_fields(tx) + _signature_fields(tx.signature))


# ---------------------------------------------------------------------------
# Build / sign
# ---------------------------------------------------------------------------

def sign_delegated_transaction(
    tx: DelegatedTransaction,
    private_key: Union[str, bytes],
) -> SignedDelegatedTransaction:
    """
    Sign ``tx`` with the key of the account that pays for it.

    Returns a new, signed transaction; ``tx`` is left untouched.

    Raises:
        EncodingError: If any field cannot be encoded canonically.
        SigningError:  If the key is malformed.
    """
    message_hash = transaction_digest(tx)
    signature = sign_digest(private_key, message_hash, signature_type="Transaction")
    signed = tx.model_copy(update={"signature": signature})
    raw = serialize_transaction(signed)
    sender = address_of(private_key)
    tx_hash = "0x" + digest(raw).hex()
    logger.debug(
        "Signed set-code transaction %s from %s (nonce %d, %d authorizations)",
        tx_hash, sender, tx.nonce, len(tx.authorization_list),
    )
    return SignedDelegatedTransaction(
        transaction=signed,
        raw_transaction=raw,
        tx_hash=tx_hash,
        sender=sender,
    )


def build_delegated_transaction(
    *,
    private_key: Union[str, bytes],
    chain_id: int,
    nonce: int,
    max_priority_fee_per_gas: int,
    max_fee_per_gas: int,
    gas_limit: int,
    to: str,
    value: int = 0,
    data: Union[bytes, str] = b"",
    access_list: Optional[Sequence[AccessListEntry]] = None,
    authorization_list: Optional[Sequence[SetCodeAuthorization]] = None,
) -> SignedDelegatedTransaction:
    """
    Build and sign a set-code transaction in one step.

    Args:
        private_key: Key of the paying account (sponsor, or the authorizer
            itself when self-sponsored).
        to: The authorizer's address when sponsored; the sender otherwise.

    Raises:
        EncodingError: On malformed fields (pydantic validation failures
            are re-raised as EncodingError).
        SigningError:  If the key is malformed.

    Example::

        signed = build_delegated_transaction(
            private_key=sponsor_key,
            chain_id=chain_id,
            nonce=sponsor_nonce,
            max_priority_fee_per_gas=0,
            max_fee_per_gas=2 * base_fee,
            gas_limit=1_500_000,
            to=authorizer,
            data=encode_batch_calls(calls),
            authorization_list=[authorization],
        )
    """
    try:
        tx = DelegatedTransaction(
            chain_id=chain_id,
            nonce=nonce,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            max_fee_per_gas=max_fee_per_gas,
            gas_limit=gas_limit,
            to=to,
            value=value,
            data=data,
            access_list=list(access_list or []),
            authorization_list=list(authorization_list or []),
        )
    except ValidationError as e:
        raise EncodingError(f"Invalid transaction fields: {e}") from e
    return sign_delegated_transaction(tx, private_key)


# ---------------------------------------------------------------------------
# Decode / recover
# ---------------------------------------------------------------------------

def _decode_signature(items: List[bytes], signature_type: str) -> EVMECDSASignature:
    y_parity, r, s = (rlp_bytes_to_int(item, field=name) for item, name in zip(items, ("y_parity", "r", "s")))
    if y_parity not in (0, 1):
        raise EncodingError(f"y_parity must be 0 or 1, got {y_parity}")
    if r.bit_length() > 256 or s.bit_length() > 256:
        raise EncodingError("signature component exceeds 32 bytes")
    return EVMECDSASignature(signature_type=signature_type, y_parity=y_parity, r=r, s=s)


def _decode_authorization(item: RLPItem) -> SetCodeAuthorization:
    if not isinstance(item, list) or len(item) != 6 or any(isinstance(x, list) for x in item):
        raise EncodingError("Authorization entry must be a list of 6 byte strings")
    nonce = rlp_bytes_to_int(item[2], field="nonce")
    if nonce.bit_length() > 64:
        raise EncodingError("Authorization nonce exceeds 64 bits")
    return SetCodeAuthorization(
        chain_id=rlp_bytes_to_int(item[0], field="chain_id"),
        address=rlp_bytes_to_address(item[1]),
        nonce=nonce,
        signature=_decode_signature(item[3:6], "SetCode"),
    )


def decode_delegated_transaction(raw: Union[bytes, str]) -> DelegatedTransaction:
    """
    Parse wire bytes back into a signed :class:`DelegatedTransaction`.

    Raises:
        EncodingError: If the bytes are not a well-formed set-code transaction.
    """
    raw = hex_to_bytes(raw, field="raw_transaction")
    if not raw or raw[0] != SET_CODE_TX_TYPE:
        raise EncodingError("Not a set-code (0x04) transaction")
    fields = decode(raw[1:])
    if not isinstance(fields, list) or len(fields) != 13:
        raise EncodingError("Set-code transaction must have 13 fields")

    scalars = [0, 1, 2, 3, 4, 6, 10, 11, 12]
    if any(isinstance(fields[i], list) for i in scalars + [5, 7]):
        raise EncodingError("Scalar transaction field encoded as a list")
    if not isinstance(fields[8], list) or not isinstance(fields[9], list):
        raise EncodingError("Access list and authorization list must be lists")

    try:
        return _build_decoded(fields)
    except ValidationError as e:
        raise EncodingError(f"Decoded transaction fields are out of range: {e}") from e


def _build_decoded(fields: List[RLPItem]) -> DelegatedTransaction:
    access_list = []
    for entry in fields[8]:
        if not isinstance(entry, list) or len(entry) != 2 or not isinstance(entry[1], list):
            raise EncodingError("Malformed access list entry")
        access_list.append(AccessListEntry(
            address=rlp_bytes_to_address(entry[0]),
            storage_keys=["0x" + key.hex() for key in entry[1]],
        ))

    return DelegatedTransaction(
        chain_id=rlp_bytes_to_int(fields[0], field="chain_id"),
        nonce=rlp_bytes_to_int(fields[1], field="nonce"),
        max_priority_fee_per_gas=rlp_bytes_to_int(fields[2], field="max_priority_fee_per_gas"),
        max_fee_per_gas=rlp_bytes_to_int(fields[3], field="max_fee_per_gas"),
        gas_limit=rlp_bytes_to_int(fields[4], field="gas_limit"),
        to=rlp_bytes_to_address(fields[5], field="to"),
        value=rlp_bytes_to_int(fields[6], field="value"),
        data=fields[7],
        access_list=access_list,
        authorization_list=[_decode_authorization(item) for item in fields[9]],
        signature=_decode_signature(fields[10:13], "Transaction"),
    )


def recover_transaction_sender(tx: DelegatedTransaction) -> str:
    """
    Recover the paying account from a signed transaction.

    Raises:
        SignatureRecoveryError: If the transaction is unsigned or unrecoverable.
    """
    if tx.signature is None:
        raise SignatureRecoveryError("Transaction is not signed")
    return to_checksum_address(recover_address(transaction_digest(tx), tx.signature))
