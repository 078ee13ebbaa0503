"""
EVM Off-Chain Signing Utilities

Local signing helpers for EIP-7702 set-code authorizations and EIP-3009
typed authorizations. All cryptographic operations are performed
in-process; no RPC calls are made.

Exported helpers
----------------
sign_set_code_authorization
    Sign ``0x05 || rlp([chain_id, address, nonce])`` and return a complete
    ``SetCodeAuthorization``. Optionally validates the nonce against the
    authorizer's live account nonce first.

resolve_authorization_nonce / check_authorization_nonce
    The nonce convention: the embedded nonce is the authorizer's nonce at
    the moment the authorization list is processed. The sender's nonce is
    bumped before that, so a self-sponsored authorization carries
    ``live_nonce + 1`` and a sponsored one carries ``live_nonce``.

sign_transfer_authorization / sign_receive_authorization / sign_cancel_authorization
    Build the EIP-712 payload for the token's domain (version ``"1"``),
    sign it with ``eth_account`` and return the populated model.
"""

import logging
import os
from typing import Optional, Union

from eth_account import Account

from ...engine.exceptions import AuthorizationNonceError, EncodingError, SignatureRecoveryError
from .constants import SET_CODE_AUTHORIZATION_MAGIC, MAX_AUTHORIZATION_NONCE
from .crypto import address_of, digest, recover_address, sign_digest
from .encoding import address_to_rlp_bytes, encode, int_to_rlp_bytes
from .schemas import (
    CancelAuthorizationRequest,
    EVMECDSASignature,
    SetCodeAuthorization,
    TransferAuthorization,
)
from .standards import (
    CancelAuthorizationMessage,
    EIP712Domain,
    ERC3009TypedData,
    TransferWithAuthorizationMessage,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# EIP-7702 authorizations
# ---------------------------------------------------------------------------


def resolve_authorization_nonce(*, live_nonce: int, authorizer: str, sender: str) -> int:
    """
    Return the nonce an authorization must embed.

    Args:
        live_nonce: Authorizer's current account nonce.
        authorizer: Account signing the authorization.
        sender:     Account that will sign and pay for the transaction.
    """
    if authorizer.lower() == sender.lower():
        return live_nonce + 1
    return live_nonce


def check_authorization_nonce(*, nonce: int, live_nonce: int, authorizer: str, sender: str) -> None:
    """
    Raises:
        AuthorizationNonceError: If ``nonce`` is not the nonce the authorizer
            will have when the authorization list is processed.
    """
    expected = resolve_authorization_nonce(live_nonce=live_nonce, authorizer=authorizer, sender=sender)
    if nonce != expected:
        relation = "self-sponsored" if expected != live_nonce else "sponsored"
        raise AuthorizationNonceError(
            f"Authorization nonce {nonce} does not match expected {expected} "
            f"({relation} transaction, live nonce {live_nonce})"
        )


def set_code_authorization_payload(*, chain_id: int, address: str, nonce: int) -> bytes:
    """``0x05 || rlp([chain_id, address, nonce])``."""
    return bytes([SET_CODE_AUTHORIZATION_MAGIC]) + encode([
        int_to_rlp_bytes(chain_id, field="chain_id"),
        address_to_rlp_bytes(address, field="address"),
        int_to_rlp_bytes(nonce, field="nonce", max_bits=64),
    ])


def set_code_authorization_digest(authorization: SetCodeAuthorization) -> bytes:
    return digest(set_code_authorization_payload(
        chain_id=authorization.chain_id,
        address=authorization.address,
        nonce=authorization.nonce,
    ))


def sign_set_code_authorization(
    *,
    private_key: Union[str, bytes],
    chain_id: int,
    delegate_address: str,
    nonce: int,
    live_nonce: Optional[int] = None,
    sender: Optional[str] = None,
) -> SetCodeAuthorization:
    """
    Sign an EIP-7702 authorization delegating the signer's account to
    ``delegate_address``.

    Args:
        private_key:      Authorizer's private key.
        chain_id:         Chain id (0 authorizes every chain).
        delegate_address: Contract whose code the account will execute.
        nonce:            Nonce to embed.
        live_nonce:       Authorizer's current account nonce. When given the
                          embedded nonce is checked before signing.
        sender:           Transaction sender, needed with ``live_nonce``;
                          defaults to the authorizer (self-sponsored).

    Raises:
        EncodingError:          Malformed chain id, address or nonce.
        AuthorizationNonceError: ``nonce`` disagrees with ``live_nonce``.
        SigningError:           Malformed private key.

    Example::

        auth = sign_set_code_authorization(
            private_key=key,
            chain_id=11155111,
            delegate_address=batch_delegate,
            nonce=live_nonce + 1,
            live_nonce=live_nonce,
        )
    """
    if nonce > MAX_AUTHORIZATION_NONCE:
        raise EncodingError(f"nonce exceeds 64 bits: {nonce}")
    payload = set_code_authorization_payload(chain_id=chain_id, address=delegate_address, nonce=nonce)

    authorizer = address_of(private_key)
    if live_nonce is not None:
        check_authorization_nonce(
            nonce=nonce,
            live_nonce=live_nonce,
            authorizer=authorizer,
            sender=sender or authorizer,
        )

    signature = sign_digest(private_key, digest(payload), signature_type="SetCode")
    logger.debug("Signed set-code authorization for %s -> %s (nonce %d)", authorizer, delegate_address, nonce)
    return SetCodeAuthorization(
        chain_id=chain_id,
        address=delegate_address,
        nonce=nonce,
        signature=signature,
    )


def recover_authorization_signer(authorization: SetCodeAuthorization) -> str:
    """
    Raises:
        SignatureRecoveryError: If the authorization is unsigned or unrecoverable.
    """
    if authorization.signature is None:
        raise SignatureRecoveryError("Authorization is not signed")
    return recover_address(set_code_authorization_digest(authorization), authorization.signature)


# ---------------------------------------------------------------------------
# EIP-3009 typed-data builders
# ---------------------------------------------------------------------------

def build_transfer_typed_data(authorization: TransferAuthorization) -> ERC3009TypedData:
    """
    Wrap a ``TransferAuthorization`` in an EIP-712 envelope without signing.

    Use this when signing is handled externally (e.g. a hardware wallet).
    """
    domain = EIP712Domain(
        name=authorization.domain_name,
        chainId=authorization.chain_id,
        verifyingContract=authorization.token,
    )
    message = TransferWithAuthorizationMessage(
        authorizer=authorization.authorizer,
        recipient=authorization.recipient,
        value=authorization.value,
        validAfter=authorization.validAfter,
        validBefore=authorization.validBefore,
        nonce=authorization.nonce,
    )
    return ERC3009TypedData(domain=domain, message=message, primary_type=authorization.authorization_type)


def build_cancel_typed_data(request: CancelAuthorizationRequest) -> ERC3009TypedData:
    domain = EIP712Domain(
        name=request.domain_name,
        chainId=request.chain_id,
        verifyingContract=request.token,
    )
    message = CancelAuthorizationMessage(authorizer=request.authorizer, nonce=request.nonce)
    return ERC3009TypedData(domain=domain, message=message, primary_type="CancelAuthorization")


def _sign_typed(private_key, typed_data: ERC3009TypedData, signature_type: str) -> EVMECDSASignature:
    signed = Account.sign_typed_data(private_key, full_message=typed_data.to_dict())
    return EVMECDSASignature.from_vrs(v=signed.v, r=signed.r, s=signed.s, signature_type=signature_type)


def random_authorization_nonce() -> str:
    return "0x" + os.urandom(32).hex()


def _sign_authorization(
    *,
    authorization_type: str,
    private_key: str,
    token: str,
    domain_name: str,
    chain_id: int,
    recipient: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: Optional[str],
) -> TransferAuthorization:
    if valid_after >= valid_before:
        raise ValueError(
            f"valid_after ({valid_after}) must be strictly less than "
            f"valid_before ({valid_before})"
        )

    authorization = TransferAuthorization(
        authorization_type=authorization_type,
        token=token,
        domain_name=domain_name,
        chain_id=chain_id,
        authorizer=address_of(private_key),
        recipient=recipient,
        value=value,
        validAfter=valid_after,
        validBefore=valid_before,
        nonce=nonce if nonce is not None else random_authorization_nonce(),
    )
    authorization.signature = _sign_typed(private_key, build_transfer_typed_data(authorization), "ERC3009")
    return authorization


def sign_transfer_authorization(
    *,
    private_key: str,
    token: str,
    domain_name: str,
    chain_id: int,
    recipient: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: Optional[str] = None,
) -> TransferAuthorization:
    """
    Sign an EIP-3009 ``transferWithAuthorization`` payload.

    The authorizer is the address derived from ``private_key``. A random
    32-byte nonce is generated when omitted.

    Raises:
        ValueError: If ``valid_after >= valid_before``.

    Example::

        now = int(time.time())
        auth = sign_transfer_authorization(
            private_key=key,
            token=token_address,
            domain_name="AuthDelegationToken",
            chain_id=11155111,
            recipient=recipient,
            value=25 * 10**18,
            valid_after=now - 60,
            valid_before=now + 3600,
        )
    """
    return _sign_authorization(
        authorization_type="TransferWithAuthorization",
        private_key=private_key, token=token, domain_name=domain_name, chain_id=chain_id,
        recipient=recipient, value=value, valid_after=valid_after, valid_before=valid_before, nonce=nonce,
    )


def sign_receive_authorization(
    *,
    private_key: str,
    token: str,
    domain_name: str,
    chain_id: int,
    recipient: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: Optional[str] = None,
) -> TransferAuthorization:
    """Same as :func:`sign_transfer_authorization`, but only ``recipient`` may submit it."""
    return _sign_authorization(
        authorization_type="ReceiveWithAuthorization",
        private_key=private_key, token=token, domain_name=domain_name, chain_id=chain_id,
        recipient=recipient, value=value, valid_after=valid_after, valid_before=valid_before, nonce=nonce,
    )


def sign_cancel_authorization(
    *,
    private_key: str,
    token: str,
    domain_name: str,
    chain_id: int,
    nonce: str,
) -> CancelAuthorizationRequest:
    """Sign an EIP-3009 ``cancelAuthorization`` payload for one of the signer's nonces."""
    request = CancelAuthorizationRequest(
        token=token,
        domain_name=domain_name,
        chain_id=chain_id,
        authorizer=address_of(private_key),
        nonce=nonce,
    )
    request.signature = _sign_typed(private_key, build_cancel_typed_data(request), "CancelAuthorization")
    return request
