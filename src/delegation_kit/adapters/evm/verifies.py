"""
EVM Signature Verification Helpers

Off-chain pre-flight checks run before anything is submitted on-chain.
Verifiers never raise for a failed check: each returns an
``EVMVerificationResult`` whose ``status`` names the first check that
failed, so callers can log it and skip submission.

Optional on-chain state (current record state, balance, live account
nonce) may be supplied by the caller to enable richer checks alongside the
cryptographic verification.

Current coverage
----------------
verify_transfer_authorization
    EIP-3009 transfer/receive authorization: time window, balance, record
    state, then ECDSA recovery through ``eth_account`` typed-data hashing.
verify_cancel_authorization
    EIP-3009 cancel request: record state, then ECDSA recovery.
verify_set_code_authorization
    EIP-7702 authorization: chain id, nonce convention, then recovery.
"""

import time
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError

from ...engine.exceptions import SignatureRecoveryError
from ...schemas.bases import VerificationStatus
from .constants import SECP256K1_HALF_N
from .schemas import (
    AuthorizationState,
    CancelAuthorizationRequest,
    EVMECDSASignature,
    EVMVerificationResult,
    SetCodeAuthorization,
    TransferAuthorization,
)
from .signatures import (
    build_cancel_typed_data,
    build_transfer_typed_data,
    recover_authorization_signer,
    resolve_authorization_nonce,
)
from .standards import ERC3009TypedData

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _verify_eip712_signature(
    typed_data: ERC3009TypedData,
    *,
    signature: Optional[EVMECDSASignature],
    authorizer: str,
) -> bool:
    """
    Recover the signer of ``typed_data`` and compare it with ``authorizer``.

    Returns ``False`` for missing, high-s or unrecoverable signatures.
    """
    if signature is None or signature.s_int > SECP256K1_HALF_N:
        return False
    signable = encode_typed_data(full_message=typed_data.to_dict())
    try:
        recovered = Account.recover_message(
            signable, vrs=(signature.v, signature.r_int, signature.s_int)
        )
    except (BadSignature, KeyValidationError, ValueError):
        return False
    return recovered.lower() == authorizer.lower()


def _record_state_failure(state: Optional[int]) -> Optional[str]:
    if state is None or int(state) == AuthorizationState.UNUSED:
        return None
    return AuthorizationState(int(state)).name.lower()


# ---------------------------------------------------------------------------
# EIP-3009
# ---------------------------------------------------------------------------

def verify_transfer_authorization(
    authorization: TransferAuthorization,
    *,
    current_time: Optional[int] = None,
    authorizer_balance: Optional[int] = None,
    authorization_state: Optional[int] = None,
) -> EVMVerificationResult:
    """
    Verify a signed transfer/receive authorization before submitting it.

    Performs the following checks in order, returning on the first failure:

    1. **Time window** -- ``valid_after < current_time < valid_before``.
    2. **Balance** -- when ``authorizer_balance`` is supplied, it must be
       ``>= value``.
    3. **Record state** -- when ``authorization_state`` is supplied, it must
       be Unused; Used or Canceled means a replay.
    4. **ECDSA recovery** -- the typed-data signature must recover to
       ``authorizer``.

    Args:
        authorization:       Signed :class:`TransferAuthorization`.
        current_time:        Unix timestamp for the window check; defaults to now.
        authorizer_balance:  Optional token balance of the authorizer.
        authorization_state: Optional ``authorizationState(authorizer, nonce)``.

    Example::

        result = verify_transfer_authorization(auth, authorizer_balance=balance)
        if not result.is_success():
            print(result.get_error_message())
    """
    now = int(current_time) if current_time is not None else int(time.time())

    blockchain_state: Dict[str, Any] = {}
    if authorizer_balance is not None:
        blockchain_state["authorizer_balance"] = authorizer_balance
    if authorization_state is not None:
        blockchain_state["authorization_state"] = int(authorization_state)

    def _fail(
        status: VerificationStatus,
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> EVMVerificationResult:
        return EVMVerificationResult(
            status=status,
            is_valid=False,
            message=message,
            error_details=error_details,
            sender=authorization.authorizer,
            receiver=authorization.recipient,
            authorized_amount=authorization.value,
            blockchain_state=blockchain_state or None,
        )

    # ------------------------------------------------------------------
    # 1. Time window
    # ------------------------------------------------------------------
    if now <= authorization.validAfter:
        return _fail(
            VerificationStatus.NOT_YET_VALID,
            f"Authorization not yet valid: current_time={now} <= valid_after={authorization.validAfter}.",
            {"current_time": now, "valid_after": authorization.validAfter},
        )

    if now >= authorization.validBefore:
        return _fail(
            VerificationStatus.EXPIRED,
            f"Authorization expired: current_time={now} >= valid_before={authorization.validBefore}.",
            {"current_time": now, "valid_before": authorization.validBefore},
        )

    # ------------------------------------------------------------------
    # 2. Balance
    # ------------------------------------------------------------------
    if authorizer_balance is not None and authorizer_balance < authorization.value:
        return _fail(
            VerificationStatus.INSUFFICIENT_BALANCE,
            f"Insufficient balance: {authorizer_balance} < {authorization.value}.",
            {"balance": authorizer_balance, "required": authorization.value},
        )

    # ------------------------------------------------------------------
    # 3. Record state
    # ------------------------------------------------------------------
    used_as = _record_state_failure(authorization_state)
    if used_as is not None:
        return _fail(
            VerificationStatus.REPLAY_ATTACK,
            f"Authorization nonce already {used_as}.",
            {"nonce": authorization.nonce, "state": used_as},
        )

    # ------------------------------------------------------------------
    # 4. ECDSA recovery
    # ------------------------------------------------------------------
    if not _verify_eip712_signature(
        build_transfer_typed_data(authorization),
        signature=authorization.signature,
        authorizer=authorization.authorizer,
    ):
        return _fail(
            VerificationStatus.INVALID_SIGNATURE,
            "Signature does not recover to the authorizer.",
            {"authorizer": authorization.authorizer},
        )

    return EVMVerificationResult(
        status=VerificationStatus.SUCCESS,
        is_valid=True,
        message=f"{authorization.authorization_type} authorization verified.",
        sender=authorization.authorizer,
        receiver=authorization.recipient,
        authorized_amount=authorization.value,
        blockchain_state=blockchain_state or None,
    )


def verify_cancel_authorization(
    request: CancelAuthorizationRequest,
    *,
    authorization_state: Optional[int] = None,
) -> EVMVerificationResult:
    """Verify a signed cancel request: record state, then signature."""

    def _fail(status: VerificationStatus, message: str) -> EVMVerificationResult:
        return EVMVerificationResult(
            status=status,
            is_valid=False,
            message=message,
            error_details={"nonce": request.nonce},
            sender=request.authorizer,
        )

    used_as = _record_state_failure(authorization_state)
    if used_as is not None:
        return _fail(VerificationStatus.REPLAY_ATTACK, f"Authorization nonce already {used_as}.")

    if not _verify_eip712_signature(
        build_cancel_typed_data(request),
        signature=request.signature,
        authorizer=request.authorizer,
    ):
        return _fail(VerificationStatus.INVALID_SIGNATURE, "Signature does not recover to the authorizer.")

    return EVMVerificationResult(
        status=VerificationStatus.SUCCESS,
        is_valid=True,
        message="Cancel authorization verified.",
        sender=request.authorizer,
    )


# ---------------------------------------------------------------------------
# EIP-7702
# ---------------------------------------------------------------------------

def verify_set_code_authorization(
    authorization: SetCodeAuthorization,
    *,
    expected_authorizer: str,
    chain_id: Optional[int] = None,
    live_nonce: Optional[int] = None,
    sender: Optional[str] = None,
) -> EVMVerificationResult:
    """
    Verify a set-code authorization before placing it in a transaction.

    1. **Chain** -- when ``chain_id`` is supplied, the authorization must be
       bound to it or to 0.
    2. **Nonce** -- when ``live_nonce`` is supplied, the embedded nonce must
       follow the nonce convention for ``sender`` (defaults to the authorizer).
    3. **ECDSA recovery** -- must recover to ``expected_authorizer``.
    """
    blockchain_state: Dict[str, Any] = {}
    if live_nonce is not None:
        blockchain_state["live_nonce"] = live_nonce

    def _fail(status: VerificationStatus, message: str, error_details: Optional[Dict[str, Any]] = None):
        return EVMVerificationResult(
            status=status,
            is_valid=False,
            message=message,
            error_details=error_details,
            sender=expected_authorizer,
            receiver=authorization.address,
            blockchain_state=blockchain_state or None,
        )

    # 1. Chain
    if chain_id is not None and authorization.chain_id not in (0, chain_id):
        return _fail(
            VerificationStatus.INVALID_PARAMETERS,
            f"Authorization is bound to chain {authorization.chain_id}, not {chain_id}.",
            {"authorization_chain_id": authorization.chain_id, "chain_id": chain_id},
        )

    # 2. Nonce
    if live_nonce is not None:
        expected = resolve_authorization_nonce(
            live_nonce=live_nonce,
            authorizer=expected_authorizer,
            sender=sender or expected_authorizer,
        )
        if authorization.nonce != expected:
            return _fail(
                VerificationStatus.NONCE_MISMATCH,
                f"Authorization nonce {authorization.nonce} != expected {expected}.",
                {"nonce": authorization.nonce, "expected": expected},
            )

    # 3. ECDSA recovery
    try:
        recovered = recover_authorization_signer(authorization)
    except SignatureRecoveryError as e:
        return _fail(VerificationStatus.INVALID_SIGNATURE, str(e))
    if recovered.lower() != expected_authorizer.lower():
        return _fail(
            VerificationStatus.INVALID_SIGNATURE,
            "Authorization signature recovers to a different account.",
            {"recovered": recovered},
        )

    return EVMVerificationResult(
        status=VerificationStatus.SUCCESS,
        is_valid=True,
        message="Set-code authorization verified.",
        sender=expected_authorizer,
        receiver=authorization.address,
        blockchain_state=blockchain_state or None,
    )
