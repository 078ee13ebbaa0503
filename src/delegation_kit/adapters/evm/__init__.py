from .adapter import DelegationAdapter
from .schemas import (
    AccessListEntry,
    AuthorizationState,
    Call,
    CancelAuthorizationRequest,
    DelegatedTransaction,
    EVMECDSASignature,
    EVMTransactionConfirmation,
    EVMVerificationResult,
    SetCodeAuthorization,
    SignedDelegatedTransaction,
    TransferAuthorization,
)
from .signatures import (
    resolve_authorization_nonce,
    check_authorization_nonce,
    sign_set_code_authorization,
    recover_authorization_signer,
    sign_transfer_authorization,
    sign_receive_authorization,
    sign_cancel_authorization,
)
from .transactions import (
    build_delegated_transaction,
    sign_delegated_transaction,
    decode_delegated_transaction,
    recover_transaction_sender,
)
from .batch import (
    encode_batch_calls,
    decode_batch_calls,
    encode_erc20_transfer,
    encode_authorization_consumption,
)
from .verifies import (
    verify_transfer_authorization,
    verify_cancel_authorization,
    verify_set_code_authorization,
)
from .constants import (
    DelegationSettings,
    load_settings,
    amount_to_value,
    value_to_amount,
)
from .deployments import (
    DeploymentRecord,
    load_delegate_deployment,
    load_token_deployment,
    record_delegate_deployment,
    record_token_deployment,
)

__all__ = [
    "DelegationAdapter",
    "AccessListEntry",
    "AuthorizationState",
    "Call",
    "CancelAuthorizationRequest",
    "DelegatedTransaction",
    "EVMECDSASignature",
    "EVMTransactionConfirmation",
    "EVMVerificationResult",
    "SetCodeAuthorization",
    "SignedDelegatedTransaction",
    "TransferAuthorization",
    "resolve_authorization_nonce",
    "check_authorization_nonce",
    "sign_set_code_authorization",
    "recover_authorization_signer",
    "sign_transfer_authorization",
    "sign_receive_authorization",
    "sign_cancel_authorization",
    "build_delegated_transaction",
    "sign_delegated_transaction",
    "decode_delegated_transaction",
    "recover_transaction_sender",
    "encode_batch_calls",
    "decode_batch_calls",
    "encode_erc20_transfer",
    "encode_authorization_consumption",
    "verify_transfer_authorization",
    "verify_cancel_authorization",
    "verify_set_code_authorization",
    "DelegationSettings",
    "load_settings",
    "amount_to_value",
    "value_to_amount",
    "DeploymentRecord",
    "load_delegate_deployment",
    "load_token_deployment",
    "record_delegate_deployment",
    "record_token_deployment",
]
