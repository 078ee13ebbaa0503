from .evm import (
    DelegationAdapter,
    SetCodeAuthorization,
    DelegatedTransaction,
    SignedDelegatedTransaction,
    TransferAuthorization,
    EVMVerificationResult,
    EVMTransactionConfirmation,
)

__all__ = [
    "DelegationAdapter",
    "SetCodeAuthorization",
    "DelegatedTransaction",
    "SignedDelegatedTransaction",
    "TransferAuthorization",
    "EVMVerificationResult",
    "EVMTransactionConfirmation",
]
