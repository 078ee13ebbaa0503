from .bases import CanonicalModel, BaseSignature, BaseAuthorization, VerificationStatus, BaseVerificationResult, TransactionStatus, BaseTransactionConfirmation

__all__ = [
    "CanonicalModel",
    "BaseSignature",
    "BaseAuthorization",
    "VerificationStatus",
    "BaseVerificationResult",
    "TransactionStatus",
    "BaseTransactionConfirmation",
]
