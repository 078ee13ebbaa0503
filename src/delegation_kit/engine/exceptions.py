"""
Exception and Error Definitions Module

Defines the exception hierarchy for encoding, signing, authorization
validation and blockchain interaction. All exceptions inherit from
DelegationKitError for unified exception handling. Nothing in the package
retries on any of these; callers decide.

Exception Hierarchy:
    DelegationKitError (root)
    ├── EncodingError
    ├── SignatureError
    │   ├── SigningError
    │   └── SignatureRecoveryError
    ├── AuthorizationValidationError
    │   ├── AuthorizationTimingError
    │   │   ├── AuthorizationNotYetValidError
    │   │   └── AuthorizationExpiredError
    │   ├── InvalidAuthorizationSignatureError
    │   ├── AuthorizationAlreadyUsedError (also InvalidTransition)
    │   ├── CallerNotPayeeError
    │   └── AuthorizationNonceError
    ├── ExecutionRevertedError
    │   └── InsufficientFundsError
    ├── BlockchainInteractionError
    │   ├── TransactionRejectedError
    │   ├── TransactionExecutionError
    │   └── TransactionTimeoutError
    ├── ConfigurationError
    └── InvalidTransition
"""

from typing import Optional


class DelegationKitError(Exception):
    """
    Root exception class for all project-specific exceptions.
    """
    pass


# ==================== Encoding ====================

class EncodingError(DelegationKitError):
    """
    Raised when a value cannot be encoded canonically.

    This includes scenarios such as:
    - Negative or oversized integers
    - Addresses that are not exactly 20 bytes
    - Malformed RLP input on decode
    """
    pass


# ==================== Signatures ====================

class SignatureError(DelegationKitError):
    """Base exception for signing and recovery failures."""
    pass


class SigningError(SignatureError):
    """
    Raised when a digest cannot be signed.

    This includes scenarios such as:
    - Malformed or out-of-range private keys
    - Digests that are not 32 bytes
    """
    pass


class SignatureRecoveryError(SignatureError):
    """
    Raised when no signer can be recovered from a signature.

    This includes scenarios such as:
    - y_parity outside {0, 1}
    - r or s equal to zero or above the curve order
    - High-s signatures
    """
    pass


# ==================== Authorization validation ====================

class AuthorizationValidationError(DelegationKitError):
    """Base exception for rejected authorizations."""
    pass


class AuthorizationTimingError(AuthorizationValidationError):
    """Raised when an authorization is used outside its time window."""
    pass


class AuthorizationNotYetValidError(AuthorizationTimingError):
    """Raised when the current time is not strictly after validAfter."""
    pass


class AuthorizationExpiredError(AuthorizationTimingError):
    """Raised when the current time is not strictly before validBefore."""
    pass


class InvalidAuthorizationSignatureError(AuthorizationValidationError):
    """Raised when the recovered signer is not the claimed authorizer."""
    pass


class InvalidTransition(DelegationKitError):
    """
    Raised when a state machine transition is not allowed.
    """
    pass


class AuthorizationAlreadyUsedError(AuthorizationValidationError, InvalidTransition):
    """
    Raised when an authorization record has already left the Unused state.

    Covers both replay of a used authorization and use of a canceled one.
    """
    pass


class CallerNotPayeeError(AuthorizationValidationError):
    """Raised when receiveWithAuthorization is called by someone other than the payee."""
    pass


class AuthorizationNonceError(AuthorizationValidationError):
    """
    Raised when a set-code authorization nonce does not match the nonce the
    authorizer will have when the authorization list is processed.
    """
    pass


# ==================== Execution ====================

class ExecutionRevertedError(DelegationKitError):
    """
    Raised inside the in-process host when a contract call reverts.

    The host catches it at the transaction boundary, rolls back the call's
    state changes and records the message as the receipt's revert reason.
    """

    def __init__(self, message: str = "execution reverted"):
        super().__init__(message)
        self.reason = message


class InsufficientFundsError(ExecutionRevertedError):
    """
    Raised when a balance or allowance is too low for the requested transfer.
    """
    pass


# ==================== Blockchain interaction ====================

class BlockchainInteractionError(DelegationKitError):
    """
    Raised when interaction with a node (or the in-process host) fails.
    """
    pass


class TransactionRejectedError(BlockchainInteractionError):
    """
    Raised when a transaction is refused before inclusion.

    This includes scenarios such as:
    - Wrong transaction type or chain id
    - Sender nonce mismatch
    - Sender cannot cover gas_limit * max_fee_per_gas
    """
    pass


class TransactionExecutionError(BlockchainInteractionError):
    """
    Raised when a mined transaction reverted.

    Attributes:
        tx_hash: Hash of the reverted transaction.
        revert_reason: Decoded revert reason, when one was available.
    """

    def __init__(self, message: str, *, tx_hash: Optional[str] = None, revert_reason: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


class TransactionTimeoutError(BlockchainInteractionError):
    """Raised when no receipt appeared within the polling budget."""
    pass


# ==================== Configuration ====================

class ConfigurationError(DelegationKitError):
    """
    Raised when configuration is invalid or incomplete.

    This includes scenarios such as:
    - Missing private key or RPC URL
    - Missing or unreadable deployment records
    """
    pass
