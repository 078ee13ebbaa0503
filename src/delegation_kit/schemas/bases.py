"""
Base Schema Models for the Delegation Kit

This module defines the fundamental base classes that all other schema
models inherit from. It provides the foundation for validation and
consistent serialization across authorization signing, delegated
transaction building and on-chain result reporting.

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON output
    - BaseSignature: Abstract signature component model
    - BaseAuthorization: Abstract signed authorization (set-code or token transfer)
    - BaseVerificationResult: Abstract off-chain verification result model
    - BaseTransactionConfirmation: Abstract transaction confirmation model

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Optional, Dict, Any, List
from abc import ABC
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Keys are sorted and whitespace is stripped so the same model always
    serializes to the same string. Deployment records and verification
    results are written to disk and compared in tests through this form.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        model.to_canonical_json()  # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a canonical JSON string.

        ``model_dump(mode="json")`` turns nested models, enums and datetimes
        into plain JSON types; ``json.dumps`` then sorts keys and drops
        whitespace.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary with all model fields.
        """
        return self.model_dump()


class BaseSignature(CanonicalModel, ABC):
    """
    Abstract base class for signature components.

    Attributes:
        signature_type: The signing scheme that produced the signature
            (e.g. "SetCode", "Transaction", "ERC3009").
    """

    signature_type: str = Field(..., description="Signing scheme that produced the signature")

    def validate_format(self) -> bool:
        """
        Validate the signature components.

        Returns:
            bool: True if the signature format is valid.

        Raises:
            ValueError: If the signature format is invalid.
        """
        return True


class BaseAuthorization(CanonicalModel, ABC):
    """
    Abstract base class for signed authorizations.

    An authorization is a payload signed off-chain by one account and
    consumed on-chain by someone else: either an EIP-7702 set-code
    authorization (processed by the protocol) or an EIP-3009 token transfer
    authorization (processed by the token contract).

    Attributes:
        authorization_type: Discriminator for the concrete authorization.
        chain_id: Chain the authorization is bound to.
    """

    authorization_type: str = Field(..., description="Authorization type identifier")
    chain_id: int = Field(..., ge=0, description="Chain id bound into the signature")


class VerificationStatus(str, Enum):
    """
    Enumeration of possible verification result statuses.

    Attributes:
        SUCCESS: Signature and all semantic checks passed
        INVALID_SIGNATURE: Signature is malformed or recovers to another signer
        NOT_YET_VALID: Authorization time window has not opened yet
        EXPIRED: Authorization time window has closed
        NONCE_MISMATCH: Embedded nonce does not match the account nonce
        INSUFFICIENT_BALANCE: Token balance insufficient for the transfer
        REPLAY_ATTACK: Authorization record is already used or canceled
        INVALID_PARAMETERS: Malformed address, amount or window
        BLOCKCHAIN_ERROR: Error querying blockchain state
        UNKNOWN_ERROR: Unexpected error during verification
    """
    SUCCESS = "success"
    INVALID_SIGNATURE = "invalid_signature"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    NONCE_MISMATCH = "nonce_mismatch"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    REPLAY_ATTACK = "replay_attack"
    INVALID_PARAMETERS = "invalid_parameters"
    BLOCKCHAIN_ERROR = "blockchain_error"
    UNKNOWN_ERROR = "unknown_error"


class BaseVerificationResult(CanonicalModel, ABC):
    """
    Abstract base class for off-chain verification results.

    Verifiers never raise for a failed check; they report the outcome here
    so callers can decide whether to submit anything on-chain.

    Attributes:
        verification_type: Type of verification (e.g., "evm")
        status: Verification result status (VerificationStatus enum)
        is_valid: Boolean indicating if verification was successful
        message: Human-readable status message
        error_details: Detailed error information if verification failed
        verified_at: Timestamp when verification was performed
    """

    verification_type: str = Field(..., description="Type of verification (e.g., evm)")
    status: VerificationStatus = Field(..., description="Verification result status")
    is_valid: bool = Field(..., description="Whether the authorization is valid")
    message: str = Field(..., description="Human-readable status message")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Detailed error information")
    verified_at: datetime = Field(default_factory=datetime.now, description="Verification timestamp")

    def is_success(self) -> bool:
        """
        Check if verification was successful.

        Example:
            result = verify_transfer_authorization(...)
            if result.is_success():
                await adapter.transfer_with_authorization(authorization)
        """
        return self.is_valid and self.status == VerificationStatus.SUCCESS

    def get_error_message(self) -> Optional[str]:
        """
        Get formatted error message from verification result.

        Returns:
            Optional[str]: Error message if verification failed, None if successful.
        """
        if self.is_success():
            return None

        error_msg = f"Verification failed: {self.message}"
        if self.error_details:
            details_str = json.dumps(self.error_details, indent=2, default=str)
            error_msg += f"\nDetails: {details_str}"
        return error_msg


class TransactionStatus(str, Enum):
    """
    Enumeration of possible transaction execution statuses.

    Attributes:
        SUCCESS: Transaction executed successfully on-chain
        FAILED: Transaction reverted on-chain
        PENDING: Transaction is pending confirmation
        TIMEOUT: Transaction confirmation timed out
        NETWORK_ERROR: Network error during transaction submission
        INVALID_TRANSACTION: Transaction was rejected before inclusion
    """
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    INVALID_TRANSACTION = "invalid_transaction"


class BaseTransactionConfirmation(CanonicalModel, ABC):
    """
    Abstract base class for transaction confirmation/receipt data.

    Attributes:
        confirmation_type: Type of confirmation (e.g., "evm")
        status: Transaction execution status (TransactionStatus enum)
        execution_time: Time taken to confirm transaction (in seconds)
        confirmations: Number of block confirmations
        error_message: Error message if transaction failed
        logs: Optional transaction logs/events
        created_at: Timestamp when confirmation was recorded
    """

    confirmation_type: str = Field(..., description="Type of confirmation (e.g., evm)")
    status: TransactionStatus = Field(..., description="Transaction execution status")
    execution_time: Optional[float] = Field(None, ge=0, description="Time to confirm (seconds)")
    confirmations: int = Field(default=0, ge=0, description="Number of block confirmations")
    error_message: Optional[str] = Field(None, description="Error message if transaction failed")
    logs: Optional[List[Dict[str, Any]]] = Field(None, description="Transaction logs/events")
    created_at: datetime = Field(default_factory=datetime.now, description="Confirmation recording timestamp")

    def is_success(self) -> bool:
        """Return True if the transaction executed successfully on-chain."""
        return self.status == TransactionStatus.SUCCESS

    def get_confirmation_status(self) -> str:
        """
        Get human-readable confirmation status message.

        Example:
            confirmation.get_confirmation_status()
            # "Transaction confirmed with 2 confirmations"
        """
        if self.status == TransactionStatus.SUCCESS:
            confirmations_text = f"with {self.confirmations} confirmations" if self.confirmations > 0 else "pending confirmations"
            return f"Transaction confirmed {confirmations_text}"
        elif self.status == TransactionStatus.PENDING:
            return "Transaction is pending confirmation"
        else:
            return f"Transaction failed: {self.error_message or self.status.value}"
