"""
EVM Adapter Schema Models

Pydantic models for set-code authorizations, batch calls, delegated
transactions and EIP-3009 token authorizations. All classes inherit from
the base schema hierarchy in ``schemas.bases``.

Signature classes:
    - EVMECDSASignature: (y_parity, r, s) secp256k1 signature. ``v`` is
      derived as ``27 + y_parity`` for typed-data consumers.

Authorization classes:
    - SetCodeAuthorization: EIP-7702 authorization tuple
      ``[chain_id, address, nonce, y_parity, r, s]``.
    - TransferAuthorization: EIP-3009 ``transferWithAuthorization`` /
      ``receiveWithAuthorization`` payload.
    - CancelAuthorizationRequest: EIP-3009 ``cancelAuthorization`` payload.

Transaction classes:
    - Call / AccessListEntry / DelegatedTransaction / SignedDelegatedTransaction

Result / confirmation classes:
    - EVMVerificationResult: Off-chain verification outcome.
    - EVMTransactionConfirmation: Mined transaction receipt summary.

Enums:
    - AuthorizationState: Unused / Used / Canceled record states.
"""

from enum import IntEnum
from typing import Optional, Dict, Any, List, Literal, Union

from pydantic import ConfigDict, Field, field_validator, field_serializer
from eth_utils import is_address, to_checksum_address

from ...schemas.bases import (
    BaseSignature,
    BaseAuthorization,
    BaseVerificationResult,
    BaseTransactionConfirmation,
    CanonicalModel,
)
from .constants import MAX_AUTHORIZATION_NONCE, MAX_UINT256


def _checksum(value: str) -> str:
    if not isinstance(value, str) or not value.startswith("0x") or not is_address(value):
        raise ValueError(f"Invalid EVM address: {value!r}")
    return to_checksum_address(value)


def _hex_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            return bytes.fromhex(text)
        except ValueError as e:
            raise ValueError(f"Invalid hex data: {value!r}") from e
    raise ValueError(f"Expected bytes or hex string, got {type(value).__name__}")


def _bytes32_hex(value: Union[str, bytes]) -> str:
    raw = _hex_bytes(value)
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}")
    return "0x" + raw.hex()


class EVMECDSASignature(BaseSignature):
    """
    secp256k1 ECDSA signature (y_parity, r, s).

    Use ``signature_type`` to identify what was signed:

    * ``"SetCode"``: an EIP-7702 authorization payload.
    * ``"Transaction"``: a set-code transaction payload.
    * ``"ERC3009"``: an EIP-3009 transfer/receive typed message.
    * ``"CancelAuthorization"``: an EIP-3009 cancel typed message.

    Attributes:
        y_parity: Recovery parity bit (0 or 1).
        r: r component as a 0x-prefixed 64-char hex string.
        s: s component as a 0x-prefixed 64-char hex string.

    Example::

        sig = EVMECDSASignature(signature_type="SetCode", y_parity=0, r="0x" + "a" * 64, s="0x" + "b" * 64)
        sig.v  # 27
    """

    signature_type: Literal["SetCode", "Transaction", "ERC3009", "CancelAuthorization"] = Field(
        ..., description="What was signed"
    )
    y_parity: int = Field(..., description="Recovery parity bit (0 or 1)")
    r: str = Field(..., description="Signature r component (32 bytes, 0x-prefixed hex)")
    s: str = Field(..., description="Signature s component (32 bytes, 0x-prefixed hex)")

    @field_validator("r", "s", mode="before")
    @classmethod
    def _normalize_component(cls, value: Any) -> str:
        if isinstance(value, int) and not isinstance(value, bool):
            if value < 0 or value > MAX_UINT256:
                raise ValueError("signature component out of range")
            return "0x" + value.to_bytes(32, "big").hex()
        return _bytes32_hex(value)

    @classmethod
    def from_vrs(cls, *, v: int, r: int, s: int, signature_type: str) -> "EVMECDSASignature":
        """Build from an ``eth_account`` style ``v`` (27/28 or 0/1)."""
        y_parity = v - 27 if v >= 27 else v
        return cls(signature_type=signature_type, y_parity=y_parity, r=r, s=s)

    @property
    def v(self) -> int:
        return 27 + self.y_parity

    @property
    def r_int(self) -> int:
        return int(self.r, 16)

    @property
    def s_int(self) -> int:
        return int(self.s, 16)

    def validate_format(self) -> bool:
        """
        Validate y_parity/r/s components.

        Raises:
            ValueError: Descriptive message on the first failed check.
        """
        if self.y_parity not in (0, 1):
            raise ValueError(f"Invalid y_parity: {self.y_parity}. Must be 0 or 1")
        for name, val in [("r", self.r), ("s", self.s)]:
            if len(val) != 66:
                raise ValueError(f"Invalid {name}: expected 64 hex chars, got {len(val) - 2}")
        return True


class SetCodeAuthorization(BaseAuthorization):
    """
    EIP-7702 authorization tuple.

    Grants ``address`` (the delegate contract) execution rights over the
    signer's account. The signer is never stored; it is recovered from the
    signature over ``0x05 || rlp([chain_id, address, nonce])``.

    Attributes:
        chain_id: Chain id, or 0 for any chain.
        address: Delegate contract address.
        nonce: Signer's account nonce at the time the list is processed.
        signature: ``signature_type='SetCode'`` signature; None while unsigned.
    """

    authorization_type: Literal["SetCode"] = Field(default="SetCode", description="Authorization type identifier")
    address: str = Field(..., description="Delegate contract address")
    nonce: int = Field(..., ge=0, le=MAX_AUTHORIZATION_NONCE, description="Authorizer account nonce")
    signature: Optional[EVMECDSASignature] = Field(None, description="Authorization signature")

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        return _checksum(value)

    @property
    def is_signed(self) -> bool:
        return self.signature is not None


class Call(CanonicalModel):
    """One sub-call of a batch: ``(bytes data, address to, uint256 value)``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    data: bytes = Field(default=b"", description="Calldata")
    to: str = Field(..., description="Call target")
    value: int = Field(default=0, ge=0, le=MAX_UINT256, description="Native value in wei")

    @field_validator("data", mode="before")
    @classmethod
    def _parse_data(cls, value: Any) -> bytes:
        return _hex_bytes(value)

    @field_validator("to")
    @classmethod
    def _check_to(cls, value: str) -> str:
        return _checksum(value)

    @field_serializer("data", when_used="json")
    def _serialize_data(self, value: bytes) -> str:
        return "0x" + value.hex()


class AccessListEntry(CanonicalModel):
    """EIP-2930 access list entry."""

    address: str
    storage_keys: List[str] = Field(default_factory=list, alias="storageKeys")

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("storage_keys", mode="before")
    @classmethod
    def _check_keys(cls, value: Any) -> List[str]:
        return [_bytes32_hex(key) for key in value]


class DelegatedTransaction(CanonicalModel):
    """
    EIP-7702 set-code transaction.

    Immutable: signing returns a new instance with ``signature`` set.
    ``to`` is the authorizer when a sponsor pays and the sender itself when
    the authorizer pays.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    chain_id: int = Field(..., ge=0, le=MAX_UINT256)
    nonce: int = Field(..., ge=0, le=MAX_AUTHORIZATION_NONCE)
    max_priority_fee_per_gas: int = Field(..., ge=0, le=MAX_UINT256)
    max_fee_per_gas: int = Field(..., ge=0, le=MAX_UINT256)
    gas_limit: int = Field(..., ge=0, le=MAX_AUTHORIZATION_NONCE)
    to: str = Field(..., description="Destination; never empty for set-code transactions")
    value: int = Field(default=0, ge=0, le=MAX_UINT256)
    data: bytes = Field(default=b"")
    access_list: List[AccessListEntry] = Field(default_factory=list)
    authorization_list: List[SetCodeAuthorization] = Field(default_factory=list)
    signature: Optional[EVMECDSASignature] = Field(None, description="Sender signature")

    @field_validator("to")
    @classmethod
    def _check_to(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("data", mode="before")
    @classmethod
    def _parse_data(cls, value: Any) -> bytes:
        return _hex_bytes(value)

    @field_serializer("data", when_used="json")
    def _serialize_data(self, value: bytes) -> str:
        return "0x" + value.hex()


class SignedDelegatedTransaction(CanonicalModel):
    """Signed transaction with its wire bytes, hash and sender."""

    transaction: DelegatedTransaction
    raw_transaction: bytes = Field(..., description="0x04 || rlp(fields + signature)")
    tx_hash: str = Field(..., description="keccak256(raw_transaction)")
    sender: str = Field(..., description="Address that signed and pays")

    @field_serializer("raw_transaction", when_used="json")
    def _serialize_raw(self, value: bytes) -> str:
        return "0x" + value.hex()


class TransferAuthorization(BaseAuthorization):
    """
    EIP-3009 transfer authorization container.

    Attributes:
        authorization_type: ``"TransferWithAuthorization"`` (any relayer may
            submit) or ``"ReceiveWithAuthorization"`` (only ``recipient`` may).
        token: Token contract; also the EIP-712 ``verifyingContract``.
        domain_name: EIP-712 domain ``name`` (the token's ``name()``).
        authorizer: Address authorizing the transfer (``from`` in EIP-3009).
        recipient: Address receiving tokens (``to`` in EIP-3009).
        value: Amount in smallest token units.
        validAfter: Window opens strictly after this timestamp.
        validBefore: Window closes at this timestamp (exclusive).
        nonce: Random bytes32 hex string.
        signature: ``signature_type='ERC3009'`` signature.
    """

    authorization_type: Literal["TransferWithAuthorization", "ReceiveWithAuthorization"] = Field(
        default="TransferWithAuthorization", description="Authorization type identifier"
    )
    token: str = Field(..., description="Token contract address")
    domain_name: str = Field(..., description="EIP-712 domain name")
    authorizer: str = Field(..., description="Authorizer address (maps to `from` in EIP-3009)")
    recipient: str = Field(..., description="Recipient address (maps to `to` in EIP-3009)")
    value: int = Field(..., ge=0, le=MAX_UINT256, description="Amount authorized in smallest token units")
    validAfter: int = Field(..., ge=0, le=MAX_UINT256, description="Start timestamp (exclusive)")
    validBefore: int = Field(..., ge=0, le=MAX_UINT256, description="Expiry timestamp (exclusive)")
    nonce: str = Field(..., description="Unique nonce (bytes32 hex string)")
    signature: Optional[EVMECDSASignature] = Field(None, description="Typed-data signature")

    @field_validator("token", "authorizer", "recipient")
    @classmethod
    def _check_addresses(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("nonce", mode="before")
    @classmethod
    def _check_nonce(cls, value: Any) -> str:
        return _bytes32_hex(value)


class CancelAuthorizationRequest(BaseAuthorization):
    """EIP-3009 ``cancelAuthorization`` payload."""

    authorization_type: Literal["CancelAuthorization"] = Field(default="CancelAuthorization")
    token: str = Field(..., description="Token contract address")
    domain_name: str = Field(..., description="EIP-712 domain name")
    authorizer: str = Field(..., description="Authorizer whose nonce is canceled")
    nonce: str = Field(..., description="bytes32 nonce to cancel")
    signature: Optional[EVMECDSASignature] = Field(None, description="Typed-data signature")

    @field_validator("token", "authorizer")
    @classmethod
    def _check_addresses(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("nonce", mode="before")
    @classmethod
    def _check_nonce(cls, value: Any) -> str:
        return _bytes32_hex(value)


class EVMVerificationResult(BaseVerificationResult):
    """
    Off-chain EVM verification result.

    Attributes:
        verification_type: Always ``"evm"``.
        sender: Authorizer address that produced the signature.
        receiver: Recipient or delegate address.
        authorized_amount: Transfer amount, when applicable.
        blockchain_state: Optional on-chain state snapshot (balance, nonce, record state).
    """

    verification_type: Literal["evm"] = Field(default="evm", description="Verification type identifier")
    sender: Optional[str] = Field(None, description="Authorizer address that produced the signature")
    receiver: Optional[str] = Field(None, description="Recipient or delegate address")
    authorized_amount: Optional[int] = Field(None, ge=0, description="Transfer amount in the token's smallest unit")
    blockchain_state: Optional[Dict[str, Any]] = Field(None, description="Optional on-chain state snapshot")


class EVMTransactionConfirmation(BaseTransactionConfirmation):
    """
    EVM transaction confirmation.

    Returned by ``DelegationAdapter.send_and_confirm``.

    Attributes:
        tx_hash: Transaction hash (0x-prefixed hex string)
        block_number: Block number containing transaction
        gas_used: Actual gas consumed by transaction
        effective_gas_price: Price actually paid per gas unit
        transaction_fee: gas_used * effective_gas_price, in wei
        from_address: Transaction sender (payer)
        to_address: Transaction destination
        revert_reason: Decoded revert reason when the transaction failed

    Example:
        confirmation = await adapter.execute_batch(calls)
        if not confirmation.is_success():
            print(confirmation.revert_reason)
    """

    confirmation_type: Literal["evm"] = Field(default="evm", description="Confirmation type identifier")
    tx_hash: str = Field(..., description="Transaction hash (0x-prefixed hex string)")
    block_number: Optional[int] = Field(None, ge=0, description="Block number containing transaction")
    gas_used: Optional[int] = Field(None, ge=0, description="Actual gas consumed by transaction")
    effective_gas_price: Optional[int] = Field(None, ge=0, description="Price paid per gas unit")
    transaction_fee: Optional[int] = Field(None, ge=0, description="Transaction fee in wei")
    from_address: Optional[str] = Field(None, description="Transaction sender address")
    to_address: Optional[str] = Field(None, description="Transaction receiver address")
    revert_reason: Optional[str] = Field(None, description="Revert reason if the transaction failed")


class AuthorizationState(IntEnum):
    """
    State of an EIP-3009 authorization record, as returned by
    ``authorizationState(address,bytes32)``. Used and Canceled are terminal.
    """
    UNUSED = 0
    USED = 1
    CANCELED = 2
