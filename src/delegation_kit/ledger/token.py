"""
EIP-3009 Token

ERC-20 ledger with one-time, signed, time-boxed transfer authorizations.

Each ``(authorizer, nonce)`` pair owns a record keyed by
``keccak256(abi.encode(authorizer, nonce))`` that moves from Unused to
either Used or Canceled, never back. Consumption checks, in order:

1. time window: ``validAfter < now < validBefore``
2. typed-data signature against the domain recorded at construction
3. record is Unused

then flips the record and moves the balance in one store transaction, so
a failed transfer leaves the record Unused.
"""

import logging
from typing import Optional, Union

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address
from pydantic import ValidationError

from ..adapters.evm.batch import (
    CANCEL_AUTHORIZATION_SIGNATURE,
    RECEIVE_WITH_AUTHORIZATION_SIGNATURE,
    TRANSFER_WITH_AUTHORIZATION_SIGNATURE,
)
from ..adapters.evm.crypto import is_valid_signer
from ..adapters.evm.schemas import AuthorizationState, EVMECDSASignature
from ..adapters.evm.standards import (
    RECEIVE_WITH_AUTHORIZATION_TYPEHASH,
    TRANSFER_WITH_AUTHORIZATION_TYPEHASH,
    CancelAuthorizationMessage,
    EIP712Domain,
    TransferWithAuthorizationMessage,
    eip712_digest,
)
from ..engine.events import Approval, AuthorizationCanceled, AuthorizationUsed, Transfer
from ..engine.exceptions import (
    AuthorizationAlreadyUsedError,
    AuthorizationExpiredError,
    AuthorizationNotYetValidError,
    CallerNotPayeeError,
    ExecutionRevertedError,
    InsufficientFundsError,
    InvalidAuthorizationSignatureError,
)
from .contract import ExecutionContext, HostedContract
from .store import StateStore

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

Bytes32 = Union[bytes, str]


def _nonce_hex(nonce: Bytes32) -> str:
    raw = nonce if isinstance(nonce, (bytes, bytearray)) else bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce)
    if len(raw) != 32:
        raise ExecutionRevertedError("nonce must be 32 bytes")
    return "0x" + bytes(raw).hex()


def authorization_record_key(authorizer: str, nonce: Bytes32) -> str:
    """``keccak256(abi.encode(authorizer, nonce))`` as 0x-hex."""
    nonce_bytes = bytes.fromhex(_nonce_hex(nonce)[2:])
    return "0x" + keccak(abi_encode(["address", "bytes32"], [to_checksum_address(authorizer), nonce_bytes])).hex()


class AuthorizationToken(HostedContract):
    """
    ERC-20 token implementing EIP-3009.

    Example::

        token = AuthorizationToken(store=store, address=addr, chain_id=31337)
        token.mint(alice, 100 * 10**18)
        token.transfer_with_authorization(ctx, alice, bob, value, after, before, nonce, v, r, s)
        token.authorization_state(alice, nonce)  # AuthorizationState.USED
    """

    FUNCTIONS = {
        "name()": "name_view",
        "symbol()": "symbol_view",
        "decimals()": "decimals_view",
        "totalSupply()": "total_supply",
        "balanceOf(address)": "balance_of",
        "allowance(address,address)": "allowance",
        "DOMAIN_SEPARATOR()": "domain_separator_view",
        "authorizationState(address,bytes32)": "authorization_state",
        "transfer(address,uint256)": "transfer",
        "approve(address,uint256)": "approve",
        "transferFrom(address,address,uint256)": "transfer_from",
        TRANSFER_WITH_AUTHORIZATION_SIGNATURE: "transfer_with_authorization",
        RECEIVE_WITH_AUTHORIZATION_SIGNATURE: "receive_with_authorization",
        CANCEL_AUTHORIZATION_SIGNATURE: "cancel_authorization",
    }
    VIEWS = frozenset({
        "name_view", "symbol_view", "decimals_view", "total_supply", "balance_of",
        "allowance", "domain_separator_view", "authorization_state",
    })

    def __init__(
        self,
        *,
        store: StateStore,
        address: str,
        chain_id: int,
        name: str = "AuthDelegationToken",
        symbol: str = "ADT",
        decimals: int = 18,
    ):
        super().__init__(store=store, address=to_checksum_address(address), chain_id=chain_id)
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.domain = EIP712Domain(name=name, chainId=chain_id, verifyingContract=self.address)
        self.domain_separator = self.domain.separator()

    # ==================== Views ====================

    def name_view(self) -> str:
        return self.name

    def symbol_view(self) -> str:
        return self.symbol

    def decimals_view(self) -> int:
        return self.decimals

    def domain_separator_view(self) -> bytes:
        return self.domain_separator

    def total_supply(self) -> int:
        return self.store.get(self.slot("meta"), "total_supply", 0)

    def balance_of(self, account: str) -> int:
        return self.store.get(self.slot("balances"), to_checksum_address(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.store.get(self.slot("allowances"), (to_checksum_address(owner), to_checksum_address(spender)), 0)

    def authorization_state(self, authorizer: str, nonce: Bytes32) -> AuthorizationState:
        key = authorization_record_key(authorizer, nonce)
        return AuthorizationState(self.store.get(self.slot("authorizations"), key, AuthorizationState.UNUSED))

    # ==================== ERC-20 ====================

    def mint(self, to: str, amount: int, ctx: Optional[ExecutionContext] = None) -> None:
        """Credit ``amount`` new tokens; used at deployment for the initial supply."""
        to = to_checksum_address(to)
        with self.store.atomic():
            self.store.set(self.slot("meta"), "total_supply", self.total_supply() + amount)
            self.store.set(self.slot("balances"), to, self.balance_of(to) + amount)
        if ctx is not None:
            ctx.emit(Transfer(emitter=self.address, from_address=ZERO_ADDRESS, to_address=to, value=amount))

    def _transfer(self, ctx: ExecutionContext, sender: str, recipient: str, amount: int) -> None:
        sender, recipient = to_checksum_address(sender), to_checksum_address(recipient)
        if recipient == ZERO_ADDRESS:
            raise ExecutionRevertedError("ERC20: transfer to the zero address")
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientFundsError("ERC20: transfer amount exceeds balance")
        balances = self.slot("balances")
        with self.store.atomic():
            self.store.set(balances, sender, balance - amount)
            self.store.set(balances, recipient, self.balance_of(recipient) + amount)
        ctx.emit(Transfer(emitter=self.address, from_address=sender, to_address=recipient, value=amount))

    def transfer(self, ctx: ExecutionContext, recipient: str, amount: int) -> bool:
        self._transfer(ctx, ctx.sender, recipient, amount)
        return True

    def approve(self, ctx: ExecutionContext, spender: str, amount: int) -> bool:
        owner, spender = to_checksum_address(ctx.sender), to_checksum_address(spender)
        self.store.set(self.slot("allowances"), (owner, spender), amount)
        ctx.emit(Approval(emitter=self.address, owner=owner, spender=spender, value=amount))
        return True

    def transfer_from(self, ctx: ExecutionContext, owner: str, recipient: str, amount: int) -> bool:
        owner = to_checksum_address(owner)
        spender = to_checksum_address(ctx.sender)
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientFundsError("ERC20: insufficient allowance")
        with self.store.atomic():
            self.store.set(self.slot("allowances"), (owner, spender), allowed - amount)
            self._transfer(ctx, owner, recipient, amount)
        return True

    # ==================== EIP-3009 ====================

    def _require_valid_window(self, now: int, valid_after: int, valid_before: int) -> None:
        if now <= valid_after:
            raise AuthorizationNotYetValidError(
                f"authorization is not yet valid (now={now}, validAfter={valid_after})"
            )
        if now >= valid_before:
            raise AuthorizationExpiredError(
                f"authorization is expired (now={now}, validBefore={valid_before})"
            )

    def _require_signature(self, struct_hash: bytes, signer: str, v: int, r: Bytes32, s: Bytes32) -> None:
        if v not in (27, 28):
            raise InvalidAuthorizationSignatureError(f"invalid signature v value {v}")
        try:
            signature = EVMECDSASignature.from_vrs(v=v, r=r, s=s, signature_type="ERC3009")
        except ValidationError as e:
            raise InvalidAuthorizationSignatureError("malformed signature") from e
        digest = eip712_digest(self.domain_separator, struct_hash)
        if not is_valid_signer(digest, signature, signer):
            raise InvalidAuthorizationSignatureError("invalid signature")

    def _require_unused(self, authorizer: str, nonce: str) -> str:
        key = authorization_record_key(authorizer, nonce)
        state = self.store.get(self.slot("authorizations"), key, AuthorizationState.UNUSED)
        if state != AuthorizationState.UNUSED:
            raise AuthorizationAlreadyUsedError(
                f"authorization is {AuthorizationState(state).name.lower()}"
            )
        return key

    def _consume(
        self,
        ctx: ExecutionContext,
        typehash: bytes,
        from_address: str,
        to_address: str,
        value: int,
        valid_after: int,
        valid_before: int,
        nonce: Bytes32,
        v: int,
        r: Bytes32,
        s: Bytes32,
    ) -> None:
        from_address, to_address = to_checksum_address(from_address), to_checksum_address(to_address)
        nonce_hex = _nonce_hex(nonce)

        self._require_valid_window(ctx.timestamp, valid_after, valid_before)
        message = TransferWithAuthorizationMessage(
            authorizer=from_address,
            recipient=to_address,
            value=value,
            validAfter=valid_after,
            validBefore=valid_before,
            nonce=nonce_hex,
        )
        self._require_signature(message.struct_hash(typehash), from_address, v, r, s)

        emitted = len(ctx.events)
        try:
            with self.store.atomic():
                key = self._require_unused(from_address, nonce_hex)
                self.store.set(self.slot("authorizations"), key, AuthorizationState.USED)
                ctx.emit(AuthorizationUsed(emitter=self.address, authorizer=from_address, nonce=nonce_hex))
                self._transfer(ctx, from_address, to_address, value)
        except ExecutionRevertedError:
            del ctx.events[emitted:]
            raise
        logger.info("Authorization %s of %s used: %d to %s", nonce_hex[:10], from_address, value, to_address)

    def transfer_with_authorization(
        self,
        ctx: ExecutionContext,
        from_address: str,
        to_address: str,
        value: int,
        valid_after: int,
        valid_before: int,
        nonce: Bytes32,
        v: int,
        r: Bytes32,
        s: Bytes32,
    ) -> None:
        """
        Execute a transfer signed by ``from_address``. Any caller may submit.

        Raises:
            AuthorizationNotYetValidError / AuthorizationExpiredError: outside the window.
            InvalidAuthorizationSignatureError: signer is not ``from_address``.
            AuthorizationAlreadyUsedError: record is Used or Canceled.
            InsufficientFundsError: balance too low (record stays Unused).
        """
        self._consume(
            ctx, TRANSFER_WITH_AUTHORIZATION_TYPEHASH,
            from_address, to_address, value, valid_after, valid_before, nonce, v, r, s,
        )

    def receive_with_authorization(
        self,
        ctx: ExecutionContext,
        from_address: str,
        to_address: str,
        value: int,
        valid_after: int,
        valid_before: int,
        nonce: Bytes32,
        v: int,
        r: Bytes32,
        s: Bytes32,
    ) -> None:
        """Like :meth:`transfer_with_authorization`, but the caller must be the payee."""
        if to_checksum_address(ctx.sender) != to_checksum_address(to_address):
            raise CallerNotPayeeError("caller must be the payee")
        self._consume(
            ctx, RECEIVE_WITH_AUTHORIZATION_TYPEHASH,
            from_address, to_address, value, valid_after, valid_before, nonce, v, r, s,
        )

    def cancel_authorization(
        self,
        ctx: ExecutionContext,
        authorizer: str,
        nonce: Bytes32,
        v: int,
        r: Bytes32,
        s: Bytes32,
    ) -> None:
        """
        Mark an unused authorization Canceled.

        Raises:
            InvalidAuthorizationSignatureError: signer is not ``authorizer``.
            AuthorizationAlreadyUsedError: record is Used or Canceled.
        """
        authorizer = to_checksum_address(authorizer)
        nonce_hex = _nonce_hex(nonce)
        message = CancelAuthorizationMessage(authorizer=authorizer, nonce=nonce_hex)
        self._require_signature(message.struct_hash(), authorizer, v, r, s)

        with self.store.atomic():
            key = self._require_unused(authorizer, nonce_hex)
            self.store.set(self.slot("authorizations"), key, AuthorizationState.CANCELED)
            ctx.emit(AuthorizationCanceled(emitter=self.address, authorizer=authorizer, nonce=nonce_hex))
        logger.info("Authorization %s of %s canceled", nonce_hex[:10], authorizer)
