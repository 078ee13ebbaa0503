"""
In-process chain host.

``LocalDevnet`` accepts signed set-code transactions, processes their
authorization lists the way EIP-7702 describes and runs hosted Python
contracts against a shared :class:`StateStore`. It exists so the full
sponsor/authorizer flow can be exercised without a node.

Transaction processing::

    decode 0x04 bytes -> check chain id -> recover sender -> check nonce,
    fee caps, gas limit and upfront balance (reject on failure) ->
    bump sender nonce -> charge intrinsic gas -> apply each valid
    authorization (invalid ones are skipped) -> run the call

The nonce bump, the gas charge and the delegations persist even when the
call reverts; the call's own state changes and events do not.

Gas is intrinsic only: 21000, calldata bytes, and 25000 per authorization.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Type

from eth_utils import keccak, to_checksum_address
from pydantic import Field

from ..adapters.evm.constants import (
    CALLDATA_NONZERO_BYTE_GAS,
    CALLDATA_ZERO_BYTE_GAS,
    DELEGATION_DESIGNATOR_PREFIX,
    PER_EMPTY_ACCOUNT_COST,
    TX_BASE_GAS,
)
from ..adapters.evm.encoding import encode, int_to_rlp_bytes, address_to_rlp_bytes
from ..adapters.evm.schemas import DelegatedTransaction, EVMTransactionConfirmation, SetCodeAuthorization
from ..adapters.evm.signatures import recover_authorization_signer
from ..adapters.evm.transactions import decode_delegated_transaction, recover_transaction_sender
from ..engine.events import ContractEvent
from ..engine.exceptions import (
    DelegationKitError,
    EncodingError,
    ExecutionRevertedError,
    InsufficientFundsError,
    SignatureRecoveryError,
    TransactionRejectedError,
)
from ..schemas.bases import CanonicalModel, TransactionStatus
from .contract import ExecutionContext, HostedContract
from .store import StateStore

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class DevnetReceipt(CanonicalModel):
    """Receipt of a transaction processed by :class:`LocalDevnet`."""
    tx_hash: str
    status: int = Field(..., description="1 success, 0 reverted")
    block_number: int
    block_timestamp: int
    transaction_type: int
    from_address: str
    to_address: str
    gas_used: int
    effective_gas_price: int
    logs: List[Dict[str, Any]] = Field(default_factory=list)
    revert_reason: Optional[str] = None

    @property
    def transaction_fee(self) -> int:
        return self.gas_used * self.effective_gas_price

    def to_confirmation(self) -> EVMTransactionConfirmation:
        return EVMTransactionConfirmation(
            status=TransactionStatus.SUCCESS if self.status == 1 else TransactionStatus.FAILED,
            tx_hash=self.tx_hash,
            block_number=self.block_number,
            gas_used=self.gas_used,
            effective_gas_price=self.effective_gas_price,
            transaction_fee=self.transaction_fee,
            from_address=self.from_address,
            to_address=self.to_address,
            logs=self.logs,
            revert_reason=self.revert_reason,
            error_message=None if self.status == 1 else f"Transaction reverted: {self.revert_reason}",
        )


class _ReadOnlyRollback(Exception):
    pass


def intrinsic_gas(tx: DelegatedTransaction) -> int:
    data = bytes(tx.data)
    zero_bytes = data.count(0)
    return (
        TX_BASE_GAS
        + zero_bytes * CALLDATA_ZERO_BYTE_GAS
        + (len(data) - zero_bytes) * CALLDATA_NONZERO_BYTE_GAS
        + len(tx.authorization_list) * PER_EMPTY_ACCOUNT_COST
    )


class LocalDevnet:
    """
    Minimal chain that executes set-code transactions against hosted contracts.

    Example::

        chain = LocalDevnet(chain_id=31337)
        delegate = chain.deploy(BatchCallDelegation, deployer=deployer)
        token = chain.deploy(AuthorizationToken, deployer=deployer)
        token.mint(authorizer, 100 * 10**18)
        chain.fund(sponsor, 10**18)

        tx_hash = chain.send_raw_transaction(signed.raw_transaction)
        receipt = chain.get_transaction_receipt(tx_hash)
    """

    def __init__(
        self,
        *,
        chain_id: int = 31337,
        base_fee_per_gas: int = 1_000_000_000,
        store: Optional[StateStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.chain_id = chain_id
        self.base_fee_per_gas = base_fee_per_gas
        self.store = store if store is not None else StateStore()
        self._clock = clock or (lambda: int(time.time()))
        self._contracts: Dict[str, HostedContract] = {}
        self._receipts: Dict[str, DevnetReceipt] = {}
        self.block_number = 0
        self._block_timestamp = self._clock()

    # ==================== Accounts ====================

    def get_balance(self, address: str) -> int:
        return self.store.get("accounts.balance", to_checksum_address(address), 0)

    def get_transaction_count(self, address: str) -> int:
        return self.store.get("accounts.nonce", to_checksum_address(address), 0)

    def fund(self, address: str, amount: int) -> None:
        address = to_checksum_address(address)
        self.store.set("accounts.balance", address, self.get_balance(address) + amount)

    def get_delegation(self, address: str) -> Optional[str]:
        """Delegate contract an EOA currently points to, if any."""
        return self.store.get("accounts.delegation", to_checksum_address(address))

    def get_code(self, address: str) -> bytes:
        address = to_checksum_address(address)
        delegate = self.get_delegation(address)
        if delegate is not None:
            return DELEGATION_DESIGNATOR_PREFIX + bytes.fromhex(delegate[2:])
        if address in self._contracts:
            return b"\xfe"
        return b""

    def _set_balance(self, address: str, amount: int) -> None:
        self.store.set("accounts.balance", address, amount)

    def _set_nonce(self, address: str, nonce: int) -> None:
        self.store.set("accounts.nonce", address, nonce)

    def _move_native(self, sender: str, recipient: str, amount: int) -> None:
        balance = self.get_balance(sender)
        if balance < amount:
            raise InsufficientFundsError("insufficient native balance for call value")
        self._set_balance(sender, balance - amount)
        self._set_balance(recipient, self.get_balance(recipient) + amount)

    # ==================== Contracts ====================

    def deploy(self, contract_cls: Type[HostedContract], *, deployer: str, **kwargs) -> HostedContract:
        """
        Instantiate ``contract_cls`` at the CREATE address of ``deployer``.

        The deployer's nonce is bumped; ``kwargs`` go to the constructor.
        """
        deployer = to_checksum_address(deployer)
        nonce = self.get_transaction_count(deployer)
        address = to_checksum_address(
            keccak(encode([address_to_rlp_bytes(deployer), int_to_rlp_bytes(nonce)]))[12:]
        )
        self._set_nonce(deployer, nonce + 1)
        contract = contract_cls(store=self.store, address=address, chain_id=self.chain_id, **kwargs)
        self._contracts[address] = contract
        logger.info("Deployed %s at %s", contract_cls.__name__, address)
        return contract

    def contract_at(self, address: str) -> Optional[HostedContract]:
        return self._contracts.get(to_checksum_address(address))

    def _code_at(self, address: str) -> Optional[HostedContract]:
        contract = self._contracts.get(address)
        if contract is not None:
            return contract
        delegate = self.get_delegation(address)
        if delegate is not None:
            return self._contracts.get(delegate)
        return None

    # ==================== Execution ====================

    def message_call(
        self,
        *,
        sender: str,
        to: str,
        data: bytes = b"",
        value: int = 0,
        origin: Optional[str] = None,
        events: Optional[List[ContractEvent]] = None,
    ) -> Any:
        """
        Run one call frame atomically.

        Events go to ``events`` only if the frame succeeds. Any project error
        raised by the callee becomes an :class:`ExecutionRevertedError`.

        Raises:
            ExecutionRevertedError: If the frame reverted.
        """
        sender, to = to_checksum_address(sender), to_checksum_address(to)
        ctx = ExecutionContext(
            sender=sender,
            this=to,
            timestamp=self._block_timestamp,
            chain_id=self.chain_id,
            value=value,
            origin=origin or sender,
            host=self,
        )
        try:
            with self.store.atomic():
                if value:
                    self._move_native(sender, to, value)
                code = self._code_at(to)
                result = code.dispatch(ctx, bytes(data)) if code is not None else b""
        except ExecutionRevertedError:
            raise
        except DelegationKitError as e:
            raise ExecutionRevertedError(f"{type(e).__name__}: {e}") from e

        if events is not None:
            events.extend(ctx.events)
        return result

    def call(self, *, to: str, data: bytes, sender: str = ZERO_ADDRESS) -> Any:
        """Execute a read-only call; all state changes are discarded."""
        outcome: Dict[str, Any] = {}
        try:
            with self.store.atomic():
                outcome["result"] = self.message_call(sender=sender, to=to, data=data)
                raise _ReadOnlyRollback()
        except _ReadOnlyRollback:
            pass
        return outcome["result"]

    def _next_block(self) -> None:
        self.block_number += 1
        self._block_timestamp = max(self._clock(), self._block_timestamp)

    def _record(self, receipt: DevnetReceipt) -> str:
        self._receipts[receipt.tx_hash] = receipt
        level = logging.INFO if receipt.status == 1 else logging.WARNING
        logger.log(
            level, "Mined %s in block %d (status=%d%s)",
            receipt.tx_hash, receipt.block_number, receipt.status,
            f", reason={receipt.revert_reason}" if receipt.revert_reason else "",
        )
        return receipt.tx_hash

    def _run_call(self, *, sender: str, to: str, data: bytes, value: int):
        events: List[ContractEvent] = []
        try:
            self.message_call(sender=sender, to=to, data=data, value=value, origin=sender, events=events)
        except ExecutionRevertedError as e:
            return 0, [], e.reason
        return 1, [event.to_log() for event in events], None

    def transact(self, *, sender: str, to: str, data: bytes = b"", value: int = 0) -> DevnetReceipt:
        """
        Impersonated plain transaction: no signature and no gas, but the
        sender's nonce is bumped and a receipt is recorded.
        """
        sender, to = to_checksum_address(sender), to_checksum_address(to)
        nonce = self.get_transaction_count(sender)
        self._next_block()
        self._set_nonce(sender, nonce + 1)
        status, logs, reason = self._run_call(sender=sender, to=to, data=data, value=value)
        tx_hash = "0x" + keccak(encode([
            address_to_rlp_bytes(sender), int_to_rlp_bytes(nonce), address_to_rlp_bytes(to), bytes(data),
        ])).hex()
        receipt = DevnetReceipt(
            tx_hash=tx_hash,
            status=status,
            block_number=self.block_number,
            block_timestamp=self._block_timestamp,
            transaction_type=2,
            from_address=sender,
            to_address=to,
            gas_used=0,
            effective_gas_price=0,
            logs=logs,
            revert_reason=reason,
        )
        self._record(receipt)
        return receipt

    def _apply_authorization(self, authorization: SetCodeAuthorization) -> Optional[str]:
        """Apply one authorization; returns the authority, or None if skipped."""
        if authorization.chain_id not in (0, self.chain_id):
            logger.warning("Skipping authorization for chain %d", authorization.chain_id)
            return None
        try:
            authority = recover_authorization_signer(authorization)
        except SignatureRecoveryError as e:
            logger.warning("Skipping unrecoverable authorization: %s", e)
            return None
        if authority in self._contracts:
            logger.warning("Skipping authorization signed by contract account %s", authority)
            return None
        current = self.get_transaction_count(authority)
        if current != authorization.nonce:
            logger.warning(
                "Skipping authorization from %s: nonce %d != account nonce %d",
                authority, authorization.nonce, current,
            )
            return None

        if authorization.address == ZERO_ADDRESS:
            self.store.delete("accounts.delegation", authority)
        else:
            self.store.set("accounts.delegation", authority, authorization.address)
        self._set_nonce(authority, current + 1)
        logger.info("Delegated %s to %s", authority, authorization.address)
        return authority

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """
        Validate and execute a signed set-code transaction.

        Returns:
            The transaction hash; the receipt is available immediately.

        Raises:
            TransactionRejectedError: If the transaction cannot be included.
        """
        raw = bytes(raw_transaction)
        try:
            tx = decode_delegated_transaction(raw)
        except EncodingError as e:
            raise TransactionRejectedError(f"malformed transaction: {e}") from e

        if tx.chain_id != self.chain_id:
            raise TransactionRejectedError(f"chain id {tx.chain_id} != {self.chain_id}")
        try:
            sender = recover_transaction_sender(tx)
        except SignatureRecoveryError as e:
            raise TransactionRejectedError(f"invalid sender signature: {e}") from e
        if sender in self._contracts:
            raise TransactionRejectedError("sender is a contract account")
        if not tx.authorization_list:
            raise TransactionRejectedError("set-code transaction with empty authorization list")

        nonce = self.get_transaction_count(sender)
        if tx.nonce != nonce:
            raise TransactionRejectedError(f"nonce {tx.nonce} != account nonce {nonce}")
        if tx.max_priority_fee_per_gas > tx.max_fee_per_gas:
            raise TransactionRejectedError("max priority fee exceeds max fee")
        if tx.max_fee_per_gas < self.base_fee_per_gas:
            raise TransactionRejectedError(
                f"max fee {tx.max_fee_per_gas} below base fee {self.base_fee_per_gas}"
            )
        gas_used = intrinsic_gas(tx)
        if tx.gas_limit < gas_used:
            raise TransactionRejectedError(f"gas limit {tx.gas_limit} below intrinsic gas {gas_used}")
        upfront = tx.gas_limit * tx.max_fee_per_gas + tx.value
        if self.get_balance(sender) < upfront:
            raise TransactionRejectedError(
                f"insufficient funds for gas * price + value: have {self.get_balance(sender)}, need {upfront}"
            )

        self._next_block()
        effective_gas_price = min(tx.max_fee_per_gas, self.base_fee_per_gas + tx.max_priority_fee_per_gas)
        self._set_nonce(sender, nonce + 1)
        self._set_balance(sender, self.get_balance(sender) - gas_used * effective_gas_price)
        for authorization in tx.authorization_list:
            self._apply_authorization(authorization)

        status, logs, reason = self._run_call(sender=sender, to=tx.to, data=tx.data, value=tx.value)
        return self._record(DevnetReceipt(
            tx_hash="0x" + keccak(raw).hex(),
            status=status,
            block_number=self.block_number,
            block_timestamp=self._block_timestamp,
            transaction_type=raw[0],
            from_address=sender,
            to_address=tx.to,
            gas_used=gas_used,
            effective_gas_price=effective_gas_price,
            logs=logs,
            revert_reason=reason,
        ))

    def get_transaction_receipt(self, tx_hash: str) -> Optional[DevnetReceipt]:
        return self._receipts.get(tx_hash)
