"""
EVM Delegation Network Adapter

Async counterpart of the in-process host: talks to a real node through
``web3.AsyncWeb3`` to sign, submit and confirm EIP-7702 set-code
transactions and EIP-3009 authorizations.

Key Features:
    - Chain id, live account nonces and EIP-1559 fee data
    - Sponsored and self-sponsored batch transactions (type 0x04)
    - Raw submission with bounded receipt polling and revert replay
    - Direct ``transferWithAuthorization`` submission with a balance pre-flight
    - Token balance / decimals / symbol / domain name queries

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For account handling and legacy transaction signing
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from web3 import AsyncWeb3
from eth_account import Account
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from ...engine.exceptions import (
    ConfigurationError,
    ExecutionRevertedError,
    InsufficientFundsError,
    TransactionExecutionError,
    TransactionRejectedError,
    TransactionTimeoutError,
)
from ...schemas.bases import TransactionStatus
from .batch import encode_batch_calls, encode_erc20_transfer
from .constants import (
    DEFAULT_BATCH_GAS_LIMIT,
    DEFAULT_RECEIPT_POLL_ATTEMPTS,
    DEFAULT_RECEIPT_POLL_INTERVAL,
    get_private_key_from_env,
    get_rpc_url_from_env,
    get_sponsor_private_key_from_env,
)
from .ERC20_ABI import get_erc3009_abi, get_token_metadata_abi
from .schemas import (
    AuthorizationState,
    Call,
    EVMTransactionConfirmation,
    SetCodeAuthorization,
    SignedDelegatedTransaction,
    TransferAuthorization,
)
from .signatures import resolve_authorization_nonce, sign_set_code_authorization
from .transactions import build_delegated_transaction

logger = logging.getLogger(__name__)


class DelegationAdapter:
    """
    Network adapter for EIP-7702 delegated execution.

    The *authorizer* is the account whose code is delegated and whose tokens
    move. The optional *sponsor* signs and pays for the outer transaction;
    without one the authorizer sponsors itself.

    Attributes:
        account: Authorizer account (from ``private_key`` or ``PRIVATE_KEY``)
        address: Checksum authorizer address
        sponsor: Account paying gas; same object as ``account`` when self-sponsored

    Environment Variables:
        - PRIVATE_KEY: Authorizer private key (required unless passed)
        - SPONSOR_PRIVATE_KEY: Optional sponsor private key
        - RPC_URL: JSON-RPC endpoint (required unless passed)

    Example:
        adapter = DelegationAdapter()
        calls = [Call(to=token, data=encode_erc20_transfer(recipient, amount))]
        confirmation = await adapter.execute_batch(calls, delegate_address=delegate)
        adapter.require_success(confirmation)
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        rpc_url: Optional[str] = None,
        sponsor_private_key: Optional[str] = None,
        request_timeout: int = 60,
    ):
        """
        Args:
            private_key: Authorizer key; falls back to ``PRIVATE_KEY``.
            rpc_url: Node endpoint; falls back to ``RPC_URL``.
            sponsor_private_key: Sponsor key; falls back to ``SPONSOR_PRIVATE_KEY``.
            request_timeout: HTTP timeout in seconds.

        Raises:
            ConfigurationError: If no private key or RPC URL can be resolved.
        """
        self._resolved_pk = private_key if private_key else get_private_key_from_env()
        if not self._resolved_pk:
            raise ConfigurationError(
                "Private key not provided. Either pass 'private_key' parameter or "
                "set 'PRIVATE_KEY' environment variable."
            )
        self._rpc_url = rpc_url if rpc_url else get_rpc_url_from_env()
        if not self._rpc_url:
            raise ConfigurationError(
                "RPC URL not provided. Either pass 'rpc_url' parameter or "
                "set 'RPC_URL' environment variable."
            )
        self._request_timeout = request_timeout

        self.account = Account.from_key(self._resolved_pk)
        self.address = AsyncWeb3.to_checksum_address(self.account.address)

        sponsor_pk = sponsor_private_key if sponsor_private_key else get_sponsor_private_key_from_env()
        self._sponsor_pk = sponsor_pk or self._resolved_pk
        self.sponsor = Account.from_key(self._sponsor_pk) if sponsor_pk else self.account
        self.sponsor_address = AsyncWeb3.to_checksum_address(self.sponsor.address)

    @property
    def is_self_sponsored(self) -> bool:
        return self.sponsor_address == self.address

    def _get_web3_instance(self) -> AsyncWeb3:
        """Create an AsyncWeb3 instance bound to the configured RPC endpoint."""
        return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            self._rpc_url,
            request_kwargs={"timeout": self._request_timeout}
        ))

    # ==================== Chain state ====================

    async def get_chain_id(self, web3: Optional[AsyncWeb3] = None) -> int:
        web3 = web3 or self._get_web3_instance()
        return int(await web3.eth.chain_id)

    async def get_account_nonce(self, address: str, web3: Optional[AsyncWeb3] = None) -> int:
        """Live transaction count of ``address``."""
        web3 = web3 or self._get_web3_instance()
        return int(await web3.eth.get_transaction_count(AsyncWeb3.to_checksum_address(address)))

    async def get_fee_data(self, web3: Optional[AsyncWeb3] = None) -> Tuple[int, int]:
        """
        Current EIP-1559 fee parameters.

        The priority fee is the 25th percentile reward of the latest block and
        may be zero. The max fee leaves room for the base fee to double.

        Returns:
            ``(max_priority_fee_per_gas, max_fee_per_gas)`` in wei.
        """
        web3 = web3 or self._get_web3_instance()
        history = await web3.eth.fee_history(1, "latest", [25.0])
        base_fee = int(history["baseFeePerGas"][-1])
        rewards = history.get("reward") or [[0]]
        priority_fee = int(rewards[-1][0]) if rewards[-1] else 0
        return priority_fee, 2 * base_fee + priority_fee

    async def get_authorization_nonce(self, web3: Optional[AsyncWeb3] = None) -> int:
        """
        Nonce to embed in the authorizer's next set-code authorization.

        The sender's own nonce is consumed before the authorization list is
        processed, so a self-sponsored authorization carries ``live + 1``.
        """
        live_nonce = await self.get_account_nonce(self.address, web3)
        return resolve_authorization_nonce(
            live_nonce=live_nonce, authorizer=self.address, sender=self.sponsor_address,
        )

    async def sign_delegation(
        self,
        delegate_address: str,
        *,
        chain_id: Optional[int] = None,
        web3: Optional[AsyncWeb3] = None,
    ) -> SetCodeAuthorization:
        """Sign an authorization delegating the authorizer to ``delegate_address``."""
        web3 = web3 or self._get_web3_instance()
        if chain_id is None:
            chain_id = await self.get_chain_id(web3)
        live_nonce = await self.get_account_nonce(self.address, web3)
        nonce = resolve_authorization_nonce(
            live_nonce=live_nonce, authorizer=self.address, sender=self.sponsor_address,
        )
        return sign_set_code_authorization(
            private_key=self._resolved_pk,
            chain_id=chain_id,
            delegate_address=AsyncWeb3.to_checksum_address(delegate_address),
            nonce=nonce,
            live_nonce=live_nonce,
            sender=self.sponsor_address,
        )

    # ==================== Building ====================

    async def build_batch_transaction(
        self,
        calls: Sequence[Call],
        *,
        delegate_address: str,
        gas_limit: int = DEFAULT_BATCH_GAS_LIMIT,
        web3: Optional[AsyncWeb3] = None,
    ) -> SignedDelegatedTransaction:
        """
        Build the set-code transaction that delegates the authorizer to
        ``delegate_address`` and calls ``execute(calls)`` on it.

        The destination is the authorizer's own address; the sponsor signs.
        """
        web3 = web3 or self._get_web3_instance()
        chain_id = await self.get_chain_id(web3)
        authorization = await self.sign_delegation(delegate_address, chain_id=chain_id, web3=web3)
        sender_nonce = await self.get_account_nonce(self.sponsor_address, web3)
        priority_fee, max_fee = await self.get_fee_data(web3)

        signed = build_delegated_transaction(
            private_key=self._sponsor_pk,
            chain_id=chain_id,
            nonce=sender_nonce,
            max_priority_fee_per_gas=priority_fee,
            max_fee_per_gas=max_fee,
            gas_limit=gas_limit,
            to=self.address,
            data=encode_batch_calls(list(calls)),
            authorization_list=[authorization],
        )
        logger.info(
            "Built set-code transaction %s: %d call(s), sponsor=%s, authorizer=%s",
            signed.tx_hash, len(calls), self.sponsor_address, self.address,
        )
        return signed

    # ==================== Submission ====================

    async def _revert_reason(self, web3: AsyncWeb3, call: Dict[str, Any], block_number: int) -> Optional[str]:
        """Replay a failed call at its block to recover the revert message."""
        try:
            await web3.eth.call(call, block_number)
        except ContractLogicError as e:
            return e.message or str(e)
        except Web3Exception as e:
            logger.warning("Could not replay reverted call: %s", e)
            return None
        return None

    async def send_and_confirm(
        self,
        raw_transaction: bytes,
        web3: Optional[AsyncWeb3] = None,
        *,
        replay_call: Optional[Dict[str, Any]] = None,
        max_attempts: int = DEFAULT_RECEIPT_POLL_ATTEMPTS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    ) -> EVMTransactionConfirmation:
        """
        Broadcast a signed transaction and poll for its receipt.

        Args:
            raw_transaction: Signed transaction bytes.
            web3: ``AsyncWeb3`` instance; created when omitted.
            replay_call: ``{"from", "to", "data"}`` used to recover the revert
                reason when the receipt reports failure.
            max_attempts: Maximum receipt poll attempts.
            poll_interval: Seconds between polls.

        Returns:
            :class:`EVMTransactionConfirmation`; ``NETWORK_ERROR`` when the node
            refuses the transaction, ``TIMEOUT`` when no receipt appears,
            ``SUCCESS`` or ``FAILED`` otherwise.
        """
        web3 = web3 or self._get_web3_instance()
        try:
            tx_hash = await web3.eth.send_raw_transaction(bytes(raw_transaction))
            tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        except Exception as e:
            logger.warning("Broadcast failed: %s", e)
            return EVMTransactionConfirmation(
                status=TransactionStatus.NETWORK_ERROR,
                tx_hash="0x",
                error_message=f"Failed to broadcast transaction: {str(e)}",
            )
        logger.info("Sent transaction %s", tx_hash_hex)

        receipt = None
        for _ in range(max_attempts):
            try:
                receipt = await web3.eth.get_transaction_receipt(tx_hash_hex)
                if receipt:
                    break
            except TransactionNotFound:
                pass  # still pending
            await self._sleep_async(poll_interval)

        if not receipt:
            logger.warning("No receipt for %s after %d attempts", tx_hash_hex, max_attempts)
            return EVMTransactionConfirmation(
                status=TransactionStatus.TIMEOUT,
                tx_hash=tx_hash_hex,
                error_message="Transaction confirmation timed out",
            )

        current_block = await web3.eth.block_number
        confirmations = max(0, current_block - receipt["blockNumber"])
        effective_gas_price = receipt.get("effectiveGasPrice", 0)
        fields = dict(
            tx_hash=tx_hash_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            effective_gas_price=effective_gas_price,
            transaction_fee=receipt["gasUsed"] * effective_gas_price,
            confirmations=confirmations,
            from_address=receipt.get("from"),
            to_address=receipt.get("to"),
        )

        if receipt.get("status") == 1:
            logger.info("Transaction %s mined in block %d", tx_hash_hex, receipt["blockNumber"])
            return EVMTransactionConfirmation(status=TransactionStatus.SUCCESS, **fields)

        revert_reason = None
        if replay_call is not None:
            revert_reason = await self._revert_reason(web3, replay_call, receipt["blockNumber"])
        logger.warning("Transaction %s reverted: %s", tx_hash_hex, revert_reason or "no reason")
        return EVMTransactionConfirmation(
            status=TransactionStatus.FAILED,
            revert_reason=revert_reason,
            error_message=f"Transaction reverted on-chain: {revert_reason or 'unknown reason'}",
            **fields,
        )

    @staticmethod
    async def _sleep_async(seconds: float):
        """Simple async sleep utility."""
        await asyncio.sleep(seconds)

    @staticmethod
    def require_success(confirmation: EVMTransactionConfirmation) -> EVMTransactionConfirmation:
        """
        Turn a non-successful confirmation into an exception.

        Raises:
            TransactionRejectedError: The node refused the transaction.
            TransactionTimeoutError: No receipt was observed.
            TransactionExecutionError: The transaction was mined but reverted.
        """
        if confirmation.status == TransactionStatus.SUCCESS:
            return confirmation
        if confirmation.status == TransactionStatus.NETWORK_ERROR:
            raise TransactionRejectedError(confirmation.error_message or "transaction rejected")
        if confirmation.status == TransactionStatus.TIMEOUT:
            raise TransactionTimeoutError(f"No receipt for {confirmation.tx_hash}")
        raise TransactionExecutionError(
            f"Transaction failed. Hash: {confirmation.tx_hash}",
            tx_hash=confirmation.tx_hash,
            revert_reason=confirmation.revert_reason,
        )

    async def execute_batch(
        self,
        calls: Sequence[Call],
        *,
        delegate_address: str,
        gas_limit: int = DEFAULT_BATCH_GAS_LIMIT,
        max_attempts: int = DEFAULT_RECEIPT_POLL_ATTEMPTS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    ) -> EVMTransactionConfirmation:
        """Build, submit and confirm a delegated batch in one step."""
        web3 = self._get_web3_instance()
        signed = await self.build_batch_transaction(
            calls, delegate_address=delegate_address, gas_limit=gas_limit, web3=web3,
        )
        replay_call = {
            "from": self.sponsor_address,
            "to": self.address,
            "data": AsyncWeb3.to_hex(signed.transaction.data),
        }
        return await self.send_and_confirm(
            signed.raw_transaction, web3,
            replay_call=replay_call, max_attempts=max_attempts, poll_interval=poll_interval,
        )

    async def delegated_erc20_transfer(
        self,
        *,
        token_address: str,
        recipient: str,
        value: int,
        delegate_address: str,
        gas_limit: int = DEFAULT_BATCH_GAS_LIMIT,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    ) -> EVMTransactionConfirmation:
        """
        Move ``value`` of ``token_address`` from the authorizer to ``recipient``
        through the delegate, after checking the authorizer's balance.

        Raises:
            InsufficientFundsError: If the balance is below ``value``; nothing is sent.
        """
        web3 = self._get_web3_instance()
        await self.ensure_token_balance(token_address, self.address, value, web3=web3)
        call = Call(to=token_address, data=encode_erc20_transfer(recipient, value), value=0)
        return await self.execute_batch(
            [call], delegate_address=delegate_address, gas_limit=gas_limit, poll_interval=poll_interval,
        )

    async def transfer_with_authorization(
        self,
        authorization: TransferAuthorization,
        *,
        web3: Optional[AsyncWeb3] = None,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    ) -> EVMTransactionConfirmation:
        """
        Submit a signed EIP-3009 authorization directly to the token contract.

        The sponsor account relays it; ``ReceiveWithAuthorization`` payloads
        must therefore be relayed by their recipient.

        Raises:
            ValueError: If the authorization is unsigned.
            InsufficientFundsError: If the authorizer's balance is below the value.
        """
        if authorization.signature is None:
            raise ValueError("Authorization must be signed before submission")
        web3 = web3 or self._get_web3_instance()
        await self.ensure_token_balance(
            authorization.token, authorization.authorizer, authorization.value, web3=web3,
        )

        contract = web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(authorization.token),
            abi=get_erc3009_abi(),
        )
        sig = authorization.signature
        function_name = (
            "receiveWithAuthorization"
            if authorization.authorization_type == "ReceiveWithAuthorization"
            else "transferWithAuthorization"
        )
        tx_fn = getattr(contract.functions, function_name)(
            AsyncWeb3.to_checksum_address(authorization.authorizer),
            AsyncWeb3.to_checksum_address(authorization.recipient),
            authorization.value,
            authorization.validAfter,
            authorization.validBefore,
            bytes.fromhex(authorization.nonce[2:]),
            sig.v,
            bytes.fromhex(sig.r[2:]),
            bytes.fromhex(sig.s[2:]),
        )

        priority_fee, max_fee = await self.get_fee_data(web3)
        tx_nonce = await self.get_account_nonce(self.sponsor_address, web3)
        try:
            gas_estimate = await tx_fn.estimate_gas({"from": self.sponsor_address})
        except ContractLogicError as e:
            raise ExecutionRevertedError(e.message or str(e)) from e
        tx_dict = await tx_fn.build_transaction({
            "from": self.sponsor_address,
            "gas": int(gas_estimate * 1.1),
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority_fee,
            "nonce": tx_nonce,
            "chainId": authorization.chain_id,
        })
        signed_tx = self.sponsor.sign_transaction(tx_dict)
        replay_call = {"from": self.sponsor_address, "to": tx_dict["to"], "data": tx_dict["data"]}
        return await self.send_and_confirm(
            signed_tx.raw_transaction, web3, replay_call=replay_call, poll_interval=poll_interval,
        )

    # ==================== Token queries ====================

    def _token(self, web3: AsyncWeb3, token_address: str):
        return web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address),
            abi=get_token_metadata_abi() + get_erc3009_abi(),
        )

    async def get_token_balance(self, token_address: str, address: str, web3: Optional[AsyncWeb3] = None) -> int:
        web3 = web3 or self._get_web3_instance()
        contract = self._token(web3, token_address)
        return int(await contract.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call())

    async def get_token_metadata(self, token_address: str, web3: Optional[AsyncWeb3] = None) -> Dict[str, Any]:
        """
        Returns:
            ``{"name", "symbol", "decimals"}``; ``name`` is the EIP-712 domain name.
        """
        web3 = web3 or self._get_web3_instance()
        functions = self._token(web3, token_address).functions
        name, symbol, decimals = await asyncio.gather(
            functions.name().call(),
            functions.symbol().call(),
            functions.decimals().call(),
        )
        return {"name": name, "symbol": symbol, "decimals": int(decimals)}

    async def get_authorization_state(
        self, token_address: str, authorizer: str, nonce: str, web3: Optional[AsyncWeb3] = None,
    ) -> AuthorizationState:
        web3 = web3 or self._get_web3_instance()
        contract = self._token(web3, token_address)
        state = await contract.functions.authorizationState(
            AsyncWeb3.to_checksum_address(authorizer), bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce),
        ).call()
        return AuthorizationState(int(state))

    async def ensure_token_balance(
        self, token_address: str, holder: str, value: int, web3: Optional[AsyncWeb3] = None,
    ) -> int:
        """
        Raises:
            InsufficientFundsError: If ``holder`` owns less than ``value``.
        """
        balance = await self.get_token_balance(token_address, holder, web3)
        if balance < value:
            raise InsufficientFundsError(
                f"Insufficient balance. Have {balance}, need {value}"
            )
        return balance

