"""
End-to-end set-code transaction flows on the in-process chain.

Covers the sponsored and self-sponsored batch transfer, batched EIP-3009
consumption, revert semantics and transaction rejection.
"""

import pytest

from delegation_kit.adapters.evm.batch import (
    encode_authorization_consumption,
    encode_batch_calls,
    encode_erc20_transfer,
    encode_function_call,
)
from delegation_kit.adapters.evm.constants import DELEGATION_DESIGNATOR_PREFIX
from delegation_kit.adapters.evm.schemas import AuthorizationState, Call
from delegation_kit.adapters.evm.signatures import sign_set_code_authorization
from delegation_kit.adapters.evm.transactions import build_delegated_transaction
from delegation_kit.engine.exceptions import TransactionRejectedError
from delegation_kit.ledger.devnet import intrinsic_gas
from delegation_kit.schemas.bases import TransactionStatus

from test_mocks import (
    MOCK_AUTHORIZER_ADDRESS,
    MOCK_AUTHORIZER_PRIVATE_KEY,
    MOCK_BASE_FEE,
    MOCK_CHAIN_ID,
    MOCK_INITIAL_SUPPLY,
    MOCK_OTHER_ADDRESS,
    MOCK_RECIPIENT_ADDRESS,
    MOCK_SPONSOR_ADDRESS,
    MOCK_SPONSOR_PRIVATE_KEY,
    ONE_ETH,
    authorization_args,
    create_devnet,
    create_transfer_authorization,
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
TRANSFER_AMOUNT = 10**18
GAS_LIMIT = 500_000
MAX_FEE = 2 * MOCK_BASE_FEE


@pytest.fixture
def setup():
    return create_devnet()


def _transfer_calldata(setup, amount=TRANSFER_AMOUNT) -> bytes:
    return encode_batch_calls([
        Call(to=setup.token.address, data=encode_erc20_transfer(MOCK_RECIPIENT_ADDRESS, amount)),
    ])


def _authorization(setup, *, sponsored=True, nonce=None, chain_id=None, delegate=None):
    live = setup.chain.get_transaction_count(MOCK_AUTHORIZER_ADDRESS)
    return sign_set_code_authorization(
        private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
        chain_id=setup.chain.chain_id if chain_id is None else chain_id,
        delegate_address=setup.delegate.address if delegate is None else delegate,
        nonce=(live if sponsored else live + 1) if nonce is None else nonce,
    )


def _send(setup, data, *, sponsored=True, authorizations=None, **overrides):
    key = MOCK_SPONSOR_PRIVATE_KEY if sponsored else MOCK_AUTHORIZER_PRIVATE_KEY
    sender = MOCK_SPONSOR_ADDRESS if sponsored else MOCK_AUTHORIZER_ADDRESS
    params = dict(
        private_key=key,
        chain_id=setup.chain.chain_id,
        nonce=setup.chain.get_transaction_count(sender),
        max_priority_fee_per_gas=0,
        max_fee_per_gas=MAX_FEE,
        gas_limit=GAS_LIMIT,
        to=MOCK_AUTHORIZER_ADDRESS,
        data=data,
        authorization_list=[_authorization(setup, sponsored=sponsored)] if authorizations is None else authorizations,
    )
    params.update(overrides)
    signed = build_delegated_transaction(**params)
    tx_hash = setup.chain.send_raw_transaction(signed.raw_transaction)
    return signed, setup.chain.get_transaction_receipt(tx_hash)


class TestSponsoredBatch:
    """Sponsor pays gas; authorizer's tokens move."""

    def test_transfer(self, setup):
        chain = setup.chain
        signed, receipt = _send(setup, _transfer_calldata(setup))

        assert receipt.status == 1
        assert receipt.tx_hash == signed.tx_hash
        assert receipt.transaction_type == 4
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == TRANSFER_AMOUNT
        assert setup.token.balance_of(MOCK_AUTHORIZER_ADDRESS) == MOCK_INITIAL_SUPPLY - TRANSFER_AMOUNT

        assert chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) == setup.delegate.address
        assert chain.get_code(MOCK_AUTHORIZER_ADDRESS) == (
            DELEGATION_DESIGNATOR_PREFIX + bytes.fromhex(setup.delegate.address[2:])
        )

        assert chain.get_transaction_count(MOCK_SPONSOR_ADDRESS) == 1
        assert chain.get_transaction_count(MOCK_AUTHORIZER_ADDRESS) == 1

    def test_gas_charged_to_sponsor_only(self, setup):
        signed, receipt = _send(setup, _transfer_calldata(setup))

        assert receipt.gas_used == intrinsic_gas(signed.transaction)
        assert receipt.effective_gas_price == MOCK_BASE_FEE
        assert setup.chain.get_balance(MOCK_SPONSOR_ADDRESS) == ONE_ETH - receipt.transaction_fee
        assert setup.chain.get_balance(MOCK_AUTHORIZER_ADDRESS) == ONE_ETH

    def test_transfer_event_comes_from_authorizer(self, setup):
        _, receipt = _send(setup, _transfer_calldata(setup))

        (log,) = receipt.logs
        assert log["address"] == setup.token.address
        assert log["event"] == "Transfer"
        assert log["args"]["from_address"] == MOCK_AUTHORIZER_ADDRESS
        assert log["args"]["to_address"] == MOCK_RECIPIENT_ADDRESS

    def test_second_batch_reuses_existing_delegation(self, setup):
        _send(setup, _transfer_calldata(setup))
        _, receipt = _send(setup, _transfer_calldata(setup))

        assert receipt.status == 1
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == 2 * TRANSFER_AMOUNT
        assert setup.chain.get_transaction_count(MOCK_AUTHORIZER_ADDRESS) == 2

    def test_confirmation(self, setup):
        _, receipt = _send(setup, _transfer_calldata(setup))
        confirmation = receipt.to_confirmation()
        assert confirmation.is_success()
        assert confirmation.from_address == MOCK_SPONSOR_ADDRESS
        assert confirmation.transaction_fee == receipt.gas_used * receipt.effective_gas_price


class TestSelfSponsoredBatch:
    def test_transfer(self, setup):
        signed, receipt = _send(setup, _transfer_calldata(setup), sponsored=False)

        assert signed.transaction.authorization_list[0].nonce == 1
        assert receipt.status == 1
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == TRANSFER_AMOUNT
        # one bump for the transaction, one for the authorization
        assert setup.chain.get_transaction_count(MOCK_AUTHORIZER_ADDRESS) == 2
        assert setup.chain.get_balance(MOCK_AUTHORIZER_ADDRESS) == ONE_ETH - receipt.transaction_fee
        assert setup.chain.get_balance(MOCK_SPONSOR_ADDRESS) == ONE_ETH

    def test_live_nonce_is_skipped(self, setup):
        auth = _authorization(setup, nonce=0)
        _, receipt = _send(setup, _transfer_calldata(setup), sponsored=False, authorizations=[auth])

        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) is None
        assert receipt.status == 1
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == 0


class TestBatchedAuthorizationConsumption:
    def test_transfer_with_authorization_inside_batch(self, setup):
        auth = create_transfer_authorization(setup.token)
        data = encode_batch_calls([
            Call(to=setup.token.address, data=encode_authorization_consumption(auth)),
            Call(to=setup.token.address, data=encode_erc20_transfer(MOCK_OTHER_ADDRESS, 5)),
        ])

        _, receipt = _send(setup, data)

        assert receipt.status == 1
        assert [log["event"] for log in receipt.logs] == ["AuthorizationUsed", "Transfer", "Transfer"]
        assert setup.token.authorization_state(MOCK_AUTHORIZER_ADDRESS, auth.nonce) == AuthorizationState.USED
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == auth.value
        assert setup.token.balance_of(MOCK_OTHER_ADDRESS) == 5

    def test_expired_authorization_reverts_whole_batch(self, setup):
        auth = create_transfer_authorization(setup.token)
        setup.clock.advance(7200)
        data = encode_batch_calls([
            Call(to=setup.token.address, data=encode_erc20_transfer(MOCK_OTHER_ADDRESS, 5)),
            Call(to=setup.token.address, data=encode_authorization_consumption(auth)),
        ])

        _, receipt = _send(setup, data)

        assert receipt.status == 0
        assert "call 1 reverted" in receipt.revert_reason
        assert "AuthorizationExpiredError" in receipt.revert_reason
        assert receipt.logs == []
        assert setup.token.balance_of(MOCK_OTHER_ADDRESS) == 0
        assert setup.token.authorization_state(MOCK_AUTHORIZER_ADDRESS, auth.nonce) == AuthorizationState.UNUSED


class TestRevertSemantics:
    def test_revert_keeps_nonce_gas_and_delegation(self, setup):
        chain = setup.chain
        _, receipt = _send(setup, _transfer_calldata(setup, amount=MOCK_INITIAL_SUPPLY + 1))

        assert receipt.status == 0
        assert "exceeds balance" in receipt.revert_reason
        assert chain.get_transaction_count(MOCK_SPONSOR_ADDRESS) == 1
        assert chain.get_balance(MOCK_SPONSOR_ADDRESS) == ONE_ETH - receipt.transaction_fee
        assert chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) == setup.delegate.address
        assert setup.token.balance_of(MOCK_AUTHORIZER_ADDRESS) == MOCK_INITIAL_SUPPLY

        confirmation = receipt.to_confirmation()
        assert confirmation.status == TransactionStatus.FAILED
        assert confirmation.revert_reason == receipt.revert_reason


class TestAuthorizationProcessing:
    def test_wrong_chain_is_skipped(self, setup):
        auth = _authorization(setup, chain_id=MOCK_CHAIN_ID + 1)
        _, receipt = _send(setup, _transfer_calldata(setup), authorizations=[auth])

        assert receipt.status == 1
        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) is None
        assert setup.chain.get_transaction_count(MOCK_AUTHORIZER_ADDRESS) == 0

    def test_chain_zero_is_applied(self, setup):
        auth = _authorization(setup, chain_id=0)
        _send(setup, _transfer_calldata(setup), authorizations=[auth])
        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) == setup.delegate.address

    def test_stale_nonce_is_skipped(self, setup):
        auth = _authorization(setup, nonce=3)
        _send(setup, _transfer_calldata(setup), authorizations=[auth])
        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) is None

    def test_later_authorization_wins(self, setup):
        first = _authorization(setup, nonce=0, delegate=MOCK_OTHER_ADDRESS)
        second = _authorization(setup, nonce=1)
        _, receipt = _send(setup, _transfer_calldata(setup), authorizations=[first, second])

        assert receipt.status == 1
        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) == setup.delegate.address
        assert setup.chain.get_transaction_count(MOCK_AUTHORIZER_ADDRESS) == 2

    def test_zero_address_clears_delegation(self, setup):
        _send(setup, _transfer_calldata(setup))
        clear = _authorization(setup, delegate=ZERO_ADDRESS)
        _send(setup, b"", authorizations=[clear])

        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) is None
        assert setup.chain.get_code(MOCK_AUTHORIZER_ADDRESS) == b""


class TestRejection:
    """Rejected transactions change nothing."""

    def _assert_untouched(self, setup):
        assert setup.chain.get_transaction_count(MOCK_SPONSOR_ADDRESS) == 0
        assert setup.chain.get_balance(MOCK_SPONSOR_ADDRESS) == ONE_ETH
        assert setup.chain.get_delegation(MOCK_AUTHORIZER_ADDRESS) is None

    @pytest.mark.parametrize("overrides, reason", [
        ({"chain_id": MOCK_CHAIN_ID + 1}, "chain id"),
        ({"nonce": 5}, "nonce"),
        ({"max_fee_per_gas": MOCK_BASE_FEE - 1}, "below base fee"),
        ({"max_priority_fee_per_gas": MAX_FEE + 1}, "priority fee"),
        ({"gas_limit": 21_000}, "intrinsic gas"),
        ({"gas_limit": 10**12}, "insufficient funds"),
        ({"authorizations": []}, "empty authorization list"),
    ])
    def test_rejected(self, setup, overrides, reason):
        with pytest.raises(TransactionRejectedError, match=reason):
            _send(setup, _transfer_calldata(setup), **overrides)
        self._assert_untouched(setup)

    def test_malformed_bytes(self, setup):
        with pytest.raises(TransactionRejectedError, match="malformed"):
            setup.chain.send_raw_transaction(b"\x04\xc0")
        self._assert_untouched(setup)

    def test_replayed_raw_transaction(self, setup):
        signed, _ = _send(setup, _transfer_calldata(setup))
        with pytest.raises(TransactionRejectedError, match="nonce"):
            setup.chain.send_raw_transaction(signed.raw_transaction)


class TestDirectCalls:
    def test_read_only_call(self, setup):
        data = encode_function_call("balanceOf(address)", [MOCK_AUTHORIZER_ADDRESS])
        assert setup.chain.call(to=setup.token.address, data=data) == MOCK_INITIAL_SUPPLY

    def test_call_discards_writes(self, setup):
        data = encode_function_call("transfer(address,uint256)", [MOCK_RECIPIENT_ADDRESS, 1])
        assert setup.chain.call(to=setup.token.address, data=data, sender=MOCK_AUTHORIZER_ADDRESS) is True
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == 0

    def test_transact_transfer_with_authorization(self, setup):
        auth = create_transfer_authorization(setup.token)
        data = encode_authorization_consumption(auth)

        receipt = setup.chain.transact(sender=MOCK_SPONSOR_ADDRESS, to=setup.token.address, data=data)

        assert receipt.status == 1
        assert setup.token.balance_of(MOCK_RECIPIENT_ADDRESS) == auth.value
        assert setup.chain.get_transaction_count(MOCK_SPONSOR_ADDRESS) == 1

        replay = setup.chain.transact(sender=MOCK_SPONSOR_ADDRESS, to=setup.token.address, data=data)
        assert replay.status == 0
        assert "AuthorizationAlreadyUsedError" in replay.revert_reason

    def test_token_called_directly_matches_args(self, setup):
        auth = create_transfer_authorization(setup.token)
        data = encode_function_call(
            "transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,uint8,bytes32,bytes32)",
            [
                auth.authorizer, auth.recipient, auth.value, auth.validAfter, auth.validBefore,
                bytes.fromhex(auth.nonce[2:]), auth.signature.v,
                bytes.fromhex(auth.signature.r[2:]), bytes.fromhex(auth.signature.s[2:]),
            ],
        )
        assert data == encode_authorization_consumption(auth)
        assert len(authorization_args(auth)) == 9
