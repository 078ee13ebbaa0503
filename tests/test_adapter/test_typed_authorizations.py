"""
EIP-3009 typed-data signer tests.

The locally computed domain separator, struct hash and digest are checked
against ``eth_account``'s EIP-712 encoder.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from delegation_kit.adapters.evm.signatures import (
    build_cancel_typed_data,
    build_transfer_typed_data,
    random_authorization_nonce,
    sign_cancel_authorization,
    sign_receive_authorization,
    sign_transfer_authorization,
)
from delegation_kit.adapters.evm.standards import (
    CANCEL_AUTHORIZATION_TYPEHASH,
    RECEIVE_WITH_AUTHORIZATION_TYPEHASH,
    TRANSFER_WITH_AUTHORIZATION_TYPEHASH,
    EIP712Domain,
)

from test_mocks import (
    MOCK_AUTHORIZER_ADDRESS,
    MOCK_AUTHORIZER_PRIVATE_KEY,
    MOCK_CHAIN_ID_SEPOLIA,
    MOCK_CURRENT_TIME,
    MOCK_RECIPIENT_ADDRESS,
    MOCK_TOKEN_ADDRESS,
    MOCK_TOKEN_NAME,
)

NONCE = "0x" + "11" * 32


def _transfer(**overrides):
    params = dict(
        private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
        token=MOCK_TOKEN_ADDRESS,
        domain_name=MOCK_TOKEN_NAME,
        chain_id=MOCK_CHAIN_ID_SEPOLIA,
        recipient=MOCK_RECIPIENT_ADDRESS,
        value=25 * 10**18,
        valid_after=MOCK_CURRENT_TIME - 60,
        valid_before=MOCK_CURRENT_TIME + 3600,
        nonce=NONCE,
    )
    params.update(overrides)
    return sign_transfer_authorization(**params)


class TestTypeHashes:
    def test_distinct_primary_types(self):
        hashes = {
            TRANSFER_WITH_AUTHORIZATION_TYPEHASH,
            RECEIVE_WITH_AUTHORIZATION_TYPEHASH,
            CANCEL_AUTHORIZATION_TYPEHASH,
        }
        assert len(hashes) == 3

    def test_domain_version_is_one(self):
        domain = EIP712Domain(name=MOCK_TOKEN_NAME, chainId=1, verifyingContract=MOCK_TOKEN_ADDRESS)
        assert domain.version == "1"

    def test_domain_binds_chain_and_contract(self):
        base = EIP712Domain(name=MOCK_TOKEN_NAME, chainId=1, verifyingContract=MOCK_TOKEN_ADDRESS)
        other_chain = EIP712Domain(name=MOCK_TOKEN_NAME, chainId=2, verifyingContract=MOCK_TOKEN_ADDRESS)
        other_token = EIP712Domain(name=MOCK_TOKEN_NAME, chainId=1, verifyingContract=MOCK_RECIPIENT_ADDRESS)
        assert len({base.separator(), other_chain.separator(), other_token.separator()}) == 3


class TestEIP712Encoding:
    """Local hashing must agree with eth_account's encoder."""

    def test_transfer_digest_matches_eth_account(self):
        typed = build_transfer_typed_data(_transfer())
        signable = encode_typed_data(full_message=typed.to_dict())

        assert signable.header == typed.domain.separator()
        assert signable.body == typed.message.struct_hash(TRANSFER_WITH_AUTHORIZATION_TYPEHASH)

    def test_receive_digest_matches_eth_account(self):
        auth = sign_receive_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            token=MOCK_TOKEN_ADDRESS,
            domain_name=MOCK_TOKEN_NAME,
            chain_id=MOCK_CHAIN_ID_SEPOLIA,
            recipient=MOCK_RECIPIENT_ADDRESS,
            value=1,
            valid_after=0,
            valid_before=MOCK_CURRENT_TIME,
            nonce=NONCE,
        )
        typed = build_transfer_typed_data(auth)
        signable = encode_typed_data(full_message=typed.to_dict())

        assert typed.primary_type == "ReceiveWithAuthorization"
        assert signable.body == typed.message.struct_hash(RECEIVE_WITH_AUTHORIZATION_TYPEHASH)

    def test_cancel_digest_matches_eth_account(self):
        request = sign_cancel_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            token=MOCK_TOKEN_ADDRESS,
            domain_name=MOCK_TOKEN_NAME,
            chain_id=MOCK_CHAIN_ID_SEPOLIA,
            nonce=NONCE,
        )
        typed = build_cancel_typed_data(request)
        signable = encode_typed_data(full_message=typed.to_dict())

        assert signable.header == typed.domain.separator()
        assert signable.body == typed.message.struct_hash()


class TestSignTransferAuthorization:
    def test_fields_and_recovery(self):
        auth = _transfer()
        assert auth.authorizer == MOCK_AUTHORIZER_ADDRESS
        assert auth.authorization_type == "TransferWithAuthorization"
        assert auth.signature.signature_type == "ERC3009"
        assert auth.signature.v in (27, 28)

        signable = encode_typed_data(full_message=build_transfer_typed_data(auth).to_dict())
        recovered = Account.recover_message(
            signable, vrs=(auth.signature.v, auth.signature.r_int, auth.signature.s_int)
        )
        assert recovered == MOCK_AUTHORIZER_ADDRESS

    def test_deterministic_for_fixed_nonce(self):
        assert _transfer().signature == _transfer().signature

    def test_random_nonce_when_omitted(self):
        first, second = _transfer(nonce=None), _transfer(nonce=None)
        assert len(first.nonce) == 66
        assert first.nonce != second.nonce

    def test_random_authorization_nonce_is_bytes32(self):
        nonce = random_authorization_nonce()
        assert nonce.startswith("0x")
        assert len(bytes.fromhex(nonce[2:])) == 32

    def test_empty_window_rejected(self):
        with pytest.raises(ValueError, match="strictly less"):
            _transfer(valid_after=MOCK_CURRENT_TIME, valid_before=MOCK_CURRENT_TIME)
        with pytest.raises(ValueError):
            _transfer(valid_after=MOCK_CURRENT_TIME + 1, valid_before=MOCK_CURRENT_TIME)

    def test_receive_signature_differs_from_transfer(self):
        receive = sign_receive_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            token=MOCK_TOKEN_ADDRESS,
            domain_name=MOCK_TOKEN_NAME,
            chain_id=MOCK_CHAIN_ID_SEPOLIA,
            recipient=MOCK_RECIPIENT_ADDRESS,
            value=25 * 10**18,
            valid_after=MOCK_CURRENT_TIME - 60,
            valid_before=MOCK_CURRENT_TIME + 3600,
            nonce=NONCE,
        )
        assert receive.authorization_type == "ReceiveWithAuthorization"
        assert receive.signature != _transfer().signature

    def test_canonical_json_is_stable(self):
        assert _transfer().to_canonical_json() == _transfer().to_canonical_json()


class TestSignCancelAuthorization:
    def test_cancel_fields(self):
        request = sign_cancel_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            token=MOCK_TOKEN_ADDRESS,
            domain_name=MOCK_TOKEN_NAME,
            chain_id=MOCK_CHAIN_ID_SEPOLIA,
            nonce=NONCE,
        )
        assert request.authorizer == MOCK_AUTHORIZER_ADDRESS
        assert request.nonce == NONCE
        assert request.signature.signature_type == "CancelAuthorization"
