"""
EIP-7702 authorization signing tests.

Covers the 0x05 payload layout, the nonce convention for sponsored and
self-sponsored transactions, and recovery.
"""

import pytest
from eth_account import Account

from delegation_kit.adapters.evm.crypto import digest
from delegation_kit.adapters.evm.encoding import decode
from delegation_kit.adapters.evm.schemas import SetCodeAuthorization
from delegation_kit.adapters.evm.signatures import (
    check_authorization_nonce,
    recover_authorization_signer,
    resolve_authorization_nonce,
    set_code_authorization_digest,
    set_code_authorization_payload,
    sign_set_code_authorization,
)
from delegation_kit.engine.exceptions import (
    AuthorizationNonceError,
    EncodingError,
    SignatureRecoveryError,
)

from test_mocks import (
    MOCK_AUTHORIZER_ADDRESS,
    MOCK_AUTHORIZER_PRIVATE_KEY,
    MOCK_CHAIN_ID_SEPOLIA,
    MOCK_DELEGATE_ADDRESS,
    MOCK_SPONSOR_ADDRESS,
)


class TestNonceConvention:
    """The embedded nonce is the authorizer's nonce when the list is processed."""

    def test_self_sponsored_uses_next_nonce(self):
        nonce = resolve_authorization_nonce(
            live_nonce=7, authorizer=MOCK_AUTHORIZER_ADDRESS, sender=MOCK_AUTHORIZER_ADDRESS,
        )
        assert nonce == 8

    def test_sponsored_uses_live_nonce(self):
        nonce = resolve_authorization_nonce(
            live_nonce=7, authorizer=MOCK_AUTHORIZER_ADDRESS, sender=MOCK_SPONSOR_ADDRESS,
        )
        assert nonce == 7

    def test_address_case_is_ignored(self):
        nonce = resolve_authorization_nonce(
            live_nonce=0, authorizer=MOCK_AUTHORIZER_ADDRESS.lower(), sender=MOCK_AUTHORIZER_ADDRESS,
        )
        assert nonce == 1

    def test_check_raises_on_mismatch(self):
        with pytest.raises(AuthorizationNonceError, match="self-sponsored"):
            check_authorization_nonce(
                nonce=7, live_nonce=7, authorizer=MOCK_AUTHORIZER_ADDRESS, sender=MOCK_AUTHORIZER_ADDRESS,
            )
        with pytest.raises(AuthorizationNonceError, match="sponsored"):
            check_authorization_nonce(
                nonce=8, live_nonce=7, authorizer=MOCK_AUTHORIZER_ADDRESS, sender=MOCK_SPONSOR_ADDRESS,
            )


class TestAuthorizationPayload:
    def test_magic_prefix_and_fields(self):
        payload = set_code_authorization_payload(
            chain_id=MOCK_CHAIN_ID_SEPOLIA, address=MOCK_DELEGATE_ADDRESS, nonce=0,
        )
        assert payload[0] == 0x05
        chain_id, address, nonce = decode(payload[1:])
        assert int.from_bytes(chain_id, "big") == MOCK_CHAIN_ID_SEPOLIA
        assert address == bytes.fromhex(MOCK_DELEGATE_ADDRESS[2:])
        assert nonce == b""

    def test_payload_never_collides_with_transaction_prefix(self):
        payload = set_code_authorization_payload(chain_id=1, address=MOCK_DELEGATE_ADDRESS, nonce=1)
        assert payload[0] != 0x04

    def test_nonce_over_64_bits_rejected(self):
        with pytest.raises(EncodingError):
            set_code_authorization_payload(chain_id=1, address=MOCK_DELEGATE_ADDRESS, nonce=2**64)


class TestSignSetCodeAuthorization:
    def test_sign_and_recover(self):
        auth = sign_set_code_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            chain_id=MOCK_CHAIN_ID_SEPOLIA,
            delegate_address=MOCK_DELEGATE_ADDRESS,
            nonce=3,
        )
        assert auth.is_signed
        assert auth.signature.signature_type == "SetCode"
        assert auth.address == MOCK_DELEGATE_ADDRESS
        assert recover_authorization_signer(auth) == MOCK_AUTHORIZER_ADDRESS

    def test_matches_eth_account_sign_authorization(self):
        auth = sign_set_code_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            chain_id=MOCK_CHAIN_ID_SEPOLIA,
            delegate_address=MOCK_DELEGATE_ADDRESS,
            nonce=5,
        )
        reference = Account.sign_authorization(
            {"chainId": MOCK_CHAIN_ID_SEPOLIA, "address": MOCK_DELEGATE_ADDRESS, "nonce": 5},
            MOCK_AUTHORIZER_PRIVATE_KEY,
        )
        assert auth.signature.y_parity == reference.y_parity
        assert auth.signature.r_int == reference.r
        assert auth.signature.s_int == reference.s

    def test_validates_against_live_nonce(self):
        auth = sign_set_code_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            chain_id=1,
            delegate_address=MOCK_DELEGATE_ADDRESS,
            nonce=4,
            live_nonce=4,
            sender=MOCK_SPONSOR_ADDRESS,
        )
        assert auth.nonce == 4

    def test_wrong_nonce_refused_before_signing(self):
        with pytest.raises(AuthorizationNonceError):
            sign_set_code_authorization(
                private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
                chain_id=1,
                delegate_address=MOCK_DELEGATE_ADDRESS,
                nonce=4,
                live_nonce=4,
            )

    def test_chain_id_zero_allowed(self):
        auth = sign_set_code_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            chain_id=0,
            delegate_address=MOCK_DELEGATE_ADDRESS,
            nonce=0,
        )
        assert auth.chain_id == 0
        assert recover_authorization_signer(auth) == MOCK_AUTHORIZER_ADDRESS

    def test_tampered_field_recovers_other_account(self):
        auth = sign_set_code_authorization(
            private_key=MOCK_AUTHORIZER_PRIVATE_KEY,
            chain_id=1,
            delegate_address=MOCK_DELEGATE_ADDRESS,
            nonce=0,
        )
        tampered = auth.model_copy(update={"nonce": 1})
        assert set_code_authorization_digest(tampered) != set_code_authorization_digest(auth)
        assert recover_authorization_signer(tampered) != MOCK_AUTHORIZER_ADDRESS

    def test_digest_is_keccak_of_payload(self):
        auth = SetCodeAuthorization(chain_id=1, address=MOCK_DELEGATE_ADDRESS, nonce=2)
        payload = set_code_authorization_payload(chain_id=1, address=MOCK_DELEGATE_ADDRESS, nonce=2)
        assert set_code_authorization_digest(auth) == digest(payload)

    def test_unsigned_cannot_be_recovered(self):
        auth = SetCodeAuthorization(chain_id=1, address=MOCK_DELEGATE_ADDRESS, nonce=0)
        assert not auth.is_signed
        with pytest.raises(SignatureRecoveryError, match="not signed"):
            recover_authorization_signer(auth)
