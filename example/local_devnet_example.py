"""
Sponsored delegation on the in-process chain; no node required.

Deploys BatchCallDelegation and AuthorizationToken, records both under
deployments/, then has a sponsor pay for a batch that consumes an EIP-3009
authorization and sends a plain ERC-20 transfer from the delegated account.
"""

import logging
import time

from eth_account import Account

from delegation_kit.adapters.evm import (
    Call,
    build_delegated_transaction,
    encode_authorization_consumption,
    encode_batch_calls,
    encode_erc20_transfer,
    record_delegate_deployment,
    record_token_deployment,
    resolve_authorization_nonce,
    sign_set_code_authorization,
    sign_transfer_authorization,
)
from delegation_kit.ledger import AuthorizationToken, BatchCallDelegation, LocalDevnet

NETWORK = "local"

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

authorizer = Account.create()
sponsor = Account.create()
deployer = Account.create().address
recipient = Account.create().address

AUTHORIZER_KEY = "0x" + bytes(authorizer.key).hex()
SPONSOR_KEY = "0x" + bytes(sponsor.key).hex()


def main():
    chain = LocalDevnet(chain_id=31337)
    delegate = chain.deploy(BatchCallDelegation, deployer=deployer)
    token = chain.deploy(AuthorizationToken, deployer=deployer)
    token.mint(authorizer.address, 1_000_000 * 10**18)
    chain.fund(sponsor.address, 10**18)

    print("Saved", record_delegate_deployment(address=delegate.address, deployer=deployer, network=NETWORK))
    print("Saved", record_token_deployment(address=token.address, deployer=deployer, network=NETWORK))

    now = int(time.time())
    transfer_auth = sign_transfer_authorization(
        private_key=AUTHORIZER_KEY,
        token=token.address,
        domain_name=token.name,
        chain_id=chain.chain_id,
        recipient=recipient,
        value=25 * 10**18,
        valid_after=now - 60,
        valid_before=now + 3600,
    )
    calls = [
        Call(to=token.address, data=encode_authorization_consumption(transfer_auth)),
        Call(to=token.address, data=encode_erc20_transfer(recipient, 5 * 10**18)),
    ]

    delegation = sign_set_code_authorization(
        private_key=AUTHORIZER_KEY,
        chain_id=chain.chain_id,
        delegate_address=delegate.address,
        nonce=resolve_authorization_nonce(
            live_nonce=chain.get_transaction_count(authorizer.address),
            authorizer=authorizer.address,
            sender=sponsor.address,
        ),
    )
    signed = build_delegated_transaction(
        private_key=SPONSOR_KEY,
        chain_id=chain.chain_id,
        nonce=chain.get_transaction_count(sponsor.address),
        max_priority_fee_per_gas=0,
        max_fee_per_gas=2 * chain.base_fee_per_gas,
        gas_limit=1_500_000,
        to=authorizer.address,
        data=encode_batch_calls(calls),
        authorization_list=[delegation],
    )

    receipt = chain.get_transaction_receipt(chain.send_raw_transaction(signed.raw_transaction))
    print("Status:", receipt.status, "gas used:", receipt.gas_used, "fee:", receipt.transaction_fee)
    for log in receipt.logs:
        print("  ", log["event"], log["args"])
    print("Authorizer code:", "0x" + chain.get_code(authorizer.address).hex())
    print("Recipient balance:", token.balance_of(recipient))
    print("Authorization state:", token.authorization_state(authorizer.address, transfer_auth.nonce).name)


if __name__ == "__main__":
    main()
