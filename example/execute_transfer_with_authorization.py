"""
Direct EIP-3009 transferWithAuthorization.

The PRIVATE_KEY account signs a TransferWithAuthorization message off-chain;
the sponsor (SPONSOR_PRIVATE_KEY, or the same account) submits it to the
token. The authorization is verified locally before anything is sent.
"""

import asyncio
import sys
import time

from delegation_kit.adapters.evm import (
    DelegationAdapter,
    amount_to_value,
    load_settings,
    load_token_deployment,
    sign_transfer_authorization,
    verify_transfer_authorization,
)

NETWORK = "sepolia"
AMOUNT = "25"


async def main():
    settings = load_settings()
    if not settings.recipient_address:
        raise SystemExit("RECIPIENT_ADDRESS missing")
    token = settings.token_address or load_token_deployment(NETWORK).address

    adapter = DelegationAdapter(
        private_key=settings.private_key,
        rpc_url=settings.rpc_url,
        sponsor_private_key=settings.sponsor_private_key,
    )
    metadata = await adapter.get_token_metadata(token)
    chain_id = await adapter.get_chain_id()
    now = int(time.time())

    authorization = sign_transfer_authorization(
        private_key=settings.private_key,
        token=token,
        domain_name=metadata["name"],
        chain_id=chain_id,
        recipient=settings.recipient_address,
        value=amount_to_value(amount=AMOUNT, decimals=metadata["decimals"]),
        valid_after=now - 60,
        valid_before=now + 3600,
    )
    print("Authorization nonce:", authorization.nonce)

    balance = await adapter.get_token_balance(token, authorization.authorizer)
    state = await adapter.get_authorization_state(token, authorization.authorizer, authorization.nonce)
    result = verify_transfer_authorization(authorization, authorizer_balance=balance, authorization_state=state)
    if not result.is_success():
        raise SystemExit(result.get_error_message())

    confirmation = adapter.require_success(await adapter.transfer_with_authorization(authorization))
    print("transferWithAuthorization mined in block", confirmation.block_number)
    print("State:", (await adapter.get_authorization_state(token, authorization.authorizer, authorization.nonce)).name)
    print("Recipient balance:", await adapter.get_token_balance(token, settings.recipient_address))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception as e:
        print("Error:", e)
        sys.exit(1)
