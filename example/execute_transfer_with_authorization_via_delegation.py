"""
EIP-3009 authorization consumed from inside a delegated batch.

The account signs a TransferWithAuthorization for its own tokens, then a
0x04 transaction delegates the account to BatchCallDelegation and calls
``execute`` with a single ``transferWithAuthorization`` sub-call.
"""

import asyncio
import sys
import time

from delegation_kit.adapters.evm import (
    Call,
    DelegationAdapter,
    amount_to_value,
    encode_authorization_consumption,
    load_delegate_deployment,
    load_settings,
    load_token_deployment,
    sign_transfer_authorization,
)

NETWORK = "sepolia"
AMOUNT = "10"


async def main():
    settings = load_settings()
    if not settings.recipient_address:
        raise SystemExit("RECIPIENT_ADDRESS missing")
    delegate = settings.batch_call_delegation_address or load_delegate_deployment(NETWORK).address
    token = settings.token_address or load_token_deployment(NETWORK).address

    adapter = DelegationAdapter(
        private_key=settings.private_key,
        rpc_url=settings.rpc_url,
        sponsor_private_key=settings.sponsor_private_key,
    )
    metadata = await adapter.get_token_metadata(token)
    now = int(time.time())
    authorization = sign_transfer_authorization(
        private_key=settings.private_key,
        token=token,
        domain_name=metadata["name"],
        chain_id=await adapter.get_chain_id(),
        recipient=settings.recipient_address,
        value=amount_to_value(amount=AMOUNT, decimals=metadata["decimals"]),
        valid_after=now - 30,
        valid_before=now + 1800,
    )

    print("Token:", token)
    print("BatchCallDelegation:", delegate)
    print("Recipient:", settings.recipient_address)
    print("Authorization nonce (token):", authorization.nonce)
    print("Delegation nonce (tx):", await adapter.get_authorization_nonce())

    calls = [Call(to=token, data=encode_authorization_consumption(authorization), value=0)]
    confirmation = adapter.require_success(
        await adapter.execute_batch(calls, delegate_address=delegate, gas_limit=1_500_000)
    )
    print("Sent 0x04 tx hash:", confirmation.tx_hash)
    print("Mined in block", confirmation.block_number)
    print("Recipient balance after delegated transfer:",
          await adapter.get_token_balance(token, settings.recipient_address))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception as e:
        print("Error:", e)
        sys.exit(1)
