"""
Delegated ERC-20 transfer through BatchCallDelegation.

Signs an EIP-7702 authorization for the PRIVATE_KEY account, wraps a single
``transfer`` in ``execute(calls)`` and submits the 0x04 transaction. With
SPONSOR_PRIVATE_KEY set the sponsor pays gas; otherwise the account pays.

Reads PRIVATE_KEY, RPC_URL, RECIPIENT_ADDRESS and TOKEN_ADDRESS (or
deployments/token-<network>.json) plus BATCH_CALL_DELEGATION_ADDRESS (or
deployments/<network>.json).
"""

import asyncio
import logging
import sys

from delegation_kit.adapters.evm import (
    DelegationAdapter,
    amount_to_value,
    load_delegate_deployment,
    load_settings,
    load_token_deployment,
)

NETWORK = "sepolia"
AMOUNT = "1"

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


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
        request_timeout=settings.request_timeout,
    )
    metadata = await adapter.get_token_metadata(token)
    value = amount_to_value(amount=AMOUNT, decimals=metadata["decimals"])

    print("Authorizer:", adapter.address)
    print("Sponsor:", adapter.sponsor_address)
    print(f"Sending {AMOUNT} {metadata['symbol']} to {settings.recipient_address}")

    confirmation = await adapter.delegated_erc20_transfer(
        token_address=token,
        recipient=settings.recipient_address,
        value=value,
        delegate_address=delegate,
    )
    adapter.require_success(confirmation)
    print("Mined in block", confirmation.block_number, "tx", confirmation.tx_hash)
    print("Recipient balance:", await adapter.get_token_balance(token, settings.recipient_address))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception as e:
        print("Error:", e)
        sys.exit(1)
