"""
EVM Protocol Constants and Environment Configuration

Protocol-level constants for EIP-7702 set-code transactions and EIP-3009
typed authorizations, plus environment-aware helpers that load keys and
endpoints from a ``.env`` file.

Environment Variables:
    - PRIVATE_KEY: Authorizer's private key (0x-prefixed hex)
    - SPONSOR_PRIVATE_KEY: Optional gas sponsor's private key
    - RPC_URL: JSON-RPC endpoint of the target chain
    - BATCH_CALL_DELEGATION_ADDRESS: Deployed delegate contract
    - TOKEN_ADDRESS: Deployed EIP-3009 token
    - RECIPIENT_ADDRESS: Default transfer recipient
"""

import os
from typing import Optional, List
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, Field, ValidationError
import dotenv

from ...engine.exceptions import ConfigurationError

dotenv.load_dotenv()

# ---------------------------------------------------------------------------
# EIP-7702
# ---------------------------------------------------------------------------

#: Typed-transaction envelope byte of a set-code transaction.
SET_CODE_TX_TYPE: int = 0x04

#: Domain separation byte prepended to the RLP of ``[chain_id, address, nonce]``.
SET_CODE_AUTHORIZATION_MAGIC: int = 0x05

#: Account nonces are 64-bit.
MAX_AUTHORIZATION_NONCE: int = 2**64 - 1

MAX_UINT256: int = 2**256 - 1

#: Delegation designator written to an authority's code: 0xef0100 || address.
DELEGATION_DESIGNATOR_PREFIX: bytes = b"\xef\x01\x00"

# Intrinsic gas, as charged by the in-process host.
TX_BASE_GAS: int = 21_000
PER_EMPTY_ACCOUNT_COST: int = 25_000
PER_AUTH_BASE_COST: int = 12_500
CALLDATA_ZERO_BYTE_GAS: int = 4
CALLDATA_NONZERO_BYTE_GAS: int = 16

DEFAULT_BATCH_GAS_LIMIT: int = 10_000_000
DEFAULT_DELEGATED_TRANSFER_GAS_LIMIT: int = 1_500_000

# ---------------------------------------------------------------------------
# EIP-3009 / EIP-712
# ---------------------------------------------------------------------------

EIP712_DOMAIN_VERSION: str = "1"

#: secp256k1 group order.
SECP256K1_N: int = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N: int = SECP256K1_N // 2

# Receipt polling defaults used by the network adapter.
DEFAULT_RECEIPT_POLL_ATTEMPTS: int = 60
DEFAULT_RECEIPT_POLL_INTERVAL: float = 5.0


class DelegationSettings(BaseModel):
    """Runtime settings resolved from the environment."""
    private_key: str = Field(..., description="Authorizer private key")
    rpc_url: str = Field(..., description="JSON-RPC endpoint URL")
    sponsor_private_key: Optional[str] = Field(None, description="Gas sponsor private key; authorizer pays when unset")
    batch_call_delegation_address: Optional[str] = Field(None, description="Delegate contract address")
    token_address: Optional[str] = Field(None, description="EIP-3009 token address")
    recipient_address: Optional[str] = Field(None, description="Default transfer recipient")
    request_timeout: int = Field(default=60, ge=1, description="HTTP request timeout in seconds")


_SETTINGS_ENV = {
    "private_key": "PRIVATE_KEY",
    "rpc_url": "RPC_URL",
    "sponsor_private_key": "SPONSOR_PRIVATE_KEY",
    "batch_call_delegation_address": "BATCH_CALL_DELEGATION_ADDRESS",
    "token_address": "TOKEN_ADDRESS",
    "recipient_address": "RECIPIENT_ADDRESS",
}


def load_settings(**overrides) -> DelegationSettings:
    """
    Build :class:`DelegationSettings` from environment variables.

    Explicit keyword overrides win over the environment.

    Raises:
        ConfigurationError: If a required variable is missing or invalid.

    Example::

        settings = load_settings(rpc_url="http://127.0.0.1:8545")
    """
    values = {}
    for field_name, env_name in _SETTINGS_ENV.items():
        value = os.getenv(env_name)
        if value:
            values[field_name] = value.strip()
    values.update({k: v for k, v in overrides.items() if v is not None})

    missing: List[str] = [
        _SETTINGS_ENV[name] for name in ("private_key", "rpc_url") if not values.get(name)
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    try:
        return DelegationSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


def get_private_key_from_env() -> Optional[str]:
    """
    Load the authorizer's private key from the ``PRIVATE_KEY`` variable.

    Example:
        # export PRIVATE_KEY="0x1234567890abcdef..."
        adapter = DelegationAdapter(private_key=get_private_key_from_env())
    """
    return os.getenv("PRIVATE_KEY")


def get_sponsor_private_key_from_env() -> Optional[str]:
    """Load the gas sponsor's private key from ``SPONSOR_PRIVATE_KEY``."""
    return os.getenv("SPONSOR_PRIVATE_KEY")


def get_rpc_url_from_env() -> Optional[str]:
    """Load the JSON-RPC endpoint from ``RPC_URL``."""
    return os.getenv("RPC_URL")


def amount_to_value(*, amount: float | int | str | Decimal, decimals: int) -> int:
    """Convert a human-readable token `amount` into smallest-unit integer `value`.

    Args:
        amount: Human-readable amount (e.g. 25 tokens). Accepts float/int/str/Decimal.
        decimals: Token decimals (e.g. 18).

    Returns:
        int: Smallest-unit integer value.

    Raises:
        ValueError: If inputs are invalid or the amount cannot be represented in smallest units.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if dec_amount < 0:
        raise ValueError("amount must be non-negative")

    scaled = dec_amount * (Decimal(10) ** decimals)

    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"amount {amount!r} is not representable with decimals={decimals} "
            f"(would create fractional smallest units)"
        )

    return int(scaled)


def value_to_amount(*, value: int | str | Decimal, decimals: int) -> Decimal:
    """Convert a smallest-unit integer `value` into a human-readable `amount`.

    Raises:
        ValueError: If inputs are invalid.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid value: {value!r}") from e

    if dec_value < 0 or dec_value != dec_value.to_integral_value():
        raise ValueError("value must be a non-negative integer in smallest units")

    return dec_value / (Decimal(10) ** decimals)
