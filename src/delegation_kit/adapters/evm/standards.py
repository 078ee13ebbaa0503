from dataclasses import dataclass, field
from typing import Dict, Any, List, Union

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from .constants import EIP712_DOMAIN_VERSION


# -----------------------------
# EIP-712 Domain
# -----------------------------

EIP712_DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
EIP712_DOMAIN_TYPEHASH = keccak(text=EIP712_DOMAIN_TYPE)


@dataclass
class EIP712Domain:
    """
    EIP-712 domain separator.
    Used to prevent signature replay across tokens and chains.
    """
    name: str
    chainId: int
    verifyingContract: str
    version: str = EIP712_DOMAIN_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chainId,
            "verifyingContract": self.verifyingContract,
        }

    def separator(self) -> bytes:
        """Compute the domain separator the token records at construction."""
        return keccak(abi_encode(
            ["bytes32", "bytes32", "bytes32", "uint256", "address"],
            [
                EIP712_DOMAIN_TYPEHASH,
                keccak(text=self.name),
                keccak(text=self.version),
                self.chainId,
                to_checksum_address(self.verifyingContract),
            ],
        ))


_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

_AUTHORIZATION_FIELDS = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

_CANCEL_FIELDS = [
    {"name": "authorizer", "type": "address"},
    {"name": "nonce", "type": "bytes32"},
]


def _type_string(primary_type: str, fields: List[Dict[str, str]]) -> str:
    return f"{primary_type}(" + ",".join(f"{f['type']} {f['name']}" for f in fields) + ")"


TRANSFER_WITH_AUTHORIZATION_TYPEHASH = keccak(text=_type_string("TransferWithAuthorization", _AUTHORIZATION_FIELDS))
RECEIVE_WITH_AUTHORIZATION_TYPEHASH = keccak(text=_type_string("ReceiveWithAuthorization", _AUTHORIZATION_FIELDS))
CANCEL_AUTHORIZATION_TYPEHASH = keccak(text=_type_string("CancelAuthorization", _CANCEL_FIELDS))


def _nonce_bytes(nonce: Union[str, bytes]) -> bytes:
    if isinstance(nonce, (bytes, bytearray)):
        return bytes(nonce)
    return bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce)


def eip712_digest(domain_separator: bytes, struct_hash: bytes) -> bytes:
    """keccak256(0x1901 || domainSeparator || structHash)."""
    return keccak(b"\x19\x01" + domain_separator + struct_hash)


# -----------------------------
# EIP-3009: Transfer / Receive With Authorization
# -----------------------------


@dataclass
class TransferWithAuthorizationMessage:
    """
    Represents the message payload for EIP-3009 "TransferWithAuthorization"
    and "ReceiveWithAuthorization" (identical fields, different type name).

    The EIP defines the field name `from` which is a Python reserved word;
    this class uses `authorizer` as the attribute name and maps it to
    `from` in `to_dict()`.

    Attributes:
        authorizer: Address of the account authorizing the transfer (maps to `from`).
        recipient: Address receiving the tokens (maps to `to`).
        value: Amount of tokens to transfer (uint256).
        validAfter: Unix timestamp after which the authorization becomes valid.
        validBefore: Unix timestamp before which the authorization expires.
        nonce: A unique nonce (bytes32 hex string) preventing replay.
    """
    authorizer: str
    recipient: str
    value: int
    validAfter: int
    validBefore: int
    nonce: str

    def to_dict(self) -> Dict[str, Any]:
        """Return a dictionary using the EIP-3009 typed field names."""
        return {
            "from": self.authorizer,
            "to": self.recipient,
            "value": self.value,
            "validAfter": self.validAfter,
            "validBefore": self.validBefore,
            "nonce": self.nonce,
        }

    def struct_hash(self, typehash: bytes = TRANSFER_WITH_AUTHORIZATION_TYPEHASH) -> bytes:
        return keccak(abi_encode(
            ["bytes32", "address", "address", "uint256", "uint256", "uint256", "bytes32"],
            [
                typehash,
                to_checksum_address(self.authorizer),
                to_checksum_address(self.recipient),
                self.value,
                self.validAfter,
                self.validBefore,
                _nonce_bytes(self.nonce),
            ],
        ))


@dataclass
class CancelAuthorizationMessage:
    """Message payload for EIP-3009 "CancelAuthorization"."""
    authorizer: str
    nonce: str

    def to_dict(self) -> Dict[str, Any]:
        return {"authorizer": self.authorizer, "nonce": self.nonce}

    def struct_hash(self) -> bytes:
        return keccak(abi_encode(
            ["bytes32", "address", "bytes32"],
            [CANCEL_AUTHORIZATION_TYPEHASH, to_checksum_address(self.authorizer), _nonce_bytes(self.nonce)],
        ))


@dataclass
class ERC3009TypedData:
    """
    Container for EIP-3009 typed data usable with EIP-712 signing routines.

    ``to_dict()`` produces the ``{types, primaryType, domain, message}``
    layout consumed by ``eth_account.Account.sign_typed_data`` and
    ``eth_signTypedData_v4``.

    Attributes:
        domain: EIP712Domain instance describing the signing domain.
        message: Transfer or cancel message carrying the payload.
        primary_type: "TransferWithAuthorization", "ReceiveWithAuthorization"
            or "CancelAuthorization".
    """
    domain: EIP712Domain
    message: Union[TransferWithAuthorizationMessage, CancelAuthorizationMessage]

    primary_type: str = "TransferWithAuthorization"

    types: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.types:
            fields = _CANCEL_FIELDS if self.primary_type == "CancelAuthorization" else _AUTHORIZATION_FIELDS
            self.types = {"EIP712Domain": list(_DOMAIN_FIELDS), self.primary_type: list(fields)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }

    def digest(self) -> bytes:
        """EIP-712 digest computed without ``eth_account``, as a contract does."""
        if isinstance(self.message, CancelAuthorizationMessage):
            struct_hash = self.message.struct_hash()
        elif self.primary_type == "ReceiveWithAuthorization":
            struct_hash = self.message.struct_hash(RECEIVE_WITH_AUTHORIZATION_TYPEHASH)
        else:
            struct_hash = self.message.struct_hash(TRANSFER_WITH_AUTHORIZATION_TYPEHASH)
        return eip712_digest(self.domain.separator(), struct_hash)
