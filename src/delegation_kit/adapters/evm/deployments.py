"""
Deployment records.

Contract addresses are persisted per network as small JSON files::

    deployments/<network>.json        BatchCallDelegation ("contractAddress")
    deployments/token-<network>.json  AuthorizationToken  ("address")

Both carry ``deployer``, ``network`` and an ISO-8601 ``time``.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import AliasChoices, Field, ValidationError, field_validator
from eth_utils import is_address, to_checksum_address

from ...engine.exceptions import ConfigurationError
from ...schemas.bases import CanonicalModel

DEFAULT_DEPLOYMENTS_DIR = Path("deployments")


class DeploymentRecord(CanonicalModel):
    """One deployed contract. ``contractAddress`` is accepted as an alias of ``address``."""
    address: str = Field(..., validation_alias=AliasChoices("address", "contractAddress"))
    deployer: str
    network: str
    time: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @field_validator("address", "deployer", mode="before")
    @classmethod
    def _checksum(cls, value: str) -> str:
        if not isinstance(value, str) or not is_address(value):
            raise ValueError(f"Invalid address: {value!r}")
        return to_checksum_address(value)


def delegate_record_path(network: str, directory: Union[str, Path] = DEFAULT_DEPLOYMENTS_DIR) -> Path:
    return Path(directory) / f"{network}.json"


def token_record_path(network: str, directory: Union[str, Path] = DEFAULT_DEPLOYMENTS_DIR) -> Path:
    return Path(directory) / f"token-{network}.json"


def load_deployment(path: Union[str, Path]) -> DeploymentRecord:
    """
    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Deployment file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Unreadable deployment file {path}: {e}") from e
    try:
        return DeploymentRecord.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Malformed deployment file {path}: {e}") from e


def save_deployment(
    path: Union[str, Path],
    record: DeploymentRecord,
    *,
    address_key: str = "address",
) -> Path:
    """Write ``record`` as indented JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = record.to_dict()
    data[address_key] = data.pop("address")
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def load_delegate_deployment(network: str, directory: Union[str, Path] = DEFAULT_DEPLOYMENTS_DIR) -> DeploymentRecord:
    return load_deployment(delegate_record_path(network, directory))


def load_token_deployment(network: str, directory: Union[str, Path] = DEFAULT_DEPLOYMENTS_DIR) -> DeploymentRecord:
    return load_deployment(token_record_path(network, directory))


def record_delegate_deployment(
    *, address: str, deployer: str, network: str, directory: Union[str, Path] = DEFAULT_DEPLOYMENTS_DIR,
    time: Optional[str] = None,
) -> Path:
    record = DeploymentRecord(address=address, deployer=deployer, network=network, **({"time": time} if time else {}))
    return save_deployment(delegate_record_path(network, directory), record, address_key="contractAddress")


def record_token_deployment(
    *, address: str, deployer: str, network: str, directory: Union[str, Path] = DEFAULT_DEPLOYMENTS_DIR,
    time: Optional[str] = None,
) -> Path:
    record = DeploymentRecord(address=address, deployer=deployer, network=network, **({"time": time} if time else {}))
    return save_deployment(token_record_path(network, directory), record)
