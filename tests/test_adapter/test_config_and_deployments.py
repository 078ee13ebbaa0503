"""
Settings, unit conversion and deployment record tests.
"""

import json
from decimal import Decimal

import pytest

from delegation_kit.adapters.evm.constants import amount_to_value, load_settings, value_to_amount
from delegation_kit.adapters.evm.deployments import (
    DeploymentRecord,
    delegate_record_path,
    load_delegate_deployment,
    load_deployment,
    load_token_deployment,
    record_delegate_deployment,
    record_token_deployment,
    token_record_path,
)
from delegation_kit.engine.exceptions import ConfigurationError

from test_mocks import (
    MOCK_AUTHORIZER_PRIVATE_KEY,
    MOCK_DELEGATE_ADDRESS,
    MOCK_DEPLOYER_ADDRESS,
    MOCK_TOKEN_ADDRESS,
)

ENV_NAMES = (
    "PRIVATE_KEY",
    "RPC_URL",
    "SPONSOR_PRIVATE_KEY",
    "BATCH_CALL_DELEGATION_ADDRESS",
    "TOKEN_ADDRESS",
    "RECIPIENT_ADDRESS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY", f"  {MOCK_AUTHORIZER_PRIVATE_KEY}\n")
        monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8545")
        monkeypatch.setenv("TOKEN_ADDRESS", MOCK_TOKEN_ADDRESS)

        settings = load_settings()

        assert settings.private_key == MOCK_AUTHORIZER_PRIVATE_KEY
        assert settings.token_address == MOCK_TOKEN_ADDRESS
        assert settings.sponsor_private_key is None
        assert settings.request_timeout == 60

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "http://env:8545")
        settings = load_settings(private_key=MOCK_AUTHORIZER_PRIVATE_KEY, rpc_url="http://override:8545")
        assert settings.rpc_url == "http://override:8545"

    def test_missing_required(self):
        with pytest.raises(ConfigurationError, match="PRIVATE_KEY, RPC_URL"):
            load_settings()

    def test_invalid_value(self):
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            load_settings(private_key=MOCK_AUTHORIZER_PRIVATE_KEY, rpc_url="http://x", request_timeout=0)


class TestUnitConversion:
    def test_amount_to_value(self):
        assert amount_to_value(amount=25, decimals=18) == 25 * 10**18
        assert amount_to_value(amount="0.5", decimals=6) == 500_000
        assert amount_to_value(amount=Decimal("1.25"), decimals=2) == 125

    def test_fractional_smallest_unit_rejected(self):
        with pytest.raises(ValueError, match="not representable"):
            amount_to_value(amount="0.001", decimals=2)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            amount_to_value(amount=-1, decimals=18)
        with pytest.raises(ValueError):
            value_to_amount(value=-1, decimals=18)

    def test_value_to_amount(self):
        assert value_to_amount(value=25 * 10**18, decimals=18) == Decimal(25)
        assert value_to_amount(value="125", decimals=2) == Decimal("1.25")


class TestDeploymentRecords:
    def test_delegate_record_uses_contract_address_key(self, tmp_path):
        path = record_delegate_deployment(
            address=MOCK_DELEGATE_ADDRESS.lower(),
            deployer=MOCK_DEPLOYER_ADDRESS,
            network="sepolia",
            directory=tmp_path,
            time="2025-06-15T12:00:00+00:00",
        )

        assert path == delegate_record_path("sepolia", tmp_path)
        data = json.loads(path.read_text())
        assert data["contractAddress"] == MOCK_DELEGATE_ADDRESS
        assert "address" not in data
        assert data["time"] == "2025-06-15T12:00:00+00:00"

        record = load_delegate_deployment("sepolia", tmp_path)
        assert record.address == MOCK_DELEGATE_ADDRESS
        assert record.network == "sepolia"

    def test_token_record(self, tmp_path):
        path = record_token_deployment(
            address=MOCK_TOKEN_ADDRESS, deployer=MOCK_DEPLOYER_ADDRESS, network="anvil", directory=tmp_path,
        )
        assert path.name == "token-anvil.json"
        assert path == token_record_path("anvil", tmp_path)
        assert json.loads(path.read_text())["address"] == MOCK_TOKEN_ADDRESS
        assert load_token_deployment("anvil", tmp_path).address == MOCK_TOKEN_ADDRESS

    def test_time_defaults_to_now(self):
        record = DeploymentRecord(address=MOCK_TOKEN_ADDRESS, deployer=MOCK_DEPLOYER_ADDRESS, network="anvil")
        assert record.time.endswith("+00:00")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_delegate_deployment("mainnet", tmp_path)

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Unreadable"):
            load_deployment(path)

    def test_invalid_address(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"address": "0x1234", "deployer": MOCK_DEPLOYER_ADDRESS, "network": "x"}))
        with pytest.raises(ConfigurationError, match="Malformed"):
            load_deployment(path)
