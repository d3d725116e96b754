"""
Configuration loading and validation.

Verifies that the packaged config loads, ${VAR} references expand from the
environment (falling back to defaults when unset), and prod guards hold.
"""
import os
from decimal import Decimal
from pathlib import Path

import pytest

from plexi_vault.config.config import DEFAULT_CONFIG_PATH, Config, VenueConfig, load_config
from plexi_vault.config.dotenv_loader import load_dotenv_files

_CONFIG_ENV = (
    "APTOS_NODE_URL",
    "VAULT_MODULE_ADDRESS",
    "VAULT_MODULE_NAME",
    "HYPERLIQUID_PRIVATE_KEY",
    "HYPERLIQUID_WALLET_ADDRESS",
    "DATABASE_URL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENVIRONMENT", "test")


def test_packaged_config_exists():
    assert Path(DEFAULT_CONFIG_PATH).exists()


def test_packaged_config_loads_with_defaults():
    config = load_config()

    assert config.environment == "test"
    assert config.vault.hedge_coin == "APT"
    assert config.vault.reference_price == Decimal("4.22")
    assert config.chain.vault_module_name == "vault_v2"
    assert config.venue.api_url == "https://api.hyperliquid-testnet.xyz"
    assert config.venue.has_credentials is False
    assert config.api.port == 3001


def test_env_references_are_expanded(monkeypatch):
    monkeypatch.setenv("APTOS_NODE_URL", "https://node.example/v1/")
    monkeypatch.setenv("VAULT_MODULE_NAME", "vault_v3")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")

    config = Config.from_yaml(DEFAULT_CONFIG_PATH)

    assert config.chain.node_url == "https://node.example/v1"
    assert config.chain.vault_module_name == "vault_v3"
    assert config.data.database_url == "sqlite:///:memory:"


def test_secrets_are_not_in_repr(monkeypatch):
    monkeypatch.setenv("HYPERLIQUID_PRIVATE_KEY", "0xdeadbeef")
    monkeypatch.setenv("HYPERLIQUID_WALLET_ADDRESS", "0x" + "ab" * 20)

    config = Config.from_yaml(DEFAULT_CONFIG_PATH)

    assert config.venue.has_credentials is True
    assert "0xdeadbeef" not in repr(config.venue)


def test_prod_hedging_requires_credentials(tmp_path, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "prod")
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  hedge_enabled: true\n")

    config = Config.from_yaml(path)

    with pytest.raises(ValueError, match="Hedging is enabled in prod"):
        config.validate_config()


def test_prod_without_hedging_is_valid(tmp_path, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "prod")
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  hedge_enabled: false\nvenue:\n  testnet: false\n")

    config = Config.from_yaml(path)
    config.validate_config()

    assert config.venue.api_url == "https://api.hyperliquid.xyz"


def test_hedge_coin_is_upper_cased(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  hedge_coin: btc\n")

    config = Config.from_yaml(path)

    assert config.vault.hedge_coin == "BTC"


def test_mint_rate_and_hedge_minimum_are_not_configurable(tmp_path, monkeypatch):
    monkeypatch.setenv("VAULT_SHARES_PER_UNIT", "50")
    monkeypatch.setenv("VAULT_MIN_HEDGE_DEPOSIT", "5")
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  shares_per_unit: 50\n  min_hedge_deposit: 5\n")

    config = Config.from_yaml(path)

    assert not hasattr(config.vault, "shares_per_unit")
    assert not hasattr(config.vault, "min_hedge_deposit")


def test_invalid_values_are_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  reference_price: -1\n")

    with pytest.raises(ValueError):
        Config.from_yaml(path)


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        Config.from_yaml("/nonexistent/config.yaml")


def test_explicit_venue_url_wins():
    config = VenueConfig(api_url="https://custom.example/", testnet=True)
    assert config.api_url == "https://custom.example"


def test_dotenv_files_load_outside_prod(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("PLEXI_TEST_ONLY=from-env\n")
    monkeypatch.delenv("PLEXI_TEST_ONLY", raising=False)

    loaded = load_dotenv_files(repo_root=tmp_path)

    assert loaded == [tmp_path / ".env"]
    assert os.environ["PLEXI_TEST_ONLY"] == "from-env"


def test_dotenv_files_ignored_in_prod(tmp_path, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "prod")
    (tmp_path / ".env").write_text("PLEXI_TEST_ONLY=from-env\n")

    assert load_dotenv_files(repo_root=tmp_path) == []
