"""
Configuration models for the Plexi vault engine.

Uses Pydantic for validation and type safety. Values come from
``config.yaml`` (with ``${VAR}`` expansion) and the environment.
"""
import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from plexi_vault.constants import (
    APTOS_TESTNET_NODE_URL,
    DEFAULT_HEDGE_COIN,
    DEFAULT_REFERENCE_PRICE,
    DEFAULT_VAULT_MODULE_ADDRESS,
    DEFAULT_VAULT_MODULE_NAME,
    HYPERLIQUID_MAINNET_URL,
    HYPERLIQUID_TESTNET_URL,
)
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class ChainConfig(BaseSettings):
    """Aptos full node and vault module location."""
    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    node_url: str = APTOS_TESTNET_NODE_URL
    vault_module_address: str = DEFAULT_VAULT_MODULE_ADDRESS
    vault_module_name: str = DEFAULT_VAULT_MODULE_NAME
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    @field_validator("node_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class VenueConfig(BaseSettings):
    """Perpetual-futures venue (Hyperliquid) configuration."""
    model_config = SettingsConfigDict(env_prefix="VENUE_", extra="ignore")

    testnet: bool = True
    api_url: Optional[str] = None  # derived from testnet when unset
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Credentials (env or yaml, never committed)
    private_key: Optional[str] = Field(default=None, repr=False)
    wallet_address: Optional[str] = None

    @model_validator(mode="after")
    def _default_api_url(self) -> "VenueConfig":
        if not self.api_url:
            self.api_url = HYPERLIQUID_TESTNET_URL if self.testnet else HYPERLIQUID_MAINNET_URL
        self.api_url = self.api_url.rstrip("/")
        return self

    @property
    def has_credentials(self) -> bool:
        return bool(self.private_key and self.wallet_address)


class VaultConfig(BaseSettings):
    """Share accounting and hedge-on-deposit policy."""
    model_config = SettingsConfigDict(env_prefix="VAULT_", extra="ignore")

    hedge_enabled: bool = True
    hedge_coin: str = DEFAULT_HEDGE_COIN
    # Used when the venue mid price is disabled or unavailable
    reference_price: Decimal = Field(default=DEFAULT_REFERENCE_PRICE, gt=0)
    use_venue_mid_price: bool = True

    vault_state_cache_ttl_seconds: float = Field(default=5.0, ge=0, le=300)

    @field_validator("hedge_coin")
    @classmethod
    def _upper_coin(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("hedge_coin must not be empty")
        return v


class DataConfig(BaseSettings):
    """Ledger persistence."""
    model_config = SettingsConfigDict(extra="ignore")

    database_url: str = "sqlite:///data/plexi_vault.db"


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None


class ApiConfig(BaseSettings):
    """HTTP API bind address."""
    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    host: str = "127.0.0.1"
    port: int = Field(default=3001, ge=1, le=65535)


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    chain: ChainConfig = Field(default_factory=ChainConfig)
    venue: VenueConfig = Field(default_factory=VenueConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    environment: Literal["dev", "test", "prod"] = "dev"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file, expanding ${VAR} / $VAR references."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        raw_content = yaml_path.read_text()

        pattern = re.compile(r"\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)")

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        config_dict = yaml.safe_load(pattern.sub(replace_match, raw_content)) or {}
        _drop_unresolved(config_dict)

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        db_url = os.getenv("DATABASE_URL")
        if db_url:
            config_dict.setdefault("data", {})["database_url"] = db_url

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Perform cross-section checks."""
        if self.environment == "prod" and self.vault.hedge_enabled and not self.venue.has_credentials:
            raise ValueError(
                "Hedging is enabled in prod but venue.private_key / venue.wallet_address are not set"
            )
        if self.environment == "prod" and self.venue.testnet:
            logger.warning("VENUE_TESTNET_IN_PROD", api_url=self.venue.api_url)


def _drop_unresolved(node: dict) -> None:
    """Remove values still holding an unexpanded ${VAR} so model defaults apply."""
    for key in list(node.keys()):
        value = node[key]
        if isinstance(value, dict):
            _drop_unresolved(value)
        elif isinstance(value, str) and value.startswith("$"):
            del node[key]


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml. If None, uses plexi_vault/config/config.yaml

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    from plexi_vault.config.dotenv_loader import load_dotenv_files

    load_dotenv_files()

    config = Config.from_yaml(config_path or DEFAULT_CONFIG_PATH)
    config.validate_config()
    return config
