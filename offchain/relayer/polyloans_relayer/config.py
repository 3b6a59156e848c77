"""
Configuration management for the PolyLoans Relayer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # development | test | production
    environment: str = "development"

    # EVM Network
    rpc_url: str = "https://polygon-bor-rpc.publicnode.com"
    chain_id: int = 137

    # Relayer account (pays gas, never authorizes call content)
    relayer_private_key: str = Field(default="", repr=False)

    # Wallet owner key, used only by operator enrollment
    owner_private_key: str = Field(default="", repr=False)

    # Contract addresses
    collateral_registry: str = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
    settlement_asset: str = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"

    # Operator-curated user -> proxy overrides (JSON object in env)
    proxy_overrides: dict[str, str] = {
        "0x87ECEbbE008c66eE0a45b4F2051Fe8e17f9afc1D": "0x06CF8B375BD12E7256F8Da3e695857226b2b36d7",
    }

    # Market data collaborators
    data_api_url: str = "https://data-api.polymarket.com"
    clob_api_url: str = "https://clob.polymarket.com"
    gamma_api_url: str = "https://gamma-api.polymarket.com"
    poly_api_key: Optional[str] = None
    poly_api_secret: Optional[str] = Field(default=None, repr=False)
    poly_api_passphrase: Optional[str] = Field(default=None, repr=False)
    http_timeout_seconds: float = 10.0

    # Relay execution
    confirmation_timeout_seconds: float = 60.0
    lock_timeout_seconds: float = 90.0
    fallback_gas_limit: int = 500_000
    identity_cache_ttl_seconds: Optional[float] = None

    # Test-only: sign delegated calls with the relayer key when the client
    # sends no signature. Never allowed in production.
    test_autosign: bool = False

    @model_validator(mode="after")
    def _reject_autosign_in_production(self) -> "Settings":
        if self.test_autosign and self.environment.lower() == "production":
            raise ValueError("TEST_AUTOSIGN cannot be enabled when ENVIRONMENT=production")
        return self

    @property
    def has_market_credentials(self) -> bool:
        return bool(self.poly_api_key and self.poly_api_secret)


@dataclass
class RelayerConfig:
    """Full relayer configuration."""

    settings: Settings

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayerConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls(settings=settings)
