"""Application configuration using pydantic-settings.

Everything that varies per deployment (quote window, fee rate, pricing and
catalog sources, address pool sizing) is read from the environment.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/zecswap.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Auth
    # ======================
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")
    watcher_webhook_secret: Optional[str] = Field(
        default=None, description="HMAC secret shared with the deposit watcher"
    )

    # ======================
    # Quotes
    # ======================
    quote_ttl_seconds: int = Field(
        default=900, gt=0, description="Quote and deposit window (15 minutes)"
    )
    fee_rate: Decimal = Field(
        default=Decimal("0.005"), ge=0, lt=1, description="Swap fee as a fraction of input (0.5%)"
    )
    rate_source: str = Field(default="fixed", description="Pricing source: fixed or http")
    default_rate: Decimal = Field(
        default=Decimal("0.95"), gt=0, description="ZEC per source unit for the fixed source"
    )
    price_api_url: str = Field(
        default="https://api.coingecko.com/api/v3", description="Price API base URL"
    )

    # ======================
    # Asset catalog
    # ======================
    catalog_source: str = Field(default="static", description="Catalog source: static or http")
    catalog_url: str = Field(default="http://127.0.0.1:3000", description="Token list service URL")

    # ======================
    # Deposit allocation
    # ======================
    address_pool_size: int = Field(
        default=1000, gt=0, description="Maximum derived deposit addresses per asset"
    )
    address_seed: str = Field(
        default="zecswap-dev-seed", description="Seed for simulated deposit address derivation"
    )
    memo_digits: int = Field(
        default=9, ge=4, le=18, description="Length of numeric deposit memos (9 fits a uint32 tag)"
    )
    zcash_network: Literal["mainnet", "testnet"] = Field(
        default="mainnet", description="Destination network: mainnet or testnet"
    )

    # ======================
    # Background work
    # ======================
    sweep_interval_seconds: float = Field(
        default=15.0, gt=0, description="Seconds between deadline sweeps"
    )
    lock_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Maximum wait for an order or pool lock"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "admin_token": "***" if self.admin_token else "(not set)",
            "watcher_webhook_secret": "***" if self.watcher_webhook_secret else "(not set)",
            "quotes": {
                "ttl_seconds": self.quote_ttl_seconds,
                "fee_rate": str(self.fee_rate),
                "rate_source": self.rate_source,
            },
            "catalog": {
                "source": self.catalog_source,
                "url": self.catalog_url if self.catalog_source == "http" else None,
            },
            "allocation": {
                "address_pool_size": self.address_pool_size,
                "memo_digits": self.memo_digits,
                "zcash_network": self.zcash_network,
            },
            "sweep_interval_seconds": self.sweep_interval_seconds,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
