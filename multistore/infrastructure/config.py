"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Authentication
    api_key: str = "dev-api-key-change-in-production"

    # Storage
    storage_backend: str = "memory"  # 'memory' or 'sqlalchemy'
    database_url: str = "postgresql+asyncpg://multistore:multistore_dev_password@db:5432/multistore"

    # Pricing
    default_currency: str = "YER"
    flat_shipping_amount: Decimal = Decimal("5000.00")
    free_shipping_threshold: Decimal | None = None
    tax_rate_percent: Decimal = Decimal("0")
    coupon_discounts: dict[str, Decimal] = {}

    # Wallet gateway
    wallet_gateway_mode: str = "simulated"  # 'simulated' or 'http'
    wallet_gateway_url: str = "http://wallet-gateway:8010"
    wallet_gateway_api_key: str = "dev-wallet-gateway-key"
    wallet_gateway_timeout_seconds: float = 30.0
    wallet_gateway_max_attempts: int = 3
    wallet_gateway_retry_backoff_seconds: float = 0.5
    simulated_gateway_success_rate: float = 0.9
    simulated_gateway_latency_seconds: float = 2.0

    # Reconciliation
    reconciliation_stale_after_seconds: int = 300

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
