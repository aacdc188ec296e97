"""
Application Settings for the Assist backend

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup: the processor API key
and the webhook signing secret are mandatory.
"""

from functools import lru_cache
from typing import Optional

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from assist.infrastructure.exceptions import ConfigurationError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET have no defaults; a process
    started without them fails before serving a single request.
    """

    # Payment processor credentials (required)
    stripe_secret_key: str
    stripe_webhook_secret: str

    # Checkout configuration
    stripe_subscription_price_id: Optional[str] = None
    donation_minimum_minor_units: int = 100
    donation_currency: str = "usd"
    donation_product_name: str = "Donation to The Assist App"
    checkout_timeout_seconds: float = 10.0

    # Processor transport
    stripe_max_network_retries: int = 0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    # Webhook verification
    webhook_tolerance_seconds: int = 300
    webhook_max_payload_bytes: int = 512 * 1024

    # Reconciliation engine
    sync_write_attempts: int = 3
    reconcile_batch_size: int = 100
    reconcile_interval_seconds: float = 6 * 60 * 60  # 0 disables the schedule
    access_poll_interval_seconds: float = 300.0

    # Rate limiting (slowapi limit strings, keyed by account)
    rate_limit_enabled: bool = True
    rate_limit_checkout: str = "10/minute"
    rate_limit_access: str = "60/minute"

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    frontend_url: str = "http://localhost:5173"
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Authentication (HS256 bearer tokens issued by the auth service)
    jwt_secret: Optional[str] = None
    jwt_issuer: Optional[str] = None
    jwt_audience: str = "authenticated"

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_secret_key", "stripe_webhook_secret")
    @classmethod
    def require_secret(cls, value: str) -> str:
        """Reject blank secrets the same way as missing ones."""
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("donation_minimum_minor_units")
    @classmethod
    def validate_minimum(cls, value: int) -> int:
        if value < 1:
            raise ValueError("donation minimum must be at least 1 minor unit")
        return value

    @field_validator("reconcile_interval_seconds")
    @classmethod
    def validate_reconcile_interval(cls, value: float) -> float:
        if value < 0:
            raise ValueError("reconcile interval must not be negative")
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


def load_settings(**overrides) -> Settings:
    """
    Build a Settings instance, translating validation failures into
    ConfigurationError so startup reports which keys are missing.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        missing = [
            ".".join(str(part) for part in error["loc"]).upper()
            for error in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid configuration: {', '.join(missing)}",
            missing_keys=missing,
            original_error=e,
        ) from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
