"""
Application Settings for the Entitlements service

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Stripe is the payment processor; the internal subscription table is
    the source of truth for entitlement decisions.
    """

    # Supabase Configuration (auth + user directory)
    supabase_url: str = ""
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None

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

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_currency: str = "gbp"
    stripe_timeout_seconds: float = 10.0
    stripe_max_network_retries: int = 2
    checkout_success_path: str = "/pricing?success=true"
    checkout_cancel_path: str = "/pricing?canceled=true"

    # Notifications (Resend)
    resend_api_key: Optional[str] = None
    email_from: str = "Equine AI Intelligence <noreply@equineaintelligence.com>"
    email_timeout_seconds: float = 10.0

    # Quota Configuration
    # Horse limit applied when a user has no entitled subscription
    free_tier_horse_limit: int = 0
    expiry_warning_days: int = 7

    # Operations
    admin_api_key: Optional[str] = None
    cron_secret: Optional[str] = None

    # Database Configuration (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
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

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject nonsensical quota and timeout values."""
        if self.free_tier_horse_limit < 0:
            raise ValueError("FREE_TIER_HORSE_LIMIT must be zero or positive")

        if self.stripe_timeout_seconds <= 0:
            raise ValueError("STRIPE_TIMEOUT_SECONDS must be positive")

        if self.is_production and not self.stripe_webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET required in production")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def checkout_success_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}{self.checkout_success_path}"

    @property
    def checkout_cancel_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}{self.checkout_cancel_path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
