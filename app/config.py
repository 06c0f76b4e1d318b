"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")

    # Server
    PORT: int = Field(default=8000, description="Port to bind to")

    # Database - Supabase
    SUPABASE_URL: str = Field(default="")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(default="")
    SUPABASE_DATABASE_URL: str = Field(default="")

    # Supabase Auth (access tokens are HS256 JWTs signed with this secret)
    SUPABASE_JWT_SECRET: str = Field(default="")
    SUPABASE_JWT_AUDIENCE: str = Field(default="authenticated")
    JWT_ALGORITHM: str = Field(default="HS256")

    # RevenueCat
    REVENUECAT_WEBHOOK_SECRET: str = Field(default="")
    REVENUECAT_WEBHOOK_AUTH: Literal["enforced", "disabled"] = Field(
        default="enforced",
        description="Set to 'disabled' to accept unauthenticated webhooks",
    )

    # Stripe (signing secret of the webhook endpoint, whsec_...)
    STRIPE_WEBHOOK_SECRET: str = Field(default="")

    # App Configuration
    ALLOWED_ORIGINS: str = Field(default="*")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.SUPABASE_DATABASE_URL:
            return self.SUPABASE_DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://"
            )
        return ""

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def webhook_auth_enforced(self) -> bool:
        """Whether RevenueCat webhooks must carry the shared secret."""
        return self.REVENUECAT_WEBHOOK_AUTH == "enforced"

    @field_validator("REVENUECAT_WEBHOOK_AUTH", mode="before")
    @classmethod
    def normalize_webhook_auth(cls, v: str) -> str:
        """Accept the mode in any case (ENFORCED, Disabled, ...)."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
