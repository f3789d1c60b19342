"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. sqlite:// for tests); otherwise built from POSTGRES_*.
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="brainbooster")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # JWT Authentication - REQUIRED for token signing
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        min_length=32,
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=30 * 24 * 60)  # 30 days

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Email Configuration
    EMAIL_ENABLED: bool = Field(default=False)
    SMTP_SERVER: str = Field(default="localhost")
    SMTP_PORT: int = Field(default=587)
    SMTP_USERNAME: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    FROM_EMAIL: str = Field(default="noreply@brainbooster.com")
    FROM_NAME: str = Field(default="BrainBooster")

    # In-process cache for admin dashboard reads
    CACHE_MAX_ENTRIES: int = Field(default=256, ge=1)
    CACHE_TTL_STATS: int = Field(default=60)  # seconds

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    # e.g., "https://brainbooster.com,https://www.brainbooster.com"
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Web app base URL (checkout/portal redirects back to the UI).
    WEB_APP_BASE_URL: str = Field(default="http://localhost:3000")

    # Stripe (hosted checkout/portal + webhooks)
    STRIPE_SECRET_KEY: Optional[str] = Field(default=None)
    STRIPE_WEBHOOK_SECRET: Optional[str] = Field(default=None)
    STRIPE_CHECKOUT_SUCCESS_URL: Optional[str] = Field(default=None)
    STRIPE_CHECKOUT_CANCEL_URL: Optional[str] = Field(default=None)
    STRIPE_PORTAL_RETURN_URL: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
