"""
Configuration management using pydantic-settings

Loads configuration from environment variables and .env file
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database Configuration
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="Full database connection URL (overrides the DB_* fields when set)"
    )
    DB_HOST: str = Field(default="localhost", description="Database host")
    DB_PORT: int = Field(default=5432, description="Database port")
    DB_NAME: str = Field(default="backoffice", description="Database name")
    DB_USER: str = Field(default="backoffice", description="Database user")
    DB_PASSWORD: str = Field(default="backoffice", description="Database password")
    DB_POOL_MIN: int = Field(default=1, ge=1, description="Minimum pooled connections")
    DB_POOL_MAX: int = Field(default=10, ge=1, description="Maximum pooled connections")

    # Identity Provider
    AUTH_URL: str = Field(
        default="http://localhost:54321",
        description="Base URL of the identity provider (token verification endpoint host)"
    )
    AUTH_API_KEY: str = Field(default="", description="API key sent to the identity provider")
    AUTH_TIMEOUT: float = Field(default=10.0, gt=0, description="Token verification timeout in seconds")

    # Pricing
    VAT_MODE: str = Field(
        default="exclusive",
        pattern="^(exclusive|inclusive)$",
        description="Tax convention: 'exclusive' adds VAT on top, 'inclusive' backs it out of the price"
    )
    VAT_RATE: float = Field(default=0.07, ge=0, lt=1, description="VAT rate")

    # Application Settings
    API_HOST: str = Field(default="0.0.0.0", description="API host to bind to")
    API_PORT: int = Field(default=8080, description="API port to listen on")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FILE: Optional[str] = Field(default=None, description="Daily-rotated log file path")
    CORS_ORIGINS: str = Field(default="*", description="Comma separated list of allowed origins")

    # List endpoints
    DEFAULT_PAGE_LIMIT: int = Field(default=50, ge=1, description="Default page size for order lists")
    MAX_PAGE_LIMIT: int = Field(default=200, ge=1, description="Largest page size a caller may request")
    PAYMENT_FOLLOWUP_PAGE_LIMIT: int = Field(
        default=20,
        ge=1,
        description="Default page size for the payment follow-up list"
    )


@lru_cache()
def get_settings() -> Settings:
    """Get the process-wide settings instance"""
    return Settings()
