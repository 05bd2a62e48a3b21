"""
Configuration Management for Veryfin

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQL storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./veryfin.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    @field_validator('url')
    @classmethod
    def normalize_url(cls, v: str) -> str:
        """Hosting platforms hand out sync URLs; swap in the async drivers."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif v.startswith("sqlite:///"):
            v = v.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return v


class SessionSettings(BaseSettings):
    """
    Login session configuration.

    The TTL here is the only place the session lifetime is defined.
    It is an inactivity window: every authenticated request extends it.
    """

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    ttl_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 30,
        description="Hours of inactivity before a session expires"
    )
    cookie_name: str = Field(
        default="veryfin_session",
        description="Name of the session cookie"
    )
    cookie_secure: bool = Field(
        default=False,
        description="Only send the session cookie over HTTPS"
    )

    @property
    def ttl_seconds(self) -> int:
        """Get the session TTL in seconds."""
        return self.ttl_hours * 60 * 60


class CurrencySettings(BaseSettings):
    """Exchange rate API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CURRENCY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_url: str = Field(
        default="https://api.exchangerate-api.com/v4/latest",
        description="Base URL of the exchange rate API (base currency is appended)"
    )
    default_base: str = Field(
        default="BRL",
        min_length=3,
        max_length=3,
        description="Base currency used when the caller does not pick one"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Timeout for a single exchange rate lookup"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # HTTP
    api_prefix: str = Field(
        default="/api",
        description="Path prefix for all API routes"
    )
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5000",
        description="Comma-separated list of allowed CORS origins"
    )

    # Storage
    storage_backend: Literal["sql", "memory"] = Field(
        default="sql",
        description="Which storage implementation to wire in"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def session(self) -> SessionSettings:
        return SessionSettings()

    @property
    def currency(self) -> CurrencySettings:
        return CurrencySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "session", "currency", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
