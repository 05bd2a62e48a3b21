"""Configuration package."""

from veryfin.config.settings import (
    AppSettings,
    CurrencySettings,
    DatabaseSettings,
    SessionSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CurrencySettings",
    "DatabaseSettings",
    "SessionSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
