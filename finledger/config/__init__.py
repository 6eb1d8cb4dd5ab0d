"""Configuration package."""

from finledger.config.settings import (
    AppSettings,
    DatabaseSettings,
    GeminiSettings,
    MindeeSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "GeminiSettings",
    "MindeeSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
