"""Configuration package."""

from fintrack.config.settings import (
    AppSettings,
    LedgerSettings,
    Settings,
    TrackerSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LedgerSettings",
    "Settings",
    "TrackerSettings",
    "get_settings",
    "validate_all_settings",
]
