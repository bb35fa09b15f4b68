"""
Configuration Management for FinTrack

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Each concern gets its own settings class with its own env prefix, and
everything is validated when first loaded.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Balance-Consistency Ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_LEDGER_",
        extra="ignore"
    )

    default_currency: str = Field(
        default="ZAR",
        min_length=3,
        max_length=3,
        description="ISO currency code for new accounts and transactions"
    )
    max_amount: str = Field(
        default="9999999999999.99",
        description="Largest amount a single ledger event may carry"
    )

    # Optimistic concurrency on aggregate writes
    conflict_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times a conflicting balance write is attempted"
    )
    conflict_retry_wait_seconds: float = Field(
        default=0.05,
        ge=0.0,
        le=5.0,
        description="Base wait between conflicting balance write attempts"
    )

    @field_validator('default_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


class TrackerSettings(BaseSettings):
    """Forward Balance Projection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_TRACKER_",
        extra="ignore"
    )

    baseline_window_days: int = Field(
        default=90,
        ge=1,
        le=730,
        description="Trailing days of debits averaged into the spend baseline"
    )
    max_range_days: int = Field(
        default=366,
        ge=1,
        le=3660,
        description="Longest date range a single generation may cover"
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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for the structured log"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def tracker(self) -> TrackerSettings:
        return TrackerSettings()

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

    for name in ("ledger", "tracker", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
