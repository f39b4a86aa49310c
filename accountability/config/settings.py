"""
Configuration Management for the Accountability Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine itself has no network dependencies, so configuration is limited
to where records live and the scheduling constants.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Plain-text record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ACCOUNTABILITY_STORE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path("data"),
        description="Root directory holding all record files"
    )
    profile_id: Optional[str] = Field(
        default=None,
        description="Profile whose private records are used (None = legacy root)"
    )

    @field_validator('profile_id')
    @classmethod
    def validate_profile_id(cls, v: Optional[str]) -> Optional[str]:
        """Profile ids become directory names, so no path separators."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError(f"Invalid profile id: {v!r}")
        return v


class SchedulerSettings(BaseSettings):
    """Auto-spread scheduling constants."""

    model_config = SettingsConfigDict(
        env_prefix="ACCOUNTABILITY_SCHEDULER_",
        extra="ignore"
    )

    buffer_minutes: int = Field(
        default=15,
        ge=0,
        le=120,
        description="Buffer reserved at both ends of an availability window"
    )
    max_spread_minutes: int = Field(
        default=240,
        ge=30,
        le=24 * 60,
        description="Cap on the window length tasks are spread across"
    )
    default_duration_minutes: int = Field(
        default=30,
        ge=1,
        description="Duration assumed for items that do not declare one"
    )
    default_window_start_hour: int = Field(
        default=9,
        ge=0,
        le=23,
        description="Window start used when the profile declares no availability"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCOUNTABILITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_total_days: int = Field(
        default=30,
        ge=1,
        description="Challenge length assumed when Days Completed has no total"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )
    audit_enabled: bool = Field(
        default=True,
        description="Persist audit events next to the records"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
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
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

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

    for name in ("store", "scheduler", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
