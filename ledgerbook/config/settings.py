"""
Configuration Management for Ledgerbook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Backend selection (remote KV vs local file) is decided from these values
once per process, so everything that influences it lives in one place.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class KVSettings(BaseSettings):
    """Remote key-value store (REST API) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    rest_api_url: Optional[str] = Field(
        default=None,
        description="Base URL of the REST key-value endpoint"
    )
    rest_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the REST key-value endpoint"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout per remote call"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per remote call before giving up"
    )

    @field_validator('rest_api_url', 'rest_api_token')
    @classmethod
    def blank_is_missing(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty env values as not configured."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_configured(self) -> bool:
        """Both endpoint and credential must be present for remote mode."""
        return bool(self.rest_api_url and self.rest_api_token)


class LocalStorageSettings(BaseSettings):
    """Local fallback storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    directory: Path = Field(
        default=Path(".ledgerbook"),
        description="Directory holding accounts.json, transactions.json and tags.json"
    )


class BackupSettings(BaseSettings):
    """Periodic backup configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Run the periodic backup task"
    )
    interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Seconds between two snapshots"
    )
    directory: Optional[Path] = Field(
        default=None,
        description="Write snapshots as JSON files here; log them if unset"
    )

    @field_validator('directory', mode='before')
    @classmethod
    def blank_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


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

    seed_defaults: bool = Field(
        default=True,
        description="Populate sample accounts and transactions on first run"
    )


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

    # Sub-settings are built on access so a partial environment still loads

    @property
    def kv(self) -> KVSettings:
        return KVSettings()

    @property
    def local_storage(self) -> LocalStorageSettings:
        return LocalStorageSettings()

    @property
    def backup(self) -> BackupSettings:
        return BackupSettings()

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
    The remote KV store is optional, so "kv" reports whether remote mode
    is available rather than whether the app can start.
    """
    results = {}

    settings = get_settings()

    try:
        results["kv"] = settings.kv.is_configured
    except Exception as e:
        results["kv"] = False
        results["kv_error"] = str(e)

    try:
        _ = settings.local_storage
        results["local_storage"] = True
    except Exception as e:
        results["local_storage"] = False
        results["local_storage_error"] = str(e)

    try:
        _ = settings.backup
        results["backup"] = True
    except Exception as e:
        results["backup"] = False
        results["backup_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
