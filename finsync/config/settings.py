"""
Configuration Management for finsync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Retry limits, debounce delays and page sizes are fixed constants of a
running client, so they are validated once at startup and injected into
the components that need them.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Sync coordinator and queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_SYNC_",
        extra="ignore"
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=100,
        description="Failed attempts allowed before a pending operation is dropped"
    )
    debounce_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Delay after connectivity is restored before auto-sync runs"
    )
    auto_sync_interval_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Interval of the periodic auto-sync check"
    )
    refresh_page_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Transactions fetched when refreshing the cache after a sync"
    )
    backup_page_size: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Transactions fetched for a full backup"
    )
    auto_sync_default: bool = Field(
        default=True,
        description="Auto-sync preference used before the user changes it"
    )
    auto_backup_interval_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Minimum age of the last backup before auto-backup runs again"
    )


class StorageSettings(BaseSettings):
    """Local persistent storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_STORAGE_",
        extra="ignore"
    )

    data_dir: str = Field(
        default=".finsync",
        description="Directory holding the key-value store documents"
    )

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: str) -> str:
        """Reject paths that point at an existing regular file."""
        path = Path(v).expanduser()
        if path.exists() and not path.is_dir():
            raise ValueError(f"Storage data_dir is not a directory: {v}")
        return str(path)


class ApiSettings(BaseSettings):
    """Remote backend API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_API_",
        extra="ignore"
    )

    base_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the finance backend API"
    )
    access_token: Optional[str] = Field(
        default=None,
        description="Bearer token sent with every request"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Per-request timeout"
    )
    read_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for idempotent reads (creates are never retried here)"
    )

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"API base_url must be an http(s) URL: {v}")
        return v.rstrip("/")


class ConnectivitySettings(BaseSettings):
    """Network reachability probe configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_CONNECTIVITY_",
        extra="ignore"
    )

    probe_url: Optional[str] = Field(
        default=None,
        description="URL probed for reachability (defaults to the API health endpoint)"
    )
    probe_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Timeout of a single reachability probe"
    )
    poll_interval_seconds: float = Field(
        default=15.0,
        gt=0.0,
        description="Seconds between background probes"
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

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def api(self) -> ApiSettings:
        return ApiSettings()

    @property
    def connectivity(self) -> ConnectivitySettings:
        return ConnectivitySettings()


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

    Returns a dict of {setting_name: is_valid}, with a
    "<name>_error" entry for every section that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("sync", "storage", "api", "connectivity"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
