"""Configuration package."""

from finsync.config.settings import (
    ApiSettings,
    ConnectivitySettings,
    Settings,
    StorageSettings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "ApiSettings",
    "ConnectivitySettings",
    "Settings",
    "StorageSettings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
