"""Configuration package."""

from ledgerbook.config.settings import (
    AppSettings,
    BackupSettings,
    KVSettings,
    LocalStorageSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BackupSettings",
    "KVSettings",
    "LocalStorageSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
