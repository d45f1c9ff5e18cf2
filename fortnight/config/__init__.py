"""Configuration package."""

from fortnight.config.settings import (
    AppSettings,
    BiometricSettings,
    GoogleSheetsSettings,
    Settings,
    VaultSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BiometricSettings",
    "GoogleSheetsSettings",
    "Settings",
    "VaultSettings",
    "get_settings",
    "validate_all_settings",
]
