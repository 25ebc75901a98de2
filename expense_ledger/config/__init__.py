"""Configuration package."""

from expense_ledger.config.settings import (
    AppSettings,
    ModuleSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ModuleSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
