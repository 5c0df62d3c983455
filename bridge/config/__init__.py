"""Persisted bridge configuration."""

from .settings import (
    AppSettings,
    SettingsError,
    SettingsStore,
    SettingsValidationError,
    default_settings_path,
    validate_settings,
)

__all__ = [
    "AppSettings",
    "SettingsError",
    "SettingsStore",
    "SettingsValidationError",
    "default_settings_path",
    "validate_settings",
]
