"""Persisted settings storage."""

from datewatch.storage.settings_store import (
    InMemorySettingsStore,
    JsonFileSettingsStore,
    SettingsStore,
    StoredSettings,
    create_settings_store,
)

__all__ = [
    "InMemorySettingsStore",
    "JsonFileSettingsStore",
    "SettingsStore",
    "StoredSettings",
    "create_settings_store",
]
