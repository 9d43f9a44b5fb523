"""Configuration module for datewatch."""

from datewatch.config.settings import MonitorDefaults, Settings, get_settings

__all__ = ["MonitorDefaults", "Settings", "get_settings"]
