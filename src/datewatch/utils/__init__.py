"""Utility modules for datewatch."""

from datewatch.utils.exceptions import ConfigurationError, DatewatchError

__all__ = ["ConfigurationError", "DatewatchError"]
