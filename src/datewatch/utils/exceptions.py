"""Custom exceptions for datewatch."""


class DatewatchError(Exception):
    """Base exception for all datewatch errors."""

    pass


class ConfigurationError(DatewatchError):
    """Error in configuration or settings."""

    pass
