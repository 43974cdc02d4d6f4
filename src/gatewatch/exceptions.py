"""Custom exceptions for the market mover watcher.

All component exceptions live here to avoid circular imports between
the config store, the market data layer and the notifiers.
"""


class WatcherError(Exception):
    """Base exception for all watcher errors."""


class ConfigError(WatcherError):
    """Base exception for configuration document problems."""


class ConfigReadError(ConfigError):
    """Raised when the configuration document cannot be read or parsed."""


class ConfigValidationError(ConfigError):
    """Raised when a mutation would produce an invalid configuration."""


class ConfigWriteError(ConfigError):
    """Raised when a validated configuration cannot be written to disk."""


class MarketDataError(WatcherError):
    """Raised when tickers or pair metadata cannot be fetched."""


class NotificationError(WatcherError):
    """Raised when a notification channel fails to deliver an alert."""


class CommandError(WatcherError):
    """Raised when an interactive command is malformed or rejected."""
