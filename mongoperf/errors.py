from __future__ import annotations


class MongoperfError(Exception):
    """Base class for every error raised by mongoperf."""


class ConfigError(MongoperfError):
    """Raised when a scenario or operation definition fails validation."""


class StoreConnectionError(MongoperfError):
    """Raised when the backing store cannot be reached."""


class OperationExecutionError(MongoperfError):
    """Raised by a store call that completed but did not do what was asked."""


__all__ = [
    "ConfigError",
    "MongoperfError",
    "OperationExecutionError",
    "StoreConnectionError",
]
