"""Core runtime primitives."""

from .exceptions import BridgeError, ConfigError, PermanentError, TransientError
from .logging_utils import log_event

__all__ = [
    "BridgeError",
    "ConfigError",
    "PermanentError",
    "TransientError",
    "log_event",
]
