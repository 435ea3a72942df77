"""Shared error hierarchy.

Adapters compose these base types so retry and severity behavior stays
consistent across integrations.
"""

from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """Base error for feishu-bridge."""

    recoverable: bool = False
    severity: str = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class TransientError(BridgeError):
    """Failure that may succeed when retried (network blips, timeouts)."""

    recoverable = True
    severity = "warning"


class PermanentError(BridgeError):
    """Failure that will not succeed on retry (auth, validation, config)."""

    recoverable = False
    severity = "error"


class ConfigError(PermanentError):
    """Raised when a configuration file cannot be loaded."""
