from __future__ import annotations

from typing import Optional

from ...core.exceptions import BridgeError, PermanentError, TransientError


class FeishuError(BridgeError):
    """Base Feishu integration error."""


class FeishuBotConfigError(FeishuError):
    """Raised when the feishu config section is invalid."""


class FeishuAPIError(FeishuError):
    """Feishu API request error.

    The rendered message always embeds ``code=<n>`` so callers that only see
    the text can still recover the platform error code.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ) -> None:
        code_text = str(code) if code is not None else "unknown"
        super().__init__(f"{message} (code={code_text})", user_message=user_message)
        self.code = code
        self.status_code = status_code


class FeishuNetworkError(FeishuAPIError, TransientError):
    """Retryable transport failure (connect/read/write errors, timeouts)."""


class FeishuPermanentError(FeishuAPIError, PermanentError):
    """Non-retryable Feishu API error (auth failures, invalid requests)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity
