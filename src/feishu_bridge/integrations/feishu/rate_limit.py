"""Failure classification and adaptive pacing for card updates."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, replace
from typing import Optional

from .constants import (
    BASE_RETRY_DELAY_SECONDS,
    MAX_RETRY_COUNT,
    MAX_UPDATE_INTERVAL_SECONDS,
    MIN_UPDATE_INTERVAL_SECONDS,
    RATE_LIMIT_BACKOFF_MULTIPLIER,
    RATE_LIMIT_ERROR_CODES,
)

_ERROR_CODE_RE = re.compile(r"code\s*[:=]\s*(\d+)")
_ERROR_PREVIEW_CHARS = 200


class FailureKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


def classify_remote_error(exc: BaseException) -> FailureKind:
    """Rate limited iff the error carries one of the known rate-limit codes."""
    code = getattr(exc, "code", None)
    if code is not None and str(code) in RATE_LIMIT_ERROR_CODES:
        return FailureKind.RATE_LIMITED
    text = str(exc)
    if any(signature in text for signature in RATE_LIMIT_ERROR_CODES):
        return FailureKind.RATE_LIMITED
    return FailureKind.TRANSIENT


def extract_error_code(exc: BaseException) -> str:
    code = getattr(exc, "code", None)
    if code is not None:
        return str(code)
    match = _ERROR_CODE_RE.search(str(exc))
    return match.group(1) if match else "unknown"


def format_remote_error(
    exc: BaseException,
    operation: str,
    retry_count: int = 0,
    max_retries: int = MAX_RETRY_COUNT,
) -> str:
    retry_info = f" (retry {retry_count}/{max_retries})" if retry_count > 0 else ""
    preview = str(exc)[:_ERROR_PREVIEW_CHARS]
    return f"[{operation}{retry_info}] code={extract_error_code(exc)} error={preview}"


def retry_delay_seconds(
    attempt: int, base_delay: float = BASE_RETRY_DELAY_SECONDS
) -> float:
    """Delay before retry number ``attempt + 1``: 1s, 2s, 4s for the defaults."""
    return base_delay * (2**attempt)


@dataclass(frozen=True)
class AdaptiveInterval:
    """Throttle floor between card updates.

    Grows multiplicatively on every rate-limit hit (capped at ``ceiling``) and
    snaps back to ``floor`` on the next success.
    """

    floor: float = MIN_UPDATE_INTERVAL_SECONDS
    ceiling: float = MAX_UPDATE_INTERVAL_SECONDS
    multiplier: float = RATE_LIMIT_BACKOFF_MULTIPLIER
    current: Optional[float] = None
    hit_count: int = 0

    @property
    def value(self) -> float:
        return self.floor if self.current is None else self.current

    def on_rate_limited(self) -> "AdaptiveInterval":
        grown = min(self.value * self.multiplier, self.ceiling)
        return replace(self, current=grown, hit_count=self.hit_count + 1)

    def on_success(self) -> "AdaptiveInterval":
        if self.current is None and self.hit_count == 0:
            return self
        return replace(self, current=None, hit_count=0)
