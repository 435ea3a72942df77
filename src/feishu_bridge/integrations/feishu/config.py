from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from ..chat.text_chunking import CHUNK_MODES, DEFAULT_CHUNK_MODE
from .constants import (
    BASE_RETRY_DELAY_SECONDS,
    FEISHU_DOMAINS,
    FEISHU_MAX_MEDIA_MB,
    FEISHU_MAX_MESSAGE_LENGTH,
    MAX_RETRY_COUNT,
    MAX_UPDATE_INTERVAL_SECONDS,
    MIN_UPDATE_INTERVAL_SECONDS,
    RATE_LIMIT_BACKOFF_MULTIPLIER,
    RENDER_MODE_AUTO,
    RENDER_MODES,
)
from .errors import FeishuBotConfigError

DEFAULT_APP_ID_ENV = "FEISHU_APP_ID"
DEFAULT_APP_SECRET_ENV = "FEISHU_APP_SECRET"
DEFAULT_DOMAIN = "feishu"


@dataclass(frozen=True)
class FeishuStreamingConfig:
    min_update_interval_ms: int = int(MIN_UPDATE_INTERVAL_SECONDS * 1000)
    max_update_interval_ms: int = int(MAX_UPDATE_INTERVAL_SECONDS * 1000)
    backoff_multiplier: float = RATE_LIMIT_BACKOFF_MULTIPLIER
    max_retries: int = MAX_RETRY_COUNT
    base_retry_delay_ms: int = int(BASE_RETRY_DELAY_SECONDS * 1000)

    @property
    def min_update_interval(self) -> float:
        return self.min_update_interval_ms / 1000.0

    @property
    def max_update_interval(self) -> float:
        return self.max_update_interval_ms / 1000.0

    @property
    def base_retry_delay(self) -> float:
        return self.base_retry_delay_ms / 1000.0


@dataclass(frozen=True)
class FeishuBotConfig:
    enabled: bool
    app_id_env: str
    app_secret_env: str
    app_id: Optional[str]
    app_secret: Optional[str]
    domain: str
    render_mode: str = RENDER_MODE_AUTO
    streaming: bool = True
    text_chunk_limit: int = FEISHU_MAX_MESSAGE_LENGTH
    chunk_mode: str = DEFAULT_CHUNK_MODE
    media_max_mb: int = FEISHU_MAX_MEDIA_MB
    stream: FeishuStreamingConfig = field(default_factory=FeishuStreamingConfig)

    @property
    def api_base_url(self) -> str:
        return FEISHU_DOMAINS[self.domain]

    @classmethod
    def from_raw(cls, raw: Optional[dict[str, Any]]) -> "FeishuBotConfig":
        cfg: dict[str, Any] = raw if isinstance(raw, dict) else {}
        enabled = _parse_bool_or_default(
            cfg.get("enabled"), default=False, key="feishu.enabled"
        )
        app_id_env = str(cfg.get("app_id_env", DEFAULT_APP_ID_ENV)).strip()
        app_secret_env = str(cfg.get("app_secret_env", DEFAULT_APP_SECRET_ENV)).strip()
        if not app_id_env:
            raise FeishuBotConfigError("feishu.app_id_env must be non-empty")
        if not app_secret_env:
            raise FeishuBotConfigError("feishu.app_secret_env must be non-empty")
        app_id = os.environ.get(app_id_env)
        app_secret = os.environ.get(app_secret_env)

        domain = str(cfg.get("domain", DEFAULT_DOMAIN)).strip().lower()
        if domain not in FEISHU_DOMAINS:
            raise FeishuBotConfigError("feishu.domain must be 'feishu' or 'lark'")

        render_mode = str(cfg.get("render_mode", RENDER_MODE_AUTO)).strip().lower()
        if render_mode not in RENDER_MODES:
            render_mode = RENDER_MODE_AUTO

        chunk_mode = str(cfg.get("chunk_mode", DEFAULT_CHUNK_MODE)).strip().lower()
        if chunk_mode not in CHUNK_MODES:
            chunk_mode = DEFAULT_CHUNK_MODE

        text_chunk_limit = min(
            _parse_positive_int_or_default(
                cfg.get("text_chunk_limit"),
                default=FEISHU_MAX_MESSAGE_LENGTH,
                key="feishu.text_chunk_limit",
            ),
            FEISHU_MAX_MESSAGE_LENGTH,
        )
        media_max_mb = _parse_positive_int_or_default(
            cfg.get("media_max_mb"),
            default=FEISHU_MAX_MEDIA_MB,
            key="feishu.media_max_mb",
        )

        stream = _parse_streaming_config(cfg.get("streaming_updates"))

        if enabled:
            if not app_id:
                raise FeishuBotConfigError(
                    f"Feishu channel is enabled but env var {app_id_env} is unset"
                )
            if not app_secret:
                raise FeishuBotConfigError(
                    f"Feishu channel is enabled but env var {app_secret_env} is unset"
                )

        return cls(
            enabled=enabled,
            app_id_env=app_id_env,
            app_secret_env=app_secret_env,
            app_id=app_id,
            app_secret=app_secret,
            domain=domain,
            render_mode=render_mode,
            streaming=_parse_bool_or_default(
                cfg.get("streaming"), default=True, key="feishu.streaming"
            ),
            text_chunk_limit=text_chunk_limit,
            chunk_mode=chunk_mode,
            media_max_mb=media_max_mb,
            stream=stream,
        )


def _parse_streaming_config(value: Any) -> FeishuStreamingConfig:
    if value is None:
        return FeishuStreamingConfig()
    if not isinstance(value, dict):
        raise FeishuBotConfigError("feishu.streaming_updates must be a mapping")
    defaults = FeishuStreamingConfig()
    min_ms = _parse_positive_int_or_default(
        value.get("min_update_interval_ms"),
        default=defaults.min_update_interval_ms,
        key="feishu.streaming_updates.min_update_interval_ms",
    )
    max_ms = _parse_positive_int_or_default(
        value.get("max_update_interval_ms"),
        default=defaults.max_update_interval_ms,
        key="feishu.streaming_updates.max_update_interval_ms",
    )
    if max_ms < min_ms:
        raise FeishuBotConfigError(
            "feishu.streaming_updates.max_update_interval_ms must be >= "
            "min_update_interval_ms"
        )
    multiplier_raw = value.get("backoff_multiplier")
    multiplier = defaults.backoff_multiplier
    if multiplier_raw is not None:
        try:
            multiplier = float(multiplier_raw)
        except (TypeError, ValueError) as exc:
            raise FeishuBotConfigError(
                "feishu.streaming_updates.backoff_multiplier must be a number"
            ) from exc
        if multiplier < 1.0:
            raise FeishuBotConfigError(
                "feishu.streaming_updates.backoff_multiplier must be >= 1"
            )
    max_retries_raw = value.get("max_retries")
    max_retries = defaults.max_retries
    if max_retries_raw is not None:
        try:
            max_retries = int(max_retries_raw)
        except (TypeError, ValueError) as exc:
            raise FeishuBotConfigError(
                "feishu.streaming_updates.max_retries must be an integer"
            ) from exc
        if max_retries < 0:
            raise FeishuBotConfigError(
                "feishu.streaming_updates.max_retries must be >= 0"
            )
    base_delay_ms = _parse_positive_int_or_default(
        value.get("base_retry_delay_ms"),
        default=defaults.base_retry_delay_ms,
        key="feishu.streaming_updates.base_retry_delay_ms",
    )
    return FeishuStreamingConfig(
        min_update_interval_ms=min_ms,
        max_update_interval_ms=max_ms,
        backoff_multiplier=multiplier,
        max_retries=max_retries,
        base_retry_delay_ms=base_delay_ms,
    )


def _parse_positive_int_or_default(value: Any, *, default: int, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise FeishuBotConfigError(f"{key} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise FeishuBotConfigError(f"{key} must be an integer") from exc
    if parsed <= 0:
        return default
    return parsed


def _parse_bool_or_default(value: Any, *, default: bool, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise FeishuBotConfigError(f"{key} must be a boolean")
