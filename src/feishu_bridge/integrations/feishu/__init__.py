"""Feishu / Lark channel adapter."""

from .config import FeishuBotConfig, FeishuStreamingConfig
from .constants import (
    FEISHU_API_BASE_URL,
    FEISHU_MAX_MESSAGE_LENGTH,
    LARK_API_BASE_URL,
    RATE_LIMIT_ERROR_CODES,
)
from .dispatcher import ReplyDispatchContext, ReplyDispatchCoordinator
from .errors import (
    FeishuAPIError,
    FeishuBotConfigError,
    FeishuError,
    FeishuNetworkError,
    FeishuPermanentError,
)
from .outbound import FeishuOutbound
from .rate_limit import AdaptiveInterval, FailureKind, classify_remote_error
from .rest import FeishuRestClient, normalize_target
from .streaming import StreamingSession, StreamState
from .transport import CardMessageApi, FeishuMessageApi, FeishuSendResult
from .typing_indicator import TypingIndicator

__all__ = [
    "AdaptiveInterval",
    "CardMessageApi",
    "FEISHU_API_BASE_URL",
    "FEISHU_MAX_MESSAGE_LENGTH",
    "FailureKind",
    "FeishuAPIError",
    "FeishuBotConfig",
    "FeishuBotConfigError",
    "FeishuError",
    "FeishuMessageApi",
    "FeishuNetworkError",
    "FeishuOutbound",
    "FeishuPermanentError",
    "FeishuRestClient",
    "FeishuSendResult",
    "FeishuStreamingConfig",
    "LARK_API_BASE_URL",
    "RATE_LIMIT_ERROR_CODES",
    "ReplyDispatchContext",
    "ReplyDispatchCoordinator",
    "StreamState",
    "StreamingSession",
    "TypingIndicator",
    "classify_remote_error",
    "normalize_target",
]
