from __future__ import annotations

FEISHU_API_BASE_URL = "https://open.feishu.cn/open-apis"
LARK_API_BASE_URL = "https://open.larksuite.com/open-apis"
FEISHU_DOMAINS = {"feishu": FEISHU_API_BASE_URL, "lark": LARK_API_BASE_URL}

# Platform limit for a single text/card message body.
FEISHU_MAX_MESSAGE_LENGTH = 4000
FEISHU_MAX_MEDIA_MB = 30

# Known rate-limit error codes: legacy message API and CardKit streaming.
RATE_LIMIT_ERROR_CODE = "230020"
STREAMING_RATE_LIMIT_ERROR_CODE = "99991400"
RATE_LIMIT_ERROR_CODES = frozenset({RATE_LIMIT_ERROR_CODE, STREAMING_RATE_LIMIT_ERROR_CODE})

# Card update pacing. A single card accepts ~10 updates/s; stay well under.
MIN_UPDATE_INTERVAL_SECONDS = 0.3
MAX_UPDATE_INTERVAL_SECONDS = 5.0
RATE_LIMIT_BACKOFF_MULTIPLIER = 2.0
MAX_RETRY_COUNT = 3
BASE_RETRY_DELAY_SECONDS = 1.0

STREAMING_ELEMENT_ID = "markdown_content"
STREAMING_SUMMARY_TEXT = "[生成中]"
EMPTY_CARD_PLACEHOLDER = "..."
TYPING_EMOJI_TYPE = "Typing"

RENDER_MODE_AUTO = "auto"
RENDER_MODE_RAW = "raw"
RENDER_MODE_CARD = "card"
RENDER_MODES = frozenset({RENDER_MODE_AUTO, RENDER_MODE_RAW, RENDER_MODE_CARD})
