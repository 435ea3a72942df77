from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ...core.logging_utils import log_event
from ..chat.text_chunking import chunk_text_with_mode
from .config import FeishuBotConfig
from .constants import FEISHU_MAX_MESSAGE_LENGTH, RENDER_MODE_CARD
from .errors import FeishuAPIError, FeishuPermanentError
from .media import send_media
from .rendering import build_interactive_card, build_markdown_card
from .transport import FeishuMessageApi, FeishuMessageInfo, FeishuSendResult

logger = logging.getLogger(__name__)

MEDIA_FALLBACK_PREFIX = "📎 "


class FeishuOutbound:
    """Direct sends that bypass the reply coordinator."""

    text_chunk_limit = FEISHU_MAX_MESSAGE_LENGTH

    def __init__(
        self,
        api: FeishuMessageApi,
        config: FeishuBotConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._api = api
        self._config = config
        self._http_client = http_client
        self._logger = logger

    def chunk(self, text: str) -> list[str]:
        limit = min(self._config.text_chunk_limit, self.text_chunk_limit)
        return chunk_text_with_mode(text, limit, self._config.chunk_mode)

    async def send_text(
        self, target: str, text: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        if self._config.render_mode == RENDER_MODE_CARD:
            return await self.send_markdown(target, text, reply_to=reply_to)
        return await self._api.send_text(target, text, reply_to=reply_to)

    async def send_markdown(
        self, target: str, text: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        return await self._api.send_card(
            target, build_markdown_card(text), reply_to=reply_to
        )

    async def send_card(
        self, target: str, card: dict[str, Any], *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        return await self._api.send_card(target, card, reply_to=reply_to)

    async def send_interactive(
        self,
        target: str,
        *,
        title: str,
        content: str,
        buttons: Optional[list[dict[str, Any]]] = None,
        template: str = "blue",
        reply_to: Optional[str] = None,
    ) -> FeishuSendResult:
        card = build_interactive_card(
            title=title, content=content, buttons=buttons, template=template
        )
        return await self._api.send_card(target, card, reply_to=reply_to)

    async def edit_markdown(self, message_id: str, text: str) -> None:
        await self._api.update_card(message_id, build_markdown_card(text))

    async def fetch_message(self, message_id: str) -> Optional[FeishuMessageInfo]:
        """Look up a message, e.g. the one being quoted; None when unavailable."""
        try:
            return await self._api.get_message(message_id)
        except FeishuAPIError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "feishu.outbound.fetch_failed",
                message_id=message_id,
                exc=exc,
            )
            return None

    async def send_media(
        self,
        target: str,
        *,
        text: Optional[str] = None,
        media_url: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> FeishuSendResult:
        """Send an optional caption, then the media.

        An upload failure degrades to a text message linking the media URL.
        """
        caption: Optional[FeishuSendResult] = None
        if text and text.strip():
            caption = await self._api.send_text(target, text, reply_to=reply_to)
        if not media_url:
            if caption is None:
                raise FeishuPermanentError("send_media needs text or media_url")
            return caption
        try:
            return await send_media(
                self._api,
                target,
                media_url=media_url,
                reply_to=reply_to,
                max_mb=self._config.media_max_mb,
                http_client=self._http_client,
            )
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "feishu.outbound.media_failed",
                target=target,
                media_url=media_url,
                exc=exc,
            )
            return await self._api.send_text(
                target, f"{MEDIA_FALLBACK_PREFIX}{media_url}", reply_to=reply_to
            )
