"""Bridges a host's reply events to streaming cards or plain sends.

Per turn the host emits zero or more ``on_partial_reply`` events with the
cumulative text so far, then exactly one ``deliver`` with the complete text.
Whatever happens to the streaming card, the complete text reaches the chat:
when streaming cannot start or finish, ``deliver`` sends it through the
fallback path instead.

A coordinator serves a single turn. Hosts may fire partial replies without
awaiting them; the coordinator applies them one at a time and never lets a
partial update overlap finalization.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ...core.logging_utils import log_event
from ..chat.text_chunking import chunk_text_with_mode
from .config import FeishuBotConfig
from .constants import RENDER_MODE_AUTO, RENDER_MODE_CARD
from .rendering import build_markdown_card, convert_tables_to_ascii, should_use_card
from .streaming import StreamingSession
from .transport import CardMessageApi, FeishuSendResult
from .typing_indicator import TypingIndicator

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], StreamingSession]


@dataclass
class ReplyDispatchContext:
    active_session: Optional[StreamingSession] = None
    typing_suppressed: bool = False
    delivered: bool = False


class ReplyDispatchCoordinator:
    def __init__(
        self,
        api: CardMessageApi,
        config: FeishuBotConfig,
        target: str,
        *,
        reply_to: Optional[str] = None,
        typing: Optional[TypingIndicator] = None,
        session_factory: Optional[SessionFactory] = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._api = api
        self._config = config
        self._target = target
        self._reply_to = reply_to
        self._typing = typing
        self._logger = logger
        self._session_factory = session_factory or self._default_session
        self.context = ReplyDispatchContext()
        self._session_lock = asyncio.Lock()

    def _default_session(self) -> StreamingSession:
        return StreamingSession(
            self._api,
            self._target,
            reply_to=self._reply_to,
            config=self._config.stream,
            logger=self._logger,
        )

    async def on_reply_start(self) -> None:
        if self._typing is None or self.context.typing_suppressed:
            return
        session = self.context.active_session
        if session is not None and session.message_id:
            return
        await self._typing.start()

    async def on_reply_idle(self) -> None:
        if self._typing is not None:
            await self._typing.stop()

    async def on_partial_reply(self, text: str) -> None:
        if not text or not self._config.streaming:
            return
        async with self._session_lock:
            context = self.context
            if context.delivered:
                return
            if context.active_session is None:
                context.active_session = self._session_factory()
                context.typing_suppressed = True
                if self._typing is not None and self._typing.active:
                    await self._typing.stop()
            session = context.active_session
            if session.has_failed():
                log_event(
                    self._logger,
                    logging.INFO,
                    "feishu.dispatch.stream_abandoned",
                    target=self._target,
                    reason="initialization_failed",
                )
                context.active_session = None
                return
            await session.update(text)

    async def deliver(self, text: str) -> list[FeishuSendResult]:
        """Deliver the complete reply for this turn.

        Waits for any partial update still in flight; partial replies that
        arrive afterwards are ignored.
        """
        if not text or not text.strip():
            return []
        async with self._session_lock:
            self.context.delivered = True
            session = self.context.active_session
            self.context.active_session = None
            if session is not None and await session.finalize(text):
                return []
        if session is not None:
            log_event(
                self._logger,
                logging.WARNING,
                "feishu.dispatch.fallback",
                target=self._target,
                reason="finalize_failed",
                card_id=session.card_id,
            )
        return await self.send_fallback(text)

    async def on_error(self, exc: BaseException, *, kind: str = "final") -> None:
        log_event(
            self._logger,
            logging.ERROR,
            "feishu.dispatch.reply_failed",
            target=self._target,
            kind=kind,
            exc=exc,
        )
        await self.on_reply_idle()

    def use_card_for(self, text: str) -> bool:
        mode = self._config.render_mode
        if mode == RENDER_MODE_CARD:
            return True
        return mode == RENDER_MODE_AUTO and should_use_card(text)

    async def send_fallback(self, text: str) -> list[FeishuSendResult]:
        limit = self._config.text_chunk_limit
        mode = self._config.chunk_mode
        results: list[FeishuSendResult] = []
        if self.use_card_for(text):
            for chunk in chunk_text_with_mode(text, limit, mode):
                results.append(
                    await self._api.send_card(
                        self._target,
                        build_markdown_card(chunk),
                        reply_to=self._reply_to,
                    )
                )
            return results
        for chunk in chunk_text_with_mode(convert_tables_to_ascii(text), limit, mode):
            results.append(
                await self._api.send_text(self._target, chunk, reply_to=self._reply_to)
            )
        return results
