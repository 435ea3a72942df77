"""Capability-shaped message API consumed by the streaming and fallback paths.

The streaming session and reply coordinator only ever talk to a
``CardMessageApi``. ``FeishuMessageApi`` implements it on top of the REST
client; tests substitute in-memory fakes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from .rendering import build_card_reference, build_streaming_card
from .rest import FeishuRestClient, normalize_target


@dataclass(frozen=True)
class FeishuSendResult:
    message_id: str
    chat_id: str


@dataclass(frozen=True)
class FeishuMessageInfo:
    message_id: str
    chat_id: str
    content: str
    content_type: str
    sender_id: Optional[str] = None
    sender_open_id: Optional[str] = None
    create_time: Optional[int] = None


@runtime_checkable
class CardMessageApi(Protocol):
    async def create_streaming_card(self, content: str, *, streaming: bool) -> str:
        """Create a card entity and return its id."""

    async def update_card_content(
        self, card_id: str, content: str, *, sequence: int, streaming: bool
    ) -> None:
        """Replace the card body; ``sequence`` must increase per card."""

    async def update_card_settings(
        self, card_id: str, settings: dict[str, Any], *, sequence: int
    ) -> None:
        """Patch card-level settings."""

    async def bind_card_to_message(
        self, target: str, card_id: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        """Post a message rendering ``card_id`` into the chat."""

    async def send_text(
        self, target: str, text: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        """Send a plain text message."""

    async def send_card(
        self, target: str, card: dict[str, Any], *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        """Send a static interactive card."""


def streaming_settings(*, streaming: bool) -> dict[str, Any]:
    return {"config": {"streaming_mode": streaming}}


class FeishuMessageApi:
    def __init__(self, rest: FeishuRestClient) -> None:
        self._rest = rest

    @property
    def rest(self) -> FeishuRestClient:
        return self._rest

    async def create_streaming_card(self, content: str, *, streaming: bool) -> str:
        return await self._rest.create_card(
            card=build_streaming_card(content, streaming=streaming)
        )

    async def update_card_content(
        self, card_id: str, content: str, *, sequence: int, streaming: bool
    ) -> None:
        await self._rest.update_card(
            card_id=card_id,
            card=build_streaming_card(content, streaming=streaming),
            sequence=sequence,
        )

    async def update_card_settings(
        self, card_id: str, settings: dict[str, Any], *, sequence: int
    ) -> None:
        await self._rest.update_card_settings(
            card_id=card_id, settings=settings, sequence=sequence
        )

    async def bind_card_to_message(
        self, target: str, card_id: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        return await self._deliver(
            target, "interactive", build_card_reference(card_id), reply_to=reply_to
        )

    async def send_text(
        self, target: str, text: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        return await self._deliver(target, "text", {"text": text}, reply_to=reply_to)

    async def send_card(
        self, target: str, card: dict[str, Any], *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        return await self._deliver(target, "interactive", card, reply_to=reply_to)

    async def send_image(
        self, target: str, image_key: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        return await self._deliver(
            target, "image", {"image_key": image_key}, reply_to=reply_to
        )

    async def send_file(
        self,
        target: str,
        file_key: str,
        *,
        msg_type: str = "file",
        reply_to: Optional[str] = None,
    ) -> FeishuSendResult:
        return await self._deliver(
            target, msg_type, {"file_key": file_key}, reply_to=reply_to
        )

    async def add_reaction(self, message_id: str, emoji_type: str) -> str:
        return await self._rest.add_reaction(
            message_id=message_id, emoji_type=emoji_type
        )

    async def remove_reaction(self, message_id: str, reaction_id: str) -> None:
        await self._rest.delete_reaction(
            message_id=message_id, reaction_id=reaction_id
        )

    async def update_card(self, message_id: str, card: dict[str, Any]) -> None:
        """Replace the card of an already sent interactive message."""
        await self._rest.patch_message(message_id=message_id, content=card)

    async def get_message(self, message_id: str) -> Optional[FeishuMessageInfo]:
        item = await self._rest.get_message(message_id=message_id)
        if item is None:
            return None
        return parse_message_info(item, fallback_message_id=message_id)

    async def _deliver(
        self,
        target: str,
        msg_type: str,
        content: dict[str, Any],
        *,
        reply_to: Optional[str],
    ) -> FeishuSendResult:
        receive_id = normalize_target(target)
        if reply_to:
            data = await self._rest.reply_message(
                message_id=reply_to, msg_type=msg_type, content=content
            )
        else:
            data = await self._rest.create_message(
                receive_id=receive_id, msg_type=msg_type, content=content
            )
        message_id = data.get("message_id")
        chat_id = data.get("chat_id")
        return FeishuSendResult(
            message_id=message_id if isinstance(message_id, str) else "",
            chat_id=chat_id if isinstance(chat_id, str) and chat_id else receive_id,
        )


def parse_message_info(
    item: dict[str, Any], *, fallback_message_id: str
) -> FeishuMessageInfo:
    content_type = str(item.get("msg_type") or "text")
    body = item.get("body")
    content = ""
    if isinstance(body, dict) and isinstance(body.get("content"), str):
        content = body["content"]
    if content_type == "text":
        try:
            parsed = json.loads(content)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("text"), str):
            content = parsed["text"]
    sender = item.get("sender") if isinstance(item.get("sender"), dict) else {}
    sender_id = sender.get("id") if isinstance(sender.get("id"), str) else None
    create_time = item.get("create_time")
    return FeishuMessageInfo(
        message_id=str(item.get("message_id") or fallback_message_id),
        chat_id=str(item.get("chat_id") or ""),
        content=content,
        content_type=content_type,
        sender_id=sender_id,
        sender_open_id=sender_id if sender.get("id_type") == "open_id" else None,
        create_time=int(create_time) if str(create_time or "").isdigit() else None,
    )
