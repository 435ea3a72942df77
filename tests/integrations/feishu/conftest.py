from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from feishu_bridge.integrations.feishu.transport import FeishuSendResult


class FakeCardApi:
    """In-memory ``CardMessageApi`` that records every call.

    Calls are recorded before any scripted failure is raised, so failed
    attempts show up in ``calls`` with the sequence they were sent with.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.create_gate: Optional[asyncio.Event] = None
        self._queued: dict[str, list[BaseException]] = {}
        self._always: dict[str, BaseException] = {}
        self._message_count = 0

    def fail(self, op: str, *errors: BaseException) -> None:
        self._queued.setdefault(op, []).extend(errors)

    def fail_always(self, op: str, error: BaseException) -> None:
        self._always[op] = error

    def ops(self, name: str) -> list[dict[str, Any]]:
        return [fields for op, fields in self.calls if op == name]

    def op_names(self) -> list[str]:
        return [op for op, _fields in self.calls]

    async def _record(self, op: str, **fields: Any) -> None:
        self.calls.append((op, fields))
        await asyncio.sleep(0)
        if op in self._always:
            raise self._always[op]
        queued = self._queued.get(op)
        if queued:
            raise queued.pop(0)

    def _next_result(self, target: str) -> FeishuSendResult:
        self._message_count += 1
        return FeishuSendResult(message_id=f"om_{self._message_count}", chat_id=target)

    async def create_streaming_card(self, content: str, *, streaming: bool) -> str:
        if self.create_gate is not None:
            await self.create_gate.wait()
        await self._record("create", content=content, streaming=streaming)
        return "card-1"

    async def update_card_content(
        self, card_id: str, content: str, *, sequence: int, streaming: bool
    ) -> None:
        await self._record(
            "update",
            card_id=card_id,
            content=content,
            sequence=sequence,
            streaming=streaming,
        )

    async def update_card_settings(
        self, card_id: str, settings: dict[str, Any], *, sequence: int
    ) -> None:
        await self._record(
            "settings", card_id=card_id, settings=settings, sequence=sequence
        )

    async def bind_card_to_message(
        self, target: str, card_id: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        await self._record("bind", target=target, card_id=card_id, reply_to=reply_to)
        return FeishuSendResult(message_id="om_bound", chat_id=target)

    async def send_text(
        self, target: str, text: str, *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        await self._record("send_text", target=target, text=text, reply_to=reply_to)
        return self._next_result(target)

    async def send_card(
        self, target: str, card: dict[str, Any], *, reply_to: Optional[str] = None
    ) -> FeishuSendResult:
        await self._record("send_card", target=target, card=card, reply_to=reply_to)
        return self._next_result(target)

    async def add_reaction(self, message_id: str, emoji_type: str) -> str:
        await self._record("add_reaction", message_id=message_id, emoji_type=emoji_type)
        return "reaction-1"

    async def remove_reaction(self, message_id: str, reaction_id: str) -> None:
        await self._record(
            "remove_reaction", message_id=message_id, reaction_id=reaction_id
        )


class FakeClock:
    def __init__(self) -> None:
        self.current = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds


@pytest.fixture()
def card_api() -> FakeCardApi:
    return FakeCardApi()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
