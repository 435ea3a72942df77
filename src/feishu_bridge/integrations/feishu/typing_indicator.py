"""Typing indicator emulation.

Feishu has no typing API, so a ``Typing`` reaction on the message being
answered stands in for one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ...core.logging_utils import log_event
from .constants import TYPING_EMOJI_TYPE

logger = logging.getLogger(__name__)


class ReactionApi(Protocol):
    async def add_reaction(self, message_id: str, emoji_type: str) -> str: ...

    async def remove_reaction(self, message_id: str, reaction_id: str) -> None: ...


@dataclass(frozen=True)
class TypingIndicatorState:
    message_id: str
    reaction_id: Optional[str]


async def add_typing_indicator(
    api: ReactionApi, message_id: str, *, emoji_type: str = TYPING_EMOJI_TYPE
) -> TypingIndicatorState:
    reaction_id = await api.add_reaction(message_id, emoji_type)
    return TypingIndicatorState(message_id=message_id, reaction_id=reaction_id)


async def remove_typing_indicator(
    api: ReactionApi, state: TypingIndicatorState
) -> None:
    if not state.reaction_id:
        return
    await api.remove_reaction(state.message_id, state.reaction_id)


class TypingIndicator:
    """Best-effort start/stop around :func:`add_typing_indicator`.

    Failures are logged at debug level and otherwise ignored.
    """

    def __init__(
        self,
        api: ReactionApi,
        message_id: Optional[str],
        *,
        logger: logging.Logger = logger,
    ) -> None:
        self._api = api
        self._message_id = message_id
        self._logger = logger
        self._state: Optional[TypingIndicatorState] = None

    @property
    def active(self) -> bool:
        return self._state is not None

    async def start(self) -> None:
        if not self._message_id or self._state is not None:
            return
        try:
            self._state = await add_typing_indicator(self._api, self._message_id)
        except Exception as exc:
            log_event(
                self._logger,
                logging.DEBUG,
                "feishu.typing.start_failed",
                message_id=self._message_id,
                exc=exc,
            )

    async def stop(self) -> None:
        state = self._state
        if state is None:
            return
        self._state = None
        try:
            await remove_typing_indicator(self._api, state)
        except Exception as exc:
            log_event(
                self._logger,
                logging.DEBUG,
                "feishu.typing.stop_failed",
                message_id=state.message_id,
                exc=exc,
            )
