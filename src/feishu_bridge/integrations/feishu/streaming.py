"""Live-updating card for one reply turn.

A session turns a stream of cumulative partial texts into a bounded number
of CardKit mutations. Intermediate updates that arrive faster than the
current throttle interval are dropped rather than queued: every update
carries the full text so far, so the next accepted update (or the final
one) supersedes anything skipped.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Awaitable, Callable, Optional

from ...core.logging_utils import log_event
from .config import FeishuStreamingConfig
from .errors import FeishuError
from .rate_limit import (
    AdaptiveInterval,
    FailureKind,
    classify_remote_error,
    extract_error_code,
    format_remote_error,
    retry_delay_seconds,
)
from .transport import CardMessageApi, streaming_settings

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 50


class StreamState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    FAILED = "failed"


_TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.UNINITIALIZED: frozenset({StreamState.INITIALIZING}),
    StreamState.INITIALIZING: frozenset({StreamState.STREAMING, StreamState.FAILED}),
    StreamState.STREAMING: frozenset({StreamState.FINALIZED}),
    StreamState.FINALIZED: frozenset(),
    StreamState.FAILED: frozenset(),
}


class InvalidStreamTransition(FeishuError):
    """Raised when a session is driven into a state it cannot reach."""


def _preview(text: str, limit: int = _PREVIEW_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class StreamingSession:
    """One streaming card bound to one chat message.

    Remote failures never propagate out of :meth:`update` or :meth:`finalize`;
    both report through their return value and the log. An ``update`` still
    retrying when ``finalize`` completes gives up without touching the card.
    """

    def __init__(
        self,
        api: CardMessageApi,
        target: str,
        *,
        reply_to: Optional[str] = None,
        config: Optional[FeishuStreamingConfig] = None,
        logger: logging.Logger = logger,
        now_fn: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        cfg = config or FeishuStreamingConfig()
        self._api = api
        self._target = target
        self._reply_to = reply_to
        self._logger = logger
        self._now = now_fn
        self._sleep = sleep_fn
        self._max_retries = cfg.max_retries
        self._base_retry_delay = cfg.base_retry_delay
        self._interval = AdaptiveInterval(
            floor=cfg.min_update_interval,
            ceiling=cfg.max_update_interval,
            multiplier=cfg.backoff_multiplier,
        )
        self._state = StreamState.UNINITIALIZED
        self._card_id: Optional[str] = None
        self._message_id: Optional[str] = None
        self._last_content = ""
        self._last_update_at: Optional[float] = None
        self._sequence = 0
        self._pending_initialization: Optional[asyncio.Task[bool]] = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def card_id(self) -> Optional[str]:
        return self._card_id

    @property
    def message_id(self) -> Optional[str]:
        return self._message_id

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def last_content(self) -> str:
        return self._last_content

    @property
    def current_min_interval(self) -> float:
        return self._interval.value

    @property
    def rate_limit_hit_count(self) -> int:
        return self._interval.hit_count

    def has_failed(self) -> bool:
        return self._state is StreamState.FAILED

    def _transition(self, new_state: StreamState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidStreamTransition(
                f"Illegal streaming transition {self._state.value} -> {new_state.value}"
            )
        self._state = new_state

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    async def update(self, content: str, *, is_final: bool = False) -> bool:
        """Push cumulative ``content`` to the card.

        Returns True when the card shows ``content`` afterwards, False when
        the update was dropped by the throttle or could not be applied.
        """
        if self._state is StreamState.FINALIZED:
            return False
        if content == self._last_content:
            return True
        if self._state is not StreamState.STREAMING:
            if not await self._ensure_initialized(content):
                return False
            if content == self._last_content:
                return True
        if not is_final and self._throttled():
            return False
        card_id = self._require_card_id()

        async def _push(sequence: int) -> None:
            await self._api.update_card_content(
                card_id, content, sequence=sequence, streaming=True
            )

        if not await self._call_with_retry("update", _push, abort=self._is_finalized):
            return False
        if self._is_finalized():
            return False
        self._mark_applied(content)
        return True

    async def finalize(self, content: str) -> bool:
        """Write the final text and switch streaming mode off.

        Idempotent once it has succeeded. On failure the session stays in
        STREAMING and the caller is expected to fall back.
        """
        if self._state is StreamState.FINALIZED:
            return True
        pending = self._pending_initialization
        if pending is not None:
            await self._join_initialization(pending)
        if self._state is not StreamState.STREAMING or self._card_id is None:
            return False
        card_id = self._card_id

        async def _push_content(sequence: int) -> None:
            await self._api.update_card_content(
                card_id, content, sequence=sequence, streaming=False
            )

        async def _push_settings(sequence: int) -> None:
            await self._api.update_card_settings(
                card_id, streaming_settings(streaming=False), sequence=sequence
            )

        if not await self._call_with_retry("finalize", _push_content):
            return False
        self._mark_applied(content)
        if not await self._call_with_retry("finalize_settings", _push_settings):
            return False
        self._transition(StreamState.FINALIZED)
        log_event(
            self._logger,
            logging.INFO,
            "feishu.stream.finalized",
            card_id=card_id,
            message_id=self._message_id,
            total_length=len(content),
            preview=_preview(content, 100),
        )
        return True

    def _is_finalized(self) -> bool:
        return self._state is StreamState.FINALIZED

    def _throttled(self) -> bool:
        if self._last_update_at is None:
            return False
        return self._now() - self._last_update_at < self._interval.value

    def _mark_applied(self, content: str) -> None:
        self._last_content = content
        self._last_update_at = self._now()

    def _require_card_id(self) -> str:
        if self._card_id is None:
            raise InvalidStreamTransition("Streaming session has no card id")
        return self._card_id

    async def _ensure_initialized(self, content: str) -> bool:
        if self._state is StreamState.FAILED:
            return False
        pending = self._pending_initialization
        if pending is None:
            self._transition(StreamState.INITIALIZING)
            pending = asyncio.create_task(self._initialize(content))
            self._pending_initialization = pending
        return await self._join_initialization(pending)

    async def _join_initialization(self, pending: asyncio.Task[bool]) -> bool:
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            # Re-raise when the caller itself is being cancelled.
            if not pending.cancelled():
                raise
        if self._state is StreamState.INITIALIZING:
            self._transition(StreamState.FAILED)
        if self._pending_initialization is pending:
            self._pending_initialization = None
        return False

    async def _initialize(self, content: str) -> bool:
        try:
            card_id = await self._api.create_streaming_card(content, streaming=True)
            self._card_id = card_id
            result = await self._api.bind_card_to_message(
                self._target, card_id, reply_to=self._reply_to
            )
            self._message_id = result.message_id
        except asyncio.CancelledError:
            self._transition(StreamState.FAILED)
            log_event(
                self._logger,
                logging.WARNING,
                "feishu.stream.init_cancelled",
                target=self._target,
                card_id=self._card_id,
            )
            raise
        except Exception as exc:
            self._transition(StreamState.FAILED)
            log_event(
                self._logger,
                logging.ERROR,
                "feishu.stream.init_failed",
                target=self._target,
                card_id=self._card_id,
                error_code=extract_error_code(exc),
                detail=format_remote_error(exc, "initialization"),
            )
            return False
        finally:
            self._pending_initialization = None
        self._mark_applied(content)
        self._transition(StreamState.STREAMING)
        log_event(
            self._logger,
            logging.INFO,
            "feishu.stream.initialized",
            card_id=self._card_id,
            message_id=self._message_id,
            preview=_preview(content),
        )
        return True

    async def _call_with_retry(
        self,
        operation: str,
        call: Callable[[int], Awaitable[None]],
        *,
        abort: Optional[Callable[[], bool]] = None,
    ) -> bool:
        attempt = 0
        while True:
            if abort is not None and abort():
                return False
            try:
                await call(self._next_sequence())
            except Exception as exc:
                kind = classify_remote_error(exc)
                if kind is FailureKind.RATE_LIMITED:
                    self._interval = self._interval.on_rate_limited()
                    if attempt < self._max_retries:
                        delay = retry_delay_seconds(attempt, self._base_retry_delay)
                        log_event(
                            self._logger,
                            logging.DEBUG,
                            "feishu.stream.rate_limited",
                            operation=operation,
                            card_id=self._card_id,
                            attempt=attempt + 1,
                            delay_seconds=delay,
                            min_interval_seconds=self._interval.value,
                        )
                        await self._sleep(delay)
                        attempt += 1
                        continue
                log_event(
                    self._logger,
                    logging.ERROR,
                    f"feishu.stream.{operation}_failed",
                    card_id=self._card_id,
                    kind=kind.value,
                    retry_count=attempt,
                    error_code=extract_error_code(exc),
                    detail=format_remote_error(
                        exc, operation, attempt, self._max_retries
                    ),
                )
                return False
            self._interval = self._interval.on_success()
            return True
