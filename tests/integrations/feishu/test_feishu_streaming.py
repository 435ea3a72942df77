from __future__ import annotations

import asyncio
import logging

import pytest

from feishu_bridge.integrations.feishu.config import FeishuStreamingConfig
from feishu_bridge.integrations.feishu.errors import FeishuAPIError
from feishu_bridge.integrations.feishu.streaming import (
    InvalidStreamTransition,
    StreamingSession,
    StreamState,
)


def _rate_limited(code: int = 99991400) -> FeishuAPIError:
    return FeishuAPIError("card update rejected", code=code, status_code=400)


def _session(card_api, clock, **kwargs) -> StreamingSession:
    kwargs.setdefault("reply_to", "om_user")
    return StreamingSession(
        card_api,
        "oc_chat",
        now_fn=clock,
        sleep_fn=clock.sleep,
        **kwargs,
    )


def _sent_sequences(card_api) -> list[int]:
    return [
        fields["sequence"]
        for op, fields in card_api.calls
        if op in {"update", "settings"}
    ]


@pytest.mark.anyio
async def test_first_update_creates_and_binds_card(card_api, clock) -> None:
    session = _session(card_api, clock)

    assert session.state is StreamState.UNINITIALIZED
    assert await session.update("Hel") is True

    assert card_api.op_names() == ["create", "bind"]
    assert card_api.ops("create") == [{"content": "Hel", "streaming": True}]
    assert card_api.ops("bind") == [
        {"target": "oc_chat", "card_id": "card-1", "reply_to": "om_user"}
    ]
    assert session.state is StreamState.STREAMING
    assert session.card_id == "card-1"
    assert session.message_id == "om_bound"
    assert session.last_content == "Hel"
    assert session.sequence == 0


@pytest.mark.anyio
async def test_unchanged_content_is_a_noop(card_api, clock) -> None:
    session = _session(card_api, clock)

    await session.update("same")
    clock.advance(1.0)
    assert await session.update("same") is True

    assert card_api.op_names() == ["create", "bind"]


@pytest.mark.anyio
async def test_updates_inside_min_interval_are_dropped(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("A")

    clock.advance(0.4)
    assert await session.update("AB") is True
    clock.advance(0.1)
    assert await session.update("ABC") is False

    assert [call["content"] for call in card_api.ops("update")] == ["AB"]
    assert session.last_content == "AB"


@pytest.mark.anyio
async def test_final_update_bypasses_throttle(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("A")

    assert await session.update("AB", is_final=True) is True

    assert card_api.ops("update") == [
        {"card_id": "card-1", "content": "AB", "sequence": 1, "streaming": True}
    ]


@pytest.mark.anyio
async def test_concurrent_updates_share_one_initialization(card_api, clock) -> None:
    session = _session(card_api, clock)
    card_api.create_gate = asyncio.Event()

    tasks = [asyncio.create_task(session.update(f"text {i}")) for i in range(5)]
    await asyncio.sleep(0)
    assert session.state is StreamState.INITIALIZING
    card_api.create_gate.set()
    results = await asyncio.gather(*tasks)

    assert len(card_api.ops("create")) == 1
    assert len(card_api.ops("bind")) == 1
    assert results[0] is True
    # Joiners land inside the throttle window opened by initialization.
    assert results[1:] == [False, False, False, False]
    assert card_api.ops("update") == []


@pytest.mark.anyio
async def test_rate_limited_update_retries_and_recovers(
    card_api, clock, caplog: pytest.LogCaptureFixture
) -> None:
    session = _session(card_api, clock)
    await session.update("Hel")
    card_api.fail("update", _rate_limited())
    hit_counts_during_sleep: list[int] = []
    original_sleep = clock.sleep

    async def observing_sleep(seconds: float) -> None:
        hit_counts_during_sleep.append(session.rate_limit_hit_count)
        await original_sleep(seconds)

    session._sleep = observing_sleep
    clock.advance(0.4)

    with caplog.at_level(logging.DEBUG):
        assert await session.update("Hello") is True

    assert hit_counts_during_sleep == [1]
    assert clock.sleeps == [1.0]
    assert [call["sequence"] for call in card_api.ops("update")] == [1, 2]
    assert session.last_content == "Hello"
    assert session.rate_limit_hit_count == 0
    assert session.current_min_interval == pytest.approx(0.3)
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


@pytest.mark.anyio
async def test_rate_limit_detected_from_error_text(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("a")
    card_api.fail("update", RuntimeError("request failed code=230020 too many"))
    clock.advance(0.4)

    assert await session.update("ab") is True
    assert clock.sleeps == [1.0]


@pytest.mark.anyio
async def test_backoff_grows_multiplicatively(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("a")
    card_api.fail("update", _rate_limited(), _rate_limited(), _rate_limited())
    observed: list[float] = []
    original_sleep = clock.sleep

    async def observing_sleep(seconds: float) -> None:
        observed.append(session.current_min_interval)
        await original_sleep(seconds)

    session._sleep = observing_sleep
    clock.advance(0.4)

    assert await session.update("ab") is True
    assert observed == [pytest.approx(0.6), pytest.approx(1.2), pytest.approx(2.4)]
    assert clock.sleeps == [1.0, 2.0, 4.0]


@pytest.mark.anyio
async def test_backoff_is_capped_and_retries_exhaust(
    card_api, clock, caplog: pytest.LogCaptureFixture
) -> None:
    config = FeishuStreamingConfig(min_update_interval_ms=300, max_update_interval_ms=1000)
    session = _session(card_api, clock, config=config)
    await session.update("a")
    card_api.fail_always("update", _rate_limited(230020))
    observed: list[float] = []
    original_sleep = clock.sleep

    async def observing_sleep(seconds: float) -> None:
        observed.append(session.current_min_interval)
        await original_sleep(seconds)

    session._sleep = observing_sleep
    clock.advance(0.4)

    with caplog.at_level(logging.DEBUG):
        assert await session.update("ab") is False

    assert observed == [pytest.approx(0.6), pytest.approx(1.0), pytest.approx(1.0)]
    assert session.current_min_interval == pytest.approx(1.0)
    assert session.rate_limit_hit_count == 4
    assert len(card_api.ops("update")) == 4
    assert session.last_content == "a"
    errors = [r.getMessage() for r in caplog.records if r.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert errors[0].startswith("feishu.stream.update_failed")
    assert "retry 3/3" in errors[0]
    assert '"error_code": "230020"' in errors[0]


@pytest.mark.anyio
async def test_other_failures_are_not_retried(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("a")
    card_api.fail("update", RuntimeError("server exploded"))
    clock.advance(0.4)

    assert await session.update("ab") is False

    assert clock.sleeps == []
    assert len(card_api.ops("update")) == 1
    assert session.rate_limit_hit_count == 0
    assert session.state is StreamState.STREAMING


@pytest.mark.anyio
async def test_initialization_failure_is_terminal(card_api, clock) -> None:
    session = _session(card_api, clock)
    card_api.fail_always("create", RuntimeError("cardkit down"))

    assert await session.update("Hel") is False
    assert session.has_failed() is True
    assert session.state is StreamState.FAILED

    assert await session.update("Hello") is False
    assert await session.finalize("Hello world") is False
    assert len(card_api.ops("create")) == 1
    assert card_api.ops("update") == []


@pytest.mark.anyio
async def test_bind_failure_marks_session_failed(card_api, clock) -> None:
    session = _session(card_api, clock)
    card_api.fail("bind", FeishuAPIError("chat not found", code=230002))

    assert await session.update("Hel") is False
    assert session.has_failed() is True
    assert session.message_id is None
    assert await session.finalize("Hello") is False


@pytest.mark.anyio
async def test_finalize_disables_streaming_and_is_idempotent(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("Hel")

    assert await session.finalize("Hello world") is True
    assert session.state is StreamState.FINALIZED
    assert card_api.ops("update") == [
        {
            "card_id": "card-1",
            "content": "Hello world",
            "sequence": 1,
            "streaming": False,
        }
    ]
    assert card_api.ops("settings") == [
        {
            "card_id": "card-1",
            "settings": {"config": {"streaming_mode": False}},
            "sequence": 2,
        }
    ]

    calls_after_first = len(card_api.calls)
    assert await session.finalize("Hello world") is True
    assert await session.finalize("something else") is True
    assert await session.update("more") is False
    assert len(card_api.calls) == calls_after_first


@pytest.mark.anyio
async def test_finalize_without_initialization_returns_false(card_api, clock) -> None:
    session = _session(card_api, clock)

    assert await session.finalize("Hello") is False
    assert card_api.calls == []
    assert session.state is StreamState.UNINITIALIZED


@pytest.mark.anyio
async def test_finalize_retries_each_step_independently(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("Hel")
    card_api.fail("settings", _rate_limited())

    assert await session.finalize("Hello") is True

    assert len(card_api.ops("update")) == 1
    assert [call["sequence"] for call in card_api.ops("settings")] == [2, 3]
    assert clock.sleeps == [1.0]


@pytest.mark.anyio
async def test_finalize_failure_leaves_session_streaming(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("Hel")
    card_api.fail("settings", RuntimeError("settings rejected"))

    assert await session.finalize("Hello") is False
    assert session.state is StreamState.STREAMING


@pytest.mark.anyio
async def test_finalize_waits_for_pending_initialization(card_api, clock) -> None:
    session = _session(card_api, clock)
    card_api.create_gate = asyncio.Event()

    update_task = asyncio.create_task(session.update("Hel"))
    await asyncio.sleep(0)
    finalize_task = asyncio.create_task(session.finalize("Hello"))
    await asyncio.sleep(0)
    card_api.create_gate.set()

    assert await update_task is True
    assert await finalize_task is True
    assert card_api.op_names() == ["create", "bind", "update", "settings"]


@pytest.mark.anyio
async def test_sequences_strictly_increase_across_retries(card_api, clock) -> None:
    session = _session(card_api, clock)
    await session.update("a")
    card_api.fail("update", _rate_limited(), RuntimeError("boom"))
    clock.advance(0.4)
    await session.update("ab")
    clock.advance(0.4)
    await session.update("abc")
    card_api.fail("settings", _rate_limited())
    assert await session.finalize("abcd") is True

    sequences = _sent_sequences(card_api)
    assert sequences == sorted(set(sequences))
    assert sequences == list(range(1, len(sequences) + 1))


@pytest.mark.anyio
async def test_hello_world_scenario(card_api, clock) -> None:
    session = _session(card_api, clock)

    await session.update("Hel")
    clock.advance(0.35)
    await session.update("Hello")
    clock.advance(0.35)
    await session.update("Hello wor")
    assert await session.finalize("Hello world") is True

    assert card_api.ops("create") == [{"content": "Hel", "streaming": True}]
    updates = card_api.ops("update")
    assert [call["content"] for call in updates] == [
        "Hello",
        "Hello wor",
        "Hello world",
    ]
    assert updates[-1]["streaming"] is False
    assert card_api.ops("settings")[-1]["settings"] == {
        "config": {"streaming_mode": False}
    }
    assert session.last_content == "Hello world"


def test_illegal_transition_rejected(card_api, clock) -> None:
    session = _session(card_api, clock)
    with pytest.raises(InvalidStreamTransition):
        session._transition(StreamState.FINALIZED)


@pytest.mark.anyio
async def test_update_waiting_out_rate_limit_stops_after_finalize(
    card_api, clock
) -> None:
    session = _session(card_api, clock)
    await session.update("Hel")
    card_api.fail("update", _rate_limited())
    backoff_gate = asyncio.Event()

    async def held_sleep(seconds: float) -> None:
        clock.sleeps.append(seconds)
        await backoff_gate.wait()

    session._sleep = held_sleep
    clock.advance(0.4)

    update_task = asyncio.create_task(session.update("Hello"))
    while not clock.sleeps:
        await asyncio.sleep(0)
    assert await session.finalize("Hello world") is True
    backoff_gate.set()

    assert await update_task is False
    assert session.state is StreamState.FINALIZED
    assert session.last_content == "Hello world"
    updates = card_api.ops("update")
    assert [(call["content"], call["streaming"]) for call in updates] == [
        ("Hello", True),
        ("Hello world", False),
    ]
    assert card_api.op_names()[-1] == "settings"
    assert _sent_sequences(card_api) == [1, 2, 3]


@pytest.mark.anyio
async def test_cancelled_initialization_marks_session_failed(card_api, clock) -> None:
    session = _session(card_api, clock)
    card_api.create_gate = asyncio.Event()

    update_task = asyncio.create_task(session.update("Hel"))
    await asyncio.sleep(0)
    pending = session._pending_initialization
    assert pending is not None
    pending.cancel()

    assert await update_task is False
    assert session.has_failed() is True
    assert await session.update("Hello") is False
    assert await session.finalize("Hello world") is False
    assert card_api.ops("update") == []
    assert card_api.ops("bind") == []
