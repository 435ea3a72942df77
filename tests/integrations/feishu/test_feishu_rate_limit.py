from __future__ import annotations

import pytest

from feishu_bridge.integrations.feishu.errors import FeishuAPIError
from feishu_bridge.integrations.feishu.rate_limit import (
    AdaptiveInterval,
    FailureKind,
    classify_remote_error,
    extract_error_code,
    format_remote_error,
    retry_delay_seconds,
)


@pytest.mark.parametrize("code", [230020, 99991400, "99991400"])
def test_classify_rate_limit_codes(code) -> None:
    exc = FeishuAPIError("rejected", code=code)
    assert classify_remote_error(exc) is FailureKind.RATE_LIMITED


def test_classify_rate_limit_from_text_only() -> None:
    assert (
        classify_remote_error(RuntimeError("HTTP 400: code=230020 msg=too fast"))
        is FailureKind.RATE_LIMITED
    )


def test_classify_other_errors_as_transient() -> None:
    assert classify_remote_error(FeishuAPIError("bad", code=230002)) is FailureKind.TRANSIENT
    assert classify_remote_error(TimeoutError("slow")) is FailureKind.TRANSIENT


def test_extract_error_code() -> None:
    assert extract_error_code(FeishuAPIError("x", code=99991663)) == "99991663"
    assert extract_error_code(RuntimeError("failed code: 1234 here")) == "1234"
    assert extract_error_code(RuntimeError("no code at all")) == "unknown"


def test_format_remote_error() -> None:
    exc = RuntimeError("code=230020 " + "x" * 300)
    formatted = format_remote_error(exc, "update", retry_count=2)
    assert formatted.startswith("[update (retry 2/3)] code=230020 error=code=230020 ")
    assert len(formatted.split("error=", 1)[1]) == 200
    assert format_remote_error(RuntimeError("boom"), "finalize") == (
        "[finalize] code=unknown error=boom"
    )


def test_retry_delay_schedule() -> None:
    assert [retry_delay_seconds(attempt) for attempt in range(3)] == [1.0, 2.0, 4.0]
    assert retry_delay_seconds(1, base_delay=0.5) == 1.0


def test_adaptive_interval_grows_caps_and_resets() -> None:
    interval = AdaptiveInterval(floor=0.3, ceiling=1.0, multiplier=2.0)
    assert interval.value == 0.3

    interval = interval.on_rate_limited()
    assert interval.value == pytest.approx(0.6)
    interval = interval.on_rate_limited().on_rate_limited()
    assert interval.value == pytest.approx(1.0)
    assert interval.hit_count == 3

    reset = interval.on_success()
    assert reset.value == 0.3
    assert reset.hit_count == 0
    assert reset.on_success() is reset
