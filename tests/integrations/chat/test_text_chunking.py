from __future__ import annotations

import pytest

from feishu_bridge.integrations.chat.text_chunking import (
    chunk_text,
    chunk_text_with_mode,
)


def test_chunk_text_empty_or_whitespace() -> None:
    assert chunk_text("", max_len=10) == []
    assert chunk_text("   \n\t  ", max_len=10) == []


def test_chunk_text_single_chunk() -> None:
    text = "short message"
    assert chunk_text(text, max_len=100) == [text]


def test_chunk_text_multi_chunk_preserves_text() -> None:
    text = "alpha " * 200
    parts = chunk_text(text, max_len=120)
    assert len(parts) > 1
    assert all(len(part) <= 120 for part in parts)
    assert "".join(parts) == text


def test_chunk_text_prefers_newline_boundaries() -> None:
    text = "first line\nsecond line that is long"
    parts = chunk_text(text, max_len=15)
    assert parts[0] == "first line"
    assert "".join(parts) == text


def test_chunk_text_hard_cuts_unbroken_text() -> None:
    parts = chunk_text("x" * 25, max_len=10)
    assert parts == ["x" * 10, "x" * 10, "x" * 5]


def test_chunk_text_raises_for_invalid_max_len() -> None:
    with pytest.raises(ValueError, match="max_len must be positive"):
        chunk_text("hello", max_len=0)


def test_newline_mode_splits_paragraphs_first() -> None:
    text = "para one\n\npara two\n  \npara three"
    assert chunk_text_with_mode(text, 100, "newline") == [
        "para one",
        "para two",
        "para three",
    ]


def test_newline_mode_length_chunks_long_paragraphs() -> None:
    text = "short\n\n" + "word " * 10
    parts = chunk_text_with_mode(text, 12, "newline")
    assert parts[0] == "short"
    assert all(len(part) <= 12 for part in parts)


def test_length_mode_keeps_paragraphs_together_when_they_fit() -> None:
    text = "para one\n\npara two"
    assert chunk_text_with_mode(text, 100, "length") == [text]


def test_unknown_chunk_mode_rejected() -> None:
    with pytest.raises(ValueError, match="unknown chunk mode"):
        chunk_text_with_mode("hello", 10, "markdown")
