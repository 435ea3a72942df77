from __future__ import annotations

import re

CHUNK_MODE_LENGTH = "length"
CHUNK_MODE_NEWLINE = "newline"
CHUNK_MODES = frozenset({CHUNK_MODE_LENGTH, CHUNK_MODE_NEWLINE})
DEFAULT_CHUNK_MODE = CHUNK_MODE_LENGTH

_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n+")


def chunk_text(text: str, *, max_len: int) -> list[str]:
    """Split text into pieces of at most ``max_len`` characters.

    Cuts prefer the last newline, then the last space, inside the window.
    Joining the result reproduces the input exactly.
    """
    if not isinstance(text, str):
        return []
    if not text.strip():
        return []
    if max_len <= 0:
        raise ValueError("max_len must be positive")
    if len(text) <= max_len:
        return [text]
    return _split_text(text, max_len)


def chunk_text_with_mode(text: str, limit: int, mode: str = DEFAULT_CHUNK_MODE) -> list[str]:
    """Chunk by length, or by paragraph first when ``mode`` is ``newline``."""
    if mode not in CHUNK_MODES:
        raise ValueError(f"unknown chunk mode: {mode!r}")
    if mode == CHUNK_MODE_LENGTH:
        return chunk_text(text, max_len=limit)
    if not isinstance(text, str) or not text.strip():
        return []
    if limit <= 0:
        raise ValueError("max_len must be positive")
    chunks: list[str] = []
    for paragraph in _PARAGRAPH_BREAK_RE.split(text):
        if not paragraph.strip():
            continue
        chunks.extend(chunk_text(paragraph, max_len=limit))
    return chunks


def _split_text(text: str, limit: int) -> list[str]:
    parts: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            parts.append(remaining)
            break
        cut = remaining.rfind("\n", 0, limit + 1)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        parts.append(remaining[:cut])
        remaining = remaining[cut:]
    return parts
