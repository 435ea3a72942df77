"""Markdown handling and card payloads for Feishu.

Feishu's card markdown renderer is stricter than CommonMark about spacing, so
outgoing markdown is normalized before it is embedded in a card. Text going
out as a plain message instead has its tables flattened, since plain
messages render pipes literally.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Sequence

from .constants import (
    EMPTY_CARD_PLACEHOLDER,
    STREAMING_ELEMENT_ID,
    STREAMING_SUMMARY_TEXT,
)

_CODE_FENCE_BLOCK_RE = re.compile(r"```[^\n]*\n.*?```", re.DOTALL)

_BARE_FENCE_RE = re.compile(r"^```(\s*\n)", re.MULTILINE)
_PIPE_BEFORE_RE = re.compile(r"([^ \n|])\|")
_PIPE_AFTER_RE = re.compile(r"\|([^ \n|])")
_BULLET_RE = re.compile(r"^(\s*[-*+])([^\s\-*+])", re.MULTILINE)
_ORDERED_RE = re.compile(r"^(\s*\d+\.)([^\s\d])", re.MULTILINE)
_HEADER_RE = re.compile(r"^(#{1,6})([^\s#])", re.MULTILINE)
_BLOCKQUOTE_RE = re.compile(r"^>([^\s>])", re.MULTILINE)
_HR_RE = re.compile(r"^([ \t]*)(?:\*\*\*|___)([ \t]*)$", re.MULTILINE)

_CARD_SIGNALS = (
    re.compile(r"```[\s\S]*?```"),
    re.compile(r"`[^`]+`"),
    re.compile(r"\|.+\|[\r\n]+\|[-:| ]+\|"),
    re.compile(r"^#{1,6}\s", re.MULTILINE),
    re.compile(r"(\*\*[^*]+\*\*)|(\*[^*]+\*\*)|(__[^_]+__)|(_[^_]+_)"),
    re.compile(r"~~[^~]+~~"),
    re.compile(r"!?\[([^\]]*)\]\(([^)]+)\)"),
    re.compile(r"^>[\s>]", re.MULTILINE),
    re.compile(r"^(\s*[-*+]|\s*\d+\.)\s", re.MULTILINE),
    re.compile(r"^(\s{0,3}(---|\*\*\*|___)\s*)$", re.MULTILINE),
)

_TABLE_RE = re.compile(
    r"^\|.+\|[ \t]*\r?\n\|[-:| ]+\|[ \t]*(?:\r?\n\|.+\|[ \t]*)+(?:\r?\n|\Z)",
    re.MULTILINE,
)
_TABLE_SEPARATOR_RE = re.compile(r"^[|\s]*[-:]+[-:|\s]*$")

_STREAMING_PRINT_CONFIG: dict[str, Any] = {
    "print_frequency_ms": {"default": 30, "android": 25, "ios": 40, "pc": 50},
    "print_step": {"default": 2, "android": 3, "ios": 4, "pc": 5},
    "print_strategy": "fast",
}


def should_use_card(text: str) -> bool:
    """Whether ``text`` carries markdown that only renders inside a card."""
    if not text:
        return False
    return any(pattern.search(text) for pattern in _CARD_SIGNALS)


def normalize_markdown(text: str) -> str:
    if not text:
        return ""
    text = _BARE_FENCE_RE.sub(r"```text\1", text)
    parts: list[str] = []
    last = 0
    for match in _CODE_FENCE_BLOCK_RE.finditer(text):
        parts.append(_normalize_prose(text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(_normalize_prose(text[last:]))
    return "".join(parts)


def _normalize_prose(text: str) -> str:
    if not text:
        return ""
    text = _PIPE_BEFORE_RE.sub(r"\1 |", text)
    text = _PIPE_AFTER_RE.sub(r"| \1", text)
    text = _BULLET_RE.sub(r"\1 \2", text)
    text = _ORDERED_RE.sub(r"\1 \2", text)
    text = _HEADER_RE.sub(r"\1 \2", text)
    text = _BLOCKQUOTE_RE.sub(r"> \1", text)
    return _HR_RE.sub(r"\1---\2", text)


def convert_tables_to_ascii(text: str) -> str:
    """Flatten markdown tables into ``cell | cell`` rows without separators."""
    if not text or "|" not in text:
        return text

    def _flatten(match: re.Match[str]) -> str:
        block = match.group(0)
        rows: list[str] = []
        for line in block.strip().splitlines():
            if _TABLE_SEPARATOR_RE.match(line):
                continue
            cells = line.strip()
            if cells.startswith("|"):
                cells = cells[1:]
            if cells.endswith("|"):
                cells = cells[:-1]
            row = " | ".join(cell.strip() for cell in cells.split("|"))
            if row:
                rows.append(row)
        if not rows:
            return block
        trailer = "\n" if block.endswith("\n") else ""
        return "\n".join(rows) + trailer

    return _TABLE_RE.sub(_flatten, text)


def build_markdown_card(text: str) -> dict[str, Any]:
    return {
        "config": {"wide_screen_mode": True},
        "elements": [{"tag": "markdown", "content": normalize_markdown(text)}],
    }


def build_streaming_card(content: str, *, streaming: bool) -> dict[str, Any]:
    """CardKit 2.0 card whose single markdown element is updated in place."""
    config: dict[str, Any] = {"update_multi": True, "streaming_mode": streaming}
    if streaming:
        config["summary"] = {"content": STREAMING_SUMMARY_TEXT}
        config["streaming_config"] = dict(_STREAMING_PRINT_CONFIG)
    return {
        "schema": "2.0",
        "config": config,
        "body": {
            "elements": [
                {
                    "tag": "markdown",
                    "content": normalize_markdown(content or EMPTY_CARD_PLACEHOLDER),
                    "element_id": STREAMING_ELEMENT_ID,
                }
            ]
        },
    }


def build_card_reference(card_id: str) -> dict[str, Any]:
    """Message body that renders an existing card entity."""
    return {"type": "card", "data": {"card_id": card_id}}


def build_interactive_card(
    *,
    title: str,
    content: str,
    buttons: Optional[Sequence[dict[str, Any]]] = None,
    template: str = "blue",
) -> dict[str, Any]:
    elements: list[dict[str, Any]] = [
        {"tag": "markdown", "content": normalize_markdown(content)}
    ]
    actions = []
    for button in buttons or ():
        action: dict[str, Any] = {
            "tag": "button",
            "text": {"tag": "plain_text", "content": str(button.get("text", ""))},
            "type": button.get("type") or "default",
        }
        if button.get("url"):
            action["url"] = button["url"]
        if button.get("value"):
            action["value"] = button["value"]
        actions.append(action)
    if actions:
        elements.append({"tag": "action", "actions": actions})
    return {
        "schema_version": "2.0",
        "header": {
            "title": {"tag": "plain_text", "content": title},
            "template": template,
        },
        "elements": elements,
    }
