"""Feishu / Lark channel adapter with streaming card replies."""

__version__ = "0.1.0"
