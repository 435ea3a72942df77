"""Platform-neutral chat helpers shared by adapters."""

from .text_chunking import CHUNK_MODES, DEFAULT_CHUNK_MODE, chunk_text, chunk_text_with_mode

__all__ = ["CHUNK_MODES", "DEFAULT_CHUNK_MODE", "chunk_text", "chunk_text_with_mode"]
