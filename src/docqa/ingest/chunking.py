"""Fixed-window character chunking."""
from __future__ import annotations

import logging
from typing import List

from .models import DocumentChunk

LOGGER = logging.getLogger(__name__)


def chunk_text(text: str, chunk_size: int = 2200, overlap: int = 200) -> List[DocumentChunk]:
    """Split *text* into overlapping fixed-size windows.

    Windows start every ``chunk_size - overlap`` characters. Each window is
    trimmed of surrounding whitespace and dropped when nothing remains; the
    offsets of a chunk point at the trimmed slice of *text*. The last window
    always reaches the end of the input.
    """

    if chunk_size <= 0:
        raise ValueError("chunk_size must be a positive integer")
    if overlap < 0:
        raise ValueError("overlap must be a non-negative integer")
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    if not text or not text.strip():
        return []

    text_length = len(text)
    step = chunk_size - overlap
    chunks: List[DocumentChunk] = []
    start = 0
    while start < text_length:
        end = min(text_length, start + chunk_size)
        window = text[start:end]
        stripped = window.strip()
        if stripped:
            leading = len(window) - len(window.lstrip())
            char_start = start + leading
            chunks.append(
                DocumentChunk(
                    index=len(chunks),
                    text=stripped,
                    char_start=char_start,
                    char_end=char_start + len(stripped),
                )
            )
        if end >= text_length:
            break
        start += step

    LOGGER.debug("Chunked %s characters into %s windows", text_length, len(chunks))
    return chunks


__all__ = ["chunk_text"]
