"""Data models used by the ingestion and retrieval layers."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class PageContent:
    """Text for a single page; ``page_index`` is zero-based."""

    page_index: int
    text: str


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """A window of normalized document text.

    ``char_start``/``char_end`` address the trimmed slice in the source text, so
    ``source[char_start:char_end] == text``.
    """

    index: int
    text: str
    char_start: int
    char_end: int

    def __len__(self) -> int:
        return len(self.text)
