"""Text normalisation utilities."""
from __future__ import annotations

import re
import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .models import PageContent

_WHITESPACE_RE = re.compile(r"[ \t]{2,}")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")

_GLUED_PAGE_WORD_RE = re.compile(r"([a-z])(?=page\s*\d+)", re.IGNORECASE)
_MARKER_GLUED_RE = re.compile(r"(---\s*page\s*\d+\s*---)(?=\S)", re.IGNORECASE)
_PAGE_LABEL_GLUED_RE = re.compile(r"(page\s*\d+)(?=[^\s\d])", re.IGNORECASE)
_HYPHEN_BREAK_RE = re.compile(r"-\s*\n\s*")
_SHOUTED_NAME_RE = re.compile(r"^dr\.", re.IGNORECASE)
_PAGE_MARKER_SPLIT_RE = re.compile(r"---\s*Page\s+(\d+)\s*---", re.IGNORECASE)

_JUNK_LINES = frozenset({"dh", "r", "met"})

HEADER_FOOTER_THRESHOLD = 0.6
MIN_PAGES_FOR_HEADER_DETECTION = 3
_MAX_HEADER_LINE_CHARS = 240


def normalize_text(text: str) -> str:
    """Normalise line endings, whitespace and Unicode representation."""

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip()


def normalize_extracted_text(text: str) -> str:
    """Clean raw OCR or parser output before it is cached."""

    cleaned = normalize_text(text)
    if not cleaned:
        return cleaned

    cleaned = _GLUED_PAGE_WORD_RE.sub(r"\1 ", cleaned)
    cleaned = _MARKER_GLUED_RE.sub("\\1\n", cleaned)
    cleaned = _PAGE_LABEL_GLUED_RE.sub(r"\1 ", cleaned)

    lines: list[str] = []
    for line in cleaned.split("\n"):
        stripped = line.strip()
        if not stripped:
            lines.append("")
            continue
        if stripped.lower() in _JUNK_LINES:
            continue
        if _SHOUTED_NAME_RE.match(stripped) and stripped == stripped.upper():
            continue
        lines.append(line)

    cleaned = "\n".join(lines)
    cleaned = _HYPHEN_BREAK_RE.sub("", cleaned)
    return normalize_text(cleaned)


@dataclass(slots=True)
class NormalizedPages:
    text: str
    pages_processed: int
    removed_headers: list[str] = field(default_factory=list)


def _meaningful_edges(text: str) -> tuple[str, str]:
    lines = [
        line.strip()
        for line in text.split("\n")
        if line.strip() and len(line.strip()) <= _MAX_HEADER_LINE_CHARS
    ]
    if not lines:
        return "", ""
    return lines[0], lines[-1]


def render_pages(pages: Mapping[int, str]) -> str:
    """Join zero-based page texts with ``--- Page N ---`` markers."""

    return "\n\n".join(
        f"--- Page {page_index + 1} ---\n{text}" for page_index, text in sorted(pages.items())
    ).strip()


def normalize_pages(pages: Iterable[PageContent]) -> NormalizedPages:
    """Normalise pages, drop repeated headers/footers and join them with page markers."""

    cleaned: dict[int, str] = {}
    for page in pages:
        text = normalize_text(page.text)
        if text:
            cleaned[page.page_index] = text
    if not cleaned:
        return NormalizedPages(text="", pages_processed=0)

    page_count = len(cleaned)
    repeated_headers: set[str] = set()
    repeated_footers: set[str] = set()
    if page_count >= MIN_PAGES_FOR_HEADER_DETECTION:
        first_lines: Counter[str] = Counter()
        last_lines: Counter[str] = Counter()
        for text in cleaned.values():
            first, last = _meaningful_edges(text)
            if first:
                first_lines[first] += 1
            if last:
                last_lines[last] += 1
        repeated_headers = {
            line for line, count in first_lines.items() if count / page_count >= HEADER_FOOTER_THRESHOLD
        }
        repeated_footers = {
            line for line, count in last_lines.items() if count / page_count >= HEADER_FOOTER_THRESHOLD
        }

    bodies: dict[int, str] = {}
    for page_index, text in cleaned.items():
        lines = [line.strip() for line in text.split("\n")]
        while lines and lines[0] in repeated_headers:
            lines.pop(0)
        while lines and lines[-1] in repeated_footers:
            lines.pop()
        bodies[page_index] = normalize_text("\n".join(lines))

    removed = sorted(repeated_headers) + sorted(repeated_footers)
    return NormalizedPages(text=render_pages(bodies), pages_processed=page_count, removed_headers=removed)


def parse_pages_from_text(text: str) -> dict[int, str]:
    """Inverse of :func:`render_pages`: map zero-based page index to page text."""

    parts = _PAGE_MARKER_SPLIT_RE.split(text or "")
    pages: dict[int, str] = {}
    for position in range(1, len(parts), 2):
        page_number = int(parts[position])
        body = parts[position + 1] if position + 1 < len(parts) else ""
        pages[page_number - 1] = normalize_text(body)
    return pages


__all__ = [
    "NormalizedPages",
    "normalize_extracted_text",
    "normalize_pages",
    "normalize_text",
    "parse_pages_from_text",
    "render_pages",
]
