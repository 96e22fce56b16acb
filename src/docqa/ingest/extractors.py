"""Embedded-text extraction for PDF documents."""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import List, Protocol, runtime_checkable

from PyPDF2 import PdfReader

from docqa.config import IngestConfig

from .models import PageContent
from .normalization import normalize_text

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddedExtraction:
    pages: List[PageContent] = field(default_factory=list)
    page_count: int = 0
    sample_chars: int = 0
    sampled_pages_with_text: int = 0
    scanned: bool = True


@runtime_checkable
class EmbeddedTextExtractor(Protocol):
    """Pulls the text layer out of a document without OCR."""

    def extract(self, data: bytes) -> EmbeddedExtraction:
        ...


def build_sample_pages(page_count: int, target: int) -> List[int]:
    """Pick up to ``target`` 1-based page numbers: first, last, then evenly spaced."""

    if page_count <= 0:
        return []
    total = max(1, min(page_count, target))
    if total >= page_count:
        return list(range(1, page_count + 1))
    pages = {1, page_count}
    step = 0
    while len(pages) < total:
        ratio = (step + 1) / (total + 1)
        pages.add(max(1, min(page_count, round(page_count * ratio))))
        step += 1
    return sorted(pages)


class PdfEmbeddedExtractor:
    """Extract the embedded text layer with PyPDF2.

    A handful of sample pages decides whether the PDF is scanned. Scanned
    documents stop after the sample so OCR can take over; embedded documents
    are read up to ``max_extract_pages``.
    """

    def __init__(self, config: IngestConfig | None = None) -> None:
        self.config = config or IngestConfig()

    def extract(self, data: bytes) -> EmbeddedExtraction:
        reader = PdfReader(io.BytesIO(data))
        page_count = len(reader.pages)
        if not page_count:
            return EmbeddedExtraction()

        sample = build_sample_pages(page_count, self.config.sample_pages)
        pages: dict[int, str] = {}
        sample_chars = 0
        sampled_with_text = 0
        for page_number in sample:
            text = self._page_text(reader, page_number)
            if text:
                pages[page_number - 1] = text
                sample_chars += len(text)
                sampled_with_text += 1

        embedded = (
            sample_chars >= self.config.min_embedded_chars
            or sampled_with_text >= self.config.min_sampled_pages_with_text
        )
        if not embedded:
            LOGGER.info(
                "PDF looks scanned: %s chars across %s/%s sampled pages",
                sample_chars,
                sampled_with_text,
                len(sample),
            )
            return EmbeddedExtraction(
                pages=[PageContent(page_index=index, text=text) for index, text in sorted(pages.items())],
                page_count=page_count,
                sample_chars=sample_chars,
                sampled_pages_with_text=sampled_with_text,
                scanned=True,
            )

        max_pages = max(1, min(self.config.max_extract_pages, page_count))
        sampled = set(sample)
        for page_number in range(1, max_pages + 1):
            if page_number in sampled:
                continue
            text = self._page_text(reader, page_number)
            if text:
                pages[page_number - 1] = text

        return EmbeddedExtraction(
            pages=[PageContent(page_index=index, text=text) for index, text in sorted(pages.items())],
            page_count=page_count,
            sample_chars=sample_chars,
            sampled_pages_with_text=sampled_with_text,
            scanned=False,
        )

    @staticmethod
    def _page_text(reader: PdfReader, page_number: int) -> str:
        try:
            text = reader.pages[page_number - 1].extract_text() or ""
        except Exception as error:  # pragma: no cover - depends on the PDF backend
            LOGGER.warning("Failed to extract text from PDF page %s: %s", page_number, error)
            return ""
        return normalize_text(text)


__all__ = [
    "EmbeddedExtraction",
    "EmbeddedTextExtractor",
    "PdfEmbeddedExtractor",
    "build_sample_pages",
]
