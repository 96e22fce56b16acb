"""Extracted-text cache keyed by document id."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from docqa.config import IngestConfig
from docqa.errors import InvalidRequestError
from docqa.ingest.language import LanguageDetector
from docqa.ingest.models import PageContent
from docqa.ingest.normalization import (
    normalize_extracted_text,
    normalize_text,
    parse_pages_from_text,
    render_pages,
)
from docqa.storage import BlobStore

from .doc_id import build_extracted_key
from .manifest import (
    Manifest,
    build_ranges_from_pages,
    merge_ranges,
    pages_in_ranges,
    read_manifest,
    write_manifest,
)

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger("docqa.ingest.audit")

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


@dataclass(slots=True)
class CachedExtraction:
    extracted_key: str
    text: Optional[str]
    manifest: Optional[Manifest]


@dataclass(slots=True)
class FinalizeResult:
    manifest: Manifest
    extracted_key: str
    preview: str
    pages_added: List[int]


class ExtractionCache:
    """Reads and writes extracted text and manifests in the library store."""

    def __init__(
        self,
        store: BlobStore,
        config: IngestConfig | None = None,
        language_detector: LanguageDetector | None = None,
    ) -> None:
        self.store = store
        self.config = config or IngestConfig()
        self.language_detector = language_detector or LanguageDetector()

    def current_extracted_key(self, doc_id: str, manifest: Manifest | None = None) -> str:
        """The key a reader should use right now: the manifest's pointer or the default path."""

        if manifest is None:
            manifest = read_manifest(self.store, doc_id)
        if manifest is not None and manifest.extracted_key:
            return manifest.extracted_key
        return build_extracted_key(doc_id)

    def has_extracted(self, doc_id: str) -> bool:
        return self.store.head(self.current_extracted_key(doc_id)) is not None

    def load(self, doc_id: str) -> CachedExtraction:
        manifest = read_manifest(self.store, doc_id)
        extracted_key = self.current_extracted_key(doc_id, manifest)
        raw = self.store.get(extracted_key)
        if raw is None:
            return CachedExtraction(extracted_key=extracted_key, text=None, manifest=manifest)
        text = normalize_text(raw.decode("utf-8", errors="replace"))
        return CachedExtraction(extracted_key=extracted_key, text=text or None, manifest=manifest)

    def store_text(self, doc_id: str, text: str) -> str:
        extracted_key = build_extracted_key(doc_id)
        self.store.put(extracted_key, text[: self.config.max_stored_chars], TEXT_CONTENT_TYPE)
        return extracted_key

    def finalize_pages(
        self,
        doc_id: str,
        pages: Iterable[PageContent],
        *,
        total_pages: int | None = None,
        title: str | None = None,
    ) -> FinalizeResult:
        """Merge newly extracted pages into the cached text and manifest.

        Both objects are re-read before writing so pages finalized by earlier
        calls are kept. Concurrent finalizers for one document race with
        last-writer-wins semantics.
        """

        fresh: dict[int, str] = {}
        for page in pages:
            text = normalize_extracted_text(page.text)
            if text:
                fresh[page.page_index] = text
        if not fresh:
            raise InvalidRequestError("No text to finalize; all pages were empty.")

        manifest = read_manifest(self.store, doc_id)
        extracted_key = self.current_extracted_key(doc_id, manifest)

        merged_pages: dict[int, str] = {}
        existing = self.store.get(extracted_key)
        if existing is not None:
            merged_pages.update(parse_pages_from_text(existing.decode("utf-8", errors="replace")))
        merged_pages.update(fresh)

        combined = normalize_text(render_pages(merged_pages))[: self.config.max_stored_chars]
        self.store.put(extracted_key, combined, TEXT_CONTENT_TYPE)
        preview = combined[: self.config.preview_chars]

        prior_ranges = manifest.ranges if manifest is not None else []
        ranges = merge_ranges([*prior_ranges, *build_ranges_from_pages(fresh)])
        pages_processed = pages_in_ranges(ranges)
        page_count = total_pages if total_pages is not None else (manifest.page_count if manifest else None)
        method = "partial" if page_count is not None and pages_processed < page_count else "ocr"
        updates = {
            "method": method,
            "ocr_status": "finalized",
            "pages_processed": pages_processed,
            "page_count": page_count,
            "ranges": ranges,
            "preview": preview,
            "extracted_key": extracted_key,
            "language": self.language_detector.detect(combined),
        }
        if manifest is None:
            next_manifest = Manifest(doc_id=doc_id, title=title, **updates)
        else:
            if title and not manifest.title:
                updates["title"] = title
            next_manifest = manifest.model_copy(update=updates)
        stored = write_manifest(self.store, next_manifest)

        added = sorted(fresh)
        AUDIT_LOGGER.info(
            {
                "event": "ocr.finalize",
                "doc_id": doc_id,
                "pages_added": [index + 1 for index in added],
                "pages_processed": pages_processed,
                "page_count": page_count,
                "ranges": [item.model_dump() for item in ranges],
                "method": method,
            }
        )
        return FinalizeResult(manifest=stored, extracted_key=extracted_key, preview=preview, pages_added=added)


__all__ = ["CachedExtraction", "ExtractionCache", "FinalizeResult"]
