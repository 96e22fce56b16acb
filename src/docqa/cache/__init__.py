"""Content-addressed extraction cache and library index."""
from __future__ import annotations

from .doc_id import DocIdResult, compute_doc_id
from .extraction import CachedExtraction, ExtractionCache, FinalizeResult
from .index import IndexRecord, LibraryIndex, score_records
from .manifest import Manifest, PageRange, build_ranges_from_pages, merge_ranges, pages_in_ranges
from .ttl import TTLCache

__all__ = [
    "CachedExtraction",
    "DocIdResult",
    "ExtractionCache",
    "FinalizeResult",
    "IndexRecord",
    "LibraryIndex",
    "Manifest",
    "PageRange",
    "TTLCache",
    "build_ranges_from_pages",
    "compute_doc_id",
    "merge_ranges",
    "pages_in_ranges",
    "score_records",
]
