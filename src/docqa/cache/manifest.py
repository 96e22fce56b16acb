"""Per-document extraction manifests and page-range arithmetic."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from docqa.storage import BlobStore

from .doc_id import build_manifest_key

LOGGER = logging.getLogger(__name__)

ManifestMethod = Literal["embedded", "ocr", "cache", "partial"]

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PageRange(BaseModel):
    """Closed, 1-based page interval."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @property
    def pages(self) -> int:
        return self.end - self.start + 1


class Manifest(BaseModel):
    """Persisted extraction state for one document.

    Stored as camelCase JSON. Unknown keys written by other producers are kept
    so a read-modify-write cycle never drops them.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    doc_id: str
    method: ManifestMethod
    pages_processed: int = 0
    page_count: Optional[int] = None
    ranges: List[PageRange] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None
    preview: str = ""
    extracted_key: Optional[str] = None
    title: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None
    hash_basis: Optional[str] = None
    hash_fields_used: Optional[List[str]] = None
    language: Optional[str] = None
    ocr_status: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.page_count is not None and self.pages_processed >= self.page_count

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def merge_ranges(ranges: Iterable[PageRange]) -> List[PageRange]:
    """Sort and merge overlapping or adjacent ranges.

    Reversed ranges are flipped first. The result is sorted, disjoint and has
    no two adjacent ranges, so merging it again returns the same list.
    """

    cleaned = sorted(
        (
            (item.start, item.end) if item.start <= item.end else (item.end, item.start)
            for item in ranges
        ),
    )
    merged: List[List[int]] = []
    for start, end in cleaned:
        if merged and start <= merged[-1][1] + 1:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [PageRange(start=start, end=end) for start, end in merged]


def build_ranges_from_pages(page_indices: Iterable[int]) -> List[PageRange]:
    """Convert zero-based page indices into merged 1-based ranges."""

    return merge_ranges(PageRange(start=index + 1, end=index + 1) for index in set(page_indices))


def pages_in_ranges(ranges: Iterable[PageRange]) -> int:
    return sum(item.pages for item in ranges)


def read_manifest(store: BlobStore, doc_id: str) -> Manifest | None:
    """Load the manifest for *doc_id*; malformed documents count as a miss."""

    raw = store.get(build_manifest_key(doc_id))
    if raw is None:
        return None
    try:
        return Manifest.model_validate_json(raw)
    except ValidationError as error:
        LOGGER.warning("Ignoring unreadable manifest for %s: %s", doc_id, error.errors()[:3])
        return None


def write_manifest(store: BlobStore, manifest: Manifest) -> Manifest:
    """Persist *manifest* with a fresh ``updated_at`` and return the stored copy."""

    stamped = manifest.model_copy(update={"updated_at": utc_now_iso()})
    store.put(build_manifest_key(manifest.doc_id), stamped.to_json(), JSON_CONTENT_TYPE)
    return stamped


__all__ = [
    "Manifest",
    "ManifestMethod",
    "PageRange",
    "build_ranges_from_pages",
    "merge_ranges",
    "pages_in_ranges",
    "read_manifest",
    "utc_now_iso",
    "write_manifest",
]
