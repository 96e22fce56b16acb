"""Library index: per-document search records plus a JSONL snapshot."""
from __future__ import annotations

import json
import logging
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from docqa.storage import BlobStore

from .doc_id import (
    LIBRARY_INDEX_KEY,
    build_extracted_key,
    build_index_key,
    build_manifest_key,
    normalize_preview,
    tokens_from_title,
)
from .manifest import JSON_CONTENT_TYPE
from .ttl import TTLCache

LOGGER = logging.getLogger(__name__)

IndexStatus = Literal["ready", "missing", "needs_browser_ocr"]


class IndexRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    doc_id: str
    bucket: str
    key: str
    title: str
    normalized_tokens: List[str] = Field(default_factory=list)
    hash_basis: str = ""
    hash_fields_used: Optional[List[str]] = None
    etag: Optional[str] = None
    size: Optional[int] = None
    uploaded: Optional[str] = None
    status: IndexStatus = "missing"
    preview: str = ""
    manifest_key: Optional[str] = None
    extracted_key: Optional[str] = None
    language: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def score_records(query: str, records: List[IndexRecord], limit: int = 10) -> List[IndexRecord]:
    """Rank records by title-token overlap with *query*.

    Exact token +3, token prefix +2, title substring +1, and +1 when the whole
    query appears in the title.
    """

    tokens = tokens_from_title(query)
    query_lower = (query or "").lower()
    scored: list[tuple[int, int, IndexRecord]] = []
    for position, record in enumerate(records):
        title_lower = (record.title or "").lower()
        record_tokens = set(record.normalized_tokens)
        score = 0
        for token in tokens:
            if token in record_tokens:
                score += 3
            elif any(candidate.startswith(token) for candidate in record.normalized_tokens):
                score += 2
            elif token in title_lower:
                score += 1
        if query_lower and query_lower in title_lower:
            score += 1
        scored.append((score, position, record))
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [record for _, _, record in scored[: max(0, limit)]]


class LibraryIndex:
    """Reads and updates the library index stored next to the extraction cache."""

    def __init__(self, store: BlobStore, cache: TTLCache[List[IndexRecord]] | None = None) -> None:
        self.store = store
        self.cache = cache

    def read_all(self) -> List[IndexRecord]:
        if self.cache is not None:
            cached = self.cache.get(LIBRARY_INDEX_KEY)
            if cached is not None:
                return list(cached)
        raw = self.store.get(LIBRARY_INDEX_KEY)
        records = self._parse(raw.decode("utf-8", errors="replace")) if raw else []
        if self.cache is not None:
            self.cache.set(LIBRARY_INDEX_KEY, records)
        return list(records)

    @staticmethod
    def _parse(text: str) -> List[IndexRecord]:
        records: List[IndexRecord] = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = IndexRecord.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as error:
                LOGGER.debug("Skipping malformed index line: %s", error)
                continue
            if not record.normalized_tokens:
                record = record.model_copy(update={"normalized_tokens": tokens_from_title(record.title)})
            records.append(record)
        return records

    def write_all(self, records: List[IndexRecord]) -> None:
        payload = "\n".join(record.to_json() for record in records)
        self.store.put(LIBRARY_INDEX_KEY, payload, JSON_CONTENT_TYPE)
        if self.cache is not None:
            self.cache.invalidate(LIBRARY_INDEX_KEY)

    def get(self, doc_id: str) -> IndexRecord | None:
        for record in self.read_all():
            if record.doc_id == doc_id:
                return record
        return None

    def upsert(self, record: IndexRecord) -> IndexRecord:
        """Merge *record* over any prior entry and persist both index views."""

        records = self.read_all()
        prior = next((item for item in records if item.doc_id == record.doc_id), None)

        merged_data = prior.model_dump() if prior is not None else {}
        merged_data.update(record.model_dump(exclude_none=True))
        tokens = record.normalized_tokens or (prior.normalized_tokens if prior else []) or tokens_from_title(
            record.title
        )
        merged_data["normalized_tokens"] = tokens
        merged_data["preview"] = normalize_preview(record.preview or (prior.preview if prior else ""))
        merged_data["manifest_key"] = (
            record.manifest_key or (prior.manifest_key if prior else None) or build_manifest_key(record.doc_id)
        )
        merged_data["extracted_key"] = (
            record.extracted_key or (prior.extracted_key if prior else None) or build_extracted_key(record.doc_id)
        )
        merged = IndexRecord.model_validate(merged_data)

        updated = [merged if item.doc_id == record.doc_id else item for item in records]
        if prior is None:
            updated.append(merged)
        self.write_all(updated)
        self.store.put(build_index_key(record.doc_id), merged.to_json(), JSON_CONTENT_TYPE)
        return merged

    def search(self, query: str, limit: int = 12) -> List[IndexRecord]:
        records = self.read_all()
        if not query.strip():
            return records[:limit]
        return score_records(query, records, limit)


__all__ = ["IndexRecord", "IndexStatus", "LibraryIndex", "score_records"]
