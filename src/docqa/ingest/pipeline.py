"""Ingestion orchestrator: docId, cache probe, embedded extraction or OCR hand-off."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Literal, Mapping, Optional

from docqa.cache.doc_id import (
    DocIdResult,
    build_extracted_key,
    build_manifest_key,
    compute_doc_id,
    is_pdf_key,
    title_from_key,
    tokens_from_title,
)
from docqa.cache.extraction import ExtractionCache, FinalizeResult
from docqa.cache.index import IndexRecord, IndexStatus, LibraryIndex
from docqa.cache.manifest import Manifest, build_ranges_from_pages, pages_in_ranges, read_manifest, write_manifest
from docqa.cache.ttl import TTLCache
from docqa.config import IngestConfig
from docqa.errors import IngestStageError, SourceObjectNotFoundError, UnknownBucketError
from docqa.storage import BlobInfo, BlobStore
from docqa.telemetry import emit_exception, emit_ingest_event

from .extractors import EmbeddedExtraction, EmbeddedTextExtractor, PdfEmbeddedExtractor
from .models import PageContent
from .normalization import normalize_pages

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger("docqa.ingest.audit")

IngestStatus = Literal["cache_hit", "ready", "needs_browser_ocr", "error"]


@dataclass(slots=True)
class IngestResult:
    status: IngestStatus
    bucket: str
    key: str
    doc_id: Optional[str] = None
    extracted_key: Optional[str] = None
    manifest: Optional[Manifest] = None
    page_count: Optional[int] = None
    preview: str = ""
    error: Optional[IngestStageError] = None

    def to_dict(self) -> dict:
        payload = {
            "status": self.status,
            "bucket": self.bucket,
            "key": self.key,
            "docId": self.doc_id,
            "extractedKey": self.extracted_key,
            "pageCount": self.page_count,
            "preview": self.preview,
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass(slots=True)
class BucketIngestSummary:
    bucket: str
    counts: Dict[str, int] = field(default_factory=dict)
    results: list[IngestResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(slots=True)
class _SourceObject:
    bucket: str
    key: str
    store: BlobStore
    info: BlobInfo
    identity: DocIdResult
    title: str


class IngestionOrchestrator:
    """Coordinates the cache probe, embedded extraction and the OCR hand-off."""

    def __init__(
        self,
        source_buckets: Mapping[str, BlobStore],
        library: BlobStore,
        *,
        extractor: EmbeddedTextExtractor | None = None,
        config: IngestConfig | None = None,
        cache: ExtractionCache | None = None,
        index: LibraryIndex | None = None,
    ) -> None:
        self.config = config or IngestConfig()
        self.source_buckets = dict(source_buckets)
        self.library = library
        self.extractor = extractor or PdfEmbeddedExtractor(self.config)
        self.cache = cache or ExtractionCache(library, self.config)
        self.index = index or LibraryIndex(library, TTLCache(self.config.index_ttl_seconds))

    def ingest(self, bucket: str, key: str, *, force: bool = False) -> IngestResult:
        """Ingest one source object; stage failures come back as ``status="error"``."""

        started = time.perf_counter()
        key = key.strip()
        try:
            result = self._ingest(bucket, key, force=force)
        except IngestStageError as error:
            duration_ms = (time.perf_counter() - started) * 1000.0
            emit_exception(module=__name__, error=error, suggestion=f"ingest stage {error.stage} failed")
            AUDIT_LOGGER.error(
                {"event": "ingest.error", "bucket": bucket, "key": key, "stage": error.stage, "error": error.message}
            )
            emit_ingest_event(
                "ingest.error",
                doc_id="",
                bucket=bucket,
                key=key,
                status="error",
                duration_ms=duration_ms,
                error=error,
            )
            return IngestResult(status="error", bucket=bucket, key=key, error=error)

        emit_ingest_event(
            f"ingest.{result.status}",
            doc_id=result.doc_id or "",
            bucket=bucket,
            key=key,
            status=result.status,
            extracted_key=result.extracted_key,
            pages=result.page_count,
            method=result.manifest.method if result.manifest else None,
            language=result.manifest.language if result.manifest else None,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        AUDIT_LOGGER.info(
            {
                "event": f"ingest.{result.status}",
                "bucket": bucket,
                "key": key,
                "doc_id": result.doc_id,
                "extracted_key": result.extracted_key,
                "page_count": result.page_count,
            }
        )
        return result

    def _resolve_source(self, bucket: str, key: str) -> _SourceObject:
        store = self.source_buckets.get(bucket)
        if store is None:
            raise IngestStageError(
                "bucket_lookup",
                f"Unknown bucket: {bucket}",
                status_code=400,
                cause=UnknownBucketError(f"Unknown bucket: {bucket}"),
            )
        info = store.head(key)
        if info is None:
            raise IngestStageError(
                "get_object",
                "Object not found.",
                status_code=404,
                cause=SourceObjectNotFoundError(f"{bucket}/{key} not found"),
            )
        identity = compute_doc_id(bucket, key, etag=info.etag, size=info.size, uploaded=info.uploaded)
        LOGGER.info("Ingest start %s/%s doc_id=%s basis_fields=%s", bucket, key, identity.doc_id, identity.fields_used)
        return _SourceObject(
            bucket=bucket,
            key=key,
            store=store,
            info=info,
            identity=identity,
            title=title_from_key(key),
        )

    def _ingest(self, bucket: str, key: str, *, force: bool) -> IngestResult:
        source = self._resolve_source(bucket, key)
        doc_id = source.identity.doc_id
        extracted_key = build_extracted_key(doc_id)

        if not force:
            try:
                cached = self.cache.has_extracted(doc_id)
            except OSError as error:
                LOGGER.warning("Cache probe failed for %s (%s): %s", doc_id, extracted_key, error)
                cached = False
            if cached:
                manifest = read_manifest(self.library, doc_id)
                preview = manifest.preview if manifest else ""
                self._upsert_index(source, "ready", preview=preview, manifest=manifest)
                return IngestResult(
                    status="cache_hit",
                    bucket=bucket,
                    key=key,
                    doc_id=doc_id,
                    extracted_key=self.cache.current_extracted_key(doc_id, manifest),
                    manifest=manifest,
                    page_count=manifest.page_count if manifest else None,
                    preview=preview,
                )

        prior = read_manifest(self.library, doc_id)
        if not force and prior is not None and prior.method == "ocr" and not prior.pages_processed:
            self._upsert_index(source, "needs_browser_ocr", preview=prior.preview, manifest=prior)
            return IngestResult(
                status="needs_browser_ocr",
                bucket=bucket,
                key=key,
                doc_id=doc_id,
                manifest=prior,
                page_count=prior.page_count,
            )

        extraction = self._extract(source)

        if extraction.scanned or not extraction.pages:
            if prior is not None and prior.pages_processed:
                # Pages already OCR'd stay in the manifest so they are not scheduled again.
                manifest = prior.model_copy(
                    update={"page_count": extraction.page_count or prior.page_count, **self._identity_fields(source)}
                )
            else:
                manifest = Manifest(
                    doc_id=doc_id,
                    method="ocr",
                    pages_processed=0,
                    page_count=extraction.page_count,
                    **self._identity_fields(source),
                    **self._created_at(prior),
                )
            manifest = self._write_manifest(manifest)
            self._upsert_index(source, "needs_browser_ocr", preview=manifest.preview, manifest=manifest)
            return IngestResult(
                status="needs_browser_ocr",
                bucket=bucket,
                key=key,
                doc_id=doc_id,
                manifest=manifest,
                page_count=extraction.page_count,
            )

        normalized = normalize_pages(extraction.pages)
        final_text = normalized.text[: self.config.max_stored_chars]
        preview = final_text[: self.config.preview_chars]
        try:
            extracted_key = self.cache.store_text(doc_id, final_text)
        except OSError as error:
            raise IngestStageError("write_extracted", f"Failed to persist extracted text: {error}", cause=error)

        ranges = build_ranges_from_pages(page.page_index for page in extraction.pages if page.text.strip())
        manifest = self._write_manifest(
            Manifest(
                doc_id=doc_id,
                method="embedded",
                pages_processed=pages_in_ranges(ranges),
                page_count=extraction.page_count,
                ranges=ranges,
                preview=preview,
                extracted_key=extracted_key,
                language=self.cache.language_detector.detect(final_text),
                **self._identity_fields(source),
                **self._created_at(prior),
            )
        )
        self._upsert_index(source, "ready", preview=preview, manifest=manifest)
        LOGGER.info(
            "Ingest ready doc_id=%s pages=%s removed_headers=%s",
            doc_id,
            extraction.page_count,
            len(normalized.removed_headers),
        )
        return IngestResult(
            status="ready",
            bucket=bucket,
            key=key,
            doc_id=doc_id,
            extracted_key=extracted_key,
            manifest=manifest,
            page_count=extraction.page_count,
            preview=preview,
        )

    def _extract(self, source: _SourceObject) -> EmbeddedExtraction:
        data = source.store.get(source.key)
        if data is None:
            raise IngestStageError(
                "get_object",
                "Object not found.",
                status_code=404,
                cause=SourceObjectNotFoundError(f"{source.bucket}/{source.key} not found"),
            )
        try:
            return self.extractor.extract(data)
        except Exception as error:
            raise IngestStageError("extract_embedded", str(error) or "Embedded extraction failed.", cause=error)

    def _write_manifest(self, manifest: Manifest) -> Manifest:
        try:
            return write_manifest(self.library, manifest)
        except OSError as error:
            raise IngestStageError("write_manifest", f"Failed to persist manifest: {error}", cause=error)

    @staticmethod
    def _created_at(prior: Manifest | None) -> dict:
        return {"created_at": prior.created_at} if prior is not None else {}

    @staticmethod
    def _identity_fields(source: _SourceObject) -> dict:
        return {
            "title": source.title,
            "bucket": source.bucket,
            "key": source.key,
            "hash_basis": source.identity.basis,
            "hash_fields_used": source.identity.fields_used,
        }

    def _upsert_index(
        self,
        source: _SourceObject,
        status: IndexStatus,
        *,
        preview: str,
        manifest: Manifest | None,
    ) -> IndexRecord:
        doc_id = source.identity.doc_id
        return self.index.upsert(
            IndexRecord(
                doc_id=doc_id,
                bucket=source.bucket,
                key=source.key,
                title=source.title,
                normalized_tokens=tokens_from_title(source.title),
                hash_basis=source.identity.basis,
                hash_fields_used=source.identity.fields_used,
                etag=source.info.etag,
                size=source.info.size,
                uploaded=source.identity.uploaded or None,
                status=status,
                preview=preview,
                manifest_key=build_manifest_key(doc_id),
                extracted_key=self.cache.current_extracted_key(doc_id, manifest),
                language=manifest.language if manifest else None,
            )
        )

    def ingest_bucket(self, bucket: str, prefix: str = "", limit: int = 0) -> BucketIngestSummary:
        """Ingest every PDF under ``prefix``; ``limit`` of zero means no limit."""

        store = self.source_buckets.get(bucket)
        if store is None:
            raise UnknownBucketError(f"Unknown bucket: {bucket}")
        summary = BucketIngestSummary(bucket=bucket)
        keys = [info.key for info in store.list(prefix) if is_pdf_key(info.key)]
        if limit > 0:
            keys = keys[:limit]
        for key in keys:
            result = self.ingest(bucket, key)
            summary.results.append(result)
            summary.counts[result.status] = summary.counts.get(result.status, 0) + 1
        LOGGER.info("Bucket ingest %s prefix=%r counts=%s", bucket, prefix, summary.counts)
        return summary

    def finalize_ocr(
        self,
        doc_id: str,
        pages: Iterable[PageContent],
        total_pages: int | None = None,
        *,
        title: str | None = None,
    ) -> FinalizeResult:
        """Fold OCR'd pages into the cache and mark the document ready."""

        finalized = self.cache.finalize_pages(doc_id, pages, total_pages=total_pages, title=title)
        manifest = finalized.manifest
        prior = self.index.get(doc_id)
        record_title = (prior.title if prior else None) or manifest.title or title or doc_id
        self.index.upsert(
            IndexRecord(
                doc_id=doc_id,
                bucket=(prior.bucket if prior else None) or manifest.bucket or "",
                key=(prior.key if prior else None) or manifest.key or "",
                title=record_title,
                status="ready",
                preview=finalized.preview,
                extracted_key=finalized.extracted_key,
                manifest_key=build_manifest_key(doc_id),
                language=manifest.language,
            )
        )
        emit_ingest_event(
            "ingest.ocr_finalized",
            doc_id=doc_id,
            bucket=manifest.bucket or "",
            key=manifest.key or "",
            status="ready",
            extracted_key=finalized.extracted_key,
            pages=manifest.pages_processed,
            method=manifest.method,
            language=manifest.language,
        )
        return finalized


__all__ = ["BucketIngestSummary", "IngestResult", "IngestStatus", "IngestionOrchestrator"]
