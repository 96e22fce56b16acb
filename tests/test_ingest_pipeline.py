"""Tests for the ingestion orchestrator using in-memory stores and a fake extractor."""
from __future__ import annotations

import pytest

from conftest import LECTURE_PAGES, FakeExtractor, embedded_extraction
from docqa.cache.doc_id import build_extracted_key
from docqa.cache.manifest import read_manifest
from docqa.errors import UnknownBucketError
from docqa.ingest.extractors import EmbeddedExtraction
from docqa.ingest.models import PageContent
from docqa.ingest.ocr import OcrBatchRunner, PageImage
from docqa.ingest.pipeline import IngestionOrchestrator
from docqa.providers.mock_ocr import MockPageOcr
from docqa.storage import LocalBlobStore

SOURCE_KEY = "lectures/cardio_intro.pdf"


@pytest.fixture()
def extractor() -> FakeExtractor:
    return FakeExtractor(result=embedded_extraction(LECTURE_PAGES))


@pytest.fixture()
def orchestrator(source_store, library_store, extractor, extraction_cache, library_index) -> IngestionOrchestrator:
    source_store.put(SOURCE_KEY, b"%PDF-1.7 fake lecture")
    return IngestionOrchestrator(
        {"lectures": source_store},
        library_store,
        extractor=extractor,
        cache=extraction_cache,
        index=library_index,
    )


def test_ingest_embedded_pdf_is_ready(orchestrator, library_store, library_index):
    result = orchestrator.ingest("lectures", SOURCE_KEY)

    assert result.status == "ready"
    assert result.page_count == 4
    assert result.extracted_key == build_extracted_key(result.doc_id)
    text = library_store.get(result.extracted_key).decode()
    assert text.startswith("--- Page 1 ---\nCardiology Overview")
    manifest = read_manifest(library_store, result.doc_id)
    assert manifest.method == "embedded"
    assert manifest.pages_processed == 4
    assert [(item.start, item.end) for item in manifest.ranges] == [(1, 4)]
    assert manifest.title == "cardio intro"
    assert manifest.hash_fields_used == ["etag"]
    record = library_index.get(result.doc_id)
    assert record.status == "ready"
    assert record.normalized_tokens == ["cardio", "intro"]
    assert result.preview.startswith("--- Page 1 ---")


def test_second_ingest_is_a_cache_hit_without_extraction(orchestrator, extractor):
    first = orchestrator.ingest("lectures", SOURCE_KEY)
    second = orchestrator.ingest("lectures", SOURCE_KEY)

    assert second.status == "cache_hit"
    assert second.doc_id == first.doc_id
    assert second.extracted_key == first.extracted_key
    assert len(extractor.calls) == 1


def test_force_reingest_extracts_again(orchestrator, extractor):
    orchestrator.ingest("lectures", SOURCE_KEY)
    forced = orchestrator.ingest("lectures", SOURCE_KEY, force=True)

    assert forced.status == "ready"
    assert len(extractor.calls) == 2


def test_changed_object_gets_new_doc_id(orchestrator, source_store):
    first = orchestrator.ingest("lectures", SOURCE_KEY)
    source_store.put(SOURCE_KEY, b"%PDF-1.7 revised lecture")
    second = orchestrator.ingest("lectures", SOURCE_KEY)

    assert second.status == "ready"
    assert second.doc_id != first.doc_id


def test_scanned_pdf_needs_browser_ocr_then_finalize(orchestrator, extractor, library_store, library_index):
    extractor.result = EmbeddedExtraction(page_count=3, scanned=True)

    result = orchestrator.ingest("lectures", SOURCE_KEY)

    assert result.status == "needs_browser_ocr"
    assert result.page_count == 3
    manifest = read_manifest(library_store, result.doc_id)
    assert manifest.method == "ocr"
    assert manifest.pages_processed == 0
    assert library_index.get(result.doc_id).status == "needs_browser_ocr"

    again = orchestrator.ingest("lectures", SOURCE_KEY)
    assert again.status == "needs_browser_ocr"
    assert len(extractor.calls) == 1

    pages = [PageContent(page_index=index, text=f"Scanned sheet {index} transcription.") for index in range(3)]
    finalized = orchestrator.finalize_ocr(result.doc_id, pages, total_pages=3)

    assert finalized.manifest.method == "ocr"
    assert finalized.manifest.pages_processed == 3
    record = library_index.get(result.doc_id)
    assert record.status == "ready"
    assert record.title == "cardio intro"
    assert orchestrator.ingest("lectures", SOURCE_KEY).status == "cache_hit"


def test_unknown_bucket_is_an_error_result(orchestrator):
    result = orchestrator.ingest("missing-bucket", SOURCE_KEY)

    assert result.status == "error"
    assert result.error.stage == "bucket_lookup"
    assert result.error.status_code == 400
    assert result.to_dict()["error"]["stage"] == "bucket_lookup"


def test_missing_object_is_an_error_result(orchestrator):
    result = orchestrator.ingest("lectures", "lectures/nope.pdf")

    assert result.status == "error"
    assert result.error.stage == "get_object"
    assert result.error.status_code == 404


def test_extractor_failure_records_stage(orchestrator, extractor, caplog):
    extractor.error = RuntimeError("corrupt xref table")

    with caplog.at_level("INFO"):
        result = orchestrator.ingest("lectures", SOURCE_KEY)

    assert result.status == "error"
    assert result.error.stage == "extract_embedded"
    assert "corrupt xref table" in result.error.message
    audit = [record.msg for record in caplog.records if record.name == "docqa.ingest.audit"]
    assert audit[-1]["event"] == "ingest.error"
    assert audit[-1]["stage"] == "extract_embedded"


def test_ingest_writes_audit_event(orchestrator, caplog):
    with caplog.at_level("INFO"):
        result = orchestrator.ingest("lectures", SOURCE_KEY)

    audit = [record.msg for record in caplog.records if record.name == "docqa.ingest.audit"]
    assert audit[-1]["event"] == "ingest.ready"
    assert audit[-1]["doc_id"] == result.doc_id


def test_ingest_bucket_only_processes_pdfs(orchestrator, source_store):
    source_store.put("lectures/renal.pdf", b"%PDF renal")
    source_store.put("lectures/notes.txt", b"plain notes")

    summary = orchestrator.ingest_bucket("lectures", prefix="lectures/")

    assert summary.counts == {"ready": 2}
    assert summary.total == 2
    assert [result.key for result in summary.results] == ["lectures/cardio_intro.pdf", "lectures/renal.pdf"]

    limited = orchestrator.ingest_bucket("lectures", limit=1)
    assert limited.counts == {"cache_hit": 1}


def test_ingest_bucket_rejects_unknown_bucket(orchestrator):
    with pytest.raises(UnknownBucketError):
        orchestrator.ingest_bucket("missing")


def test_ingest_bucket_handles_file_names_with_spaces(tmp_path, library_store, extractor, extraction_cache, library_index):
    (tmp_path / "Week 1 Lecture.pdf").write_bytes(b"%PDF-1.7 week one")
    orchestrator = IngestionOrchestrator(
        {"local": LocalBlobStore(tmp_path)},
        library_store,
        extractor=extractor,
        cache=extraction_cache,
        index=library_index,
    )

    summary = orchestrator.ingest_bucket("local")

    assert summary.counts == {"ready": 1}
    [result] = summary.results
    assert result.key == "Week 1 Lecture.pdf"
    assert extractor.calls == [b"%PDF-1.7 week one"]


def test_force_reingest_of_scanned_pdf_keeps_ocr_progress(orchestrator, extractor, library_store, extraction_cache):
    extractor.result = EmbeddedExtraction(page_count=4, scanned=True)
    first = orchestrator.ingest("lectures", SOURCE_KEY)
    pages = [PageContent(page_index=index, text=f"Scanned sheet {index} transcription.") for index in range(2)]
    orchestrator.finalize_ocr(first.doc_id, pages, total_pages=4)
    created_at = read_manifest(library_store, first.doc_id).created_at

    forced = orchestrator.ingest("lectures", SOURCE_KEY, force=True)

    assert forced.status == "needs_browser_ocr"
    manifest = read_manifest(library_store, first.doc_id)
    assert [(item.start, item.end) for item in manifest.ranges] == [(1, 2)]
    assert manifest.pages_processed == 2
    assert manifest.created_at == created_at
    assert manifest.extracted_key == build_extracted_key(first.doc_id)
    runner = OcrBatchRunner(MockPageOcr(), extraction_cache)
    todo = runner.select_pages(first.doc_id, [PageImage(page_index=index, image=b"page") for index in range(4)])
    assert [page.page_index for page in todo] == [2, 3]
    assert "Scanned sheet 1 transcription." in extraction_cache.load(first.doc_id).text


def test_force_reingest_keeps_manifest_creation_time(orchestrator, library_store):
    first = orchestrator.ingest("lectures", SOURCE_KEY)
    created_at = read_manifest(library_store, first.doc_id).created_at

    orchestrator.ingest("lectures", SOURCE_KEY, force=True)

    assert read_manifest(library_store, first.doc_id).created_at == created_at
