"""Shared fixtures: in-memory stores, a scripted extractor and seeded documents."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List

import pytest

from docqa.cache.extraction import ExtractionCache
from docqa.cache.index import LibraryIndex
from docqa.cache.ttl import TTLCache
from docqa.ingest.extractors import EmbeddedExtraction
from docqa.ingest.models import PageContent
from docqa.ingest.normalization import render_pages
from docqa.logging_config import AUDIT_LOGGER_NAME, QUIET_LOGGERS
from docqa.storage import InMemoryBlobStore

LECTURE_PAGES = [
    "Cardiology Overview\nThe heart has four chambers. Atrial fibrillation is the most common arrhythmia "
    "and raises stroke risk. Anticoagulation is considered with a CHA2DS2-VASc score of two or more.",
    "Heart Failure\nHeart failure with reduced ejection fraction is treated with beta blockers, ACE "
    "inhibitors and mineralocorticoid antagonists. Diuretics relieve congestion but do not improve survival.",
    "Valvular Disease\nAortic stenosis presents with angina, syncope and dyspnea. Severe symptomatic "
    "stenosis is treated with valve replacement. Mitral regurgitation causes a holosystolic murmur.",
    "Hypertension\nFirst line agents include thiazide diuretics, calcium channel blockers and ACE "
    "inhibitors. Lifestyle changes such as salt restriction lower blood pressure in most patients.",
]


@dataclass
class FakeExtractor:
    """Embedded extractor double returning a canned extraction."""

    result: EmbeddedExtraction = field(default_factory=EmbeddedExtraction)
    error: Exception | None = None
    calls: List[bytes] = field(default_factory=list)

    def extract(self, data: bytes) -> EmbeddedExtraction:
        self.calls.append(data)
        if self.error is not None:
            raise self.error
        return self.result


def embedded_extraction(pages: List[str]) -> EmbeddedExtraction:
    return EmbeddedExtraction(
        pages=[PageContent(page_index=index, text=text) for index, text in enumerate(pages)],
        page_count=len(pages),
        sample_chars=sum(len(text) for text in pages),
        sampled_pages_with_text=len(pages),
        scanned=False,
    )


@pytest.fixture()
def library_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def source_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def extraction_cache(library_store: InMemoryBlobStore) -> ExtractionCache:
    return ExtractionCache(library_store)


@pytest.fixture()
def library_index(library_store: InMemoryBlobStore) -> LibraryIndex:
    return LibraryIndex(library_store, TTLCache(ttl_seconds=30.0))


@pytest.fixture()
def lecture_text() -> str:
    return render_pages({index: text for index, text in enumerate(LECTURE_PAGES)})


@pytest.fixture()
def seed_document(extraction_cache: ExtractionCache) -> Callable[[str, str], str]:
    """Store *text* as the extracted text of *doc_id* and return its key."""

    def _seed(doc_id: str, text: str) -> str:
        return extraction_cache.store_text(doc_id, text)

    return _seed


@pytest.fixture()
def restore_logging():
    """Undo ``configure_logging`` side effects on the root and audit loggers."""

    root = logging.getLogger()
    audit = logging.getLogger(AUDIT_LOGGER_NAME)
    root_handlers = list(root.handlers)
    root_level = root.level
    yield
    for handler in list(audit.handlers):
        audit.removeHandler(handler)
        handler.close()
    audit.propagate = True
    audit.setLevel(logging.NOTSET)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
    for handler in list(root.handlers):
        if handler not in root_handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in root_handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(root_level)
