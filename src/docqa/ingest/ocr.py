"""Bounded-concurrency page OCR with incremental cache flushes."""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from docqa.cache.extraction import ExtractionCache, FinalizeResult
from docqa.cache.manifest import Manifest, read_manifest
from docqa.config import OcrConfig
from docqa.errors import OcrCancelledError, is_transient_error
from docqa.telemetry import emit_ocr_event

from .models import PageContent
from .normalization import normalize_extracted_text

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class PageOcr(Protocol):
    """Turns one rendered page image into text. Retries live in the caller."""

    def ocr_page(self, image_bytes: bytes) -> str:
        ...


@dataclass(slots=True)
class PageImage:
    page_index: int
    image: bytes


class OcrSession:
    """Cancellation flag shared between a client and a running batch."""

    def __init__(self, doc_id: str | None = None) -> None:
        self.doc_id = doc_id
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


@dataclass(slots=True)
class OcrBatchResult:
    completed: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    flushes: int = 0
    manifest: Optional[Manifest] = None


class EmptyOcrPageError(RuntimeError):
    """The OCR collaborator returned no text for a page, or only text the cache would discard."""


class OcrBatchRunner:
    """Run page OCR through a fixed worker pool and fold results into the cache.

    Pages already covered by the manifest are skipped, at most ``page_cap``
    pages are scheduled, and completed pages are flushed every
    ``flush_batch_size`` pages plus once at the end through *finalize*
    (``ExtractionCache.finalize_pages`` unless the owner passes its own, e.g.
    ``IngestionOrchestrator.finalize_ocr``). A failing page is recorded and the
    rest of the batch continues.
    """

    def __init__(
        self,
        ocr: PageOcr,
        cache: ExtractionCache,
        config: OcrConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        finalize: Callable[..., FinalizeResult] | None = None,
    ) -> None:
        self.ocr = ocr
        self.cache = cache
        self.config = config or OcrConfig()
        self._sleep = sleep
        self._finalize = finalize or cache.finalize_pages

    def select_pages(self, doc_id: str, pages: Iterable[PageImage]) -> List[PageImage]:
        manifest = read_manifest(self.cache.store, doc_id)
        done: set[int] = set()
        if manifest is not None:
            for item in manifest.ranges:
                done.update(range(item.start - 1, item.end))
        todo = sorted((page for page in pages if page.page_index not in done), key=lambda page: page.page_index)
        if self.config.page_cap > 0:
            todo = todo[: self.config.page_cap]
        return todo

    def run(
        self,
        doc_id: str,
        pages: Iterable[PageImage],
        *,
        total_pages: int | None = None,
        session: OcrSession | None = None,
        title: str | None = None,
    ) -> OcrBatchResult:
        session = session or OcrSession(doc_id)
        queue: Deque[PageImage] = deque(self.select_pages(doc_id, pages))
        result = OcrBatchResult()
        buffer: List[PageContent] = []
        concurrency = max(1, self.config.concurrency)
        emit_ocr_event("ocr.batch.start", doc_id=doc_id, completed=0, failed=0)

        def flush() -> None:
            if not buffer:
                return
            finalized = self._finalize(doc_id, list(buffer), total_pages=total_pages, title=title)
            buffer.clear()
            result.flushes += 1
            result.manifest = finalized.manifest
            emit_ocr_event(
                "ocr.flush",
                doc_id=doc_id,
                completed=len(result.completed),
                ranges=[item.model_dump() for item in finalized.manifest.ranges],
            )

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="docqa-ocr") as pool:
            in_flight: Dict[Future[str], PageImage] = {}
            while queue or in_flight:
                while queue and not session.cancelled and len(in_flight) < concurrency:
                    page = queue.popleft()
                    in_flight[pool.submit(self._ocr_with_retry, doc_id, page)] = page
                if not in_flight:
                    break
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    page = in_flight.pop(future)
                    try:
                        text = future.result()
                    except Exception as error:
                        result.failed[page.page_index] = str(error)
                        emit_ocr_event("ocr.page.failed", doc_id=doc_id, page_index=page.page_index, error=error)
                        continue
                    result.completed.append(page.page_index)
                    buffer.append(PageContent(page_index=page.page_index, text=text))
                    if len(buffer) >= self.config.flush_batch_size:
                        flush()

        flush()
        result.completed.sort()
        emit_ocr_event(
            "ocr.batch.end",
            doc_id=doc_id,
            completed=len(result.completed),
            failed=len(result.failed),
        )
        if session.cancelled:
            raise OcrCancelledError(
                f"OCR cancelled after {len(result.completed)} page(s); {len(queue)} page(s) not scheduled."
            )
        return result

    def _ocr_with_retry(self, doc_id: str, page: PageImage) -> str:
        def log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            emit_ocr_event(
                "ocr.page.retry",
                doc_id=doc_id,
                page_index=page.page_index,
                attempt=state.attempt_number,
                error=error,
            )

        retrying = Retrying(
            retry=retry_if_exception(is_transient_error),
            stop=stop_after_attempt(max(1, self.config.max_retries)),
            wait=wait_exponential(multiplier=self.config.backoff_base_seconds, max=self.config.backoff_max_seconds)
            + wait_random(0, self.config.jitter_seconds),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        text = retrying(self.ocr.ocr_page, page.image)
        if not normalize_extracted_text(text or ""):
            raise EmptyOcrPageError(f"OCR returned no text for page {page.page_index + 1}.")
        return text


__all__ = [
    "EmptyOcrPageError",
    "OcrBatchResult",
    "OcrBatchRunner",
    "OcrSession",
    "PageImage",
    "PageOcr",
]
