"""Structured lifecycle events for ingestion, OCR, retrieval and answering."""

from __future__ import annotations

import logging
import traceback
from typing import Any, Iterable, Optional

LOGGER = logging.getLogger("docqa.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    doc_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Log *step* as a dict payload.

    Every event carries ``step`` and ``module``; identifiers, timing and
    ``details`` are added when given. Exceptions are rendered into ``exc`` and
    also attached as ``exc_info``.
    """

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if doc_id:
        event["doc_id"] = doc_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    doc_id: str,
    bucket: str,
    key: str,
    status: str | None = None,
    extracted_key: str | None = None,
    pages: int | None = None,
    method: str | None = None,
    language: str | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "bucket": bucket,
        "key": key,
        "status": status,
        "extracted_key": extracted_key,
        "pages": pages,
        "method": method,
        "language": language,
    }
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, doc_id=doc_id, duration_ms=duration_ms, details=details, exc=error)


def emit_ocr_event(
    step: str,
    *,
    doc_id: str,
    page_index: int | None = None,
    attempt: int | None = None,
    completed: int | None = None,
    failed: int | None = None,
    ranges: list[dict[str, int]] | None = None,
    error: BaseException | None = None,
) -> None:
    details: dict[str, Any] = {}
    if page_index is not None:
        details["page_index"] = page_index
    if attempt is not None:
        details["attempt"] = attempt
    if completed is not None:
        details["completed"] = completed
    if failed is not None:
        details["failed"] = failed
    if ranges is not None:
        details["ranges"] = ranges
    level = "warning" if error else "info"
    log_event(LOGGER, step, level=level, doc_id=doc_id, details=details, exc=error)


def emit_retrieval_event(
    *,
    req_id: str,
    doc_id: str,
    question: str,
    mode: str,
    total_chunks: int,
    selected: Iterable[int],
    chars: int,
) -> None:
    details = {
        "question_preview": question[:120],
        "mode": mode,
        "total_chunks": total_chunks,
        "selected": list(selected),
        "chars": chars,
    }
    log_event(LOGGER, "retrieval.select", req_id=req_id, doc_id=doc_id, details=details)


def emit_generation_event(
    step: str,
    *,
    label: str,
    attempt: int,
    max_output_tokens: int,
    finish_signal: str | None = None,
    output_tokens: int | None = None,
    segment_chars: int | None = None,
    needs_more: bool | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "label": label,
        "attempt": attempt,
        "max_output_tokens": max_output_tokens,
        "finish_signal": finish_signal,
        "output_tokens": output_tokens,
        "segment_chars": segment_chars,
        "needs_more": needs_more,
    }
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_answer_event(
    *,
    req_id: str,
    doc_id: str,
    status: str,
    answer_chars: int,
    truncated: bool,
    has_token: bool,
    segments_used: int,
) -> None:
    details = {
        "status": status,
        "answer_chars": answer_chars,
        "truncated": truncated,
        "has_token": has_token,
        "segments_used": segments_used,
    }
    log_event(LOGGER, "answer.end", req_id=req_id, doc_id=doc_id, details=details)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    doc_id: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        doc_id=doc_id,
        details=details,
        exc=error,
    )


__all__ = [
    "emit_answer_event",
    "emit_exception",
    "emit_generation_event",
    "emit_ingest_event",
    "emit_ocr_event",
    "emit_retrieval_event",
    "log_event",
]
