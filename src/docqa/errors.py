"""Exception taxonomy shared by the cache, ingestion and answer layers."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from docqa.generation.engine import GenerationResult


class DocQAError(RuntimeError):
    """Base class carrying a machine readable ``code`` and an HTTP-like status."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidRequestError(DocQAError):
    """Raised when a caller supplies missing or malformed arguments."""

    code = "invalid_request"
    status_code = 400


class InvalidContinuationTokenError(InvalidRequestError):
    """The continuation token cannot be decoded or fails schema validation."""

    code = "invalid_continuation_token"


class StaleContinuationTokenError(InvalidRequestError):
    """The document was re-ingested after the continuation token was issued."""

    code = "stale_continuation_token"
    status_code = 409


class ExtractedTextNotFoundError(InvalidRequestError):
    code = "extracted_text_not_found"
    status_code = 404


class ExtractionNotReadyError(InvalidRequestError):
    """Cached text exists but is too small to answer from (OCR still running)."""

    code = "ocr_not_ready"
    status_code = 409


class UnknownBucketError(InvalidRequestError):
    code = "unknown_bucket"


class SourceObjectNotFoundError(InvalidRequestError):
    code = "object_not_found"
    status_code = 404


class IngestStageError(DocQAError):
    """Raised when one stage of an ingestion pass fails."""

    code = "ingest_failed"

    def __init__(
        self,
        stage: str,
        message: str,
        *,
        status_code: int = 500,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.stage = stage
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["stage"] = self.stage
        return payload


class TransientUpstreamError(DocQAError):
    """A retryable upstream failure (rate limited or 5xx)."""

    code = "upstream_unavailable"
    status_code = 503

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.upstream_status = upstream_status


class LLMError(DocQAError):
    """The LLM collaborator failed in a way that retrying will not fix."""

    code = "llm_failed"
    status_code = 502


class LLMGenerationError(LLMError):
    """The upstream returned an unusable response (error payload, no output)."""


class GenerationFailedError(DocQAError):
    """An upstream call failed mid-answer; ``partial`` keeps the text produced so far."""

    code = "generation_failed"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        partial: "GenerationResult",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.partial = partial


class OcrCancelledError(DocQAError):
    code = "cancelled"
    status_code = 499


def _status_of(error: BaseException) -> int | None:
    for attr in ("upstream_status", "status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_transient_error(error: BaseException) -> bool:
    """Return ``True`` for rate limits and server-side upstream failures."""

    if isinstance(error, TransientUpstreamError):
        return True
    if isinstance(error, DocQAError):
        return False
    status = _status_of(error)
    if status is None:
        return False
    return status == 429 or 500 <= status < 600


__all__ = [
    "DocQAError",
    "ExtractedTextNotFoundError",
    "ExtractionNotReadyError",
    "GenerationFailedError",
    "IngestStageError",
    "InvalidContinuationTokenError",
    "InvalidRequestError",
    "LLMError",
    "LLMGenerationError",
    "OcrCancelledError",
    "SourceObjectNotFoundError",
    "StaleContinuationTokenError",
    "TransientUpstreamError",
    "UnknownBucketError",
    "is_transient_error",
]
