"""Question answering over a cached document with resumable generation."""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence

from docqa.cache.extraction import ExtractionCache
from docqa.config import GenerationConfig, RetrievalConfig
from docqa.errors import (
    DocQAError,
    ExtractedTextNotFoundError,
    ExtractionNotReadyError,
    GenerationFailedError,
    InvalidContinuationTokenError,
    InvalidRequestError,
    StaleContinuationTokenError,
)
from docqa.generation.engine import ContinuationEngine, GenerationResult, UpstreamRequest
from docqa.generation.stitching import append_truncation_notice
from docqa.generation.token import AnswerOptions, ContinuationToken, build_token, decode_token, encode_token
from docqa.ingest.chunking import chunk_text
from docqa.ingest.models import DocumentChunk
from docqa.llm.base import LLMProvider
from docqa.prompt_builder import (
    NOTES_SYSTEM_PROMPT,
    build_answer_prompt,
    build_compact_body,
    build_context_block,
    build_notes_prompt,
    build_system_prompt,
)
from docqa.retriever import derive_table_headers, detect_intent, select_chunks
from docqa.telemetry import emit_answer_event, emit_exception, emit_retrieval_event, log_event

LOGGER = logging.getLogger(__name__)

AnswerStatus = Literal["complete", "truncated", "continuation_limit", "failed", "empty"]

EMPTY_ANSWER_MESSAGE = "Response generation timed out before any content was produced. Please retry."
LIMIT_MESSAGE = "Continuation limit reached before more content was produced. Please retry the question."
NOTES_UNAVAILABLE = "Context notes unavailable; continue the previous answer based on the question and prior text."

_PAGE_MARKER_REF_RE = re.compile(r"---\s*page\s*(\d+)\s*---", re.IGNORECASE)
_PAGE_WORD_REF_RE = re.compile(r"\bpage\s+(\d+)\b", re.IGNORECASE)
_SLIDE_REF_RE = re.compile(r"\bslide\s+(\d+)\b", re.IGNORECASE)
_PAGE_MARKER_PREFIX_RE = re.compile(r"^---\s*page", re.IGNORECASE)
_SLIDE_PREFIX_RE = re.compile(r"^slide\s+\d+", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Reference:
    type: Literal["slide", "page"]
    number: int
    title: str = ""

    @property
    def label(self) -> str:
        return f"{'Slide' if self.type == 'slide' else 'Page'} {self.number}"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {self.type: self.number, "label": self.label}
        if self.title:
            payload["title"] = self.title
        return payload


def map_chunk_to_reference(chunk: DocumentChunk) -> Reference:
    """Derive a slide/page citation from markers inside a chunk."""

    raw = chunk.text or ""
    page_match = _PAGE_MARKER_REF_RE.search(raw) or _PAGE_WORD_REF_RE.search(raw)
    slide_match = _SLIDE_REF_RE.search(raw)
    if slide_match:
        kind, number = "slide", int(slide_match.group(1))
    elif page_match:
        kind, number = "page", int(page_match.group(1))
    else:
        kind, number = "slide", chunk.index + 1
    lines = [line.strip() for line in raw.split("\n") if line.strip()]
    title = next(
        (
            line
            for line in lines
            if len(line) > 8 and not _PAGE_MARKER_PREFIX_RE.match(line) and not _SLIDE_PREFIX_RE.match(line)
        ),
        "",
    )
    return Reference(type=kind, number=number, title=title)


def build_references(chunks: Sequence[DocumentChunk]) -> List[Reference]:
    seen: set[tuple[str, int]] = set()
    references: List[Reference] = []
    for chunk in chunks:
        reference = map_chunk_to_reference(chunk)
        key = (reference.type, reference.number)
        if key in seen:
            continue
        seen.add(key)
        references.append(reference)
    return references


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class AnswerResult:
    status: AnswerStatus
    answer: str
    done: bool
    doc_id: str
    request_id: str
    mode: str = "narrow"
    chunk_indices: List[int] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    continuation_token: Optional[str] = None
    segments_used: int = 0
    truncated: bool = False
    limit_reached: bool = False
    extracted_key: Optional[str] = None
    error: Optional[DocQAError] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": self.status in ("complete", "truncated"),
            "status": self.status,
            "answer": self.answer,
            "done": self.done,
            "docId": self.doc_id,
            "requestId": self.request_id,
            "truncated": self.truncated,
            "limitReached": self.limit_reached,
            "segmentsUsed": self.segments_used,
            "references": [reference.to_dict() for reference in self.references],
        }
        if self.continuation_token:
            payload["continuationToken"] = self.continuation_token
        if self.extracted_key:
            payload["extractedKey"] = self.extracted_key
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass(slots=True)
class _Context:
    text: str
    extracted_key: str
    chunks: List[DocumentChunk]
    selected: List[DocumentChunk]
    mode: str


class AnswerService:
    """Answers questions about one cached document and resumes truncated answers."""

    def __init__(
        self,
        cache: ExtractionCache,
        provider: LLMProvider,
        config: GenerationConfig | None = None,
        retrieval: RetrievalConfig | None = None,
        *,
        notes_provider: LLMProvider | None = None,
    ) -> None:
        self.cache = cache
        self.provider = provider
        self.notes_provider = notes_provider or provider
        self.config = config or GenerationConfig()
        self.retrieval = retrieval or RetrievalConfig()
        self.engine = ContinuationEngine(provider, self.config)

    # ------------------------------------------------------------------ context
    def _load_context(self, doc_id: str, question: str, request_id: str) -> _Context:
        cached = self.cache.load(doc_id)
        if not cached.text:
            raise ExtractedTextNotFoundError(f"No cached extraction for document {doc_id}.")
        text = cached.text[: self.config.max_text_chars]
        if len(text) < self.config.min_text_chars:
            raise ExtractionNotReadyError("Extracted text too small or not ready.")

        chunks = chunk_text(text, self.retrieval.chunk_size, self.retrieval.chunk_overlap)
        intent = detect_intent(question)
        selection = select_chunks(question, chunks, intent, self.retrieval)
        selected = selection.chunks or chunks[: min(self.retrieval.top_k, len(chunks))]
        emit_retrieval_event(
            req_id=request_id,
            doc_id=doc_id,
            question=question,
            mode=selection.mode,
            total_chunks=len(chunks),
            selected=[chunk.index for chunk in selected],
            chars=sum(len(chunk.text) for chunk in selected),
        )
        return _Context(
            text=text,
            extracted_key=cached.extracted_key,
            chunks=chunks,
            selected=selected,
            mode=selection.mode,
        )

    def build_context_notes(self, question: str, chunks: Sequence[DocumentChunk], request_id: str) -> str:
        """Condense the selected excerpts into notes; the compact excerpts stand in on failure."""

        compact = build_compact_body(chunks, self.config.context_notes_chars)
        if not compact or not self.config.context_notes_enabled:
            return compact
        try:
            response = self.notes_provider.call(
                build_notes_prompt(question, compact),
                self.config.notes_max_output_tokens,
                system=NOTES_SYSTEM_PROMPT,
            )
        except Exception as error:
            emit_exception(
                module=__name__,
                error=error,
                req_id=request_id,
                suggestion="context notes failed; using compact excerpts",
            )
            return compact
        notes = (response.text or "").strip()
        return notes or compact

    def _generate(
        self,
        question: str,
        selected: Sequence[DocumentChunk],
        options: AnswerOptions,
        context_notes: str,
        *,
        initial_text: str,
        max_attempts: int,
        max_output_tokens: int,
        label: str,
    ) -> GenerationResult:
        context_block = build_context_block(selected)
        system = build_system_prompt(options)
        call_tokens = self.config.clamp_output_tokens(max_output_tokens)

        def build_request(attempt: int, accumulated: str) -> UpstreamRequest:
            continuation = attempt > 1 or bool(accumulated)
            prompt = build_answer_prompt(
                question,
                context_block,
                accumulated_text=accumulated,
                continuation=continuation,
                context_notes=context_notes,
                tail_chars=self.config.tail_chars,
            )
            return UpstreamRequest(prompt=prompt, system=system, max_output_tokens=call_tokens)

        return self.engine.generate(
            build_request,
            max_attempts=max_attempts,
            max_output_tokens=call_tokens,
            initial_text=initial_text,
            label=label,
        )

    def _issue_token(
        self,
        *,
        doc_id: str,
        request_id: str,
        question: str,
        context_notes: str,
        extracted_key: str,
        options: AnswerOptions,
        answer: str,
        segments_used: int,
        max_output_tokens: int,
        model: str,
    ) -> Optional[str]:
        if segments_used >= self.config.total_segment_budget or not answer.strip():
            return None
        token = build_token(
            doc_id=doc_id,
            request_id=request_id,
            question=question,
            context_notes=context_notes,
            extracted_key=extracted_key,
            options=options,
            answer=answer,
            segments_used=segments_used,
            max_output_tokens=max_output_tokens,
            model=model,
            tail_chars=self.config.tail_chars,
            notes_chars=self.config.context_notes_chars,
        )
        return encode_token(token)

    # ---------------------------------------------------------------------- ask
    def ask(self, doc_id: str, question: str, request_id: str | None = None) -> AnswerResult:
        """Answer *question* from the cached text of *doc_id*.

        Raises input errors (missing text, text not ready, empty question);
        upstream failures come back as ``status="failed"`` with any partial
        answer preserved.
        """

        doc_id = (doc_id or "").strip()
        question = (question or "").strip()
        if not doc_id or not question:
            raise InvalidRequestError("doc_id and question are required.")
        request_id = request_id or new_request_id()
        context = self._load_context(doc_id, question, request_id)

        intent = detect_intent(question)
        options = AnswerOptions(
            mode="broad" if intent.is_broad else "narrow",
            wants_table=intent.wants_table,
            list_intent=intent.list_intent,
            table_headers=derive_table_headers(question) if intent.wants_table else [],
        )
        notes = self.build_context_notes(question, context.selected, request_id)
        budget = self.config.total_segment_budget
        max_output_tokens = self.config.max_output_tokens
        references = build_references(context.selected)
        base = {
            "doc_id": doc_id,
            "request_id": request_id,
            "mode": context.mode,
            "chunk_indices": [chunk.index for chunk in context.selected],
            "references": references,
            "extracted_key": context.extracted_key,
        }

        try:
            result = self._generate(
                question,
                context.selected,
                options,
                notes,
                initial_text="",
                max_attempts=min(self.config.max_attempts, budget),
                max_output_tokens=max_output_tokens,
                label=f"ask-{request_id}",
            )
        except GenerationFailedError as error:
            partial = error.partial.full_text.strip()
            token = self._issue_token(
                doc_id=doc_id,
                request_id=request_id,
                question=question,
                context_notes=notes,
                extracted_key=context.extracted_key,
                options=options,
                answer=partial,
                segments_used=error.partial.attempts,
                max_output_tokens=max_output_tokens,
                model=self.config.model,
            )
            return self._finish(
                AnswerResult(
                    status="failed",
                    answer=append_truncation_notice(partial) if partial else "",
                    done=token is None,
                    continuation_token=token,
                    segments_used=error.partial.attempts,
                    truncated=True,
                    error=error,
                    **base,
                )
            )

        final_core = result.full_text.strip()
        if not final_core:
            return self._finish(
                AnswerResult(
                    status="empty",
                    answer=EMPTY_ANSWER_MESSAGE,
                    done=True,
                    segments_used=result.attempts,
                    **base,
                )
            )
        if not result.truncated:
            return self._finish(
                AnswerResult(status="complete", answer=final_core, done=True, segments_used=result.attempts, **base)
            )

        token = self._issue_token(
            doc_id=doc_id,
            request_id=request_id,
            question=question,
            context_notes=notes,
            extracted_key=context.extracted_key,
            options=options,
            answer=final_core,
            segments_used=result.attempts,
            max_output_tokens=max_output_tokens,
            model=self.config.model,
        )
        return self._finish(
            AnswerResult(
                status="truncated" if token else "continuation_limit",
                answer=append_truncation_notice(final_core),
                done=token is None,
                continuation_token=token,
                segments_used=result.attempts,
                truncated=True,
                limit_reached=token is None,
                **base,
            )
        )

    # ----------------------------------------------------------------- continue
    def ask_continue(self, doc_id: str, token: str, request_id: str | None = None) -> AnswerResult:
        """Resume a truncated answer from its continuation token.

        Returns only the newly generated segment. The token is rejected when it
        belongs to another document or when the document was re-ingested since
        it was issued.
        """

        doc_id = (doc_id or "").strip()
        parsed: ContinuationToken = decode_token(token)
        if parsed.doc_id != doc_id:
            raise InvalidContinuationTokenError("Continuation token does not match the requested document.")
        request_id = parsed.request_id or request_id or new_request_id()
        budget = self.config.total_segment_budget

        if parsed.segments_used >= budget:
            log_event(
                LOGGER,
                "answer.continuation_limit",
                req_id=request_id,
                doc_id=doc_id,
                details={"segments_used": parsed.segments_used, "budget": budget},
            )
            return self._finish(
                AnswerResult(
                    status="continuation_limit",
                    answer=LIMIT_MESSAGE,
                    done=True,
                    doc_id=doc_id,
                    request_id=request_id,
                    mode=parsed.options.mode,
                    segments_used=parsed.segments_used,
                    limit_reached=True,
                )
            )

        context = self._load_context(doc_id, parsed.question, request_id)
        if parsed.extracted_key != context.extracted_key:
            raise StaleContinuationTokenError("The document was re-processed; please restart the question.")

        notes = parsed.context_notes or self.build_context_notes(parsed.question, context.selected, request_id)
        notes = notes or NOTES_UNAVAILABLE
        remaining = max(1, budget - parsed.segments_used)
        base = {
            "doc_id": doc_id,
            "request_id": request_id,
            "mode": context.mode,
            "chunk_indices": [chunk.index for chunk in context.selected],
            "extracted_key": context.extracted_key,
        }

        def next_token(answer: str, segments_used: int) -> Optional[str]:
            return self._issue_token(
                doc_id=doc_id,
                request_id=request_id,
                question=parsed.question,
                context_notes=notes,
                extracted_key=context.extracted_key,
                options=parsed.options,
                answer=answer,
                segments_used=segments_used,
                max_output_tokens=parsed.max_output_tokens,
                model=parsed.model,
            )

        try:
            result = self._generate(
                parsed.question,
                context.selected,
                parsed.options,
                notes,
                initial_text=parsed.answer_tail,
                max_attempts=min(self.config.max_attempts, remaining),
                max_output_tokens=parsed.max_output_tokens,
                label=f"continue-{request_id}",
            )
        except GenerationFailedError as error:
            updated = parsed.segments_used + error.partial.attempts
            segment = error.partial.text.strip()
            token_out = next_token(error.partial.full_text, updated) if segment else None
            return self._finish(
                AnswerResult(
                    status="failed",
                    answer=append_truncation_notice(segment) if segment else "",
                    done=token_out is None,
                    continuation_token=token_out,
                    segments_used=updated,
                    truncated=True,
                    error=error,
                    **base,
                )
            )

        updated = parsed.segments_used + result.attempts
        segment = result.text.strip()
        if not segment:
            return self._finish(
                AnswerResult(status="empty", answer=EMPTY_ANSWER_MESSAGE, done=True, segments_used=updated, **base)
            )
        if not result.truncated:
            return self._finish(
                AnswerResult(status="complete", answer=segment, done=True, segments_used=updated, **base)
            )
        token_out = next_token(result.full_text, updated)
        return self._finish(
            AnswerResult(
                status="truncated" if token_out else "continuation_limit",
                answer=append_truncation_notice(segment),
                done=token_out is None,
                continuation_token=token_out,
                segments_used=updated,
                truncated=True,
                limit_reached=token_out is None,
                **base,
            )
        )

    @staticmethod
    def _finish(result: AnswerResult) -> AnswerResult:
        emit_answer_event(
            req_id=result.request_id,
            doc_id=result.doc_id,
            status=result.status,
            answer_chars=len(result.answer),
            truncated=result.truncated,
            has_token=result.continuation_token is not None,
            segments_used=result.segments_used,
        )
        return result


__all__ = [
    "AnswerResult",
    "AnswerService",
    "AnswerStatus",
    "Reference",
    "build_references",
    "map_chunk_to_reference",
    "new_request_id",
]
