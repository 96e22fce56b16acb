"""Resumable generation: drive sequential upstream calls until an answer is whole."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from docqa.config import GenerationConfig
from docqa.errors import GenerationFailedError
from docqa.llm.base import CallOutcome, Completed, Failed, Incomplete, LLMProvider
from docqa.telemetry import emit_generation_event

from .stitching import combine_segments, prepare_continuation_segment
from .truncation import classify_response

LOGGER = logging.getLogger(__name__)


class GenerationPhase(str, Enum):
    STARTING = "starting"
    CALLING = "calling"
    SEGMENT_RECEIVED = "segment_received"
    DONE = "done"
    TRUNCATED_AT_BUDGET = "truncated_at_budget"
    FAILED = "failed"


@dataclass(slots=True)
class GenerationState:
    accumulated_text: str = ""
    attempts: int = 0
    truncated: bool = False
    last_finish_signal: Optional[str] = None
    last_status: Optional[str] = None
    continuation_prefix_emitted: bool = False
    phase: GenerationPhase = GenerationPhase.STARTING


@dataclass(slots=True)
class UpstreamRequest:
    prompt: str
    system: Optional[str] = None
    max_output_tokens: Optional[int] = None


@dataclass(slots=True)
class GenerationResult:
    """``text`` is what this call produced; ``full_text`` includes ``initial_text``."""

    text: str
    full_text: str
    truncated: bool
    attempts: int
    finish_signal: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


RequestBuilder = Callable[[int, str], UpstreamRequest]
SegmentCallback = Callable[[str, GenerationState], None]


class ContinuationEngine:
    """Runs one logical answer as a sequence of bounded upstream calls.

    Each call gets a request built from ``(attempt, accumulated_text)``. A
    segment judged incomplete triggers another call until ``max_attempts`` is
    reached, in which case the result is marked truncated. An upstream error
    aborts the loop with :class:`GenerationFailedError` carrying the text
    accumulated so far.
    """

    def __init__(self, provider: LLMProvider, config: GenerationConfig | None = None) -> None:
        self.provider = provider
        self.config = config or GenerationConfig()

    def generate(
        self,
        build_request: RequestBuilder,
        *,
        max_attempts: int | None = None,
        max_output_tokens: int | None = None,
        initial_text: str = "",
        on_segment: SegmentCallback | None = None,
        label: str = "answer",
    ) -> GenerationResult:
        attempts_limit = max(1, max_attempts if max_attempts is not None else self.config.max_attempts)
        max_tokens = self.config.clamp_output_tokens(max_output_tokens)
        state = GenerationState(accumulated_text=initial_text or "")
        base_length = len(state.accumulated_text)
        reason: Optional[str] = None

        while state.attempts < attempts_limit:
            state.attempts += 1
            state.phase = GenerationPhase.CALLING
            request = build_request(state.attempts, state.accumulated_text)
            call_tokens = request.max_output_tokens or max_tokens
            started = time.perf_counter()
            outcome = self._call(request, call_tokens)

            if isinstance(outcome, Failed):
                state.phase = GenerationPhase.FAILED
                emit_generation_event(
                    "generation.call.failed",
                    label=label,
                    attempt=state.attempts,
                    max_output_tokens=call_tokens,
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                    error=outcome.error,
                )
                partial = GenerationResult(
                    text=state.accumulated_text[base_length:],
                    full_text=state.accumulated_text,
                    truncated=True,
                    attempts=state.attempts,
                    finish_signal=state.last_finish_signal,
                    status=state.last_status,
                    reason="upstream_error",
                )
                raise GenerationFailedError(
                    f"{label}: upstream call {state.attempts} failed: {outcome.error}",
                    partial=partial,
                    cause=outcome.error,
                )

            response, classified = outcome
            state.phase = GenerationPhase.SEGMENT_RECEIVED
            state.last_finish_signal = response.finish_signal or state.last_finish_signal
            state.last_status = response.status or state.last_status

            segment = classified.text
            if segment:
                if state.attempts > 1 or state.accumulated_text:
                    segment, state.continuation_prefix_emitted = prepare_continuation_segment(
                        segment, state.accumulated_text, state.continuation_prefix_emitted
                    )
                state.accumulated_text = combine_segments([state.accumulated_text, segment])
                if on_segment is not None:
                    on_segment(segment, state)

            needs_more = isinstance(classified, Incomplete)
            emit_generation_event(
                "generation.call",
                label=label,
                attempt=state.attempts,
                max_output_tokens=call_tokens,
                finish_signal=response.finish_signal,
                output_tokens=response.output_tokens,
                segment_chars=len(segment),
                needs_more=needs_more,
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )
            if not needs_more:
                state.truncated = False
                state.phase = GenerationPhase.DONE
                reason = None
                break
            reason = classified.reason
            if state.attempts >= attempts_limit:
                state.truncated = True
                state.phase = GenerationPhase.TRUNCATED_AT_BUDGET

        if state.truncated:
            LOGGER.info("%s stopped at the attempt limit (%s) with reason %s", label, attempts_limit, reason)
        return GenerationResult(
            text=state.accumulated_text[base_length:],
            full_text=state.accumulated_text,
            truncated=state.truncated,
            attempts=state.attempts,
            finish_signal=state.last_finish_signal,
            status=state.last_status,
            reason=reason,
        )

    def _call(self, request: UpstreamRequest, max_output_tokens: int):
        try:
            response = self.provider.call(request.prompt, max_output_tokens, system=request.system)
        except Exception as error:
            return Failed(error=error)
        classified: CallOutcome = classify_response(response, max_output_tokens, self.config)
        if not isinstance(classified, (Completed, Incomplete)):  # pragma: no cover - closed union
            raise TypeError(f"Unexpected outcome {classified!r}")
        return response, classified


__all__ = [
    "ContinuationEngine",
    "GenerationPhase",
    "GenerationResult",
    "GenerationState",
    "RequestBuilder",
    "SegmentCallback",
    "UpstreamRequest",
]
