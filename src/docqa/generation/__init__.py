"""Resumable answer generation."""
from .engine import ContinuationEngine, GenerationPhase, GenerationResult, GenerationState, UpstreamRequest
from .stitching import TRUNCATION_NOTICE, append_truncation_notice, clip_answer_tail, combine_segments
from .token import AnswerOptions, ContinuationToken, build_token, decode_token, encode_token
from .truncation import classify_response, looks_truncated, needs_continuation

__all__ = [
    "AnswerOptions",
    "ContinuationEngine",
    "ContinuationToken",
    "GenerationPhase",
    "GenerationResult",
    "GenerationState",
    "TRUNCATION_NOTICE",
    "UpstreamRequest",
    "append_truncation_notice",
    "build_token",
    "classify_response",
    "clip_answer_tail",
    "combine_segments",
    "decode_token",
    "encode_token",
    "looks_truncated",
    "needs_continuation",
]
