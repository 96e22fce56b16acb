"""Self-contained continuation tokens for resuming an answer in a later request."""
from __future__ import annotations

import base64
import binascii
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docqa.errors import InvalidContinuationTokenError

from .stitching import clip_answer_tail

TOKEN_VERSION = 1


class AnswerOptions(BaseModel):
    """Retrieval and formatting choices that must survive a resume."""

    model_config = ConfigDict(strict=True, extra="forbid", alias_generator=to_camel, populate_by_name=True)

    mode: Literal["narrow", "broad"] = "narrow"
    wants_table: bool = False
    list_intent: bool = False
    table_headers: List[str] = Field(default_factory=list)


class ContinuationToken(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid", alias_generator=to_camel, populate_by_name=True)

    version: Literal[1]
    doc_id: str = Field(min_length=1)
    request_id: str
    question: str = Field(min_length=1)
    context_notes: str
    extracted_key: str = Field(min_length=1)
    options: AnswerOptions
    answer_tail: str
    segments_used: int = Field(ge=0)
    max_output_tokens: int = Field(gt=0)
    model: str
    title: Optional[str] = None


def build_token(
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
    title: str | None = None,
    tail_chars: int = 2000,
    notes_chars: int = 12_000,
) -> ContinuationToken:
    """Assemble a token, clipping the answer tail and notes to bounded sizes."""

    return ContinuationToken(
        version=TOKEN_VERSION,
        doc_id=doc_id,
        request_id=request_id,
        question=question,
        context_notes=(context_notes or "")[:notes_chars],
        extracted_key=extracted_key,
        options=options,
        answer_tail=clip_answer_tail(answer, tail_chars),
        segments_used=segments_used,
        max_output_tokens=max_output_tokens,
        model=model,
        title=title,
    )


def encode_token(token: ContinuationToken) -> str:
    payload = token.model_dump_json(by_alias=True, exclude_none=True)
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_token(raw: str) -> ContinuationToken:
    """Decode and validate a token; anything malformed raises ``InvalidContinuationTokenError``."""

    if not isinstance(raw, str) or not raw.strip():
        raise InvalidContinuationTokenError("Continuation token is missing.")
    value = raw.strip()
    padded = value + "=" * (-len(value) % 4)
    try:
        data = base64.urlsafe_b64decode(padded.encode("ascii"))
        return ContinuationToken.model_validate_json(data)
    except (binascii.Error, UnicodeEncodeError, ValueError) as error:
        raise InvalidContinuationTokenError("Continuation token is invalid.", cause=error) from error


__all__ = [
    "AnswerOptions",
    "ContinuationToken",
    "TOKEN_VERSION",
    "build_token",
    "decode_token",
    "encode_token",
]
