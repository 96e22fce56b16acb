"""Utilities for constructing answer, notes and continuation prompts."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Sequence

from docqa.generation.stitching import clip_answer_tail
from docqa.generation.token import AnswerOptions
from docqa.ingest.models import DocumentChunk

_PROMPT_DIR = Path(__file__).resolve().parent / "prompts"


def _load_template(name: str) -> str:
    """Read a template and join its lines into one instruction paragraph."""
    text = (_PROMPT_DIR / name).read_text(encoding="utf-8")
    return " ".join(line.strip() for line in text.splitlines() if line.strip())


SYSTEM_PROMPT = _load_template("system.txt")
NOTES_SYSTEM_PROMPT = _load_template("notes_system.txt")
CONTINUATION_INSTRUCTION = _load_template("continuation.txt")

_CHUNK_ID_LINE_RE = re.compile(r"^c\d+:", re.IGNORECASE)
_SHORT_TOKEN_LINE_RE = re.compile(r"^[A-Za-z]{1,3}$")
_WATERMARK_LINE_RE = re.compile(r"^kcu[-\s]?com", re.IGNORECASE)
_SHOUTED_NAME_RE = re.compile(r"^dr\.", re.IGNORECASE)
_PAGE_MARKER_LINE_RE = re.compile(r"^---\s*page\s*\d+\s*---", re.IGNORECASE)


def clean_chunk_text(text: str) -> str:
    """Drop chunk ids, stray letters, watermarks and page markers from an excerpt."""

    cleaned: List[str] = []
    for line in re.split(r"\r?\n", text or ""):
        trimmed = line.strip()
        if not trimmed:
            cleaned.append("")
            continue
        if _CHUNK_ID_LINE_RE.match(trimmed) or _SHORT_TOKEN_LINE_RE.match(trimmed):
            continue
        if _WATERMARK_LINE_RE.match(trimmed) or _PAGE_MARKER_LINE_RE.match(trimmed):
            continue
        if _SHOUTED_NAME_RE.match(trimmed) and trimmed == trimmed.upper():
            continue
        cleaned.append(line)
    result = "\n".join(cleaned).strip()
    return result or text


def build_system_prompt(options: AnswerOptions) -> str:
    parts = [SYSTEM_PROMPT]
    if options.mode == "broad":
        parts.append(
            "For broad synthesis tasks, compile a comprehensive list across the whole document rather than "
            "a narrow sample, but keep the narrative flow."
        )
    if options.list_intent:
        parts.append(
            "The question asks to list or categorize entities. Use a short summary followed by grouped bullets. "
            "Note when a detail is not specified in the document and do not force headings that do not fit."
        )
    if options.wants_table and options.table_headers:
        parts.append(
            f"Output ONLY one Markdown table (pipe syntax, no code fences). Columns: {' | '.join(options.table_headers)}. "
            "Do not include any extra text before or after the table. If a value is missing, write 'Not stated'."
        )
    return " ".join(parts)


def format_sections(chunks: Iterable[DocumentChunk]) -> str:
    return "\n\n".join(f"[Section {chunk.index + 1}]\n{clean_chunk_text(chunk.text)}" for chunk in chunks)


def build_context_block(chunks: Sequence[DocumentChunk]) -> str:
    ordered = sorted(chunks, key=lambda chunk: chunk.index)
    return f"Document excerpts (reference only; do not quote verbatim unless asked):\n{format_sections(ordered)}"


def build_compact_body(chunks: Sequence[DocumentChunk], limit: int) -> str:
    return format_sections(chunks)[:limit]


def build_notes_prompt(question: str, compact_body: str) -> str:
    return "\n\n".join(
        [
            f"Document excerpts (trimmed):\n{compact_body}",
            f"Question: {question}",
            "Return only the condensed notes (bullet list or short paragraphs). Do not add prefaces.",
        ]
    )


def build_answer_prompt(
    question: str,
    context_block: str,
    *,
    accumulated_text: str = "",
    continuation: bool = False,
    context_notes: str = "",
    tail_chars: int = 2000,
) -> str:
    """Compose the user prompt for one upstream attempt.

    Continuation attempts also carry the internal context notes, a bounded
    tail of the answer so far and the instruction to resume without repeating.
    """

    if question is None:
        raise ValueError("question must not be None")

    context = context_block
    if continuation:
        notes = context_notes.strip() or "None"
        context = f"{context_block}\n\n(Internal context notes; do not quote or mimic):\n{notes}"
    parts = [context, f"Question:\n{question.strip()}"]
    if continuation and accumulated_text:
        parts.append(f"Partial answer so far:\n{clip_answer_tail(accumulated_text, tail_chars)}")
    if continuation:
        parts.append(CONTINUATION_INSTRUCTION)
    return "\n\n".join(parts).strip()


__all__ = [
    "CONTINUATION_INSTRUCTION",
    "NOTES_SYSTEM_PROMPT",
    "SYSTEM_PROMPT",
    "build_answer_prompt",
    "build_compact_body",
    "build_context_block",
    "build_notes_prompt",
    "build_system_prompt",
    "clean_chunk_text",
    "format_sections",
]
