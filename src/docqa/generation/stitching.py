"""Joining answer segments without repeated headings or glued words."""
from __future__ import annotations

import re
from typing import Iterable, Optional, Tuple

TRUNCATION_NOTICE = "(Response truncated due to server time limits -- click 'Continue' to fetch the rest.)"
CONTINUATION_PREFIX = "(Continuing…)"

_MD_HEADING_PREFIX_RE = re.compile(r"^#{1,6}\s*")
_BULLET_PREFIX_RE = re.compile(r"^[-*•]\s*")
_TRAILING_PUNCT_RE = re.compile(r"[:.]+$")
_MD_HEADING_RE = re.compile(r"^#{1,6}\s+\S")
_BOLD_HEADING_RE = re.compile(r"^\*\*[A-Za-z0-9].*\*\*:?$")
_TITLE_HEADING_RE = re.compile(r"^[A-Z][A-Za-z0-9 ()./'-]{1,80}:?$")
_CONTINUING_RE = re.compile(r"^\(continuing", re.IGNORECASE)
_ENDS_NEWLINE_RE = re.compile(r"\n\s*$")
_ENDS_SENTENCE_RE = re.compile(r"[.!?]$")
_LINE_SPLIT_RE = re.compile(r"\r?\n")

_TRAILING_HEADING_WINDOW = 8


def normalize_heading(line: str) -> str:
    text = _MD_HEADING_PREFIX_RE.sub("", line)
    text = _BULLET_PREFIX_RE.sub("", text)
    text = text.replace("**", "")
    text = _TRAILING_PUNCT_RE.sub("", text)
    return text.strip().lower()


def is_likely_heading(line: str) -> bool:
    trimmed = line.strip()
    if not trimmed:
        return False
    if _MD_HEADING_RE.match(trimmed) or _BOLD_HEADING_RE.match(trimmed):
        return True
    if _TITLE_HEADING_RE.match(trimmed) and not _BULLET_PREFIX_RE.match(trimmed):
        return len(trimmed.split()) <= 10
    return False


def find_trailing_heading(text: str) -> Optional[str]:
    """Normalised form of the last heading among the final lines of *text*."""

    lines = _LINE_SPLIT_RE.split(text or "")[-_TRAILING_HEADING_WINDOW:]
    for line in reversed(lines):
        if is_likely_heading(line):
            return normalize_heading(line)
    return None


def strip_duplicate_leading_headings(segment: str, prior: str) -> str:
    prior_heading = find_trailing_heading(prior)
    lines = _LINE_SPLIT_RE.split(segment or "")
    while lines and is_likely_heading(lines[0]) and prior_heading and normalize_heading(lines[0]) == prior_heading:
        lines.pop(0)
    while lines and not lines[0].strip():
        lines.pop(0)
    return "\n".join(lines)


def prepare_continuation_segment(segment: str, prior: str, already_prefixed: bool) -> Tuple[str, bool]:
    """Drop repeated headings and mark the first continuation once.

    Returns the cleaned segment and whether the prefix has now been emitted.
    """

    cleaned = strip_duplicate_leading_headings(segment, prior)
    prefixed = already_prefixed
    if cleaned.strip():
        has_prefix = bool(_CONTINUING_RE.match(cleaned.lstrip()))
        if not prefixed and not has_prefix:
            cleaned = f"{CONTINUATION_PREFIX}\n{cleaned.lstrip()}"
            prefixed = True
    return cleaned, prefixed


def combine_segments(segments: Iterable[str]) -> str:
    combined = ""
    for segment in segments:
        if not segment:
            continue
        if not combined:
            combined = segment
            continue
        needs_space = not (
            combined.endswith("\n")
            or combined.endswith(" ")
            or segment.startswith("\n")
            or segment.startswith(" ")
        )
        combined = f"{combined}{' ' if needs_space else ''}{segment}"
    return combined


def clip_answer_tail(answer: str, limit: int = 2000) -> str:
    trimmed = (answer or "").strip()
    if len(trimmed) <= limit:
        return trimmed
    return trimmed[-limit:] if limit > 0 else ""


def append_truncation_notice(answer: str) -> str:
    trimmed = (answer or "").strip()
    if not trimmed:
        return TRUNCATION_NOTICE
    if TRUNCATION_NOTICE in trimmed:
        return trimmed
    if _ENDS_NEWLINE_RE.search(trimmed):
        separator = ""
    elif _ENDS_SENTENCE_RE.search(trimmed):
        separator = " "
    else:
        separator = "\n\n"
    return f"{trimmed}{separator}{TRUNCATION_NOTICE}"


__all__ = [
    "CONTINUATION_PREFIX",
    "TRUNCATION_NOTICE",
    "append_truncation_notice",
    "clip_answer_tail",
    "combine_segments",
    "find_trailing_heading",
    "is_likely_heading",
    "normalize_heading",
    "prepare_continuation_segment",
    "strip_duplicate_leading_headings",
]
