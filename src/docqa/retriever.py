"""Lexical ranking and context selection over document chunks."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from docqa.config import RetrievalConfig
from docqa.ingest.models import DocumentChunk

LOGGER = logging.getLogger(__name__)

STOPWORDS = frozenset(
    {
        "the", "and", "a", "an", "of", "to", "in", "on", "for", "with", "at", "by", "from", "as",
        "is", "it", "this", "that", "these", "those", "be", "are", "was", "were", "or", "if",
        "then", "else", "but", "so", "than", "too", "very", "can", "could", "should", "would",
        "may", "might", "will", "just", "do", "does", "did", "not", "no", "yes", "what", "which",
        "who", "how", "why", "when", "where", "about", "into", "there", "their", "its", "all",
    }
)

MIN_TOKEN_CHARS = 3
LENGTH_BONUS_CAP = 3.0
LENGTH_BONUS_DIVISOR = 100.0
HIT_WEIGHT = 2.0

HEADER_KEYWORDS = (
    "WORKUP",
    "CAUSES",
    "ETIOLOGY",
    "ETIOLOGIES",
    "DIFFERENTIAL",
    "DIAGNOSIS",
    "TABLE",
    "ALGORITHM",
    "APPROACH",
    "SUMMARY",
    "OVERVIEW",
)

_BROAD_TRIGGERS = (
    "table of",
    "list all",
    "list the",
    "all causes",
    "all etiolog",
    "all of the",
    "compare",
    "versus",
    "vs",
    "algorithm",
    "workup",
    "approach",
    "differential",
    "overview",
    "summary",
    "outline",
    "causes",
    "etiology",
    "etiologies",
    "etiologic",
)
_TABLE_WORD_RE = re.compile(r"\btable\b")
_LIST_INTENT_RE = re.compile(
    r"\b(?:list|all|table|catalog|enumerat\w*|differential|compare|versus|vs|outline|overview|summary)\b"
)
_TABLE_INTENT_RE = re.compile(
    r"\b(?:table|tabulate|columns|make a table|create a table|put in a table|table of)\b"
)

_TOKEN_RE = re.compile(r"[^\W_]+")
_UPPERCASE_WORD_RE = re.compile(r"\b[A-Z]{3,}\b")
_ACRONYM_RE = re.compile(r"\b[A-Z]{2,5}\b")
_ALIGNED_LINE_RE = re.compile(r"\n[^\n]{0,80} {3,}[^\n]{0,80}")


def tokenize(text: str) -> set[str]:
    """Lower-cased alphanumeric words of at least three characters, minus stopwords."""

    return {
        token
        for token in _TOKEN_RE.findall((text or "").lower())
        if len(token) >= MIN_TOKEN_CHARS and token not in STOPWORDS
    }


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    chunk: DocumentChunk
    score: float


def score_chunks(query: str, chunks: Sequence[DocumentChunk]) -> List[ScoredChunk]:
    """Score every chunk against *query* and return them best first.

    Each distinct query word present in a chunk is worth ``HIT_WEIGHT``. Chunks
    with at least one hit also receive a vocabulary-size bonus capped at
    ``LENGTH_BONUS_CAP``. The sort is stable, so equal scores keep document order.
    """

    query_tokens = tokenize(query)
    if not query_tokens:
        return [ScoredChunk(chunk=chunk, score=0.0) for chunk in chunks]

    scored: List[ScoredChunk] = []
    for chunk in chunks:
        chunk_tokens = tokenize(chunk.text)
        hits = len(query_tokens & chunk_tokens)
        score = hits * HIT_WEIGHT
        if hits:
            score += min(LENGTH_BONUS_CAP, len(chunk_tokens) / LENGTH_BONUS_DIVISOR)
        scored.append(ScoredChunk(chunk=chunk, score=score))
    scored.sort(key=lambda item: (-item.score, item.chunk.index))
    return scored


def rank_chunks(query: str, chunks: Sequence[DocumentChunk], k: int) -> List[DocumentChunk]:
    """Return the top ``k`` chunks for *query*; document order when the query has no words."""

    if k <= 0 or not chunks:
        return []
    return [item.chunk for item in score_chunks(query, chunks)[:k]]


@dataclass(frozen=True, slots=True)
class QuestionIntent:
    is_broad: bool = False
    wants_table: bool = False
    list_intent: bool = False

    @property
    def mode(self) -> str:
        return "broad" if self.is_broad else "narrow"


def is_table_intent(question: str) -> bool:
    return bool(_TABLE_INTENT_RE.search((question or "").lower()))


def derive_table_headers(question: str) -> list[str]:
    """Pick table columns from the wording of a table request."""

    lower = (question or "").lower()
    if re.search(r"\bdisease", lower) and re.search(r"\bgenetic", lower):
        return ["Disease", "Defining features", "Genetic marker(s) (if relevant)"]
    if re.search(r"\bdisease", lower) and re.search(r"\bfeature", lower):
        return ["Disease", "Key features", "Notes"]
    if re.search(r"\bdrug", lower) and re.search(r"\bdose|dosing|dosage", lower):
        return ["Drug", "Indication", "Dose", "Notes"]
    return ["Item", "Details"]


def detect_intent(question: str) -> QuestionIntent:
    """Classify a question as a narrow lookup or a broad list/compare/table synthesis."""

    lower = (question or "").lower()
    return QuestionIntent(
        is_broad=any(trigger in lower for trigger in _BROAD_TRIGGERS) or bool(_TABLE_WORD_RE.search(lower)),
        wants_table=is_table_intent(question),
        list_intent=bool(_LIST_INTENT_RE.search(lower)),
    )


def is_header_chunk(text: str) -> bool:
    if not text:
        return False
    upper = text.upper()
    if any(keyword in upper for keyword in HEADER_KEYWORDS):
        return True
    return len(_UPPERCASE_WORD_RE.findall(text)) >= 6


def is_table_like_chunk(text: str) -> bool:
    if not text:
        return False
    return (
        text.count("|") >= 2
        or text.count("\t") >= 2
        or len(_ALIGNED_LINE_RE.findall(text)) >= 3
    )


def has_dense_acronyms(text: str) -> bool:
    if not text:
        return False
    return len(set(_ACRONYM_RE.findall(text))) >= 4


@dataclass(slots=True)
class RetrievalSelection:
    mode: str
    chunks: List[DocumentChunk] = field(default_factory=list)
    total_chars: int = 0

    @property
    def indices(self) -> List[int]:
        return [chunk.index for chunk in self.chunks]


class _Accumulator:
    def __init__(self, cap: int) -> None:
        self.cap = cap
        self.selected: dict[int, DocumentChunk] = {}
        self.chars = 0

    def add(self, chunk: DocumentChunk) -> None:
        if chunk.index in self.selected:
            return
        if self.chars + len(chunk.text) > self.cap:
            return
        self.selected[chunk.index] = chunk
        self.chars += len(chunk.text)

    def add_all(self, chunks: Iterable[DocumentChunk]) -> None:
        for chunk in chunks:
            self.add(chunk)


def _select_narrow(question: str, chunks: Sequence[DocumentChunk], config: RetrievalConfig) -> RetrievalSelection:
    ranked = rank_chunks(question, chunks, config.top_k)
    accumulator = _Accumulator(config.max_context_chars)
    accumulator.add_all(ranked)
    selected = list(accumulator.selected.values())
    return RetrievalSelection(mode="narrow", chunks=selected, total_chars=accumulator.chars)


def _select_broad(question: str, chunks: Sequence[DocumentChunk], config: RetrievalConfig) -> RetrievalSelection:
    broad_k = min(len(chunks), config.broad_top_k)
    accumulator = _Accumulator(config.broad_max_context_chars)

    accumulator.add_all(rank_chunks(question, chunks, broad_k))
    accumulator.add_all([chunk for chunk in chunks if is_header_chunk(chunk.text)][:broad_k])
    accumulator.add_all([chunk for chunk in chunks if is_table_like_chunk(chunk.text)][:broad_k])
    accumulator.add_all([chunk for chunk in chunks if has_dense_acronyms(chunk.text)][:broad_k])

    def _floors_met() -> bool:
        return (
            len(accumulator.selected) >= config.broad_min_chunks
            and accumulator.chars >= config.broad_min_chars
        )

    if not _floors_met() and accumulator.chars < config.broad_max_context_chars:
        for chunk in chunks:
            accumulator.add(chunk)
            if _floors_met():
                break

    ordered = sorted(accumulator.selected.values(), key=lambda chunk: chunk.index)
    return RetrievalSelection(mode="broad", chunks=ordered, total_chars=accumulator.chars)


def select_chunks(
    question: str,
    chunks: Sequence[DocumentChunk],
    intent: QuestionIntent | None = None,
    config: RetrievalConfig | None = None,
) -> RetrievalSelection:
    """Choose the context for *question*.

    Narrow selections keep relevance order; broad selections are returned in
    document order so the answer reads as a walk through the source.
    """

    config = config or RetrievalConfig()
    intent = intent or detect_intent(question)
    if not chunks:
        return RetrievalSelection(mode=intent.mode)
    if intent.is_broad:
        selection = _select_broad(question, chunks, config)
    else:
        selection = _select_narrow(question, chunks, config)
    LOGGER.debug(
        "Selected %s of %s chunks (%s mode, %s chars)",
        len(selection.chunks),
        len(chunks),
        selection.mode,
        selection.total_chars,
    )
    return selection


__all__ = [
    "QuestionIntent",
    "RetrievalSelection",
    "ScoredChunk",
    "derive_table_headers",
    "detect_intent",
    "has_dense_acronyms",
    "is_header_chunk",
    "is_table_intent",
    "is_table_like_chunk",
    "rank_chunks",
    "score_chunks",
    "select_chunks",
    "tokenize",
]
