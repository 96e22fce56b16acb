"""Runtime configuration for retrieval, generation and ingestion."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

_ENV_PREFIX = "DOCQA_"


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _bool_from_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    flag = value.strip().lower()
    if flag in {"1", "true", "yes", "on"}:
        return True
    if flag in {"0", "false", "no", "off"}:
        return False
    LOGGER.warning("Invalid boolean for %s: %s; using default %s", name, value, default)
    return default


@dataclass(slots=True)
class RetrievalConfig:
    chunk_size: int = 2200
    chunk_overlap: int = 200
    top_k: int = 6
    max_context_chars: int = 36_000
    broad_top_k: int = 32
    broad_min_chunks: int = 12
    broad_min_chars: int = 12_000
    broad_max_context_chars: int = 36_000


@dataclass(slots=True)
class GenerationConfig:
    model: str = "gpt-5-mini"
    notes_model: str = "gpt-4o"
    max_output_tokens: int = 5000
    min_output_tokens: int = 800
    max_attempts: int = 7
    total_segment_budget: int = 24
    token_cap_margin: int = 20
    long_segment_chars: int = 1200
    tail_chars: int = 2000
    context_notes_chars: int = 12_000
    notes_max_output_tokens: int = 1000
    context_notes_enabled: bool = True
    min_text_chars: int = 300
    max_text_chars: int = 900_000

    def clamp_output_tokens(self, requested: int | None) -> int:
        """Bound a per-call output budget to ``[min_output_tokens, max_output_tokens]``."""

        value = requested if requested is not None else self.max_output_tokens
        return min(self.max_output_tokens, max(self.min_output_tokens, value))


@dataclass(slots=True)
class IngestConfig:
    sample_pages: int = 5
    min_embedded_chars: int = 800
    min_sampled_pages_with_text: int = 3
    max_extract_pages: int = 200
    max_stored_chars: int = 900_000
    preview_chars: int = 1200
    index_ttl_seconds: float = 30.0


@dataclass(slots=True)
class OcrConfig:
    concurrency: int = 2
    max_retries: int = 3
    flush_batch_size: int = 5
    backoff_base_seconds: float = 0.6
    backoff_max_seconds: float = 4.0
    jitter_seconds: float = 0.3
    page_cap: int = 15
    max_output_tokens: int = 3000
    model: str = "gpt-4o-mini"


@dataclass(slots=True)
class Settings:
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    ocr: OcrConfig = field(default_factory=OcrConfig)
    library_root: str = "data/library"
    log_dir: str = "logs"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``DOCQA_*`` environment variables."""

        p = _ENV_PREFIX
        rd, gd, idf, od = RetrievalConfig(), GenerationConfig(), IngestConfig(), OcrConfig()
        retrieval = RetrievalConfig(
            chunk_size=_int_from_env(f"{p}CHUNK_SIZE", rd.chunk_size),
            chunk_overlap=_int_from_env(f"{p}CHUNK_OVERLAP", rd.chunk_overlap),
            top_k=_int_from_env(f"{p}TOP_K", rd.top_k),
            max_context_chars=_int_from_env(f"{p}MAX_CONTEXT_CHARS", rd.max_context_chars),
            broad_top_k=_int_from_env(f"{p}BROAD_TOP_K", rd.broad_top_k),
            broad_min_chunks=_int_from_env(f"{p}BROAD_MIN_CHUNKS", rd.broad_min_chunks),
            broad_min_chars=_int_from_env(f"{p}BROAD_MIN_CHARS", rd.broad_min_chars),
            broad_max_context_chars=_int_from_env(
                f"{p}BROAD_MAX_CONTEXT_CHARS", rd.broad_max_context_chars
            ),
        )
        generation = GenerationConfig(
            model=os.getenv(f"{p}MODEL", gd.model),
            notes_model=os.getenv(f"{p}NOTES_MODEL", gd.notes_model),
            max_output_tokens=_int_from_env(f"{p}MAX_OUTPUT_TOKENS", gd.max_output_tokens),
            max_attempts=_int_from_env(f"{p}MAX_ATTEMPTS", gd.max_attempts),
            total_segment_budget=_int_from_env(
                f"{p}TOTAL_SEGMENT_BUDGET", gd.total_segment_budget
            ),
            tail_chars=_int_from_env(f"{p}TAIL_CHARS", gd.tail_chars),
            context_notes_enabled=_bool_from_env(
                f"{p}CONTEXT_NOTES", gd.context_notes_enabled
            ),
        )
        ingest = IngestConfig(
            sample_pages=_int_from_env(f"{p}SAMPLE_PAGES", idf.sample_pages),
            min_embedded_chars=_int_from_env(f"{p}MIN_EMBEDDED_CHARS", idf.min_embedded_chars),
            max_extract_pages=_int_from_env(f"{p}MAX_EXTRACT_PAGES", idf.max_extract_pages),
            index_ttl_seconds=_float_from_env(f"{p}INDEX_TTL_SECONDS", idf.index_ttl_seconds),
        )
        ocr = OcrConfig(
            concurrency=_int_from_env(f"{p}OCR_CONCURRENCY", od.concurrency),
            max_retries=_int_from_env(f"{p}OCR_MAX_RETRIES", od.max_retries),
            flush_batch_size=_int_from_env(f"{p}OCR_FLUSH_BATCH", od.flush_batch_size),
            backoff_base_seconds=_float_from_env(f"{p}OCR_BACKOFF_BASE", od.backoff_base_seconds),
            backoff_max_seconds=_float_from_env(f"{p}OCR_BACKOFF_MAX", od.backoff_max_seconds),
            jitter_seconds=_float_from_env(f"{p}OCR_JITTER", od.jitter_seconds),
            page_cap=_int_from_env(f"{p}OCR_PAGE_CAP", od.page_cap),
            model=os.getenv(f"{p}OCR_MODEL", od.model),
        )
        return cls(
            retrieval=retrieval,
            generation=generation,
            ingest=ingest,
            ocr=ocr,
            library_root=os.getenv(f"{p}LIBRARY_ROOT", "data/library"),
            log_dir=os.getenv(f"{p}LOG_DIR", "logs"),
            log_level=os.getenv(f"{p}LOG_LEVEL", "INFO"),
        )


__all__ = [
    "GenerationConfig",
    "IngestConfig",
    "OcrConfig",
    "RetrievalConfig",
    "Settings",
]
