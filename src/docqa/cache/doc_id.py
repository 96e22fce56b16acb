"""Content-addressed document identity and cache key layout."""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List

from docqa.ingest.normalization import normalize_text

EXTRACTED_PREFIX = "extracted/"
MANIFEST_PREFIX = "manifests/"
INDEX_PREFIX = "index/"
LIBRARY_INDEX_KEY = "library/index.jsonl"
INDEX_PREVIEW_CHARS = 280

_UNSAFE_ID_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_EXTENSION_RE = re.compile(r"\.[^.]+$")
_TITLE_SEPARATORS_RE = re.compile(r"[_\-]+")
_TITLE_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class DocIdResult:
    doc_id: str
    basis: str
    fields_used: List[str]
    uploaded: str


def format_uploaded(uploaded: datetime | str | None) -> str:
    """Render an upload timestamp as an ISO-8601 UTC string (empty when unknown)."""

    if uploaded is None:
        return ""
    if isinstance(uploaded, datetime):
        if uploaded.tzinfo is None:
            uploaded = uploaded.replace(tzinfo=timezone.utc)
        value = uploaded.astimezone(timezone.utc).isoformat(timespec="milliseconds")
        return value.replace("+00:00", "Z")
    return str(uploaded)


def compute_doc_id(
    bucket: str,
    key: str,
    *,
    etag: str | None = None,
    size: int | None = None,
    uploaded: datetime | str | None = None,
) -> DocIdResult:
    """Hash ``bucket:key:etag:size:uploaded`` into a stable SHA-256 document id.

    The etag identifies content when present; otherwise size and upload time
    stand in for it. ``fields_used`` records which of the two applied.
    """

    uploaded_text = format_uploaded(uploaded)
    size_text = "" if size is None else str(size)
    basis = ":".join([bucket, key, etag or "", size_text, uploaded_text])
    fields_used = ["etag"] if etag else ["size", "uploaded"]
    doc_id = hashlib.sha256(basis.encode("utf-8")).hexdigest()
    return DocIdResult(doc_id=doc_id, basis=basis, fields_used=fields_used, uploaded=uploaded_text)


def _safe_id(doc_id: str) -> str:
    return _UNSAFE_ID_RE.sub("", doc_id or "") or "file"


def build_extracted_key(doc_id: str) -> str:
    return f"{EXTRACTED_PREFIX}{_safe_id(doc_id)}.txt"


def build_manifest_key(doc_id: str) -> str:
    return f"{MANIFEST_PREFIX}{_safe_id(doc_id)}.json"


def build_index_key(doc_id: str) -> str:
    return f"{INDEX_PREFIX}{_safe_id(doc_id)}.json"


def title_from_key(key: str) -> str:
    """Human readable title: the key's leaf without extension, separators as spaces."""

    leaf = key.split("/")[-1] or key
    without_ext = _EXTENSION_RE.sub("", leaf)
    title = _TITLE_SEPARATORS_RE.sub(" ", without_ext).strip()
    return title or leaf or key


def tokens_from_title(title: str) -> List[str]:
    """Deduplicated lower-case search tokens, first occurrence order."""

    tokens: List[str] = []
    for token in _TITLE_TOKEN_SPLIT_RE.split((title or "").lower()):
        if len(token) > 1 and token not in tokens:
            tokens.append(token)
    return tokens


def is_pdf_key(key: str) -> bool:
    return (key or "").lower().endswith(".pdf")


def normalize_preview(text: str | None) -> str:
    if not text:
        return ""
    return normalize_text(text)[:INDEX_PREVIEW_CHARS]


__all__ = [
    "DocIdResult",
    "LIBRARY_INDEX_KEY",
    "build_extracted_key",
    "build_index_key",
    "build_manifest_key",
    "compute_doc_id",
    "format_uploaded",
    "is_pdf_key",
    "normalize_preview",
    "title_from_key",
    "tokens_from_title",
]
