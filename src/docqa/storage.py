"""Key-value blob storage used for source documents and the extraction cache."""
from __future__ import annotations

import hashlib
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

_SEGMENT_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class BlobInfo:
    """Metadata returned by ``head`` and ``list``."""

    key: str
    etag: str | None
    size: int
    uploaded: datetime | None


@runtime_checkable
class BlobStore(Protocol):
    def get(self, key: str) -> bytes | None:
        ...

    def put(self, key: str, data: bytes | str, content_type: str = "application/octet-stream") -> BlobInfo:
        ...

    def head(self, key: str) -> BlobInfo | None:
        ...

    def list(self, prefix: str = "") -> list[BlobInfo]:
        ...


def _to_bytes(data: bytes | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def _etag_for(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class InMemoryBlobStore:
    """Thread-safe dictionary-backed store."""

    def __init__(self) -> None:
        self._objects: dict[str, tuple[bytes, BlobInfo, str]] = {}
        self._lock = threading.Lock()
        self.get_calls = 0
        self.put_calls = 0

    def get(self, key: str) -> bytes | None:
        with self._lock:
            self.get_calls += 1
            entry = self._objects.get(key)
        return entry[0] if entry else None

    def put(self, key: str, data: bytes | str, content_type: str = "application/octet-stream") -> BlobInfo:
        payload = _to_bytes(data)
        info = BlobInfo(
            key=key,
            etag=_etag_for(payload),
            size=len(payload),
            uploaded=datetime.now(timezone.utc),
        )
        with self._lock:
            self.put_calls += 1
            self._objects[key] = (payload, info, content_type)
        return info

    def head(self, key: str) -> BlobInfo | None:
        with self._lock:
            entry = self._objects.get(key)
        return entry[1] if entry else None

    def list(self, prefix: str = "") -> list[BlobInfo]:
        with self._lock:
            infos = [info for key, (_, info, _) in self._objects.items() if key.startswith(prefix)]
        return sorted(infos, key=lambda info: info.key)

    def content_type(self, key: str) -> str | None:
        with self._lock:
            entry = self._objects.get(key)
        return entry[2] if entry else None


def _sanitize_segment(segment: str) -> str:
    sanitized = _SEGMENT_SAFE_CHARS_RE.sub("_", segment)
    sanitized = sanitized.strip("_")
    if sanitized in {"", ".", ".."}:
        raise ValueError(f"Invalid key segment: {segment!r}")
    return sanitized


class LocalBlobStore:
    """Filesystem-backed store; each key maps to a file below ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        """Existing files resolve verbatim (``list`` returns raw names); new keys are sanitised."""

        segments = [segment for segment in key.split("/") if segment]
        if not segments:
            raise ValueError("Blob key must not be empty")
        if any(segment in {".", ".."} for segment in segments):
            raise ValueError(f"Invalid blob key: {key!r}")
        verbatim = self.root.joinpath(*segments)
        if verbatim.is_file():
            return verbatim
        return self.root.joinpath(*(_sanitize_segment(segment) for segment in segments))

    def _info_for(self, key: str, path: Path) -> BlobInfo:
        data = path.read_bytes()
        stats = path.stat()
        return BlobInfo(
            key=key,
            etag=_etag_for(data),
            size=stats.st_size,
            uploaded=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
        )

    def get(self, key: str) -> bytes | None:
        path = self._path_for(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def put(self, key: str, data: bytes | str, content_type: str = "application/octet-stream") -> BlobInfo:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_bytes(_to_bytes(data))
        tmp_path.replace(path)
        return self._info_for(key, path)

    def head(self, key: str) -> BlobInfo | None:
        path = self._path_for(key)
        if not path.is_file():
            return None
        return self._info_for(key, path)

    def list(self, prefix: str = "") -> list[BlobInfo]:
        infos: list[BlobInfo] = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                infos.append(self._info_for(key, path))
        return infos


__all__ = ["BlobInfo", "BlobStore", "InMemoryBlobStore", "LocalBlobStore"]
