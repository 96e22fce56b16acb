"""JSON logging for the CLI plus the ingestion audit trail."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_LOGGER_NAME = "docqa.ingest.audit"
AUDIT_LOG_FILENAME = "ingest_audit.log"

# The SDK's HTTP stack logs every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "openai")

_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class MinimalJSONFormatter(logging.Formatter):
    """One JSON object per record.

    Dict messages are merged into the top level (the audit logger and
    ``docqa.telemetry`` log dicts); anything passed through ``extra=`` is
    copied as well.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z")
        payload: dict[str, Any] = {
            "ts": stamp,
            "timestamp": stamp,
            "level": record.levelname,
            "module": record.name,
        }
        if isinstance(record.msg, dict):
            payload.update(record.msg)
        else:
            text = record.getMessage()
            if text:
                payload["message"] = text
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(
            {
                key: value
                for key, value in vars(record).items()
                if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
            }
        )
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logging_config(audit_path: Path, level: str = "INFO") -> dict[str, Any]:
    loggers: dict[str, Any] = {
        AUDIT_LOGGER_NAME: {"level": "INFO", "handlers": ["ingest_audit"], "propagate": False},
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": MinimalJSONFormatter}},
        "handlers": {
            "default": {"class": "logging.StreamHandler", "formatter": "json"},
            "ingest_audit": {
                "class": "logging.FileHandler",
                "filename": str(audit_path),
                "mode": "a",
                "encoding": "utf-8",
                "formatter": "json",
            },
        },
        "root": {"level": level.upper(), "handlers": ["default"]},
        "loggers": loggers,
    }


def configure_logging(log_dir: str | Path | None = None, level: str = "INFO") -> Path:
    """Install JSON logging; returns the audit log path under *log_dir* (default ``logs``)."""

    directory = Path(log_dir) if log_dir is not None else Path("logs")
    directory.mkdir(parents=True, exist_ok=True)
    audit_path = directory / AUDIT_LOG_FILENAME
    logging.config.dictConfig(build_logging_config(audit_path, level))
    return audit_path


__all__ = [
    "AUDIT_LOGGER_NAME",
    "MinimalJSONFormatter",
    "QUIET_LOGGERS",
    "build_logging_config",
    "configure_logging",
]
