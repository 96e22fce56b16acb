"""Language tagging for cached documents."""
from __future__ import annotations

import logging
import re
from typing import Optional

from langdetect import DetectorFactory, LangDetectException, detect

LOGGER = logging.getLogger(__name__)
DetectorFactory.seed = 0

_PAGE_MARKER_RE = re.compile(r"---\s*page\s*\d+\s*---", re.IGNORECASE)


class LanguageDetector:
    """Detects the dominant language from a bounded sample of document text."""

    def __init__(self, sample_chars: int = 5000, min_chars: int = 40) -> None:
        self.sample_chars = sample_chars
        self.min_chars = min_chars

    def detect(self, text: str) -> Optional[str]:
        sample = _PAGE_MARKER_RE.sub(" ", text[: self.sample_chars]).strip()
        if len(sample) < self.min_chars:
            return None
        try:
            language = detect(sample)
        except LangDetectException:
            LOGGER.info("Unable to determine language for sample of length %s", len(sample))
            return None
        LOGGER.debug("Detected language: %s", language)
        return language
