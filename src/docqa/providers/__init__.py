"""Provider exports for LLM and OCR doubles."""
from __future__ import annotations

from .mock_llm import MockLLMProvider, RecordedCall, ScriptedLLMProvider
from .mock_ocr import MockPageOcr

__all__ = ["MockLLMProvider", "MockPageOcr", "RecordedCall", "ScriptedLLMProvider"]
