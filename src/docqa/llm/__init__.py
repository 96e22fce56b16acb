"""LLM collaborator contract and the OpenAI adapters."""
from __future__ import annotations

from .base import CallOutcome, Completed, Failed, Incomplete, LLMProvider, LLMResponse

__all__ = ["CallOutcome", "Completed", "Failed", "Incomplete", "LLMProvider", "LLMResponse"]
