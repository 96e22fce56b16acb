"""LLM collaborator contract and the result types the engine reasons about."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Union, runtime_checkable


@dataclass(slots=True)
class LLMResponse:
    """One upstream call's output plus the metadata used to detect truncation."""

    text: str
    finish_signal: Optional[str] = None
    status: Optional[str] = None
    output_tokens: Optional[int] = None
    incomplete_reason: Optional[str] = None


@runtime_checkable
class LLMProvider(Protocol):
    """Maps a prompt and an output-token ceiling to a text segment."""

    def call(self, prompt: str, max_output_tokens: int, *, system: str | None = None) -> LLMResponse:
        ...


@dataclass(frozen=True, slots=True)
class Completed:
    text: str
    finish_signal: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Incomplete:
    text: str
    reason: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: BaseException


CallOutcome = Union[Completed, Incomplete, Failed]


__all__ = [
    "CallOutcome",
    "Completed",
    "Failed",
    "Incomplete",
    "LLMProvider",
    "LLMResponse",
]
