"""Deterministic LLM providers for tests and offline runs."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from docqa.llm.base import LLMResponse


class MockLLMProvider:
    """Return a deterministic, always-complete response for any prompt."""

    def call(self, prompt: str, max_output_tokens: int, *, system: str | None = None) -> LLMResponse:
        del max_output_tokens, system  # Unused in the mock implementation.
        return LLMResponse(text=f"MOCK_ANSWER: {prompt[:100]}", finish_signal="stop", status="completed")


@dataclass(slots=True)
class RecordedCall:
    prompt: str
    max_output_tokens: int
    system: Optional[str]


@dataclass
class ScriptedLLMProvider:
    """Replays queued responses in order and records every call.

    A queued exception is raised instead of returned. When the script runs out
    the last response is repeated.
    """

    script: List[Union[LLMResponse, BaseException]] = field(default_factory=list)
    calls: List[RecordedCall] = field(default_factory=list)

    @classmethod
    def of(cls, *items: Union[LLMResponse, BaseException, str]) -> "ScriptedLLMProvider":
        script: List[Union[LLMResponse, BaseException]] = []
        for item in items:
            if isinstance(item, str):
                item = LLMResponse(text=item, finish_signal="stop", status="completed")
            script.append(item)
        return cls(script=script)

    def extend(self, items: Iterable[Union[LLMResponse, BaseException]]) -> None:
        self.script.extend(items)

    def call(self, prompt: str, max_output_tokens: int, *, system: str | None = None) -> LLMResponse:
        self.calls.append(RecordedCall(prompt=prompt, max_output_tokens=max_output_tokens, system=system))
        if not self.script:
            raise AssertionError("ScriptedLLMProvider has no responses queued")
        index = min(len(self.calls), len(self.script)) - 1
        item = self.script[index]
        if isinstance(item, BaseException):
            raise item
        return item
