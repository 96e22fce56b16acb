import pytest

from docqa.config import GenerationConfig
from docqa.errors import GenerationFailedError, TransientUpstreamError
from docqa.generation.engine import ContinuationEngine, GenerationPhase, UpstreamRequest
from docqa.generation.stitching import CONTINUATION_PREFIX
from docqa.llm.base import LLMResponse
from docqa.providers.mock_llm import ScriptedLLMProvider

TRUNCATED = LLMResponse(text="Part one of the answer,", finish_signal="length", status="incomplete")
FINISHED = LLMResponse(text="part two.", finish_signal="stop", status="completed", output_tokens=40)


def _builder(attempt: int, accumulated: str) -> UpstreamRequest:
    return UpstreamRequest(prompt=f"attempt {attempt} after {len(accumulated)} chars", system="sys")


def test_generate_continues_until_complete():
    provider = ScriptedLLMProvider.of(TRUNCATED, FINISHED)
    seen = []

    result = ContinuationEngine(provider).generate(
        _builder, on_segment=lambda segment, state: seen.append((segment, state.phase))
    )

    assert not result.truncated
    assert result.attempts == 2
    assert result.full_text == f"Part one of the answer, {CONTINUATION_PREFIX}\npart two."
    assert result.text == result.full_text
    assert result.finish_signal == "stop"
    assert result.reason is None
    assert [call.prompt for call in provider.calls] == ["attempt 1 after 0 chars", "attempt 2 after 23 chars"]
    assert all(call.system == "sys" for call in provider.calls)
    assert [phase for _, phase in seen] == [GenerationPhase.SEGMENT_RECEIVED] * 2


def test_generate_stops_at_attempt_budget():
    provider = ScriptedLLMProvider.of(TRUNCATED)

    result = ContinuationEngine(provider).generate(_builder, max_attempts=3)

    assert result.truncated
    assert result.attempts == 3
    assert result.reason == "length"
    assert len(provider.calls) == 3
    assert result.full_text.startswith("Part one of the answer,")


def test_initial_text_is_excluded_from_segment_text():
    provider = ScriptedLLMProvider.of(FINISHED)

    result = ContinuationEngine(provider).generate(_builder, initial_text="Earlier answer,")

    assert result.full_text == f"Earlier answer, {CONTINUATION_PREFIX}\npart two."
    assert result.text == f" {CONTINUATION_PREFIX}\npart two."
    assert provider.calls[0].prompt == "attempt 1 after 15 chars"


def test_upstream_failure_keeps_partial_text():
    provider = ScriptedLLMProvider.of(TRUNCATED, TransientUpstreamError("busy", upstream_status=503))

    with pytest.raises(GenerationFailedError) as excinfo:
        ContinuationEngine(provider).generate(_builder, label="ask-test")

    partial = excinfo.value.partial
    assert partial.truncated
    assert partial.attempts == 2
    assert partial.full_text == "Part one of the answer,"
    assert partial.reason == "upstream_error"
    assert isinstance(excinfo.value.__cause__, TransientUpstreamError)


def test_output_tokens_are_clamped_to_configured_bounds():
    provider = ScriptedLLMProvider.of(FINISHED)
    engine = ContinuationEngine(provider, GenerationConfig(max_output_tokens=5000, min_output_tokens=800))

    engine.generate(_builder, max_output_tokens=100)
    engine.generate(_builder, max_output_tokens=90_000)
    engine.generate(lambda attempt, text: UpstreamRequest(prompt="p", max_output_tokens=1200))

    assert [call.max_output_tokens for call in provider.calls] == [800, 5000, 1200]


def test_repeated_heading_is_not_duplicated_across_segments():
    provider = ScriptedLLMProvider.of(
        LLMResponse(text="## Causes\n- ischemia\n- infarction,", finish_signal="length"),
        LLMResponse(text="## Causes\n- valvular disease.", status="completed"),
    )

    result = ContinuationEngine(provider).generate(_builder)

    assert result.full_text.count("## Causes") == 1
    assert result.full_text.count(CONTINUATION_PREFIX) == 1
    assert result.full_text.endswith("- valvular disease.")
    assert not result.truncated
