from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, APIStatusError

from docqa.errors import LLMGenerationError, TransientUpstreamError
from docqa.llm.openai_provider import (
    OpenAILLMProvider,
    OpenAIPageOcr,
    response_to_llm,
    translate_openai_error,
)

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/responses")


def _status_error(status: int) -> APIStatusError:
    return APIStatusError(f"status {status}", response=httpx.Response(status, request=_REQUEST), body=None)


def _response(text="Answer.", status="completed", reason=None, output_tokens=42, output=None):
    return SimpleNamespace(
        output_text=text,
        output=output or [],
        status=status,
        incomplete_details=SimpleNamespace(reason=reason) if reason else None,
        usage=SimpleNamespace(output_tokens=output_tokens),
        error=None,
    )


class FakeResponses:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _provider(responses: FakeResponses, sleeps: list, **kwargs) -> OpenAILLMProvider:
    client = SimpleNamespace(responses=responses)
    return OpenAILLMProvider("gpt-test", client=client, sleep=sleeps.append, **kwargs)


def test_call_maps_response_fields():
    responses = FakeResponses(_response())

    result = _provider(responses, []).call("Question?", 900, system="Be brief.")

    assert result.text == "Answer."
    assert result.status == "completed"
    assert result.output_tokens == 42
    assert result.finish_signal is None
    assert responses.calls == [
        {"model": "gpt-test", "input": "Question?", "max_output_tokens": 900, "instructions": "Be brief."}
    ]


def test_incomplete_response_reports_reason():
    result = response_to_llm(_response(text="Partial", status="incomplete", reason="max_output_tokens"))

    assert result.status == "incomplete"
    assert result.finish_signal == "max_output_tokens"
    assert result.incomplete_reason == "max_output_tokens"


def test_output_items_are_joined_when_output_text_is_empty():
    output = [SimpleNamespace(content=[SimpleNamespace(text="first "), SimpleNamespace(text="second")])]

    assert response_to_llm(_response(text="", output=output)).text == "first second"


def test_failed_status_raises():
    failed = _response(status="failed")
    failed.error = SimpleNamespace(message="model overloaded")

    with pytest.raises(LLMGenerationError, match="model overloaded"):
        response_to_llm(failed)


def test_transient_errors_are_retried():
    sleeps: list = []
    responses = FakeResponses(_status_error(503), _response(text="Recovered."))

    result = _provider(responses, sleeps).call("Question?", 900)

    assert result.text == "Recovered."
    assert len(responses.calls) == 2
    assert len(sleeps) == 1
    assert "instructions" not in responses.calls[0]


def test_retries_stop_after_max_attempts():
    sleeps: list = []
    responses = FakeResponses(_status_error(429))

    with pytest.raises(TransientUpstreamError) as excinfo:
        _provider(responses, sleeps, max_attempts=2).call("Question?", 900)

    assert excinfo.value.upstream_status == 429
    assert len(responses.calls) == 2


def test_client_errors_are_not_retried():
    responses = FakeResponses(_status_error(400))

    with pytest.raises(LLMGenerationError):
        _provider(responses, []).call("Question?", 900)

    assert len(responses.calls) == 1


def test_translate_openai_error_handles_connection_errors():
    translated = translate_openai_error(APIConnectionError(request=_REQUEST))

    assert isinstance(translated, TransientUpstreamError)
    assert translate_openai_error(KeyError("x")).__class__ is KeyError


def test_missing_api_key_is_rejected(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        OpenAILLMProvider("gpt-test")


def test_page_ocr_sends_image_as_data_url():
    responses = FakeResponses(_response(text="  Scanned page text  "))
    ocr = OpenAIPageOcr("gpt-vision", client=SimpleNamespace(responses=responses), max_output_tokens=1500)

    text = ocr.ocr_page(b"\xff\xd8jpeg-bytes")

    assert text == "Scanned page text"
    [call] = responses.calls
    assert call["model"] == "gpt-vision"
    assert call["max_output_tokens"] == 1500
    image_part = call["input"][0]["content"][1]
    assert image_part["image_url"].startswith("data:image/jpeg;base64,")


def test_page_ocr_translates_status_errors():
    responses = FakeResponses(_status_error(502))
    ocr = OpenAIPageOcr(client=SimpleNamespace(responses=responses))

    with pytest.raises(TransientUpstreamError):
        ocr.ocr_page(b"png")
