"""OpenAI Responses API adapters for answer generation and page OCR."""
from __future__ import annotations

import base64
import logging
import os
import time
from typing import Any, Callable, Optional

from openai import APIConnectionError, APIStatusError, OpenAI
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

from docqa.errors import LLMGenerationError, TransientUpstreamError, is_transient_error

from .base import LLMResponse

LOGGER = logging.getLogger(__name__)

OCR_PROMPT = (
    "You are an OCR service. Transcribe every readable character from the page image. "
    "Return plain text only."
)


def _build_client(client: Any | None, api_key: str | None) -> Any:
    if client is not None:
        return client
    key = api_key or os.environ.get("OPENAI_API_KEY")
    if not key:
        raise ValueError("OpenAI API key required. Set OPENAI_API_KEY or pass api_key.")
    # Retries are handled here with tenacity so the SDK must not retry as well.
    return OpenAI(api_key=key, max_retries=0)


def translate_openai_error(error: Exception) -> Exception:
    """Map SDK exceptions onto the transient/permanent split used by the retry policy."""

    if isinstance(error, APIStatusError):
        if is_transient_error(error):
            return TransientUpstreamError(
                f"OpenAI returned {error.status_code}", upstream_status=error.status_code, cause=error
            )
        return LLMGenerationError(f"OpenAI request failed ({error.status_code}): {error.message}", cause=error)
    if isinstance(error, APIConnectionError):
        return TransientUpstreamError(f"OpenAI connection failed: {error}", cause=error)
    return error


def _output_text(response: Any) -> str:
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text
    parts: list[str] = []
    for item in getattr(response, "output", None) or []:
        for content in getattr(item, "content", None) or []:
            value = getattr(content, "text", None)
            if isinstance(value, str) and value:
                parts.append(value)
    return "".join(parts)


def response_to_llm(response: Any) -> LLMResponse:
    """Flatten a Responses API object into :class:`LLMResponse`."""

    status = getattr(response, "status", None)
    if status == "failed":
        error = getattr(response, "error", None)
        message = getattr(error, "message", None) or "OpenAI response failed."
        raise LLMGenerationError(message)
    details = getattr(response, "incomplete_details", None)
    reason = getattr(details, "reason", None) if details is not None else None
    usage = getattr(response, "usage", None)
    output_tokens = getattr(usage, "output_tokens", None) if usage is not None else None
    return LLMResponse(
        text=_output_text(response).strip(),
        finish_signal=reason,
        status=status,
        output_tokens=output_tokens if isinstance(output_tokens, int) else None,
        incomplete_reason=reason,
    )


class _RetryingCaller:
    def __init__(
        self,
        max_attempts: int,
        backoff_base_seconds: float,
        backoff_max_seconds: float,
        jitter_seconds: float,
        sleep: Callable[[float], None],
    ) -> None:
        self._retrying = Retrying(
            retry=retry_if_exception(is_transient_error),
            stop=stop_after_attempt(max(1, max_attempts)),
            wait=wait_exponential(multiplier=backoff_base_seconds, max=backoff_max_seconds)
            + wait_random(0, jitter_seconds),
            sleep=sleep,
            before_sleep=lambda state: LOGGER.warning(
                "Retrying OpenAI call (attempt %s): %s",
                state.attempt_number,
                state.outcome.exception() if state.outcome else None,
            ),
            reraise=True,
        )

    def __call__(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self._retrying(fn, *args, **kwargs)


class OpenAILLMProvider:
    """Text generation through ``client.responses.create``.

    Transient failures (429, 5xx, connection errors) are retried with capped
    exponential backoff; anything else surfaces as :class:`LLMGenerationError`.
    """

    def __init__(
        self,
        model: str = "gpt-5-mini",
        *,
        client: Any | None = None,
        api_key: str | None = None,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 4.0,
        jitter_seconds: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.model = model
        self.client = _build_client(client, api_key)
        self._caller = _RetryingCaller(max_attempts, backoff_base_seconds, backoff_max_seconds, jitter_seconds, sleep)

    def _create(self, prompt: str, max_output_tokens: int, system: Optional[str]) -> Any:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": prompt,
            "max_output_tokens": max_output_tokens,
        }
        if system:
            kwargs["instructions"] = system
        try:
            return self.client.responses.create(**kwargs)
        except (APIStatusError, APIConnectionError) as error:
            raise translate_openai_error(error) from error

    def call(self, prompt: str, max_output_tokens: int, *, system: str | None = None) -> LLMResponse:
        response = self._caller(self._create, prompt, max_output_tokens, system)
        result = response_to_llm(response)
        LOGGER.debug(
            "OpenAI response status=%s finish=%s output_tokens=%s chars=%s",
            result.status,
            result.finish_signal,
            result.output_tokens,
            len(result.text),
        )
        return result


def _image_media_type(image_bytes: bytes) -> str:
    if image_bytes.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if image_bytes.startswith(b"RIFF") and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


class OpenAIPageOcr:
    """Vision OCR for one page image. No retries here; the batch runner owns them."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        client: Any | None = None,
        api_key: str | None = None,
        max_output_tokens: int = 3000,
        prompt: str = OCR_PROMPT,
    ) -> None:
        self.model = model
        self.client = _build_client(client, api_key)
        self.max_output_tokens = max_output_tokens
        self.prompt = prompt

    def ocr_page(self, image_bytes: bytes) -> str:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        data_url = f"data:{_image_media_type(image_bytes)};base64,{encoded}"
        try:
            response = self.client.responses.create(
                model=self.model,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": self.prompt},
                            {"type": "input_image", "image_url": data_url, "detail": "high"},
                        ],
                    }
                ],
                max_output_tokens=self.max_output_tokens,
            )
        except (APIStatusError, APIConnectionError) as error:
            raise translate_openai_error(error) from error
        return response_to_llm(response).text


__all__ = [
    "OCR_PROMPT",
    "OpenAILLMProvider",
    "OpenAIPageOcr",
    "response_to_llm",
    "translate_openai_error",
]
