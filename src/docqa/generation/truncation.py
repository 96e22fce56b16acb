"""Deciding whether an upstream segment stopped early."""
from __future__ import annotations

import re

from docqa.config import GenerationConfig
from docqa.llm.base import CallOutcome, Completed, Incomplete, LLMResponse

_TERMINAL_RE = re.compile(r"[.!?…)]$")
_DANGLING_RE = re.compile(r"[,;:/-]\s*$")
_LENGTH_SIGNALS = frozenset({"length", "max_tokens"})
_TERMINAL_STATUSES = frozenset({"completed", "finished"})


def looks_truncated(text: str) -> bool:
    """Heuristic for text that ends mid-thought."""

    trimmed = (text or "").strip()
    if not trimmed:
        return False
    if trimmed.endswith("</table>"):
        return False
    if _TERMINAL_RE.search(trimmed):
        return False
    last_line = trimmed.splitlines()[-1].strip()
    if _DANGLING_RE.search(last_line):
        return True
    return len(trimmed) > 500 and not _TERMINAL_RE.search(last_line)


def needs_continuation(
    response: LLMResponse,
    max_output_tokens: int,
    segment_text: str,
    config: GenerationConfig | None = None,
) -> bool:
    """Return ``True`` when another call is needed to finish the answer.

    Upstream metadata decides first: a length finish signal, an incomplete
    reason mentioning max/length, a non-terminal status, or an output-token
    count within ``token_cap_margin`` of the ceiling. Only when the upstream
    reported neither a finish signal nor a status does the text's shape count.
    """

    config = config or GenerationConfig()
    finish = (response.finish_signal or "").lower()
    incomplete = (response.incomplete_reason or "").lower()
    if finish in _LENGTH_SIGNALS:
        return True
    if "max" in incomplete or "length" in incomplete:
        return True
    if response.status and response.status.lower() not in _TERMINAL_STATUSES:
        return True
    near_cap = (
        response.output_tokens is not None
        and response.output_tokens >= max_output_tokens - config.token_cap_margin
    )
    if near_cap:
        return True
    if finish or response.status:
        return False
    return looks_truncated(segment_text) and len(segment_text) >= config.long_segment_chars


def classify_response(
    response: LLMResponse,
    max_output_tokens: int,
    config: GenerationConfig | None = None,
) -> CallOutcome:
    """Fold an upstream response into ``Completed`` or ``Incomplete``."""

    text = (response.text or "").strip()
    if not needs_continuation(response, max_output_tokens, text, config):
        return Completed(text=text, finish_signal=response.finish_signal)
    config = config or GenerationConfig()
    status = (response.status or "").lower()
    if response.incomplete_reason:
        reason = response.incomplete_reason
    elif (response.finish_signal or "").lower() in _LENGTH_SIGNALS:
        reason = response.finish_signal or "length"
    elif status and status not in _TERMINAL_STATUSES:
        reason = status
    elif response.output_tokens is not None and response.output_tokens >= max_output_tokens - config.token_cap_margin:
        reason = "near_token_cap"
    else:
        reason = "looks_truncated"
    return Incomplete(text=text, reason=reason)


__all__ = ["classify_response", "looks_truncated", "needs_continuation"]
