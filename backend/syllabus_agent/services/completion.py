"""
Completion client: send a prompt to the generative-language service and get
parsed JSON back.

Transport failures from the openai SDK are translated into the
`CompletionError` hierarchy so the pipeline can tell "could not reach" apart
from "could not parse" and decide whether a retry makes sense.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

import openai
from openai import OpenAI

from ..core.config import get_settings
from .llm import get_llm_client, limit_llm_concurrency

logger = logging.getLogger(__name__)

RAW_TEXT_LOG_PREVIEW = 500

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


class CompletionError(Exception):
    """Base class; `str(exc)` is safe to show to end users."""

    kind = "upstream_error"
    retryable = False
    default_message = "Completion service request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class UpstreamTimeoutError(CompletionError):
    kind = "timeout"
    retryable = True
    default_message = "Completion service timed out"


class UpstreamUnavailableError(CompletionError):
    kind = "unavailable"
    retryable = True
    default_message = "Could not reach the completion service"


class UpstreamRateLimitError(CompletionError):
    kind = "rate_limited"
    retryable = True
    default_message = "Completion service rate limit exceeded"


class UpstreamAuthError(CompletionError):
    kind = "auth"
    default_message = "Completion service rejected the configured credentials"


class UpstreamNotFoundError(CompletionError):
    kind = "not_found"
    default_message = "Completion model or endpoint not found"


class UpstreamFormatError(CompletionError):
    kind = "format"
    default_message = "Completion service returned an unexpected response shape"


class UpstreamParseError(CompletionError):
    kind = "parse"
    default_message = "Could not parse the completion service reply as JSON"

    def __init__(self, message: str | None = None, *, raw_text: str = "") -> None:
        super().__init__(message)
        # Kept for diagnostics only; never copied into job details
        self.raw_text = raw_text


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and its closing fence, if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN_RE.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def parse_completion_json(text: str) -> Any:
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(
            "Completion reply was not valid JSON (%s); raw preview: %s",
            e,
            text[:RAW_TEXT_LOG_PREVIEW],
            extra={"error_kind": UpstreamParseError.kind},
        )
        raise UpstreamParseError(raw_text=text) from e


def first_candidate_text(response: Any) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as e:
        raise UpstreamFormatError("Completion response contained no candidates") from e

    if not isinstance(content, str) or not content.strip():
        raise UpstreamFormatError("Completion response candidate contained no text")
    return content


def translate_transport_error(exc: Exception) -> CompletionError:
    """Map an openai SDK exception onto the completion error hierarchy."""
    # APITimeoutError subclasses APIConnectionError, so it has to come first
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamTimeoutError()
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamUnavailableError()
    if isinstance(exc, openai.RateLimitError):
        return UpstreamRateLimitError()
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return UpstreamAuthError()
    if isinstance(exc, openai.NotFoundError):
        return UpstreamNotFoundError()
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return UpstreamUnavailableError(
                f"Completion service unavailable (HTTP {exc.status_code})"
            )
        return CompletionError(f"Completion service request failed (HTTP {exc.status_code})")
    return CompletionError()


class CompletionClient:
    """
    Thin async wrapper around the shared OpenAI-compatible client.

    The SDK call is blocking, so it runs via `asyncio.to_thread`; the event
    loop only suspends while the request is in flight.
    """

    def __init__(
        self,
        client: OpenAI | None = None,
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
        temperature: float = 0.2,
    ) -> None:
        settings = get_settings()
        self._client = client
        self.model = model or settings.LLM_MODEL
        self.timeout_seconds = timeout_seconds or settings.LLM_TIMEOUT_SECONDS
        self.temperature = temperature

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        text = await asyncio.to_thread(
            self._call_sync,
            prompt,
            system_prompt,
            timeout or self.timeout_seconds,
        )
        return parse_completion_json(text)

    def _call_sync(self, prompt: str, system_prompt: str | None, timeout: float) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            with limit_llm_concurrency():
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                    timeout=timeout,
                )
        except openai.OpenAIError as e:
            error = translate_transport_error(e)
            logger.warning(
                "Completion call failed: %s (%s)",
                error,
                type(e).__name__,
                extra={"error_kind": error.kind},
            )
            raise error from e

        return first_candidate_text(response)
