"""
Tests for completion.py

Covers fence stripping, candidate extraction and the mapping of openai SDK
transport errors onto the completion error hierarchy.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from syllabus_agent.services.completion import (
    CompletionClient,
    CompletionError,
    UpstreamAuthError,
    UpstreamFormatError,
    UpstreamNotFoundError,
    UpstreamParseError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    first_candidate_text,
    parse_completion_json,
    strip_code_fences,
)

REQUEST = httpx.Request("POST", "https://llm.example.test/v1/chat/completions")


def _status_error(cls, status_code):
    return cls(
        f"HTTP {status_code}",
        response=httpx.Response(status_code, request=REQUEST),
        body=None,
    )


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client_returning(response=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = response
    return client


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"

    def test_fence_with_surrounding_whitespace(self):
        assert strip_code_fences('\n  ```JSON\n{"a": 1}\n```  \n') == '{"a": 1}'

    def test_unfenced_text_is_only_trimmed(self):
        assert strip_code_fences('  {"a": "```"}  ') == '{"a": "```"}'


class TestParseCompletionJson:
    def test_parses_fenced_json(self):
        assert parse_completion_json('```json\n{"modules": []}\n```') == {"modules": []}

    def test_invalid_json_raises_parse_error_with_raw_text(self):
        with pytest.raises(UpstreamParseError) as exc_info:
            parse_completion_json("Sure! Here is your plan: {oops")
        assert exc_info.value.raw_text == "Sure! Here is your plan: {oops"
        # The caller-facing message never echoes the model output
        assert "oops" not in str(exc_info.value)


class TestFirstCandidateText:
    def test_returns_message_content(self):
        assert first_candidate_text(_response('{"a": 1}')) == '{"a": 1}'

    @pytest.mark.parametrize(
        "response",
        [
            SimpleNamespace(choices=[]),
            SimpleNamespace(choices=None),
            SimpleNamespace(),
            _response(None),
            _response("   "),
        ],
    )
    def test_missing_candidate_is_format_error(self, response):
        with pytest.raises(UpstreamFormatError):
            first_candidate_text(response)


class TestCompletionClient:
    @pytest.mark.anyio
    async def test_complete_returns_parsed_json(self):
        client = _client_returning(_response('```json\n{"course": {"title": "Bio"}}\n```'))
        completion = CompletionClient(client, model="test-model", timeout_seconds=5)

        result = await completion.complete("prompt text", system_prompt="be json")

        assert result == {"course": {"title": "Bio"}}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["timeout"] == 5
        assert kwargs["messages"] == [
            {"role": "system", "content": "be json"},
            {"role": "user", "content": "prompt text"},
        ]

    @pytest.mark.anyio
    async def test_per_call_timeout_overrides_default(self):
        client = _client_returning(_response("{}"))
        completion = CompletionClient(client, timeout_seconds=25)

        await completion.complete("p", timeout=3)

        assert client.chat.completions.create.call_args.kwargs["timeout"] == 3

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        "error, expected, retryable",
        [
            (openai.APITimeoutError(request=REQUEST), UpstreamTimeoutError, True),
            (openai.APIConnectionError(request=REQUEST), UpstreamUnavailableError, True),
            (_status_error(openai.RateLimitError, 429), UpstreamRateLimitError, True),
            (_status_error(openai.InternalServerError, 503), UpstreamUnavailableError, True),
            (_status_error(openai.AuthenticationError, 401), UpstreamAuthError, False),
            (_status_error(openai.PermissionDeniedError, 403), UpstreamAuthError, False),
            (_status_error(openai.NotFoundError, 404), UpstreamNotFoundError, False),
        ],
    )
    async def test_transport_errors_are_translated(self, error, expected, retryable):
        completion = CompletionClient(_client_returning(error=error))

        with pytest.raises(expected) as exc_info:
            await completion.complete("p")

        assert exc_info.value.retryable is retryable
        assert exc_info.value.__cause__ is error

    @pytest.mark.anyio
    async def test_other_status_errors_are_generic_and_not_retryable(self):
        completion = CompletionClient(
            _client_returning(error=_status_error(openai.BadRequestError, 400))
        )

        with pytest.raises(CompletionError) as exc_info:
            await completion.complete("p")

        assert type(exc_info.value) is CompletionError
        assert exc_info.value.retryable is False
        assert "400" in str(exc_info.value)

    @pytest.mark.anyio
    async def test_non_json_reply_is_parse_error(self):
        completion = CompletionClient(_client_returning(_response("I cannot help with that.")))

        with pytest.raises(UpstreamParseError):
            await completion.complete("p")

    @pytest.mark.anyio
    async def test_empty_choices_is_format_error(self):
        completion = CompletionClient(_client_returning(SimpleNamespace(choices=[])))

        with pytest.raises(UpstreamFormatError):
            await completion.complete("p")
