"""
Unit tests for text service providers.

The SDK clients are replaced with mocks; the tests check the request shape
and the mapping of SDK errors onto the retry taxonomy.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import openai
import pytest

from technews.llm import get_text_service
from technews.llm.anthropic_provider import AnthropicProvider
from technews.llm.base import extract_json
from technews.llm.openai_provider import OpenAIProvider
from technews.services.resilience import (
    ConfigurationError,
    PermanentServiceError,
    RateLimitError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)

OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
ANTHROPIC_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _openai_response(text="Bonjour", prompt_tokens=10, completion_tokens=5):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


@pytest.fixture
def openai_provider():
    provider = OpenAIProvider(api_key="sk-test", model="gpt-4o-mini")
    provider._client = MagicMock()
    return provider


@pytest.fixture
def anthropic_provider():
    provider = AnthropicProvider(api_key="sk-ant-test", model="claude-haiku-4-5")
    provider._client = MagicMock()
    return provider


class TestExtractJson:
    def test_plain(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_block(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_embedded(self):
        assert extract_json('Voici: {"a": 1} fin') == {"a": 1}

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            extract_json("[1, 2]")

    def test_no_json(self):
        with pytest.raises(ValueError):
            extract_json("rien")


class TestFactory:
    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_text_service("gemini")

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr("technews.llm.openai_provider.get_settings", lambda: SimpleNamespace(OPENAI_API_KEY=None))
        with pytest.raises(ConfigurationError):
            get_text_service("openai")

    def test_explicit_key(self):
        service = get_text_service("anthropic", api_key="sk-ant-test")
        assert service.name == "anthropic"


class TestOpenAIProvider:
    def test_complete(self, openai_provider):
        openai_provider._client.chat.completions.create.return_value = _openai_response('{"a": 1}')

        completion = openai_provider.complete("system", "user", max_tokens=100, json_mode=True)

        assert completion.text == '{"a": 1}'
        assert completion.tokens_used == 15
        kwargs = openai_provider._client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 100
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_empty_content(self, openai_provider):
        openai_provider._client.chat.completions.create.return_value = _openai_response(None)
        assert openai_provider.complete("s", "u", max_tokens=10).text == ""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (
                openai.RateLimitError("slow down", response=httpx.Response(429, request=OPENAI_REQUEST), body=None),
                RateLimitError,
            ),
            (openai.APITimeoutError(request=OPENAI_REQUEST), ServiceTimeoutError),
            (openai.APIConnectionError(request=OPENAI_REQUEST), ServiceUnavailableError),
            (
                openai.InternalServerError("boom", response=httpx.Response(500, request=OPENAI_REQUEST), body=None),
                ServiceUnavailableError,
            ),
            (
                openai.BadRequestError("bad", response=httpx.Response(400, request=OPENAI_REQUEST), body=None),
                PermanentServiceError,
            ),
            (
                openai.AuthenticationError("nope", response=httpx.Response(401, request=OPENAI_REQUEST), body=None),
                PermanentServiceError,
            ),
        ],
    )
    def test_error_mapping(self, openai_provider, error, expected):
        openai_provider._client.chat.completions.create.side_effect = error

        with pytest.raises(expected):
            openai_provider.complete("s", "u", max_tokens=10)


class TestAnthropicProvider:
    def test_complete(self, anthropic_provider):
        anthropic_provider._client.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Bon"), SimpleNamespace(type="text", text="jour")],
            usage=SimpleNamespace(input_tokens=7, output_tokens=3),
        )

        completion = anthropic_provider.complete("system", "user", max_tokens=50)

        assert completion.text == "Bonjour"
        assert completion.tokens_used == 10
        kwargs = anthropic_provider._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]

    @pytest.mark.parametrize(
        "error,expected",
        [
            (
                anthropic.RateLimitError("slow", response=httpx.Response(429, request=ANTHROPIC_REQUEST), body=None),
                RateLimitError,
            ),
            (anthropic.APITimeoutError(request=ANTHROPIC_REQUEST), ServiceTimeoutError),
            (
                anthropic.BadRequestError("bad", response=httpx.Response(400, request=ANTHROPIC_REQUEST), body=None),
                PermanentServiceError,
            ),
        ],
    )
    def test_error_mapping(self, anthropic_provider, error, expected):
        anthropic_provider._client.messages.create.side_effect = error

        with pytest.raises(expected):
            anthropic_provider.complete("s", "u", max_tokens=10)
