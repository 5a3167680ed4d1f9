"""Tests for the reasoning-service client: retries, rate limiting and the factory."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from infra.llm_client import (
    LOCAL_BASE_URL,
    OPENROUTER_BASE_URL,
    LLMClientError,
    LocalInferenceClient,
    OpenAIClient,
    create_llm_client,
)
from infra.models import ChatMessage, Intent, RoutedIntent

MESSAGES = [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")]


def _response(content="hello", usage=True):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3) if usage else None,
    )


@pytest.fixture
def client() -> OpenAIClient:
    c = OpenAIClient(api_url="http://localhost:9/v1", api_key="test-key", model="test-model")
    c._retry_base_delay = 0
    c._raw_client.chat.completions.create = AsyncMock()
    return c


class TestChat:
    @pytest.mark.asyncio
    async def test_success(self, client) -> None:
        client._raw_client.chat.completions.create.return_value = _response()

        completion = await client.chat(MESSAGES, context="test")

        assert completion.content == "hello"
        assert (completion.prompt_tokens, completion.completion_tokens) == (7, 3)
        kwargs = client._raw_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]
        assert kwargs["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_temperature_override(self, client) -> None:
        client._raw_client.chat.completions.create.return_value = _response(usage=False)
        completion = await client.chat(MESSAGES, temperature=0.9)
        assert client._raw_client.chat.completions.create.call_args.kwargs["temperature"] == 0.9
        assert completion.prompt_tokens == 0

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, client) -> None:
        create = client._raw_client.chat.completions.create
        create.side_effect = [Exception("503 Service Unavailable"), _response("recovered")]

        completion = await client.chat(MESSAGES)

        assert completion.content == "recovered"
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, client) -> None:
        create = client._raw_client.chat.completions.create
        create.side_effect = Exception("502 Bad Gateway")

        with pytest.raises(LLMClientError):
            await client.chat(MESSAGES)
        assert create.await_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_fails_immediately(self, client) -> None:
        create = client._raw_client.chat.completions.create
        create.side_effect = Exception("Error code: 429 - too many requests")

        with pytest.raises(LLMClientError, match="Rate limited"):
            await client.chat(MESSAGES)
        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, client) -> None:
        create = client._raw_client.chat.completions.create
        create.side_effect = ValueError("bad request")

        with pytest.raises(LLMClientError, match="bad request"):
            await client.chat(MESSAGES)
        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_content(self, client) -> None:
        client._raw_client.chat.completions.create.return_value = _response(content=None)
        with pytest.raises(LLMClientError, match="missing message content"):
            await client.chat(MESSAGES)


class TestStructured:
    @pytest.mark.asyncio
    async def test_returns_model_instance(self, client) -> None:
        routed = RoutedIntent(intent=Intent.ANALYZE, argument="AAPL")
        client._instructor_client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(return_value=routed)))
        )

        result = await client.complete_structured(MESSAGES, RoutedIntent)

        assert result is routed
        kwargs = client._instructor_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_model"] is RoutedIntent


class TestFactory:
    def test_openai(self, make_settings) -> None:
        client = create_llm_client(make_settings(llm_provider="openai", openai_model="gpt-4o-mini"))
        assert isinstance(client, OpenAIClient)
        assert client.model == "gpt-4o-mini"
        assert client.api_url == "https://api.openai.com/v1"

    def test_openrouter_default_url(self, make_settings) -> None:
        client = create_llm_client(make_settings(llm_provider="openrouter"))
        assert client.api_url == OPENROUTER_BASE_URL

    def test_local(self, make_settings) -> None:
        client = create_llm_client(make_settings(llm_provider="local", openai_api_key=""))
        assert isinstance(client, LocalInferenceClient)
        assert client.api_url == LOCAL_BASE_URL

    def test_unknown_provider(self, make_settings) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_llm_client(make_settings(llm_provider="carrier-pigeon"))
