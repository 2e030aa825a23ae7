"""Tests for the model transports."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rlm_orchestration.core.exceptions import TransportError
from rlm_orchestration.llm.client import LiteLLMClient, MockLLMClient
from rlm_orchestration.types import LLMResponse, Message


def fake_completion(content="hello"):
    response = MagicMock()
    choice = MagicMock()
    choice.message.content = content
    choice.finish_reason = "stop"
    response.choices = [choice]
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 5
    response.usage.total_tokens = 15
    return response


class TestMockLLMClient:
    """Tests for the scripted transport."""

    @pytest.mark.asyncio
    async def test_scripted_replies_in_order(self):
        client = MockLLMClient(responses=["one", "two"])
        messages = [Message("user", "hi")]

        assert (await client.generate(messages)).content == "one"
        assert (await client.generate(messages)).content == "two"
        assert (await client.generate(messages)).content == "two"
        assert client.call_count == 3
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_reply_function(self):
        client = MockLLMClient(responses=lambda messages: messages[-1].content[::-1])
        response = await client.generate([Message("user", "abc")])
        assert response.content == "cba"

    @pytest.mark.asyncio
    async def test_template(self):
        client = MockLLMClient()
        response = await client.generate([Message("user", "question")])
        assert response.content == "Mock response for: question"
        assert response.model == "mock-model"

    @pytest.mark.asyncio
    async def test_scripted_exception(self):
        client = MockLLMClient(responses=[ConnectionError("network down")])
        with pytest.raises(TransportError, match="network down"):
            await client.generate([Message("user", "hi")])


class TestLiteLLMClient:
    """Tests for the LiteLLM transport (no network)."""

    def test_model_string(self):
        assert LiteLLMClient(model="gpt-5-mini", provider="openai").get_model_name() == "gpt-5-mini"
        assert (
            LiteLLMClient(model="claude-sonnet-4.5", provider="anthropic").get_model_name()
            == "anthropic/claude-sonnet-4.5"
        )
        assert LiteLLMClient(model="ollama/llama3", provider="openai").get_model_name() == "ollama/llama3"

    def test_defaults_from_settings(self, monkeypatch):
        monkeypatch.setenv("RLM_DEFAULT_MODEL", "gpt-test")
        monkeypatch.setenv("RLM_LITELLM_RETRY_COUNT", "2")
        client = LiteLLMClient()
        assert client.model == "gpt-test"
        assert client.max_retries == 2

    @pytest.mark.asyncio
    async def test_generate(self):
        client = LiteLLMClient(model="gpt-5-mini", provider="openai", max_retries=1)
        completion = AsyncMock(return_value=fake_completion("hello"))

        with patch("litellm.acompletion", completion):
            response = await client.generate([Message("system", "s"), Message("user", "u")])

        assert isinstance(response, LLMResponse)
        assert response.content == "hello"
        assert response.usage["total_tokens"] == 15
        sent = completion.call_args.kwargs["messages"]
        assert sent == [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]

    @pytest.mark.asyncio
    async def test_failure_becomes_transport_error(self):
        client = LiteLLMClient(model="gpt-5-mini", provider="openai", max_retries=1)
        completion = AsyncMock(side_effect=RuntimeError("401 unauthorized"))

        with patch("litellm.acompletion", completion):
            with pytest.raises(TransportError, match="401 unauthorized"):
                await client.generate([Message("user", "u")])
        assert completion.await_count == 1
