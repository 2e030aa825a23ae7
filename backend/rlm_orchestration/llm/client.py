"""Model transports: LiteLLM for real providers, and a scripted mock."""

import asyncio
from typing import Any, Callable, List, Optional, Sequence, Union

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rlm_orchestration.config import get_settings
from rlm_orchestration.core.exceptions import TransportError
from rlm_orchestration.llm.interface import LLMClientInterface
from rlm_orchestration.types import LLMResponse, Message

logger = structlog.get_logger()


class LiteLLMClient(LLMClientInterface):
    """Model transport using LiteLLM for unified provider support.

    Credentials come from the provider's usual environment variables
    (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...). Failed calls are retried with
    exponential backoff; once attempts run out a ``TransportError`` is raised.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        """Initialize the LiteLLM client.

        Args:
            model: Model name (e.g., 'gpt-5-mini', 'claude-sonnet-4.5')
            provider: Provider name (e.g., 'openai', 'anthropic')
            api_base: Custom API base URL
            timeout: Request timeout in seconds
            max_retries: Attempts per call
            temperature: Default sampling temperature
            max_tokens: Default completion limit
        """
        settings = get_settings()

        self.model = model or settings.default_model
        self.provider = provider or settings.litellm_provider
        self.api_base = api_base or settings.litellm_api_base
        self.timeout = timeout or settings.llm_timeout
        self.max_retries = max_retries or settings.litellm_retry_count
        self.temperature = (
            temperature if temperature is not None else settings.default_temperature
        )
        self.max_tokens = max_tokens if max_tokens is not None else settings.default_max_tokens

        self._full_model = self._build_model_string()

        logger.info(
            "litellm_client_initialized",
            model=self.model,
            provider=self.provider,
            full_model=self._full_model,
        )

    def _build_model_string(self) -> str:
        """Build the model string LiteLLM expects ("provider/model", or bare for OpenAI)."""
        if "/" in self.model:
            return self.model
        if self.provider == "openai":
            return self.model
        return f"{self.provider}/{self.model}"

    async def _complete(self, payload: List[dict], **kwargs: Any) -> LLMResponse:
        from litellm import acompletion

        if self.api_base:
            kwargs.setdefault("api_base", self.api_base)

        response = await acompletion(
            model=self._full_model,
            messages=payload,
            timeout=self.timeout,
            **kwargs,
        )

        content = response.choices[0].message.content or ""

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=content,
            model=self._full_model,
            usage=usage,
            finish_reason=response.choices[0].finish_reason,
        )

    async def generate(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion using LiteLLM."""
        payload = [m.to_dict() for m in messages]
        kwargs["temperature"] = self.temperature if temperature is None else temperature
        limit = self.max_tokens if max_tokens is None else max_tokens
        if limit is not None:
            kwargs["max_tokens"] = limit

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(Exception),
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    response = await self._complete(payload, **kwargs)
        except Exception as e:
            logger.error(
                "llm_generation_failed",
                model=self._full_model,
                attempts=self.max_retries,
                error=str(e),
            )
            raise TransportError(str(e), provider=self.provider, model=self._full_model) from e

        logger.debug(
            "llm_generation_complete",
            model=self._full_model,
            tokens_used=response.usage.get("total_tokens", 0),
        )
        return response

    def get_model_name(self) -> str:
        return self._full_model


ScriptedReply = Union[str, Exception]
ReplyFunction = Callable[[List[Message]], ScriptedReply]


class MockLLMClient(LLMClientInterface):
    """Scripted transport for tests and offline runs.

    Replies come from ``responses`` in order (the last one repeats), from a
    callable that receives the transcript, or from ``response_template``.
    An ``Exception`` in the script is raised instead of returned.
    """

    def __init__(
        self,
        responses: Optional[Union[Sequence[ScriptedReply], ReplyFunction]] = None,
        response_template: str = "Mock response for: {prompt}",
        delay: float = 0.0,
    ) -> None:
        """Initialize mock client.

        Args:
            responses: Scripted replies, or a function of the transcript
            response_template: Fallback template (can use {prompt})
            delay: Artificial delay in seconds to simulate network
        """
        self.responses = responses
        self.response_template = response_template
        self.delay = delay
        self.call_count = 0
        self.calls: List[List[Message]] = []

    def _next_reply(self, messages: List[Message]) -> ScriptedReply:
        if callable(self.responses):
            return self.responses(messages)
        if self.responses:
            index = min(self.call_count - 1, len(self.responses) - 1)
            return self.responses[index]
        prompt = messages[-1].content if messages else ""
        return self.response_template.format(prompt=prompt[:100])

    async def generate(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a mock completion."""
        self.call_count += 1
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = self._next_reply(messages)
        if isinstance(reply, TransportError):
            raise reply
        if isinstance(reply, Exception):
            raise TransportError(str(reply), provider="mock", model="mock-model") from reply

        return LLMResponse(
            content=reply,
            model="mock-model",
            usage={
                "prompt_tokens": sum(len(m.content) for m in messages),
                "completion_tokens": len(reply),
            },
        )

    def get_model_name(self) -> str:
        return "mock-model"
