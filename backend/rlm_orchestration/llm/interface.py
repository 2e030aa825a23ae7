"""Model transport interface."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from rlm_orchestration.types import LLMResponse, Message


class LLMClientInterface(ABC):
    """Abstract interface for model transports.

    The engine only needs "messages in, text out"; any provider can sit
    behind this interface.
    """

    @abstractmethod
    async def generate(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion for a role-tagged transcript.

        Args:
            messages: Ordered system/user/assistant messages
            temperature: Sampling temperature (0.0 - 2.0)
            max_tokens: Maximum tokens to generate
            **kwargs: Additional provider-specific parameters

        Returns:
            LLMResponse with content and metadata

        Raises:
            TransportError: If the model could not be reached
        """
        ...

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the name of the model being used."""
        ...
