"""Provider interfaces for model invocation and text embedding"""

from abc import ABC, abstractmethod
from typing import Optional


class ModelProvider(ABC):
    """Chat-style model invocation returning raw text"""

    @abstractmethod
    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        response_format: Optional[str] = None,
    ) -> str:
        """
        Run one completion.

        Args:
            system_prompt: Instruction framing for the model
            user_prompt: Task content
            temperature: Sampling temperature
            response_format: "json" when the caller expects a JSON object

        Raises:
            ProviderUnavailable: on any transport or API failure
        """


class EmbeddingProvider(ABC):
    """Text to dense vector"""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Raises ProviderUnavailable when no vector can be produced"""
