"""Claude-backed model provider"""

from typing import Optional

from loguru import logger

from survey_engine.core.config import settings
from survey_engine.core.exceptions import ProviderUnavailable
from survey_engine.providers.base import ModelProvider

JSON_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


class AnthropicModelProvider(ModelProvider):
    """
    ModelProvider over the Anthropic Messages API.

    The async client is created on first use so importing this module never
    requires credentials.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.model = model or settings.QUESTION_MODEL
        self.api_key = api_key or settings.ANTHROPIC_API_KEY
        self.max_tokens = max_tokens or settings.MODEL_MAX_TOKENS
        self._client = None
        self.stats = {"calls": 0, "failures": 0}

    def _get_client(self):
        if self._client is None:
            import anthropic

            if not self.api_key:
                raise ProviderUnavailable("ANTHROPIC_API_KEY is not configured")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        response_format: Optional[str] = None,
    ) -> str:
        client = self._get_client()
        system = system_prompt
        if response_format == "json":
            system = f"{system_prompt}\n\n{JSON_INSTRUCTION}"

        self.stats["calls"] += 1
        try:
            message = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except Exception as e:
            self.stats["failures"] += 1
            logger.warning("Model call failed: {error}", error=str(e))
            raise ProviderUnavailable(str(e)) from e

        text = "".join(block.text for block in message.content if getattr(block, "type", "") == "text")
        if not text:
            self.stats["failures"] += 1
            raise ProviderUnavailable("Model returned no text content")
        return text
