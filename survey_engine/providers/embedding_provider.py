"""
Sentence-transformers embedding provider.

Uses all-MiniLM-L6-v2 by default. The model is loaded lazily on first
embed and inference runs in the default executor so the event loop is
never blocked.
"""

import asyncio
from typing import Optional

from loguru import logger

from survey_engine.core.config import settings
from survey_engine.core.exceptions import ProviderUnavailable
from survey_engine.providers.base import EmbeddingProvider


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Normalized sentence embeddings from a local sentence-transformers model"""

    def __init__(self, model_name: Optional[str] = None) -> None:
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self._model = None

    def _get_model(self):
        """Lazy-load sentence-transformers model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ProviderUnavailable("sentence-transformers is not installed") from e
            self._model = SentenceTransformer(self.model_name)
            logger.info("Loaded embedding model: {name}", name=self.model_name)
        return self._model

    def _embed_sync(self, text: str) -> list[float]:
        model = self._get_model()
        return model.encode(text, normalize_embeddings=True).tolist()

    async def embed(self, text: str) -> list[float]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._embed_sync, text)
        except ProviderUnavailable:
            raise
        except Exception as e:
            logger.warning("Embedding failed: {error}", error=str(e))
            raise ProviderUnavailable(str(e)) from e
