"""Model and embedding providers"""

from survey_engine.providers.base import EmbeddingProvider, ModelProvider
from survey_engine.providers.anthropic_provider import AnthropicModelProvider
from survey_engine.providers.embedding_provider import SentenceTransformerEmbeddingProvider

__all__ = [
    "ModelProvider",
    "EmbeddingProvider",
    "AnthropicModelProvider",
    "SentenceTransformerEmbeddingProvider",
]
