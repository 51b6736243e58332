"""Question anti-repetition"""

from survey_engine.similarity.similarity_index import (
    SimilarityIndex,
    cosine_similarity,
    fallback_embedding,
    similarity_hash,
)

__all__ = ["SimilarityIndex", "cosine_similarity", "fallback_embedding", "similarity_hash"]
