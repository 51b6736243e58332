"""
Question anti-repetition index.

A candidate question is rejected when its intent has been asked too often
recently, when it would extend a streak on the same intent, or when its
embedding is too close to one of the session's recent questions.
"""

import asyncio
import hashlib
import re
from typing import Optional

import numpy as np
from loguru import logger

from survey_engine.core.config import settings
from survey_engine.core.models import QuestionEmbedding, SimilarityReason, SimilarityResult
from survey_engine.providers.base import EmbeddingProvider
from survey_engine.storage.sqlite_store import ConversationStore

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def fallback_embedding(text: str, dim: Optional[int] = None) -> list[float]:
    """
    Deterministic hashed bag-of-words vector.

    Each whitespace token adds 1 to the bucket picked by its md5 digest;
    the result is L2-normalised (all zeros for empty text).
    """
    dim = dim or settings.FALLBACK_EMBEDDING_DIM
    vector = np.zeros(dim, dtype=np.float64)
    for word in text.lower().split():
        bucket = int.from_bytes(hashlib.md5(word.encode("utf-8")).digest()[:8], "big") % dim
        vector[bucket] += 1.0

    magnitude = np.linalg.norm(vector)
    if magnitude > 0:
        vector = vector / magnitude
    return vector.tolist()


def similarity_hash(text: str) -> str:
    """Order-independent token fingerprint"""
    tokens = _NON_ALNUM.sub("", text.lower()).split()
    return "".join(sorted(tokens))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of two vectors; 0 for mismatched dimensions or zero norm"""
    if len(a) != len(b) or not a:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class SimilarityIndex:
    """
    Intent-aware duplicate detection over a session's question history.

    Checks run in priority order: intent cooldown, topic streak, semantic
    similarity. Embedding failures degrade to fallback_embedding and never
    propagate.
    """

    def __init__(
        self,
        store: ConversationStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
        threshold: Optional[float] = None,
        history_size: Optional[int] = None,
        max_asks_per_slot: Optional[int] = None,
        topic_streak_limit: Optional[int] = None,
        embedding_timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.embedding_provider = embedding_provider
        self.threshold = threshold if threshold is not None else settings.SIMILARITY_THRESHOLD
        self.history_size = history_size or settings.SEMANTIC_HISTORY_SIZE
        self.max_asks_per_slot = max_asks_per_slot or settings.MAX_ASKS_PER_SLOT
        self.topic_streak_limit = topic_streak_limit or settings.TOPIC_STREAK_LIMIT
        self.embedding_timeout = embedding_timeout or settings.EMBEDDING_TIMEOUT_SECONDS

        self.stats = {
            "checks": 0,
            "intent_cooldown": 0,
            "topic_streak_limit": 0,
            "semantic_similarity": 0,
            "fallback_embeddings": 0,
            "reembedded": 0,
        }

    async def embed(self, text: str) -> list[float]:
        """Provider embedding, or the hashed fallback on absence, error, timeout or empty output"""
        if self.embedding_provider is None:
            self.stats["fallback_embeddings"] += 1
            return fallback_embedding(text)

        try:
            vector = await asyncio.wait_for(self.embedding_provider.embed(text), timeout=self.embedding_timeout)
        except Exception as e:
            logger.warning("Embedding provider unavailable, using fallback: {error}", error=repr(e))
            self.stats["fallback_embeddings"] += 1
            return fallback_embedding(text)

        if not vector:
            logger.warning("Embedding provider returned an empty vector, using fallback")
            self.stats["fallback_embeddings"] += 1
            return fallback_embedding(text)
        return list(vector)

    async def check_similarity(
        self,
        session_id: str,
        candidate_text: str,
        threshold: Optional[float] = None,
        candidate_intent: Optional[str] = None,
    ) -> SimilarityResult:
        threshold = self.threshold if threshold is None else threshold
        self.stats["checks"] += 1

        if candidate_intent:
            recent_intents = await self.store.get_recent_intents(session_id, limit=self.history_size)

            asked = sum(1 for intent in recent_intents if intent == candidate_intent)
            if asked >= self.max_asks_per_slot:
                self.stats["intent_cooldown"] += 1
                logger.debug(
                    "Intent cooldown for {intent}: asked {n} times in last {k}",
                    intent=candidate_intent,
                    n=asked,
                    k=self.history_size,
                )
                return SimilarityResult(is_similar=True, reason=SimilarityReason.INTENT_COOLDOWN)

            # Streak spans every recent turn, so an untagged turn breaks it
            streak = await self.store.get_last_turn_intents(session_id, limit=self.topic_streak_limit)
            if len(streak) == self.topic_streak_limit and all(intent == candidate_intent for intent in streak):
                self.stats["topic_streak_limit"] += 1
                logger.debug("Topic streak limit for {intent}", intent=candidate_intent)
                return SimilarityResult(is_similar=True, reason=SimilarityReason.TOPIC_STREAK_LIMIT)

        embedding = await self.embed(candidate_text)
        recent = await self.store.get_recent_embeddings(session_id, limit=self.history_size)

        max_similarity = 0.0
        matched: Optional[str] = None
        for record in recent:
            score = cosine_similarity(*await self._comparable(candidate_text, embedding, record))
            if score > max_similarity:
                max_similarity = score
                matched = record.question_text

        if max_similarity > threshold:
            self.stats["semantic_similarity"] += 1
            logger.debug(
                "Semantic duplicate ({score:.3f} > {threshold}): {question}",
                score=max_similarity,
                threshold=threshold,
                question=matched,
            )
            return SimilarityResult(
                is_similar=True,
                max_similarity=max_similarity,
                matched_question=matched,
                reason=SimilarityReason.SEMANTIC_SIMILARITY,
                embedding=embedding,
            )

        return SimilarityResult(
            is_similar=False,
            max_similarity=max_similarity,
            matched_question=matched,
            embedding=embedding,
        )

    async def _comparable(
        self,
        candidate_text: str,
        embedding: list[float],
        record: QuestionEmbedding,
    ) -> tuple[list[float], list[float]]:
        """
        Vector pair of equal dimension for the candidate and a stored question.

        A stored vector from the other embedding path (provider vs hashed
        fallback) is re-embedded from its question text; if the provider is
        still unusable, both sides are compared on the hashed fallback.
        """
        stored = record.embedding_vector
        if len(stored) == len(embedding):
            return embedding, stored

        self.stats["reembedded"] += 1
        stored = await self.embed(record.question_text)
        if len(stored) == len(embedding):
            return embedding, stored

        dim = settings.FALLBACK_EMBEDDING_DIM
        return fallback_embedding(candidate_text, dim), fallback_embedding(record.question_text, dim)

    def make_record(self, session_id: str, question_text: str, embedding: list[float]) -> QuestionEmbedding:
        """QuestionEmbedding row for an accepted question"""
        return QuestionEmbedding(
            session_id=session_id,
            question_text=question_text,
            embedding_vector=embedding,
            similarity_hash=similarity_hash(question_text),
        )

    def get_stats(self) -> dict:
        return dict(self.stats)
