"""Conversation engine: the public API over generation, extraction and storage"""

import asyncio
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

from survey_engine.context.budget import ContextBudgetBuilder
from survey_engine.core.config import configure_logging, settings
from survey_engine.core.exceptions import TurnStateError
from survey_engine.core.models import (
    ContinuationDecision,
    ConversationPhase,
    ConversationSession,
    Insight,
    InsightEntry,
    InsightType,
    Question,
    RecordedAnswer,
    SlotState,
)
from survey_engine.core.survey_types import SurveyTypeRegistry
from survey_engine.extraction.insight_extractor import ExtractionResult, InsightExtractor
from survey_engine.generation.question_generator import QuestionGenerator, question_from_turn
from survey_engine.policy.completion import CompletionPolicy
from survey_engine.providers.base import EmbeddingProvider, ModelProvider
from survey_engine.similarity.similarity_index import SimilarityIndex
from survey_engine.storage.sqlite_store import ConversationStore

# Session aggregate fed by each insight type
AGGREGATE_FIELDS: dict[InsightType, str] = {
    InsightType.KPI_MENTIONED: "kpis",
    InsightType.STAKEHOLDER_IDENTIFIED: "stakeholders",
    InsightType.PAIN_POINT_DISCUSSED: "pain_points",
}


class ConversationEngine:
    """
    Drives interview sessions turn by turn.

    next_question and record_answer for the same session are serialised
    by a per-session lock; different sessions proceed concurrently. Model
    and embedding calls happen outside store transactions, and every
    provider failure degrades to a deterministic path.
    """

    def __init__(
        self,
        store: ConversationStore,
        model_provider: Optional[ModelProvider] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        registry: Optional[SurveyTypeRegistry] = None,
        extraction_provider: Optional[ModelProvider] = None,
    ) -> None:
        self.store = store
        self.registry = registry or SurveyTypeRegistry()
        self.policy = CompletionPolicy()
        self.similarity_index = SimilarityIndex(store, embedding_provider)
        self.context_builder = ContextBudgetBuilder()
        self.extractor = InsightExtractor(extraction_provider or model_provider)
        self.generator = QuestionGenerator(
            store,
            self.similarity_index,
            context_builder=self.context_builder,
            policy=self.policy,
            model_provider=model_provider,
            registry=self.registry,
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self.answers_processed = 0
        logger.info(
            "ConversationEngine initialized (model={model}, embeddings={emb})",
            model=type(model_provider).__name__ if model_provider else "none",
            emb=type(embedding_provider).__name__ if embedding_provider else "fallback",
        )

    def _lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    async def _require_session(self, session_id: str) -> ConversationSession:
        session = await self.store.get_session(session_id)
        if session is None:
            raise TurnStateError(f"Unknown session {session_id}")
        return session

    # ========== SESSIONS ==========

    async def start_session(self, survey_category: Optional[str] = None) -> ConversationSession:
        """Create a session; unknown categories fall back to general"""
        category = self.registry.resolve_category(survey_category)
        session = ConversationSession(survey_category=category.value)
        async with self.store.transaction() as tx:
            await tx.insert_session(session)
        logger.info("Started session {sid} ({category})", sid=session.id, category=category.value)
        return session

    async def get_session(self, session_id: str) -> Optional[ConversationSession]:
        return await self.store.get_session(session_id)

    async def get_slot_state(self, session_id: str) -> SlotState:
        session = await self._require_session(session_id)
        config = self.registry.get(session.survey_category)
        return SlotState.from_insights(config.slots, await self.store.get_insights(session_id))

    async def evaluate_completion(self, session_id: str) -> ContinuationDecision:
        """Current completion decision without side effects"""
        session = await self._require_session(session_id)
        config = self.registry.get(session.survey_category)
        turns = await self.store.get_turns(session_id)
        insights = await self.store.get_insights(session_id)
        return self.policy.evaluate(session, turns, insights, config)

    # ========== TURNS ==========

    async def next_question(self, session_id: str) -> Optional[Question]:
        """
        Next question for the session, or None when the interview is over.

        A stored question still awaiting its answer is returned again
        rather than creating a new turn. Once the interview is over the
        session's lock and cached summary are released.
        """
        async with self._lock(session_id):
            session = await self._require_session(session_id)

            pending = await self.store.get_pending_turn(session_id)
            if pending is not None:
                logger.debug("Re-issuing pending turn {n} for {sid}", n=pending.turn_number, sid=session_id)
                return question_from_turn(pending)

            question = await self.generator.next_question(session) if session.should_continue else None

        if question is None:
            self._release(session_id)
        return question

    def _release(self, session_id: str) -> None:
        self._locks.pop(session_id, None)
        self.context_builder.forget(session_id)
        logger.debug("Released per-session state for {sid}", sid=session_id)

    def tracked_sessions(self) -> list[str]:
        """Sessions currently holding a lock entry"""
        return list(self._locks)

    async def record_answer(
        self,
        session_id: str,
        question_id: str,
        answer_text: str,
        answer_metadata: Optional[dict[str, Any]] = None,
    ) -> RecordedAnswer:
        """
        Attach an answer, extract insights and update session aggregates.

        All writes for the answer happen in one transaction.

        Raises:
            TurnStateError: unknown session or question, or the turn is
                already answered
            StoreError: persistence failed (nothing was written)
        """
        async with self._lock(session_id):
            session = await self._require_session(session_id)

            turn = await self.store.get_turn_by_question_id(question_id)
            if turn is None or turn.session_id != session_id:
                raise TurnStateError(f"Unknown question {question_id} for session {session_id}")
            if turn.is_answered:
                raise TurnStateError(f"Turn {turn.turn_number} of session {session_id} is already answered")

            sentiment = self.extractor.sentiment(answer_text)
            extraction = await self.extractor.extract(turn.question_text, answer_text)

            new_insights = [
                Insight(
                    session_id=session_id,
                    insight_type=item.insight_type,
                    value=item.value,
                    confidence=item.confidence,
                    turn_number=turn.turn_number,
                    metadata=item.metadata,
                )
                for item in extraction.insights
            ]
            existing = await self.store.get_insights(session_id)

            self._apply_aggregates(session, extraction, existing + new_insights)
            session.current_turn = max(session.current_turn, turn.turn_number)
            if turn.question_metadata.get("phase") == ConversationPhase.OPEN_ENDED_FEEDBACK.value:
                session.feedback_turns += 1

            analysis = extraction.to_analysis()
            analysis["sentiment"] = sentiment.model_dump(mode="json")

            async with self.store.transaction() as tx:
                await tx.record_answer(question_id, answer_text, answer_metadata or {}, analysis)
                await tx.insert_insights(new_insights)
                await tx.update_session(session)

            self.answers_processed += 1
            logger.info(
                "Recorded answer for turn {n} of {sid}: {count} insights, sentiment={tone}",
                n=turn.turn_number,
                sid=session_id,
                count=len(new_insights),
                tone=sentiment.tone.value,
            )
            return RecordedAnswer(
                turn_number=turn.turn_number,
                insights=new_insights,
                sentiment=sentiment,
                extraction_method=extraction.method,
            )

    def _apply_aggregates(
        self,
        session: ConversationSession,
        extraction: ExtractionResult,
        all_insights: list[Insight],
    ) -> None:
        """Fold one answer's extraction into the session aggregates"""
        topics = list(extraction.topics_covered)
        topics += [i.value for i in extraction.insights if i.insight_type == InsightType.TOPIC_EXTRACTED]
        session.add_topics(topics)

        for item in extraction.insights:
            field = AGGREGATE_FIELDS.get(item.insight_type)
            if field:
                getattr(session, field).append(InsightEntry(value=item.value, confidence=item.confidence))

        if extraction.mean_confidence is not None:
            session.ai_confidence = extraction.mean_confidence

        if extraction.overall_completeness is not None:
            session.completion_percentage = extraction.overall_completeness
        else:
            config = self.registry.get(session.survey_category)
            session.completion_percentage = SlotState.from_insights(config.slots, all_insights).required_coverage

    def get_stats(self) -> dict:
        return {
            "answers_processed": self.answers_processed,
            "generator": self.generator.get_stats(),
            "extractor": self.extractor.get_stats(),
            "similarity": self.similarity_index.get_stats(),
        }


async def create_engine(
    db_path: Optional[Union[Path, str]] = None,
    model_provider: Optional[ModelProvider] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
) -> ConversationEngine:
    """
    Connect a store and build an engine.

    Without explicit providers, Claude is used when ANTHROPIC_API_KEY is set
    and sentence-transformers embeddings are always attempted.
    """
    configure_logging()
    store = ConversationStore(db_path or settings.DB_PATH)
    await store.connect()

    if model_provider is None and settings.ANTHROPIC_API_KEY:
        from survey_engine.providers.anthropic_provider import AnthropicModelProvider

        model_provider = AnthropicModelProvider()
        extraction_provider: Optional[ModelProvider] = AnthropicModelProvider(model=settings.EXTRACTION_MODEL)
    else:
        extraction_provider = None

    if embedding_provider is None:
        from survey_engine.providers.embedding_provider import SentenceTransformerEmbeddingProvider

        embedding_provider = SentenceTransformerEmbeddingProvider()

    return ConversationEngine(
        store,
        model_provider=model_provider,
        embedding_provider=embedding_provider,
        extraction_provider=extraction_provider,
    )
