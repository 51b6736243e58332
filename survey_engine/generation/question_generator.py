"""Next-question generation with anti-repetition retries and deterministic fallback"""

import asyncio
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, Field

from survey_engine.context.budget import ContextBudgetBuilder, format_context_for_prompt
from survey_engine.core.config import settings
from survey_engine.core.models import (
    ContinuationDecision,
    ConversationPhase,
    ConversationSession,
    GenerationMethod,
    Insight,
    InsightType,
    Question,
    SlotState,
    Turn,
)
from survey_engine.core.survey_types import SurveyTypeConfig, SurveyTypeRegistry
from survey_engine.extraction.validator import parse_model_output
from survey_engine.generation.prompts import (
    DEFAULT_FALLBACK_QUESTION,
    FALLBACK_QUESTIONS,
    OPEN_ENDED_FALLBACKS,
    build_system_prompt,
    build_user_prompt,
    generation_temperature,
)
from survey_engine.policy.completion import CompletionPolicy
from survey_engine.providers.base import ModelProvider
from survey_engine.similarity.similarity_index import SimilarityIndex, similarity_hash
from survey_engine.storage.sqlite_store import ConversationStore

# Coverage area -> insight type that evidences it
COVERAGE_AREAS: dict[str, InsightType] = {
    "problem_definition": InsightType.PAIN_POINT_DISCUSSED,
    "success_metrics": InsightType.KPI_MENTIONED,
    "stakeholders": InsightType.STAKEHOLDER_IDENTIFIED,
    "requirements": InsightType.REQUIREMENT_IDENTIFIED,
    "timeline": InsightType.TIMELINE_MENTIONED,
    "budget": InsightType.BUDGET_DISCUSSED,
}

WELL_COVERED_CONFIDENCE = 0.7
WELL_COVERED_COUNT = 2


class CoverageReport(BaseModel):
    well_covered: list[str] = Field(default_factory=list)
    needs_more_coverage: list[str] = Field(default_factory=list)
    scores: dict[str, float] = Field(default_factory=dict)

    @property
    def suggested_focus(self) -> Optional[str]:
        return self.needs_more_coverage[0] if self.needs_more_coverage else None

    def most_under_covered(self) -> list[str]:
        """Areas needing coverage, weakest first (stable on ties)"""
        return sorted(self.needs_more_coverage, key=lambda area: self.scores.get(area, 0.0))


def assess_coverage(insights: list[Insight]) -> CoverageReport:
    """
    Split coverage areas into well covered and needing more.

    An area is well covered when its insights average at least 0.7
    confidence or there are at least two of them.
    """
    report = CoverageReport()
    for area, insight_type in COVERAGE_AREAS.items():
        matching = [i for i in insights if i.insight_type == insight_type]
        average = sum(i.confidence for i in matching) / max(len(matching), 1)
        report.scores[area] = average
        if average >= WELL_COVERED_CONFIDENCE or len(matching) >= WELL_COVERED_COUNT:
            report.well_covered.append(area)
        else:
            report.needs_more_coverage.append(area)
    return report


class QuestionProposal(BaseModel):
    """Model reply for one generation attempt"""

    question_text: Optional[str] = None
    question_type: str = "text"
    intent: Optional[str] = None
    focus_area: Optional[str] = None
    reasoning: Optional[str] = None
    expected_insights: list[Any] = Field(default_factory=list)
    expected_slots: list[Any] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class QuestionGenerator:
    """
    Produce and persist the next question of a session.

    Flow: completion policy → rolling context → up to N model attempts,
    each screened by the similarity index → deterministic fallback when
    every attempt fails. The accepted question, its embedding and any
    phase transition are written in one transaction before returning.
    """

    def __init__(
        self,
        store: ConversationStore,
        similarity_index: SimilarityIndex,
        context_builder: Optional[ContextBudgetBuilder] = None,
        policy: Optional[CompletionPolicy] = None,
        model_provider: Optional[ModelProvider] = None,
        registry: Optional[SurveyTypeRegistry] = None,
        max_attempts: Optional[int] = None,
        base_temperature: Optional[float] = None,
        max_temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.similarity_index = similarity_index
        self.context_builder = context_builder or ContextBudgetBuilder()
        self.policy = policy or CompletionPolicy()
        self.model_provider = model_provider
        self.registry = registry or SurveyTypeRegistry()
        self.max_attempts = max_attempts or settings.MAX_GENERATION_ATTEMPTS
        self.base_temperature = (
            settings.QUESTION_GENERATION_TEMPERATURE if base_temperature is None else base_temperature
        )
        self.max_temperature = settings.MAX_TEMPERATURE if max_temperature is None else max_temperature
        self.timeout = timeout or settings.MODEL_TIMEOUT_SECONDS

        self.stats = {
            "questions": 0,
            "model_questions": 0,
            "fallback_questions": 0,
            "rejected_candidates": 0,
            "failed_attempts": 0,
        }

    async def next_question(self, session: ConversationSession) -> Optional[Question]:
        """
        Generate, persist and return the next question, or None when the
        interview is over.
        """
        config = self.registry.get(session.survey_category)
        turns = await self.store.get_turns(session.id)
        insights = await self.store.get_insights(session.id)

        decision = self.policy.evaluate(session, turns, insights, config)
        if not decision.should_continue:
            await self._close_session(session, decision)
            return None

        in_feedback = session.in_feedback_phase or decision.enters_feedback
        slot_state = SlotState.from_insights(config.slots, insights)
        context = self.context_builder.build(session.id, turns, slot_state, session.current_turn)
        context_text = format_context_for_prompt(context)
        coverage = assess_coverage(insights)

        text: Optional[str] = None
        metadata: dict[str, Any] = {}
        embedding: list[float] = []

        if self.model_provider is None:
            logger.info("No model provider, using fallback question for session {sid}", sid=session.id)
        else:
            for attempt in range(1, self.max_attempts + 1):
                proposal = await self._propose(config, context_text, coverage, in_feedback, attempt)
                if proposal is None:
                    self.stats["failed_attempts"] += 1
                    continue

                check = await self.similarity_index.check_similarity(
                    session.id,
                    proposal.question_text,
                    candidate_intent=proposal.intent,
                )
                if check.is_similar:
                    self.stats["rejected_candidates"] += 1
                    logger.info(
                        "Attempt {attempt}: candidate rejected ({reason}, {score:.3f})",
                        attempt=attempt,
                        reason=check.reason.value if check.reason else "similar",
                        score=check.max_similarity,
                    )
                    continue

                text = proposal.question_text
                embedding = check.embedding
                metadata = {
                    **proposal.metadata,
                    "question_type": proposal.question_type or "text",
                    "intent": proposal.intent,
                    "generation_method": GenerationMethod.MODEL.value,
                    "generation_attempt": attempt,
                    "focus_area": proposal.focus_area,
                    "reasoning": proposal.reasoning,
                    "expected_insights": proposal.expected_insights,
                    "expected_slots": proposal.expected_slots,
                    "context_tokens": context.total_tokens,
                }
                self.stats["model_questions"] += 1
                break

        if text is None:
            text, focus_area = self._fallback_question(config, turns, coverage, in_feedback)
            embedding = await self.similarity_index.embed(text)
            metadata = {
                "question_type": "text",
                "generation_method": GenerationMethod.FALLBACK.value,
                "focus_area": focus_area,
                "reasoning": "Model unavailable or every attempt rejected; using template-based fallback",
                "context_tokens": context.total_tokens,
            }
            self.stats["fallback_questions"] += 1

        metadata = {k: v for k, v in metadata.items() if v is not None}
        metadata["phase"] = (
            ConversationPhase.OPEN_ENDED_FEEDBACK.value if in_feedback else ConversationPhase.GATHERING.value
        )

        async with self.store.transaction() as tx:
            if decision.enters_feedback and not session.in_feedback_phase:
                session.phase = ConversationPhase.OPEN_ENDED_FEEDBACK
                session.feedback_turns = 0
                await tx.update_session(session)
                logger.info("Session {sid} entered open-ended feedback phase", sid=session.id)

            turn = Turn(
                session_id=session.id,
                turn_number=await tx.next_turn_number(session.id),
                question_text=text,
                question_metadata=metadata,
            )
            await tx.insert_turn(turn)
            await tx.insert_question_embedding(self.similarity_index.make_record(session.id, text, embedding))

        self.stats["questions"] += 1
        logger.info(
            "Turn {n} question ({method}) for session {sid}: {text}",
            n=turn.turn_number,
            method=metadata["generation_method"],
            sid=session.id,
            text=text[:80],
        )
        return question_from_turn(turn)

    async def _propose(
        self,
        config: SurveyTypeConfig,
        context_text: str,
        coverage: CoverageReport,
        in_feedback: bool,
        attempt: int,
    ) -> Optional[QuestionProposal]:
        """One model attempt; None on any failure or an empty question"""
        system_prompt = build_system_prompt(
            config, context_text, coverage.needs_more_coverage, coverage.well_covered, in_feedback
        )
        user_prompt = build_user_prompt(
            config, attempt, self.max_attempts, coverage.suggested_focus or "", in_feedback
        )
        temperature = generation_temperature(attempt, self.base_temperature, self.max_temperature)

        try:
            raw = await asyncio.wait_for(
                self.model_provider.invoke(system_prompt, user_prompt, temperature=temperature, response_format="json"),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Attempt {attempt}: question generation timed out", attempt=attempt)
            return None
        except Exception as e:
            logger.warning("Attempt {attempt}: question generation failed: {error}", attempt=attempt, error=str(e))
            return None

        proposal = parse_model_output(raw, QuestionProposal)
        if proposal is None or not proposal.question_text or not proposal.question_text.strip():
            logger.debug("Attempt {attempt}: model returned no question", attempt=attempt)
            return None
        proposal.question_text = proposal.question_text.strip()
        return proposal

    def _fallback_question(
        self,
        config: SurveyTypeConfig,
        turns: list[Turn],
        coverage: CoverageReport,
        in_feedback: bool,
    ) -> tuple[str, Optional[str]]:
        """
        Static question for the weakest area (or an open-ended prompt in
        the feedback phase), skipping wording already asked this session.
        """
        asked = {similarity_hash(t.question_text) for t in turns}

        if in_feedback:
            options = [(config.open_ended_question, "open_ended_feedback")]
            options += [(q, "open_ended_feedback") for q in OPEN_ENDED_FALLBACKS]
        else:
            options = [(FALLBACK_QUESTIONS[area], area) for area in coverage.most_under_covered()]
            options.append((DEFAULT_FALLBACK_QUESTION, None))

        for text, area in options:
            if similarity_hash(text) not in asked:
                return text, area
        return options[-1]

    async def _close_session(self, session: ConversationSession, decision: ContinuationDecision) -> None:
        if not session.should_continue and session.stop_reason == decision.reason.value:
            return
        session.should_continue = False
        session.stop_reason = decision.reason.value
        async with self.store.transaction() as tx:
            await tx.update_session(session)
        logger.info(
            "Session {sid} complete: {reason} (completeness={c:.2f})",
            sid=session.id,
            reason=decision.reason.value,
            c=decision.completeness,
        )

    def get_stats(self) -> dict:
        return dict(self.stats)


def question_from_turn(turn: Turn) -> Question:
    return Question(
        question_id=turn.question_id,
        session_id=turn.session_id,
        turn_number=turn.turn_number,
        question_text=turn.question_text,
        question_type=turn.question_metadata.get("question_type", "text"),
        intent=turn.intent,
        metadata=turn.question_metadata,
    )
