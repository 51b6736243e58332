"""Core data models for the adaptive conversation engine"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field


class InsightType(str, Enum):
    """Categories of facts extracted from an answer"""

    TOPIC_EXTRACTED = "topic_extracted"
    REQUIREMENT_IDENTIFIED = "requirement_identified"
    KPI_MENTIONED = "kpi_mentioned"
    STAKEHOLDER_IDENTIFIED = "stakeholder_identified"
    PAIN_POINT_DISCUSSED = "pain_point_discussed"
    TIMELINE_MENTIONED = "timeline_mentioned"
    BUDGET_DISCUSSED = "budget_discussed"
    SOLUTION_SUGGESTED = "solution_suggested"


class ConversationPhase(str, Enum):
    """Interview phase stored on the session"""

    GATHERING = "gathering"
    OPEN_ENDED_FEEDBACK = "open_ended_feedback"


class SlotStatus(str, Enum):
    """Confidence-gated state of a slot"""

    UNKNOWN = "unknown"
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"


class SentimentTone(str, Enum):
    """Coarse tone of an answer"""

    NEGATIVE = "negative"
    POSITIVE = "positive"
    CHALLENGING = "challenging"
    NEUTRAL = "neutral"


class CompletionReason(str, Enum):
    """Why the completion policy decided to continue or stop"""

    MAX_TURNS_REACHED = "max_turns_reached"
    MIN_TURNS_NOT_MET = "min_turns_not_met"
    REQUIRED_INSIGHTS_MISSING = "required_insights_missing"
    TRANSITION_TO_FEEDBACK = "transition_to_open_ended_feedback"
    FEEDBACK_COMPLETE = "open_ended_feedback_complete"
    FEEDBACK_CONTINUING = "open_ended_feedback_continuing"
    SURVEY_COMPLETE = "survey_complete"
    USER_FATIGUE = "user_fatigue_detected"
    MORE_INFO_NEEDED = "more_info_needed"


class SimilarityReason(str, Enum):
    """Why a candidate question was rejected"""

    INTENT_COOLDOWN = "intent_cooldown"
    TOPIC_STREAK_LIMIT = "topic_streak_limit"
    SEMANTIC_SIMILARITY = "semantic_similarity"


class GenerationMethod(str, Enum):
    """How a question was produced"""

    MODEL = "model"
    FALLBACK = "fallback"


class InsightEntry(BaseModel):
    """Compact value/confidence pair kept in session aggregates"""

    value: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ConversationSession(BaseModel):
    """
    Turn-by-turn state of one interview.

    Created at interview start and mutated only by the engine while it
    processes that session's turns.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    survey_category: str = "general"
    current_turn: int = 0
    completion_percentage: float = Field(default=0.0, ge=0.0, le=1.0)
    should_continue: bool = True
    phase: ConversationPhase = ConversationPhase.GATHERING
    feedback_turns: int = 0
    topics_covered: list[str] = Field(default_factory=list)
    kpis: list[InsightEntry] = Field(default_factory=list)
    stakeholders: list[InsightEntry] = Field(default_factory=list)
    pain_points: list[InsightEntry] = Field(default_factory=list)
    ai_confidence: float = 0.5
    stop_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @computed_field  # type: ignore[misc]
    @property
    def in_feedback_phase(self) -> bool:
        return self.phase == ConversationPhase.OPEN_ENDED_FEEDBACK

    def add_topics(self, topics: list[str]) -> None:
        """Merge topics keeping first-seen order (set semantics)"""
        for topic in topics:
            topic = topic.strip()
            if topic and topic not in self.topics_covered:
                self.topics_covered.append(topic)


class Turn(BaseModel):
    """One question/answer exchange"""

    session_id: str
    turn_number: int = Field(ge=1)
    question_id: str = Field(default_factory=lambda: str(uuid4()))
    question_text: str
    question_metadata: dict[str, Any] = Field(default_factory=dict)
    answer_text: Optional[str] = None
    answer_metadata: dict[str, Any] = Field(default_factory=dict)
    ai_analysis: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_answered(self) -> bool:
        return self.answer_text is not None

    @property
    def intent(self) -> Optional[str]:
        return self.question_metadata.get("intent")


class QuestionEmbedding(BaseModel):
    """Stored vector of an asked question, used for intra-session lookups"""

    session_id: str
    question_text: str
    embedding_vector: list[float]
    similarity_hash: str
    created_at: datetime = Field(default_factory=datetime.now)


class Insight(BaseModel):
    """Typed, confidence-scored fact extracted from an answer"""

    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    insight_type: InsightType
    value: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    turn_number: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class SlotValue(BaseModel):
    """Current value of one slot"""

    value: Optional[str] = None
    confidence: float = 0.0
    status: SlotStatus = SlotStatus.UNKNOWN


class SlotDefinition(BaseModel):
    """Schema entry for one slot"""

    name: str
    required: bool = False
    critical: bool = False
    min_confidence: float = 0.7
    insight_types: list[InsightType] = Field(default_factory=list)
    description: str = ""


class SlotState(BaseModel):
    """Slot values paired with the schema they were derived from"""

    definitions: dict[str, SlotDefinition] = Field(default_factory=dict)
    slots: dict[str, SlotValue] = Field(default_factory=dict)

    @classmethod
    def from_insights(cls, definitions: list[SlotDefinition], insights: list["Insight"]) -> "SlotState":
        """Fill each slot from its highest-confidence feeding insight"""
        state = cls(definitions={d.name: d for d in definitions})
        for definition in definitions:
            feeding = [i for i in insights if i.insight_type in definition.insight_types and i.value]
            if not feeding:
                state.slots[definition.name] = SlotValue()
                continue
            best = max(feeding, key=lambda i: i.confidence)
            state.slots[definition.name] = SlotValue(value=best.value, confidence=best.confidence)
            state.slots[definition.name].status = state.status_of(definition.name)
        return state

    def status_of(self, name: str) -> SlotStatus:
        """Recompute status against the schema's min_confidence"""
        slot = self.slots.get(name)
        definition = self.definitions.get(name)
        if slot is None or definition is None or not slot.value:
            return SlotStatus.UNKNOWN
        if slot.confidence >= definition.min_confidence:
            return SlotStatus.CONFIRMED
        return SlotStatus.PROVISIONAL

    @computed_field  # type: ignore[misc]
    @property
    def required_coverage(self) -> float:
        """Fraction of required slots that are confirmed"""
        required = [name for name, d in self.definitions.items() if d.required]
        if not required:
            return 0.0
        confirmed = sum(1 for name in required if self.status_of(name) == SlotStatus.CONFIRMED)
        return confirmed / len(required)


class SentimentResult(BaseModel):
    """Local heuristic sentiment of an answer"""

    tone: SentimentTone = SentimentTone.NEUTRAL
    confidence: int = Field(default=50, ge=0, le=100)
    key_points: list[str] = Field(default_factory=list)


class Question(BaseModel):
    """A question handed to the caller; always already persisted"""

    question_id: str
    session_id: str
    turn_number: int
    question_text: str
    question_type: str = "text"
    intent: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def generation_method(self) -> Optional[str]:
        return self.metadata.get("generation_method")


class ContinuationDecision(BaseModel):
    """Output of the completion policy"""

    should_continue: bool
    reason: CompletionReason
    completeness: float = 0.0
    phase: ConversationPhase = ConversationPhase.GATHERING
    missing_insights: list[str] = Field(default_factory=list)
    missing_areas: list[str] = Field(default_factory=list)

    @property
    def enters_feedback(self) -> bool:
        return self.reason == CompletionReason.TRANSITION_TO_FEEDBACK


class SimilarityResult(BaseModel):
    """Outcome of an anti-repetition check"""

    is_similar: bool
    max_similarity: float = 0.0
    matched_question: Optional[str] = None
    reason: Optional[SimilarityReason] = None
    embedding: list[float] = Field(default_factory=list)


class RecordedAnswer(BaseModel):
    """Result of processing one answer"""

    turn_number: int
    insights: list[Insight] = Field(default_factory=list)
    sentiment: SentimentResult
    extraction_method: str = "model"
