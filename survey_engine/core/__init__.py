"""Core data models, survey-type registry and configuration"""

from survey_engine.core.models import (
    InsightType,
    ConversationPhase,
    SlotStatus,
    SentimentTone,
    CompletionReason,
    SimilarityReason,
    GenerationMethod,
    ConversationSession,
    Turn,
    Insight,
    Question,
    SlotState,
    SentimentResult,
    ContinuationDecision,
    SimilarityResult,
    RecordedAnswer,
)
from survey_engine.core.survey_types import SurveyCategory, SurveyTypeConfig, get_survey_type_config
from survey_engine.core.config import settings

__all__ = [
    "InsightType",
    "ConversationPhase",
    "SlotStatus",
    "SentimentTone",
    "CompletionReason",
    "SimilarityReason",
    "GenerationMethod",
    "ConversationSession",
    "Turn",
    "Insight",
    "Question",
    "SlotState",
    "SentimentResult",
    "ContinuationDecision",
    "SimilarityResult",
    "RecordedAnswer",
    "SurveyCategory",
    "SurveyTypeConfig",
    "get_survey_type_config",
    "settings",
]
