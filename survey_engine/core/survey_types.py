"""Survey-type registry: per-category prompting, completion and slot rules"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from survey_engine.core.models import InsightType, SlotDefinition


class SurveyCategory(str, Enum):
    """Registered survey categories"""

    GENERAL = "general"
    REQUIREMENTS = "requirements"
    COURSE_FEEDBACK = "course_feedback"
    CUSTOMER_FEEDBACK = "customer_feedback"
    EMPLOYEE_FEEDBACK = "employee_feedback"
    IT_SUPPORT = "it_support"
    BUSINESS_ANALYSIS = "business_analysis"
    NPS_SURVEY = "nps_survey"


class CompletionRules(BaseModel):
    """Thresholds read by the completion policy"""

    threshold: float = 0.75
    has_open_ended_phase: bool = True
    open_ended_questions: int = 2
    max_questions: Optional[int] = None
    min_turns: int = 3
    essential_info_cutoff: float = 0.75
    essential_info_feedback_quota: int = 3
    fatigue_window: int = 2
    fatigue_min_chars: int = 20


class PromptGuidance(BaseModel):
    """Category-specific framing for question generation"""

    role_description: str = "a professional survey conductor"
    key_priorities: list[str] = Field(default_factory=lambda: ["Gather comprehensive information"])
    avoidance_patterns: list[str] = Field(default_factory=list)
    language_tone: str = "professional"
    sentiment_handling: str = "Handle sentiment appropriately based on context"
    keyword_focus: list[str] = Field(default_factory=list)
    sentiment_priority: bool = True


class SurveyTypeConfig(BaseModel):
    """Complete configuration of one survey category"""

    category: SurveyCategory
    name: str
    description: str = ""
    survey_goal: str = "Gather comprehensive information"
    completion: CompletionRules = Field(default_factory=CompletionRules)
    guidance: PromptGuidance = Field(default_factory=PromptGuidance)
    required_insights: list[InsightType] = Field(default_factory=list)
    slots: list[SlotDefinition] = Field(default_factory=list)
    open_ended_question: str = "Is there anything else you'd like to share?"

    def slot_schema(self) -> dict[str, SlotDefinition]:
        return {slot.name: slot for slot in self.slots}


def _slot(
    name: str,
    *insight_types: InsightType,
    required: bool = False,
    critical: bool = False,
    min_confidence: float = 0.7,
) -> SlotDefinition:
    return SlotDefinition(
        name=name,
        required=required,
        critical=critical,
        min_confidence=min_confidence,
        insight_types=list(insight_types),
    )


T = InsightType

SURVEY_TYPE_REGISTRY: dict[SurveyCategory, SurveyTypeConfig] = {
    SurveyCategory.GENERAL: SurveyTypeConfig(
        category=SurveyCategory.GENERAL,
        name="General Purpose",
        description="General purpose surveys with flexible configuration",
        completion=CompletionRules(threshold=0.75, open_ended_questions=2),
        slots=[
            _slot("basic_info", T.TOPIC_EXTRACTED, required=True, critical=True),
            _slot("preferences", T.REQUIREMENT_IDENTIFIED, T.SOLUTION_SUGGESTED, required=True),
            _slot("suggestions", T.SOLUTION_SUGGESTED),
            _slot("constraints", T.BUDGET_DISCUSSED, T.TIMELINE_MENTIONED),
            _slot("goals", T.KPI_MENTIONED),
        ],
        open_ended_question="Is there anything else you'd like to share?",
    ),
    SurveyCategory.REQUIREMENTS: SurveyTypeConfig(
        category=SurveyCategory.REQUIREMENTS,
        name="IT Project Intake",
        description="Gather requirements for IT projects and solutions",
        survey_goal="Produce a complete project brief",
        completion=CompletionRules(threshold=0.90, has_open_ended_phase=False, open_ended_questions=0),
        guidance=PromptGuidance(
            role_description="a structured requirements analyst focused on comprehensive project understanding",
            key_priorities=[
                "Define clear business objectives and success criteria",
                "Gather detailed functional requirements",
                "Identify technical constraints and stakeholders",
                "Establish timeline and budget expectations",
                "Avoid repetition and fatigue while ensuring completeness",
            ],
            avoidance_patterns=[
                "Avoid asking about feelings or emotions",
                "Don't repeat questions about already-covered topics",
                "Avoid vague or open-ended exploration",
            ],
            language_tone="professional",
            sentiment_handling=(
                "Focus on facts, not feelings. For any ambiguous requirements, "
                "ask for clarification and specifics."
            ),
            keyword_focus=["requirement", "must have", "stakeholder", "budget", "timeline", "constraint"],
            sentiment_priority=False,
        ),
        required_insights=[
            T.REQUIREMENT_IDENTIFIED,
            T.STAKEHOLDER_IDENTIFIED,
            T.TIMELINE_MENTIONED,
            T.BUDGET_DISCUSSED,
        ],
        slots=[
            _slot("business_objectives", T.PAIN_POINT_DISCUSSED, T.TOPIC_EXTRACTED, required=True, critical=True, min_confidence=0.8),
            _slot("functional_requirements", T.REQUIREMENT_IDENTIFIED, required=True, critical=True, min_confidence=0.8),
            _slot("stakeholders", T.STAKEHOLDER_IDENTIFIED, required=True, critical=True, min_confidence=0.9),
            _slot("timeline", T.TIMELINE_MENTIONED, required=True),
            _slot("budget", T.BUDGET_DISCUSSED),
            _slot("success_metrics", T.KPI_MENTIONED, min_confidence=0.8),
        ],
    ),
    SurveyCategory.COURSE_FEEDBACK: SurveyTypeConfig(
        category=SurveyCategory.COURSE_FEEDBACK,
        name="Course Feedback",
        description="Gather feedback on courses, training, or educational experiences",
        completion=CompletionRules(threshold=0.75, open_ended_questions=3, max_questions=12),
        guidance=PromptGuidance(
            role_description="an empathetic educational feedback analyst who understands the learning journey",
            key_priorities=[
                "Identify and explore emotional responses to the learning experience",
                "Discover specific challenges and pain points in the course",
                "Gather actionable suggestions for improvement",
                "Understand the learning outcomes and knowledge gained",
            ],
            avoidance_patterns=[
                "Avoid technical jargon when asking about course structure",
                "Avoid repetitive questions about the same topic",
            ],
            language_tone="empathetic",
            sentiment_handling=(
                "When negative sentiment appears, immediately explore the specific challenges. "
                "When positive sentiment appears, understand what worked well and how to replicate it."
            ),
            keyword_focus=["difficult", "confusing", "helpful", "learned", "improve", "struggle"],
        ),
        required_insights=[T.PAIN_POINT_DISCUSSED, T.SOLUTION_SUGGESTED],
        slots=[
            _slot("overall_experience", T.TOPIC_EXTRACTED, required=True, critical=True),
            _slot("challenges_faced", T.PAIN_POINT_DISCUSSED, required=True, critical=True),
            _slot("suggestions", T.SOLUTION_SUGGESTED, required=True),
            _slot("learning_outcomes", T.KPI_MENTIONED, required=True, critical=True),
        ],
        open_ended_question="Is there anything else about your learning experience that you'd like to share?",
    ),
    SurveyCategory.CUSTOMER_FEEDBACK: SurveyTypeConfig(
        category=SurveyCategory.CUSTOMER_FEEDBACK,
        name="Customer Feedback",
        description="Gather feedback on products, services, or customer experience",
        completion=CompletionRules(threshold=0.70, open_ended_questions=2),
        guidance=PromptGuidance(
            role_description="an empathetic customer experience analyst focused on understanding satisfaction and loyalty",
            key_priorities=[
                "Measure overall satisfaction levels and sentiment",
                "Identify specific pain points or issues experienced",
                "Gather actionable improvement suggestions",
                "Assess likelihood to recommend",
            ],
            avoidance_patterns=["Avoid asking about internal company processes"],
            language_tone="friendly",
            sentiment_handling="Acknowledge frustration before asking for details; celebrate positives briefly.",
            keyword_focus=["satisfied", "disappointed", "recommend", "issue", "love"],
        ),
        required_insights=[T.PAIN_POINT_DISCUSSED, T.SOLUTION_SUGGESTED],
        slots=[
            _slot("satisfaction_rating", T.KPI_MENTIONED, required=True, critical=True),
            _slot("experience_description", T.TOPIC_EXTRACTED, T.PAIN_POINT_DISCUSSED, required=True, critical=True),
            _slot("recommendation_likelihood", T.KPI_MENTIONED, required=True),
            _slot("improvement_suggestions", T.SOLUTION_SUGGESTED),
        ],
        open_ended_question="Is there anything else you'd like us to know about your experience?",
    ),
    SurveyCategory.EMPLOYEE_FEEDBACK: SurveyTypeConfig(
        category=SurveyCategory.EMPLOYEE_FEEDBACK,
        name="Employee Feedback",
        description="Gather feedback on workplace experience and culture",
        completion=CompletionRules(threshold=0.80, open_ended_questions=2),
        guidance=PromptGuidance(
            role_description="a confidential, supportive workplace experience researcher",
            key_priorities=[
                "Understand overall workplace satisfaction",
                "Surface concerns about management, workload and culture",
                "Gather concrete improvement suggestions",
            ],
            avoidance_patterns=["Never ask for names of colleagues", "Avoid leading questions"],
            language_tone="supportive",
            sentiment_handling="Treat negative remarks as safe to explore; reassure confidentiality.",
        ),
        required_insights=[T.PAIN_POINT_DISCUSSED, T.SOLUTION_SUGGESTED],
        slots=[
            _slot("workplace_satisfaction", T.TOPIC_EXTRACTED, required=True, critical=True),
            _slot("concerns", T.PAIN_POINT_DISCUSSED, required=True),
            _slot("improvement_suggestions", T.SOLUTION_SUGGESTED, required=True),
        ],
        open_ended_question="Is there anything else about your work experience you'd like to share?",
    ),
    SurveyCategory.IT_SUPPORT: SurveyTypeConfig(
        category=SurveyCategory.IT_SUPPORT,
        name="IT Support",
        description="Diagnose and document IT issues",
        completion=CompletionRules(threshold=0.85, has_open_ended_phase=False, open_ended_questions=0),
        guidance=PromptGuidance(
            role_description="a methodical IT support specialist",
            key_priorities=[
                "Capture the exact symptoms",
                "Identify the affected environment",
                "Establish when the problem started",
            ],
            avoidance_patterns=["Avoid jargon the user may not know"],
            language_tone="clear",
            sentiment_handling="Acknowledge frustration briefly, then focus on diagnostic facts.",
            sentiment_priority=False,
        ),
        required_insights=[T.PAIN_POINT_DISCUSSED, T.TIMELINE_MENTIONED],
        slots=[
            _slot("symptoms", T.PAIN_POINT_DISCUSSED, required=True, critical=True),
            _slot("environment", T.TOPIC_EXTRACTED, required=True),
            _slot("timeline", T.TIMELINE_MENTIONED, required=True),
        ],
    ),
    SurveyCategory.BUSINESS_ANALYSIS: SurveyTypeConfig(
        category=SurveyCategory.BUSINESS_ANALYSIS,
        name="Business Analysis",
        description="Analyse current and desired state of a business process",
        completion=CompletionRules(threshold=0.90, open_ended_questions=2),
        guidance=PromptGuidance(
            role_description="a senior business analyst mapping current state to desired state",
            key_priorities=[
                "Document the current process and its pain points",
                "Describe the desired future state",
                "Identify gaps and affected stakeholders",
            ],
            language_tone="professional",
            sentiment_handling="Use frustration as a pointer to process gaps.",
        ),
        required_insights=[T.PAIN_POINT_DISCUSSED, T.REQUIREMENT_IDENTIFIED, T.STAKEHOLDER_IDENTIFIED],
        slots=[
            _slot("current_state", T.PAIN_POINT_DISCUSSED, required=True, critical=True),
            _slot("desired_state", T.REQUIREMENT_IDENTIFIED, T.SOLUTION_SUGGESTED, required=True),
            _slot("stakeholders", T.STAKEHOLDER_IDENTIFIED, required=True, min_confidence=0.9),
            _slot("success_metrics", T.KPI_MENTIONED),
        ],
    ),
    SurveyCategory.NPS_SURVEY: SurveyTypeConfig(
        category=SurveyCategory.NPS_SURVEY,
        name="Net Promoter Score",
        description="Measure customer loyalty and satisfaction",
        completion=CompletionRules(threshold=0.60, open_ended_questions=1),
        guidance=PromptGuidance(
            role_description="a concise loyalty researcher",
            key_priorities=["Obtain the score", "Understand the primary reason for the score"],
            language_tone="friendly",
        ),
        slots=[
            _slot("nps_score", T.KPI_MENTIONED, required=True, critical=True),
            _slot("reason", T.TOPIC_EXTRACTED, T.PAIN_POINT_DISCUSSED, required=True, critical=True),
        ],
        open_ended_question="Any additional feedback?",
    ),
}


class SurveyTypeRegistry:
    """
    Lookup wrapper over SURVEY_TYPE_REGISTRY.

    Unknown or missing categories resolve to the GENERAL entry.
    """

    def __init__(self, registry: Optional[dict[SurveyCategory, SurveyTypeConfig]] = None):
        self.registry = registry if registry is not None else SURVEY_TYPE_REGISTRY

    def resolve_category(self, category: Optional[str]) -> SurveyCategory:
        try:
            return SurveyCategory(category) if category else SurveyCategory.GENERAL
        except ValueError:
            return SurveyCategory.GENERAL

    def get(self, category: Optional[str]) -> SurveyTypeConfig:
        resolved = self.resolve_category(category)
        return self.registry.get(resolved, self.registry[SurveyCategory.GENERAL])


def get_survey_type_config(category: Optional[str]) -> SurveyTypeConfig:
    """Configuration for a category, defaulting to GENERAL"""
    return SurveyTypeRegistry().get(category)
