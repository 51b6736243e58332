"""
Interview completion policy.

A pure function of (session, turns, insights, survey-type config). It
reports whether to continue and why; the engine applies any phase
transition it signals.

States: GATHERING → FEEDBACK (optional) → COMPLETE, with max turns as an
absorbing exit from any state.
"""

from typing import Optional

from loguru import logger

from survey_engine.core.config import settings
from survey_engine.core.models import (
    CompletionReason,
    ContinuationDecision,
    ConversationPhase,
    ConversationSession,
    Insight,
    InsightType,
    Turn,
)
from survey_engine.core.survey_types import SurveyTypeConfig

# Essential business information and the area name reported when missing
ESSENTIAL_INSIGHTS: dict[InsightType, str] = {
    InsightType.KPI_MENTIONED: "success_metrics",
    InsightType.STAKEHOLDER_IDENTIFIED: "stakeholders",
    InsightType.PAIN_POINT_DISCUSSED: "pain_points",
    InsightType.REQUIREMENT_IDENTIFIED: "requirements",
}


def effective_max_turns(config: SurveyTypeConfig, default_max_turns: Optional[int] = None) -> int:
    return config.completion.max_questions or default_max_turns or settings.DEFAULT_MAX_TURNS


def essential_info_score(insights: list[Insight]) -> float:
    """Fraction of essential insight categories with at least one insight"""
    present = {i.insight_type for i in insights}
    return sum(1 for t in ESSENTIAL_INSIGHTS if t in present) / len(ESSENTIAL_INSIGHTS)


def _threshold_branch(
    session: ConversationSession,
    config: SurveyTypeConfig,
    completeness: float,
    feedback_quota: int,
) -> ContinuationDecision:
    """Decision once enough information is gathered"""
    if not config.completion.has_open_ended_phase:
        return ContinuationDecision(
            should_continue=False,
            reason=CompletionReason.SURVEY_COMPLETE,
            completeness=completeness,
            phase=session.phase,
        )

    if not session.in_feedback_phase:
        return ContinuationDecision(
            should_continue=True,
            reason=CompletionReason.TRANSITION_TO_FEEDBACK,
            completeness=completeness,
            phase=ConversationPhase.OPEN_ENDED_FEEDBACK,
        )

    if session.feedback_turns >= feedback_quota:
        return ContinuationDecision(
            should_continue=False,
            reason=CompletionReason.FEEDBACK_COMPLETE,
            completeness=completeness,
            phase=ConversationPhase.OPEN_ENDED_FEEDBACK,
        )

    return ContinuationDecision(
        should_continue=True,
        reason=CompletionReason.FEEDBACK_CONTINUING,
        completeness=completeness,
        phase=ConversationPhase.OPEN_ENDED_FEEDBACK,
    )


def evaluate_completion(
    session: ConversationSession,
    turns: list[Turn],
    insights: list[Insight],
    config: SurveyTypeConfig,
    default_max_turns: Optional[int] = None,
) -> ContinuationDecision:
    """
    Decide whether the interview should continue.

    Rules are applied in fixed priority order; the first that fires wins.

    Args:
        session: Current session state
        turns: Session turns (unanswered ones are ignored)
        insights: Every insight recorded for the session
        config: Survey-type configuration holding all thresholds
        default_max_turns: Global cap when the type defines none

    Returns:
        ContinuationDecision
    """
    rules = config.completion
    answered = [t for t in turns if t.is_answered]
    completeness = session.completion_percentage
    max_turns = effective_max_turns(config, default_max_turns)

    def decide(should_continue: bool, reason: CompletionReason, **extra) -> ContinuationDecision:
        decision = ContinuationDecision(
            should_continue=should_continue,
            reason=reason,
            completeness=extra.pop("completeness", completeness),
            phase=extra.pop("phase", session.phase),
            **extra,
        )
        logger.debug(
            "Completion for {sid}: continue={cont} reason={reason}",
            sid=session.id,
            cont=decision.should_continue,
            reason=decision.reason.value,
        )
        return decision

    # 1. Hard cap
    if session.current_turn >= max_turns:
        return decide(False, CompletionReason.MAX_TURNS_REACHED)

    # 2. Minimum exchanges
    if len(answered) < rules.min_turns:
        return decide(True, CompletionReason.MIN_TURNS_NOT_MET)

    # 3. Required insight coverage
    collected = {i.insight_type for i in insights}
    missing = [t.value for t in config.required_insights if t not in collected]
    if missing:
        return decide(True, CompletionReason.REQUIRED_INSIGHTS_MISSING, missing_insights=missing)

    # 4. Completeness threshold
    if completeness >= rules.threshold:
        return _threshold_branch(session, config, completeness, rules.open_ended_questions)

    # 5. Essential business information
    essential = essential_info_score(insights)
    if essential >= rules.essential_info_cutoff:
        return _threshold_branch(
            session,
            config,
            max(completeness, essential),
            rules.essential_info_feedback_quota,
        )

    # 6. Fatigue: every answer in the window is short
    window = answered[-rules.fatigue_window:] if rules.fatigue_window > 0 else []
    if len(window) == rules.fatigue_window and window and all(
        len((t.answer_text or "").strip()) < rules.fatigue_min_chars for t in window
    ):
        return decide(False, CompletionReason.USER_FATIGUE)

    # 7. Keep gathering
    missing_areas = [area for t, area in ESSENTIAL_INSIGHTS.items() if t not in collected]
    return decide(True, CompletionReason.MORE_INFO_NEEDED, missing_areas=missing_areas)


class CompletionPolicy:
    """Binds evaluate_completion to a global turn cap"""

    def __init__(self, default_max_turns: Optional[int] = None) -> None:
        self.default_max_turns = default_max_turns or settings.DEFAULT_MAX_TURNS

    def evaluate(
        self,
        session: ConversationSession,
        turns: list[Turn],
        insights: list[Insight],
        config: SurveyTypeConfig,
    ) -> ContinuationDecision:
        return evaluate_completion(session, turns, insights, config, self.default_max_turns)
