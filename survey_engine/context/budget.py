"""
Token-bounded rolling context for question generation.

Three tiers:
  1. the most recent answered turns, verbatim
  2. a compact slot-status vector
  3. a topic-bucketed summary of every older turn

When the estimate exceeds the budget, Tier 3 shrinks toward its floor
first, then the oldest Tier-1 turns are dropped (never below two). As a
last resort Tier 3 is clipped below its floor and the retained Tier-1
text is clipped.
"""

import json
import math
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from survey_engine.core.config import settings
from survey_engine.core.models import SlotState, Turn
from survey_engine.extraction.sentiment import analyze_sentiment

MIN_TIER1_TURNS = 2
SUMMARY_REGENERATION_INTERVAL = 3

# First matching topic wins; anything unmatched lands in "other"
SUMMARY_TOPICS: dict[str, list[str]] = {
    "problem": ["problem", "issue", "challenge"],
    "stakeholders": ["stakeholder", "team", "people"],
    "requirements": ["requirement", "feature", "need"],
    "metrics": ["metric", "success", "measure"],
    "timeline": ["time", "timeline", "schedule"],
}


class ContextTurn(BaseModel):
    """Verbatim Tier-1 entry"""

    turn: int
    question: str
    answer: str


class RollingContext(BaseModel):
    tier1: list[ContextTurn] = Field(default_factory=list)
    tier2: str = ""
    tier3: str = ""
    total_tokens: int = 0


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate: ~4 chars per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def _tier1_tokens(tier1: list[ContextTurn]) -> int:
    return estimate_tokens(json.dumps([t.model_dump() for t in tier1], separators=(",", ":"), ensure_ascii=False))


def _total_tokens(context: RollingContext) -> int:
    return _tier1_tokens(context.tier1) + estimate_tokens(context.tier2) + estimate_tokens(context.tier3)


def build_state_vector(slot_state: Optional[SlotState]) -> str:
    """Tier 2: one `slot:status` entry per tracked slot"""
    if slot_state is None or not slot_state.slots:
        return "No slot state available"

    entries = [
        f"{name}:{slot_state.status_of(name).value}"
        for name in slot_state.slots
        if name in slot_state.definitions
    ]
    return f"Slot States: {', '.join(entries)}"


def _summary_topic(turn: Turn) -> str:
    text = f"{turn.question_text} {turn.answer_text or ''}".lower()
    for topic, terms in SUMMARY_TOPICS.items():
        if any(term in text for term in terms):
            return topic
    return "other"


def build_running_summary(older_turns: list[Turn]) -> str:
    """Tier 3: older turns bucketed by topic as `question... → answer...` snippets"""
    if not older_turns:
        return "No previous conversation history"

    buckets: dict[str, list[Turn]] = {topic: [] for topic in [*SUMMARY_TOPICS, "other"]}
    for turn in older_turns:
        buckets[_summary_topic(turn)].append(turn)

    parts = []
    for topic, turns in buckets.items():
        if not turns:
            continue
        snippets = "; ".join(
            f"{t.question_text[:50]}... → {(t.answer_text or '')[:100]}..." for t in turns
        )
        parts.append(f"{topic.capitalize()}: {snippets}")
    return "\n".join(parts)


def truncate_to_tokens(text: str, target_tokens: int) -> str:
    """
    Cut text to roughly target_tokens.

    Prefers ending on a sentence boundary when one falls in the last 20%
    of the allowed span; otherwise cuts hard and appends "...".
    """
    if not text:
        return ""
    target_chars = target_tokens * 4
    if len(text) <= target_chars:
        return text

    truncated = text[:target_chars]
    last_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_end > target_chars * 0.8:
        return truncated[: last_end + 1]
    return truncated + "..."


def _clip_to_tokens(text: str, target_tokens: int) -> str:
    """Hard clip guaranteeing estimate_tokens(result) <= target_tokens"""
    if estimate_tokens(text) <= target_tokens:
        return text
    if target_tokens <= 0:
        return ""
    chars = target_tokens * 4
    if chars <= 3:
        return text[:chars]
    return text[: chars - 3] + "..."


def build_rolling_context(
    history: list[Turn],
    slot_state: Optional[SlotState],
    max_tokens: Optional[int] = None,
    tier1_turns: Optional[int] = None,
    tier3_floor: Optional[int] = None,
    summary: Optional[str] = None,
) -> RollingContext:
    """
    Assemble the three tiers within max_tokens.

    Args:
        history: Session turns in order; unanswered turns are ignored
        slot_state: Current slot values, or None
        max_tokens: Budget (default CONTEXT_MAX_TOKENS)
        tier1_turns: Verbatim window size, clamped to 3-5
        tier3_floor: Token floor Tier 3 shrinks toward before Tier 1 is cut
        summary: Precomputed Tier-3 text; built from history when None
    """
    max_tokens = max_tokens or settings.CONTEXT_MAX_TOKENS
    window = min(5, max(3, tier1_turns or settings.TIER1_TURNS))
    floor = settings.TIER3_FLOOR_TOKENS if tier3_floor is None else tier3_floor

    answered = [t for t in history if t.is_answered]
    recent = answered[-window:]
    older = answered[: len(answered) - len(recent)]

    context = RollingContext(
        tier1=[ContextTurn(turn=t.turn_number, question=t.question_text, answer=t.answer_text or "") for t in recent],
        tier2=build_state_vector(slot_state),
        tier3=summary if summary is not None else build_running_summary(older),
    )
    context.total_tokens = _total_tokens(context)

    if context.total_tokens <= max_tokens:
        return context

    # Shrink Tier 3 toward its floor
    tier3_tokens = estimate_tokens(context.tier3)
    if tier3_tokens > floor:
        overage = context.total_tokens - max_tokens
        context.tier3 = truncate_to_tokens(context.tier3, max(floor, tier3_tokens - overage))
        context.total_tokens = _total_tokens(context)

    # Drop oldest verbatim turns
    while context.total_tokens > max_tokens and len(context.tier1) > MIN_TIER1_TURNS:
        dropped = context.tier1.pop(0)
        logger.debug("Dropped turn {turn} from rolling context", turn=dropped.turn)
        context.total_tokens = _total_tokens(context)

    if context.total_tokens > max_tokens:
        overage = context.total_tokens - max_tokens
        context.tier3 = _clip_to_tokens(context.tier3, estimate_tokens(context.tier3) - overage)
        context.total_tokens = _total_tokens(context)

    for field in ("answer", "question"):
        for entry in context.tier1:
            while context.total_tokens > max_tokens and getattr(entry, field):
                text = getattr(entry, field)
                cut = (context.total_tokens - max_tokens) * 4
                setattr(entry, field, text[: max(0, len(text) - cut)])
                context.total_tokens = _total_tokens(context)

    if context.total_tokens > max_tokens:
        logger.warning(
            "Rolling context still over budget: {total} > {budget}",
            total=context.total_tokens,
            budget=max_tokens,
        )
    return context


def format_context_for_prompt(context: RollingContext) -> str:
    """Linearise the tiers, tagging each recent answer with its sentiment"""
    lines: list[str] = []

    if context.tier1:
        lines.append("RECENT CONVERSATION:")
        for turn in context.tier1:
            sentiment = analyze_sentiment(turn.answer)
            lines.append(f'Turn {turn.turn}: Q: "{turn.question}"\nA: "{turn.answer}"')
            lines.append(
                f"Sentiment: {sentiment.tone.value} ({sentiment.confidence}% confidence) - "
                f"{', '.join(sentiment.key_points)}\n"
            )

    if context.tier2:
        lines.append(f"CURRENT STATE: {context.tier2}\n")

    if context.tier3:
        lines.append(f"CONVERSATION SUMMARY:\n{context.tier3}")

    return "\n".join(lines).strip()


def should_regenerate_summary(turn_number: int) -> bool:
    return turn_number % SUMMARY_REGENERATION_INTERVAL == 0


class ContextBudgetBuilder:
    """
    Per-session rolling context with a cached Tier-3 summary.

    The summary is rebuilt whenever another turn has slid out of the
    verbatim window, and also every SUMMARY_REGENERATION_INTERVAL turns;
    otherwise the cached text is reused. Every answered turn therefore
    appears in Tier 1 or Tier 3.
    """

    def __init__(
        self,
        max_tokens: Optional[int] = None,
        tier1_turns: Optional[int] = None,
        tier3_floor: Optional[int] = None,
    ) -> None:
        self.max_tokens = max_tokens or settings.CONTEXT_MAX_TOKENS
        self.tier1_turns = tier1_turns or settings.TIER1_TURNS
        self.tier3_floor = settings.TIER3_FLOOR_TOKENS if tier3_floor is None else tier3_floor
        # session_id -> (number of summarised turns, summary text)
        self._summaries: dict[str, tuple[int, str]] = {}

    def build(
        self,
        session_id: str,
        history: list[Turn],
        slot_state: Optional[SlotState],
        turn_number: int,
    ) -> RollingContext:
        answered = [t for t in history if t.is_answered]
        window = min(5, max(3, self.tier1_turns))
        older = answered[: max(0, len(answered) - window)]

        cached = self._summaries.get(session_id)
        if cached is None or cached[0] != len(older) or should_regenerate_summary(turn_number):
            summary = build_running_summary(older)
            self._summaries[session_id] = (len(older), summary)
            logger.debug("Regenerated summary for session {sid} at turn {n}", sid=session_id, n=turn_number)
        else:
            summary = cached[1]

        return build_rolling_context(
            history,
            slot_state,
            max_tokens=self.max_tokens,
            tier1_turns=self.tier1_turns,
            tier3_floor=self.tier3_floor,
            summary=summary,
        )

    def forget(self, session_id: str) -> None:
        self._summaries.pop(session_id, None)

    def cached_sessions(self) -> list[str]:
        return list(self._summaries)
