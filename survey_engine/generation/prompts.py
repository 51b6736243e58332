"""Prompt templates and static question banks for question generation"""

from survey_engine.core.survey_types import SurveyTypeConfig

# ── Fallback banks ────────────────────────────────────────────────────────────

FALLBACK_QUESTIONS: dict[str, str] = {
    "problem_definition": "What specific challenges or pain points is this project intended to address?",
    "success_metrics": "How will you measure the success of this project? What specific metrics or KPIs are important?",
    "stakeholders": "Who are the key stakeholders that will be affected by or involved in this project?",
    "requirements": "What are the essential requirements or features that this solution must have?",
    "timeline": "What is your expected timeline for this project? Are there any critical deadlines?",
    "budget": "Do you have budget constraints or considerations that should influence the solution approach?",
}

DEFAULT_FALLBACK_QUESTION = "Is there anything else important about this project that we should discuss?"

OPEN_ENDED_FALLBACKS: list[str] = [
    "Is there anything else about your experience that you'd like to share?",
    "What other thoughts or suggestions do you have that we haven't covered?",
    "Is there anything that could have made your experience better?",
    "What would you tell someone else about this experience?",
]

# ── System prompt sections ────────────────────────────────────────────────────

FEEDBACK_PHASE_INSTRUCTIONS = """OPEN-ENDED FEEDBACK PHASE:
You are now in the open-ended feedback phase. The core survey objectives have been met, and you should generate questions that:
- Allow the user to share any additional thoughts or concerns
- Encourage reflection on their overall experience
- Ask about anything they feel was not adequately covered
- Use phrases like "Is there anything else..." or "What else would you like to share..."
- Be more conversational and less structured
- Focus on gathering additional insights rather than specific information

Examples of good open-ended feedback questions:
{examples}"""

GATHERING_INSTRUCTIONS = """CRITICAL INSTRUCTIONS:
1. NEVER repeat topics already thoroughly covered
2. Focus on areas that need more information: {needs_more}
3. Avoid well-covered areas: {well_covered}
4. Generate questions that feel natural and conversational
5. Use language appropriate for the survey's target audience
6. Each question should advance toward the survey's specific goal
7. Build on previous answers - ask follow-up questions that relate to what the user just said
8. PAY ATTENTION TO SENTIMENT - if the user expressed negative feelings, challenges, or difficulties, ask follow-up questions that explore those issues rather than focusing on positive aspects
9. If the user mentioned struggles or problems, dig deeper into understanding those challenges
10. If the user mentioned positive experiences, explore what made those experiences positive
11. PRIORITIZE IMMEDIATE CONCERNS - if the user mentioned specific problems or difficulties, ask about those FIRST before moving to general topics
12. FOLLOW THE EMOTIONAL THREAD - if the user expressed frustration, confusion, or difficulty, explore that emotional experience before asking about outcomes or benefits"""

SENTIMENT_GUIDANCE = """SENTIMENT ANALYSIS GUIDANCE:
- If sentiment is NEGATIVE: Ask about specific challenges, difficulties, or problems they faced
- If sentiment is CHALLENGING: Ask about what made it difficult initially and how they overcame it
- If sentiment is POSITIVE: Ask about what made the experience good and how to replicate it
- If sentiment shows TRANSITION: Ask about the change process and what caused the shift

QUESTION PRIORITY ORDER:
1. FIRST: Address immediate concerns, problems, or difficulties mentioned
2. SECOND: Explore the emotional experience and specific challenges
3. THIRD: Understand the transition or change process (if mentioned)
4. FOURTH: Ask about positive aspects or outcomes (only after addressing concerns)"""

RESPONSE_SHAPE = """Return a JSON object with:
{
  "question_text": "The next question to ask",
  "question_type": "text",
  "intent": "follow_up|clarification|exploration|validation|completion",
  "focus_area": "which area this targets",
  "reasoning": "why this question is valuable now",
  "expected_insights": ["insight1", "insight2"],
  "expected_slots": ["slot1", "slot2"],
  "metadata": {
    "priority": "high|medium|low",
    "category": "follow_up|clarification|exploration|validation|completion"
  }
}

If no more questions are needed, return: {"question_text": null, "reasoning": "Survey complete"}"""


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def build_system_prompt(
    config: SurveyTypeConfig,
    context_text: str,
    needs_more_coverage: list[str],
    well_covered: list[str],
    in_feedback_phase: bool,
) -> str:
    """Instruction block: phase rules, sentiment rules, context, category guidance"""
    guidance = config.guidance
    needs_more = ", ".join(needs_more_coverage)

    if in_feedback_phase:
        examples = "\n".join(f'- "{q}"' for q in OPEN_ENDED_FALLBACKS)
        phase_block = FEEDBACK_PHASE_INSTRUCTIONS.format(examples=examples)
    else:
        phase_block = GATHERING_INSTRUCTIONS.format(
            needs_more=needs_more or "none",
            well_covered=", ".join(well_covered) or "none",
        )

    sections = [
        "You are an expert survey designer conducting an intelligent survey. Your goal is to generate "
        "the NEXT question that will efficiently gather the most valuable information based on the "
        "survey's specific purpose.",
        phase_block,
        SENTIMENT_GUIDANCE,
        context_text,
        f"SURVEY GOAL: {config.survey_goal}",
        "--- CATEGORY-SPECIFIC GUIDANCE ---\n"
        f"Survey Category: {config.name}\n\n"
        f"As you conduct this survey, additionally consider your role as: {guidance.role_description}\n\n"
        "Category-Specific Priorities (apply these alongside the survey goal):\n"
        f"{_numbered(guidance.key_priorities)}\n\n"
        f"Recommended Language Tone: {guidance.language_tone}\n\n"
        f"Category-Specific Sentiment Handling:\n{guidance.sentiment_handling}\n\n"
        f"Keywords to Watch For: {', '.join(guidance.keyword_focus)}\n\n"
        f"Patterns to Avoid for This Category: {', '.join(guidance.avoidance_patterns)}",
        f"FOCUS AREAS NEEDING ATTENTION: {needs_more or 'completion and validation'}",
        RESPONSE_SHAPE,
    ]
    return "\n\n".join(section for section in sections if section)


def build_user_prompt(
    config: SurveyTypeConfig,
    attempt: int,
    max_attempts: int,
    suggested_focus: str,
    in_feedback_phase: bool,
) -> str:
    lines = [
        "Based on the conversation context above, generate the most valuable next question for this survey.",
        "",
        f"Attempt: {attempt}/{max_attempts}",
    ]
    if attempt > 1:
        lines.append(
            "Previous attempts may have been too similar to existing questions. Try a different angle or topic."
        )
    lines.append("")

    if in_feedback_phase:
        lines.append(
            "OPEN-ENDED FEEDBACK MODE: Generate a question that allows the user to share any additional "
            "thoughts, concerns, or suggestions they may have. Focus on gathering additional insights "
            "rather than specific information."
        )
    else:
        lines.append(f"Focus on: {suggested_focus or 'completing missing information'}")
        lines.append("")
        lines.append(
            "IMPORTANT: Make sure your question builds on what the user just said and feels like a "
            "natural follow-up conversation."
        )
        if config.guidance.sentiment_priority:
            lines.append("")
            lines.append(
                "SENTIMENT PRIORITY: If the user expressed negative feelings, challenges, or difficulties, "
                "address those concerns FIRST before asking about general topics or future outcomes."
            )
    return "\n".join(lines)


def generation_temperature(attempt: int, base: float, cap: float) -> float:
    """Raise creativity by 0.2 per retry, capped"""
    return min(base + 0.2 * (attempt - 1), cap)
