"""Rolling conversation context under a token budget"""

from survey_engine.context.budget import (
    ContextBudgetBuilder,
    RollingContext,
    build_rolling_context,
    estimate_tokens,
    format_context_for_prompt,
    should_regenerate_summary,
)

__all__ = [
    "ContextBudgetBuilder",
    "RollingContext",
    "build_rolling_context",
    "estimate_tokens",
    "format_context_for_prompt",
    "should_regenerate_summary",
]
