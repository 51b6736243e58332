"""Interview completion policy"""

from survey_engine.policy.completion import CompletionPolicy, essential_info_score, evaluate_completion

__all__ = ["CompletionPolicy", "essential_info_score", "evaluate_completion"]
