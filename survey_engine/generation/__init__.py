"""Question generation"""

from survey_engine.generation.question_generator import QuestionGenerator, assess_coverage

__all__ = ["QuestionGenerator", "assess_coverage"]
