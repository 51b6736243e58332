"""Engine API"""

from survey_engine.pipeline.engine import ConversationEngine, create_engine

__all__ = ["ConversationEngine", "create_engine"]
