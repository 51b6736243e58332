"""Persistence layer"""

from survey_engine.storage.sqlite_store import ConversationStore

__all__ = ["ConversationStore"]
