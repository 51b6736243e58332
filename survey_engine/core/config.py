"""Configuration management using Pydantic Settings"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
    DB_PATH: Path = PROJECT_ROOT / "data" / "conversations.db"

    # Model invocation
    ANTHROPIC_API_KEY: str = ""
    QUESTION_MODEL: str = "claude-3-5-haiku-latest"
    EXTRACTION_MODEL: str = "claude-3-5-haiku-latest"
    MODEL_MAX_TOKENS: int = 1024
    MODEL_TIMEOUT_SECONDS: float = 20.0

    # Embeddings
    EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0
    FALLBACK_EMBEDDING_DIM: int = 50

    # Anti-repetition
    SIMILARITY_THRESHOLD: float = 0.85
    SEMANTIC_HISTORY_SIZE: int = 5
    MAX_ASKS_PER_SLOT: int = 2
    TOPIC_STREAK_LIMIT: int = 2

    # Rolling context
    CONTEXT_MAX_TOKENS: int = 1200
    TIER1_TURNS: int = 5
    TIER3_FLOOR_TOKENS: int = 200

    # Question generation
    QUESTION_GENERATION_TEMPERATURE: float = 0.3
    EXTRACTION_TEMPERATURE: float = 0.1
    MAX_TEMPERATURE: float = 0.7
    MAX_GENERATION_ATTEMPTS: int = 3

    # Completion
    DEFAULT_MAX_TURNS: int = 10

    # Logging
    LOG_LEVEL: str = "INFO"


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stderr sink at the configured level"""
    logger.remove()
    logger.add(sys.stderr, level=(level or settings.LOG_LEVEL).upper())
