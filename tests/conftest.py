"""Shared fixtures: temporary store and deterministic fake providers"""

import asyncio
import json
from pathlib import Path
from typing import Optional, Union

import pytest

from survey_engine.core.exceptions import ProviderUnavailable
from survey_engine.providers.base import EmbeddingProvider, ModelProvider
from survey_engine.storage.sqlite_store import ConversationStore


class ScriptedModelProvider(ModelProvider):
    """Replays queued replies; an Exception entry is raised instead of returned"""

    def __init__(self, replies: Optional[list[Union[str, dict, Exception]]] = None, default=None) -> None:
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict] = []

    def queue(self, *replies: Union[str, dict, Exception]) -> None:
        self.replies.extend(replies)

    async def invoke(self, system_prompt, user_prompt, temperature=0.3, response_format=None) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "response_format": response_format,
            }
        )
        reply = self.replies.pop(0) if self.replies else self.default
        if reply is None:
            raise ProviderUnavailable("script exhausted")
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class SlowModelProvider(ModelProvider):
    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay

    async def invoke(self, system_prompt, user_prompt, temperature=0.3, response_format=None) -> str:
        await asyncio.sleep(self.delay)
        return "{}"


class MappedEmbeddingProvider(EmbeddingProvider):
    """Fixed vectors per text; unmapped text gets `default`"""

    def __init__(self, vectors: Optional[dict[str, list[float]]] = None, default: Optional[list[float]] = None) -> None:
        self.vectors = vectors or {}
        self.default = default if default is not None else [0.0, 0.0, 1.0]
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))


class FailingEmbeddingProvider(EmbeddingProvider):
    async def embed(self, text: str) -> list[float]:
        raise ProviderUnavailable("embedding backend down")


class FlakyEmbeddingProvider(EmbeddingProvider):
    """Fails the first `failures` calls, then returns `vector`"""

    def __init__(self, vector: list[float], failures: int = 1) -> None:
        self.vector = vector
        self.failures = failures
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise ProviderUnavailable("model still loading")
        return list(self.vector)


class SlowEmbeddingProvider(EmbeddingProvider):
    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay

    async def embed(self, text: str) -> list[float]:
        await asyncio.sleep(self.delay)
        return [1.0, 0.0]


def question_reply(text: str, intent: Optional[str] = None, focus_area: str = "problem_definition") -> dict:
    return {
        "question_text": text,
        "question_type": "text",
        "intent": intent,
        "focus_area": focus_area,
        "reasoning": "test",
        "expected_insights": [],
        "expected_slots": [],
        "metadata": {"priority": "high"},
    }


def extraction_reply(insights: list[tuple[str, str, float]], completeness: Optional[float] = None, topics=None) -> dict:
    assessment = {}
    if completeness is not None:
        assessment["overall_completeness"] = completeness
    return {
        "insights": [{"type": t, "value": v, "confidence": c} for t, v, c in insights],
        "topics_covered": topics or [],
        "completeness_assessment": assessment,
        "suggested_follow_up_areas": [],
    }


@pytest.fixture
async def store(tmp_path: Path) -> ConversationStore:
    """Create temporary database for testing"""
    store = ConversationStore(tmp_path / "test_conversations.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def fakes():
    """Namespace of fake provider classes and reply builders"""

    class _Fakes:
        ScriptedModelProvider = ScriptedModelProvider
        SlowModelProvider = SlowModelProvider
        MappedEmbeddingProvider = MappedEmbeddingProvider
        FailingEmbeddingProvider = FailingEmbeddingProvider
        FlakyEmbeddingProvider = FlakyEmbeddingProvider
        SlowEmbeddingProvider = SlowEmbeddingProvider
        question_reply = staticmethod(question_reply)
        extraction_reply = staticmethod(extraction_reply)

    return _Fakes
