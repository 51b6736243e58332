"""Integration tests for the conversation engine"""

import asyncio
from pathlib import Path

import pytest

from survey_engine.core.exceptions import ProviderUnavailable, StoreError, TurnStateError
from survey_engine.core.models import CompletionReason, ConversationPhase, SentimentTone
from survey_engine.pipeline.engine import ConversationEngine, create_engine
from survey_engine.storage.sqlite_store import ConversationStore

LONG_ANSWER = "We reconcile invoices by hand every week and it takes the whole team"


class TestSessionLifecycle:
    """Sessions and question issuance"""

    @pytest.mark.asyncio
    async def test_start_session_defaults_unknown_category(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)

        session = await engine.start_session("astrology")

        assert session.survey_category == "general"
        assert (await engine.get_session(session.id)).id == session.id

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)

        with pytest.raises(TurnStateError):
            await engine.next_question("missing")

    @pytest.mark.asyncio
    async def test_both_providers_unavailable_gives_fallback(self, store: ConversationStore, fakes) -> None:
        """A failing model and a failing embedder still produce a persisted question"""
        engine = ConversationEngine(
            store,
            model_provider=fakes.ScriptedModelProvider([ProviderUnavailable("down")] * 3),
            embedding_provider=fakes.FailingEmbeddingProvider(),
        )
        session = await engine.start_session("requirements")

        question = await engine.next_question(session.id)

        assert question is not None
        assert question.generation_method == "fallback"
        assert (await store.get_turn_by_question_id(question.question_id)) is not None

    @pytest.mark.asyncio
    async def test_pending_question_is_reissued(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        session = await engine.start_session()

        first = await engine.next_question(session.id)
        again = await engine.next_question(session.id)

        assert again.question_id == first.question_id
        assert len(await store.get_turns(session.id)) == 1


class TestRecordAnswer:
    """Answer processing and aggregates"""

    @pytest.mark.asyncio
    async def test_insights_and_aggregates_updated(self, store: ConversationStore, fakes) -> None:
        extraction = fakes.ScriptedModelProvider(
            [
                fakes.extraction_reply(
                    [
                        ("pain_point_discussed", "Manual reconciliation", 0.9),
                        ("stakeholder_identified", "Finance team", 0.7),
                        ("topic_extracted", "invoicing", 0.8),
                    ],
                    completeness=0.3,
                    topics=["reconciliation"],
                )
            ]
        )
        engine = ConversationEngine(store, extraction_provider=extraction)
        session = await engine.start_session()
        question = await engine.next_question(session.id)

        recorded = await engine.record_answer(session.id, question.question_id, "It was really hard and frustrating")

        assert recorded.turn_number == 1
        assert len(recorded.insights) == 3
        assert recorded.sentiment.tone == SentimentTone.NEGATIVE
        updated = await engine.get_session(session.id)
        assert updated.current_turn == 1
        assert updated.completion_percentage == pytest.approx(0.3)
        assert updated.ai_confidence == pytest.approx(0.8)
        assert updated.topics_covered == ["reconciliation", "invoicing"]
        assert [e.value for e in updated.pain_points] == ["Manual reconciliation"]
        assert [e.value for e in updated.stakeholders] == ["Finance team"]
        stored_turn = await store.get_turn_by_question_id(question.question_id)
        assert stored_turn.ai_analysis["sentiment"]["tone"] == "negative"

    @pytest.mark.asyncio
    async def test_completion_from_slots_when_model_silent(self, store: ConversationStore, fakes) -> None:
        """Without overall_completeness, required-slot coverage is used"""
        extraction = fakes.ScriptedModelProvider(
            [fakes.extraction_reply([("kpi_mentioned", "NPS above 40", 0.9)])]
        )
        engine = ConversationEngine(store, extraction_provider=extraction)
        session = await engine.start_session("nps_survey")
        question = await engine.next_question(session.id)

        await engine.record_answer(session.id, question.question_id, "We want NPS above 40")

        updated = await engine.get_session(session.id)
        assert updated.completion_percentage == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_unknown_question_raises(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        session = await engine.start_session()

        with pytest.raises(TurnStateError):
            await engine.record_answer(session.id, "no-such-question", "answer")

    @pytest.mark.asyncio
    async def test_question_from_other_session_raises(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        first = await engine.start_session()
        second = await engine.start_session()
        question = await engine.next_question(first.id)

        with pytest.raises(TurnStateError):
            await engine.record_answer(second.id, question.question_id, "answer")

    @pytest.mark.asyncio
    async def test_answering_twice_raises(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        session = await engine.start_session()
        question = await engine.next_question(session.id)
        await engine.record_answer(session.id, question.question_id, LONG_ANSWER)

        with pytest.raises(TurnStateError):
            await engine.record_answer(session.id, question.question_id, "changed my mind")

    @pytest.mark.asyncio
    async def test_store_failure_rolls_back_everything(self, store: ConversationStore, fakes, monkeypatch) -> None:
        """If the session update fails, neither answer nor insights persist"""
        extraction = fakes.ScriptedModelProvider([fakes.extraction_reply([("kpi_mentioned", "NPS", 0.9)])])
        engine = ConversationEngine(store, extraction_provider=extraction)
        session = await engine.start_session()
        question = await engine.next_question(session.id)

        async def broken_update(_session):
            raise StoreError("disk full")

        monkeypatch.setattr(store, "update_session", broken_update)

        with pytest.raises(StoreError):
            await engine.record_answer(session.id, question.question_id, LONG_ANSWER)

        monkeypatch.undo()
        assert (await store.get_turn_by_question_id(question.question_id)).answer_text is None
        assert await store.get_insights(session.id) == []
        assert (await store.get_session(session.id)).current_turn == 0


class TestInterviewFlow:
    """Multi-turn behaviour"""

    @pytest.mark.asyncio
    async def test_turn_numbers_strictly_increase(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        session = await engine.start_session()

        numbers = []
        for _ in range(5):
            question = await engine.next_question(session.id)
            numbers.append(question.turn_number)
            await engine.record_answer(session.id, question.question_id, LONG_ANSWER)

        assert numbers == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_fatigue_stops_interview(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        session = await engine.start_session()

        for answer in [LONG_ANSWER, "no", "ok"]:
            question = await engine.next_question(session.id)
            await engine.record_answer(session.id, question.question_id, answer)

        assert await engine.next_question(session.id) is None
        final = await engine.get_session(session.id)
        assert final.should_continue is False
        assert final.stop_reason == CompletionReason.USER_FATIGUE.value

    @pytest.mark.asyncio
    async def test_finished_session_releases_state(self, store: ConversationStore) -> None:
        """Completed interviews leave no lock or cached summary behind"""
        engine = ConversationEngine(store)
        finished = await engine.start_session()
        ongoing = await engine.start_session()

        while (question := await engine.next_question(finished.id)) is not None:
            await engine.record_answer(finished.id, question.question_id, LONG_ANSWER)
        await engine.next_question(ongoing.id)

        assert engine.tracked_sessions() == [ongoing.id]
        assert finished.id not in engine.context_builder.cached_sessions()
        assert ongoing.id in engine.context_builder.cached_sessions()

    @pytest.mark.asyncio
    async def test_max_turns_stops_interview(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        session = await engine.start_session()

        asked = 0
        while (question := await engine.next_question(session.id)) is not None:
            asked += 1
            await engine.record_answer(session.id, question.question_id, LONG_ANSWER)

        assert asked == 10
        decision = await engine.evaluate_completion(session.id)
        assert decision.reason == CompletionReason.MAX_TURNS_REACHED

    @pytest.mark.asyncio
    async def test_feedback_phase_counts_each_answer_once(self, store: ConversationStore, fakes) -> None:
        """Feedback answers increment feedback_turns exactly once until the quota ends the interview"""
        high = fakes.extraction_reply([("topic_extracted", "billing", 0.9)], completeness=0.9)
        extraction = fakes.ScriptedModelProvider(default=high)
        engine = ConversationEngine(store, extraction_provider=extraction)
        session = await engine.start_session("general")

        phases = []
        feedback_counts = []
        while (question := await engine.next_question(session.id)) is not None:
            phases.append(question.metadata["phase"])
            await engine.record_answer(session.id, question.question_id, LONG_ANSWER)
            feedback_counts.append((await engine.get_session(session.id)).feedback_turns)

        assert phases == ["gathering"] * 3 + ["open_ended_feedback"] * 2
        assert feedback_counts == [0, 0, 0, 1, 2]
        final = await engine.get_session(session.id)
        assert final.phase == ConversationPhase.OPEN_ENDED_FEEDBACK
        assert final.stop_reason == CompletionReason.FEEDBACK_COMPLETE.value

    @pytest.mark.asyncio
    async def test_requirements_survey_completes_without_feedback(self, store: ConversationStore, fakes) -> None:
        reply = fakes.extraction_reply(
            [
                ("requirement_identified", "SSO login", 0.95),
                ("stakeholder_identified", "IT security", 0.95),
                ("timeline_mentioned", "Q3", 0.9),
                ("budget_discussed", "100k", 0.9),
            ],
            completeness=0.95,
        )
        engine = ConversationEngine(store, extraction_provider=fakes.ScriptedModelProvider(default=reply))
        session = await engine.start_session("requirements")

        asked = 0
        while (question := await engine.next_question(session.id)) is not None:
            asked += 1
            await engine.record_answer(session.id, question.question_id, LONG_ANSWER)

        assert asked == 3
        assert (await engine.get_session(session.id)).stop_reason == CompletionReason.SURVEY_COMPLETE.value


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_next_question_creates_one_turn(self, store: ConversationStore) -> None:
        """Racing callers on one session share the same pending question"""
        engine = ConversationEngine(store)
        session = await engine.start_session()

        results = await asyncio.gather(*(engine.next_question(session.id) for _ in range(5)))

        assert len({q.question_id for q in results}) == 1
        assert len(await store.get_turns(session.id)) == 1

    @pytest.mark.asyncio
    async def test_sessions_progress_independently(self, store: ConversationStore) -> None:
        engine = ConversationEngine(store)
        sessions = [await engine.start_session() for _ in range(3)]

        async def run(session_id: str) -> list[int]:
            numbers = []
            for _ in range(3):
                question = await engine.next_question(session_id)
                numbers.append(question.turn_number)
                await engine.record_answer(session_id, question.question_id, LONG_ANSWER)
            return numbers

        results = await asyncio.gather(*(run(s.id) for s in sessions))

        assert results == [[1, 2, 3]] * 3


class TestCreateEngine:
    @pytest.mark.asyncio
    async def test_create_engine_connects_store(self, tmp_path: Path, fakes) -> None:
        engine = await create_engine(
            tmp_path / "engine.db",
            model_provider=fakes.ScriptedModelProvider(),
            embedding_provider=fakes.MappedEmbeddingProvider(),
        )

        session = await engine.start_session("customer_feedback")

        assert session.survey_category == "customer_feedback"
        assert engine.get_stats()["answers_processed"] == 0
        await engine.store.close()
