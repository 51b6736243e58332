"""Unit tests for model output parsing and insight extraction"""

import json

import pytest
from pydantic import BaseModel

from survey_engine.core.exceptions import ProviderUnavailable, ValidationFailure
from survey_engine.core.models import InsightType
from survey_engine.extraction.insight_extractor import InsightExtractor
from survey_engine.extraction.validator import parse_model_output, repair_json, strict_parse


class _Shape(BaseModel):
    name: str
    count: int = 0


class TestTwoStageParser:
    """Strict parse, then one repair pass, then typed fallback"""

    def test_strict_parse_strips_fences(self) -> None:
        assert strict_parse('```json\n{"name": "a"}\n```') == {"name": "a"}

    def test_strict_parse_rejects_non_objects(self) -> None:
        with pytest.raises(ValidationFailure):
            strict_parse("[1, 2]")

    def test_repair_trailing_comma_and_bare_keys(self) -> None:
        assert repair_json('Sure! {name: "a", count: 2,} hope that helps') == {"name": "a", "count": 2}

    def test_repair_bare_string_value(self) -> None:
        assert repair_json("{name: widget}") == {"name": "widget"}

    def test_prose_wrapped_object_keeps_string_contents(self) -> None:
        """Valid JSON inside prose is taken as-is, even when a value looks like `, key:`"""
        payload = {"insights": [{"type": "kpi_mentioned", "value": "Targets, revenue: up 10%", "confidence": 0.8}]}

        assert repair_json("Here is the analysis:\n" + json.dumps(payload)) == payload

    def test_repair_does_not_rewrite_inside_strings(self) -> None:
        assert repair_json('{"value": "Targets, revenue: up 10%", count: 2,}') == {
            "value": "Targets, revenue: up 10%",
            "count": 2,
        }

    def test_repair_gives_up_without_object(self) -> None:
        with pytest.raises(ValidationFailure):
            repair_json("no json here")

    def test_parse_model_output_uses_repair(self) -> None:
        assert parse_model_output("{name: 'x', count: 3,}".replace("'", '"'), _Shape) == _Shape(name="x", count=3)

    def test_parse_model_output_fallback(self) -> None:
        fallback = _Shape(name="fallback")

        assert parse_model_output("total garbage", _Shape, fallback) is fallback

    def test_schema_mismatch_returns_fallback(self) -> None:
        assert parse_model_output('{"count": 1}', _Shape) is None


class TestInsightExtractor:
    """Model path and degradation"""

    @pytest.mark.asyncio
    async def test_extracts_valid_insights(self, fakes) -> None:
        provider = fakes.ScriptedModelProvider(
            [
                fakes.extraction_reply(
                    [("pain_point_discussed", "Invoices get lost", 0.9), ("kpi_mentioned", "DSO under 30 days", 0.8)],
                    completeness=0.4,
                    topics=["invoicing"],
                )
            ]
        )
        extractor = InsightExtractor(provider)

        result = await extractor.extract("What hurts today?", "Invoices get lost; we want DSO under 30 days")

        assert result.method == "model"
        assert [i.insight_type for i in result.insights] == [
            InsightType.PAIN_POINT_DISCUSSED,
            InsightType.KPI_MENTIONED,
        ]
        assert result.topics_covered == ["invoicing"]
        assert result.overall_completeness == 0.4
        assert result.mean_confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_uses_low_temperature_json_mode(self, fakes) -> None:
        provider = fakes.ScriptedModelProvider([fakes.extraction_reply([])])

        await InsightExtractor(provider).extract("q", "a")

        assert provider.calls[0]["temperature"] == 0.1
        assert provider.calls[0]["response_format"] == "json"
        assert "Question: q" in provider.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_drops_malformed_entries_and_clamps(self, fakes) -> None:
        reply = {
            "insights": [
                {"type": "made_up", "value": "x", "confidence": 0.9},
                {"type": "budget_discussed", "value": "", "confidence": 0.9},
                {"type": "budget_discussed", "value": "Around 50k", "confidence": 1.7},
                {"type": "timeline_mentioned", "value": "Q3", "confidence": "high"},
                "not a dict",
            ]
        }
        extractor = InsightExtractor(fakes.ScriptedModelProvider([reply]))

        result = await extractor.extract("q", "a")

        assert [(i.insight_type, i.confidence) for i in result.insights] == [
            (InsightType.BUDGET_DISCUSSED, 1.0),
            (InsightType.TIMELINE_MENTIONED, 0.5),
        ]
        assert extractor.get_stats()["dropped_entries"] == 3

    @pytest.mark.asyncio
    async def test_provider_error_yields_empty_result(self, fakes) -> None:
        extractor = InsightExtractor(fakes.ScriptedModelProvider([ProviderUnavailable("down")]))

        result = await extractor.extract("q", "a")

        assert result.insights == []
        assert result.method == "fallback"
        assert "down" in result.error

    @pytest.mark.asyncio
    async def test_timeout_yields_empty_result(self, fakes) -> None:
        extractor = InsightExtractor(fakes.SlowModelProvider(delay=1.0), timeout=0.01)

        result = await extractor.extract("q", "a")

        assert result.method == "fallback"
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_prose_wrapped_reply_keeps_insights(self, fakes) -> None:
        reply = fakes.extraction_reply([("kpi_mentioned", "Targets, revenue: up 10%", 0.8)])
        extractor = InsightExtractor(fakes.ScriptedModelProvider(["Here is the analysis:\n" + json.dumps(reply)]))

        result = await extractor.extract("What are your goals?", "Revenue up 10%")

        assert result.method == "model"
        assert [i.value for i in result.insights] == ["Targets, revenue: up 10%"]

    @pytest.mark.asyncio
    async def test_unparsable_output_yields_empty_result(self, fakes) -> None:
        extractor = InsightExtractor(fakes.ScriptedModelProvider(["I cannot help with that"]))

        result = await extractor.extract("q", "a")

        assert result.method == "fallback"
        assert result.overall_completeness is None

    @pytest.mark.asyncio
    async def test_no_provider(self) -> None:
        result = await InsightExtractor(None).extract("q", "a")

        assert result.method == "fallback"
        assert result.insights == []

    def test_sentiment_is_local(self) -> None:
        assert InsightExtractor(None).sentiment("This was really frustrating").tone.value == "negative"
