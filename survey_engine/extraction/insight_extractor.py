"""Model-backed structured insight extraction from answers"""

import asyncio
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, Field

from survey_engine.core.config import settings
from survey_engine.core.models import InsightType, SentimentResult
from survey_engine.extraction.sentiment import analyze_sentiment
from survey_engine.extraction.validator import parse_model_output
from survey_engine.providers.base import ModelProvider

EXTRACTION_SYSTEM_PROMPT = """You are an expert business analyst analyzing survey responses. Extract structured insights from Q&A pairs.

Your task is to identify and categorize information from the user's answer. Return a JSON object with these fields:

{
  "insights": [
    {
      "type": "topic_extracted|requirement_identified|kpi_mentioned|stakeholder_identified|pain_point_discussed|timeline_mentioned|budget_discussed|solution_suggested",
      "value": "brief description of the insight",
      "confidence": 0.0-1.0,
      "metadata": { "additional_context": "any relevant details" }
    }
  ],
  "topics_covered": ["list", "of", "topics"],
  "completeness_assessment": {
    "has_problem_statement": true/false,
    "has_requirements": true/false,
    "has_stakeholders": true/false,
    "has_kpis": true/false,
    "has_timeline": true/false,
    "overall_completeness": 0.0-1.0
  },
  "suggested_follow_up_areas": ["area1", "area2"]
}

Focus on extracting concrete business information, not just acknowledging that topics were mentioned."""


class CompletenessAssessment(BaseModel):
    has_problem_statement: bool = False
    has_requirements: bool = False
    has_stakeholders: bool = False
    has_kpis: bool = False
    has_timeline: bool = False
    overall_completeness: Optional[float] = None


class _ExtractionPayload(BaseModel):
    """Lenient shape of the model's reply; entries are vetted one by one"""

    insights: list[Any] = Field(default_factory=list)
    topics_covered: list[Any] = Field(default_factory=list)
    completeness_assessment: CompletenessAssessment = Field(default_factory=CompletenessAssessment)
    suggested_follow_up_areas: list[Any] = Field(default_factory=list)


class ExtractedInsight(BaseModel):
    insight_type: InsightType
    value: str
    confidence: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExtractionResult(BaseModel):
    insights: list[ExtractedInsight] = Field(default_factory=list)
    topics_covered: list[str] = Field(default_factory=list)
    completeness_assessment: CompletenessAssessment = Field(default_factory=CompletenessAssessment)
    suggested_follow_up_areas: list[str] = Field(default_factory=list)
    method: str = "model"
    error: Optional[str] = None

    @property
    def mean_confidence(self) -> Optional[float]:
        if not self.insights:
            return None
        return sum(i.confidence for i in self.insights) / len(self.insights)

    @property
    def overall_completeness(self) -> Optional[float]:
        value = self.completeness_assessment.overall_completeness
        if value is None:
            return None
        return min(1.0, max(0.0, value))

    def to_analysis(self) -> dict[str, Any]:
        """Raw record stored on the turn"""
        return self.model_dump(mode="json")


def _clamp(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(1.0, max(0.0, number))


def _vet_insight(entry: Any) -> Optional[ExtractedInsight]:
    """Keep entries with a known type and a non-empty value"""
    if not isinstance(entry, dict):
        return None
    try:
        insight_type = InsightType(entry.get("type"))
    except ValueError:
        return None

    value = entry.get("value")
    if value is None or not str(value).strip():
        return None

    metadata = entry.get("metadata")
    return ExtractedInsight(
        insight_type=insight_type,
        value=str(value).strip(),
        confidence=_clamp(entry.get("confidence")),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


class InsightExtractor:
    """
    Extract typed insights from a question/answer pair.

    Stage 1: model call with a structured-extraction prompt
    Stage 2: two-stage JSON parse, then per-entry vetting
    Fallback: empty result with the error recorded
    """

    def __init__(
        self,
        model_provider: Optional[ModelProvider] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.model_provider = model_provider
        self.temperature = settings.EXTRACTION_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout or settings.MODEL_TIMEOUT_SECONDS

        self.stats = {
            "extractions": 0,
            "model": 0,
            "fallback": 0,
            "dropped_entries": 0,
        }

        if model_provider is None:
            logger.warning("InsightExtractor has no model provider; every answer yields no insights")

    def sentiment(self, answer_text: str) -> SentimentResult:
        return analyze_sentiment(answer_text)

    async def extract(self, question_text: str, answer_text: str) -> ExtractionResult:
        self.stats["extractions"] += 1

        if self.model_provider is None:
            return self._fallback("no model provider configured")

        user_prompt = (
            f"Question: {question_text}\n\n"
            f"Answer: {answer_text}\n\n"
            "Analyze this Q&A pair and extract structured business insights."
        )

        try:
            raw = await asyncio.wait_for(
                self.model_provider.invoke(
                    EXTRACTION_SYSTEM_PROMPT,
                    user_prompt,
                    temperature=self.temperature,
                    response_format="json",
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return self._fallback(f"extraction timed out after {self.timeout}s")
        except Exception as e:
            return self._fallback(str(e))

        payload = parse_model_output(raw, _ExtractionPayload)
        if payload is None:
            return self._fallback("unparsable extraction output")

        insights = [vetted for vetted in map(_vet_insight, payload.insights) if vetted]
        dropped = len(payload.insights) - len(insights)
        if dropped:
            self.stats["dropped_entries"] += dropped
            logger.debug("Dropped {n} malformed insight entries", n=dropped)

        self.stats["model"] += 1
        result = ExtractionResult(
            insights=insights,
            topics_covered=[str(t).strip() for t in payload.topics_covered if str(t).strip()],
            completeness_assessment=payload.completeness_assessment,
            suggested_follow_up_areas=[str(a) for a in payload.suggested_follow_up_areas],
            method="model",
        )
        logger.info(
            "Extracted {n} insights (completeness={c})",
            n=len(result.insights),
            c=result.overall_completeness,
        )
        return result

    def _fallback(self, error: str) -> ExtractionResult:
        self.stats["fallback"] += 1
        logger.warning("Insight extraction degraded to empty result: {error}", error=error)
        return ExtractionResult(method="fallback", error=error)

    def get_stats(self) -> dict:
        return dict(self.stats)
