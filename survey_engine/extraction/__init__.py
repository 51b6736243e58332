"""Insight extraction and answer sentiment"""

from survey_engine.extraction.insight_extractor import ExtractionResult, InsightExtractor
from survey_engine.extraction.sentiment import analyze_sentiment
from survey_engine.extraction.validator import parse_model_output, repair_json, strict_parse

__all__ = [
    "ExtractionResult",
    "InsightExtractor",
    "analyze_sentiment",
    "parse_model_output",
    "repair_json",
    "strict_parse",
]
