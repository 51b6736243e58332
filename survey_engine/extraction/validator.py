"""Two-stage parsing of model JSON output"""

import json
import re
from typing import Any, Callable, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from survey_engine.core.exceptions import ValidationFailure

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)(\w+)\s*:")
_BARE_VALUE = re.compile(r':\s*([^",{\[\]\s][^",{\[\]]*?)\s*([,}])')
_LITERALS = {"true", "false", "null"}
_STRING = re.compile(r'"(?:\\.|[^"\\])*"')


def strict_parse(raw: str) -> dict[str, Any]:
    """
    Stage 1: strip code fences and parse.

    Raises:
        ValidationFailure: if the text is not a JSON object
    """
    text = _FENCE.sub("", (raw or "").strip()).strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationFailure(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationFailure(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _quote_bare_value(match: re.Match) -> str:
    value, terminator = match.group(1).strip(), match.group(2)
    if value in _LITERALS or re.fullmatch(r"-?\d+(\.\d+)?([eE][-+]?\d+)?", value):
        return f": {value}{terminator}"
    return f': "{value}"{terminator}'


def repair_json(raw: str) -> dict[str, Any]:
    """
    Stage 2: extract the outermost object and fix common model mistakes.

    Handles trailing commas, unquoted keys and unquoted string values.

    Raises:
        ValidationFailure: if the repaired text still does not parse
    """
    text = raw or ""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValidationFailure("No JSON object found")

    candidate = text[start : end + 1]
    try:
        return strict_parse(candidate)
    except ValidationFailure:
        pass

    return strict_parse(_rewrite_outside_strings(candidate, _fix_segment))


def _fix_segment(segment: str) -> str:
    segment = _TRAILING_COMMA.sub(r"\1", segment)
    segment = _BARE_KEY.sub(r'\1"\2":', segment)
    return _BARE_VALUE.sub(_quote_bare_value, segment)


def _rewrite_outside_strings(text: str, rewrite: Callable[[str], str]) -> str:
    """Apply `rewrite` to the text between quoted strings, leaving string contents untouched"""
    parts: list[str] = []
    last = 0
    for match in _STRING.finditer(text):
        parts.append(rewrite(text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(rewrite(text[last:]))
    return "".join(parts)


def parse_model_output(raw: str, schema: type[ModelT], fallback: Optional[ModelT] = None) -> Optional[ModelT]:
    """
    Parse model output into `schema`, repairing once.

    Never raises: returns `fallback` when both stages fail or the parsed
    object does not validate against the schema.
    """
    try:
        data = strict_parse(raw)
    except ValidationFailure as strict_error:
        logger.debug("Strict parse failed, attempting repair: {error}", error=str(strict_error))
        try:
            data = repair_json(raw)
        except ValidationFailure as repair_error:
            logger.warning("Model output unparsable after repair: {error}", error=str(repair_error))
            return fallback

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.warning("Model output failed schema validation: {error}", error=str(e))
        return fallback
