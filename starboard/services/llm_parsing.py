"""Parse/validate boundaries for JSON returned by LLM providers."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from starboard.crawlers.client import sanitize_log_extra

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FLAT_OBJECT_PATTERN = re.compile(r"\{[^{}]*\}")


class LLMResponseParseError(ValueError):
    """Raised when no usable JSON can be recovered from an LLM response."""


def strip_code_fences(raw: str) -> str:
    content = raw.strip()
    if content.startswith("```"):
        content = content.strip("`")
        if content.lower().startswith("json"):
            content = content[4:]
        content = content.strip()
    return content


def _span(content: str, opener: str, closer: str) -> Optional[str]:
    start = content.find(opener)
    end = content.rfind(closer)
    if start == -1 or end == -1 or end < start:
        return None
    return content[start : end + 1]


def _validate_items(items: list[Any], item_model: type[ModelT]) -> list[ModelT]:
    validated: list[ModelT] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            validated.append(item_model.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                "Dropping invalid LLM result item",
                extra=sanitize_log_extra(model=item_model.__name__, error=str(exc)),
            )
    return validated


def salvage_objects(content: str) -> list[dict[str, Any]]:
    """Recover every complete flat `{...}` object from a truncated array."""

    recovered: list[dict[str, Any]] = []
    for match in _FLAT_OBJECT_PATTERN.finditer(content):
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            recovered.append(parsed)
    return recovered


def parse_json_array(raw: Any, item_model: type[ModelT]) -> list[ModelT]:
    """Parse a JSON array of objects and validate each item.

    Fences are stripped and the first `[` to last `]` span is decoded. If that
    fails, complete objects are salvaged. Items failing validation are dropped.
    Raises `LLMResponseParseError` when nothing could be recovered.
    """

    if isinstance(raw, list):
        return _validate_items(raw, item_model)
    if not isinstance(raw, str):
        raise LLMResponseParseError("LLM response must be a JSON string")

    content = strip_code_fences(raw)
    candidate = _span(content, "[", "]")
    if candidate is not None:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return _validate_items(parsed, item_model)

    salvaged = salvage_objects(content)
    if not salvaged:
        raise LLMResponseParseError("No JSON array or complete objects found in LLM response")

    logger.info(
        "Salvaged objects from malformed LLM array",
        extra=sanitize_log_extra(model=item_model.__name__, recovered=len(salvaged)),
    )
    return _validate_items(salvaged, item_model)


def parse_json_object(raw: Any, model: type[ModelT]) -> ModelT:
    """Parse the first `{` to last `}` span and validate it; any failure raises."""

    if isinstance(raw, dict):
        parsed: Any = raw
    elif isinstance(raw, str):
        candidate = _span(strip_code_fences(raw), "{", "}")
        if candidate is None:
            raise LLMResponseParseError("No JSON object found in LLM response")
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise LLMResponseParseError(f"Invalid JSON object: {exc}") from exc
    else:
        raise LLMResponseParseError("LLM response must be a JSON string")

    try:
        return model.model_validate(parsed)
    except ValidationError as exc:
        raise LLMResponseParseError(f"LLM object failed validation: {exc.error_count()} error(s)") from exc
