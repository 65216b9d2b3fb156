"""Structured LLM output: robust JSON parsing and auto-repair.

Model replies are free text that usually, but not always, contain the JSON
object that was asked for.  :func:`parse_json_robust` digs it out through
increasingly aggressive attempts; :func:`parse_structured` adds Pydantic
validation on top.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Type, TypeVar

import json_repair
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# ── JSON Extraction Patterns ──────────────────────────────────

_CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?|```\s*", re.DOTALL)
_THINK_TAG_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


class StructuredOutputError(ValueError):
    """The reply could not be turned into the requested schema."""


# ── JSON Auto-Repair ──────────────────────────────────────────


def _clean_json_text(text: str) -> str:
    """Remove markdown fences, reasoning tags, and explanatory text."""
    text = _THINK_TAG_RE.sub("", text).strip()
    text = _CODE_FENCE_RE.sub("", text).strip()
    text = re.sub(r"^(Here's|Here is|The JSON|Output:|Response:)\s*:?\s*", "", text, flags=re.IGNORECASE)
    return text.strip()


def _extract_json_block(text: str) -> str:
    """Extract the first {...} or [...] block from text."""
    start_brace = text.find("{")
    start_bracket = text.find("[")

    if start_brace == -1 and start_bracket == -1:
        raise ValueError("No JSON block found")

    if start_bracket == -1 or (start_brace != -1 and start_brace < start_bracket):
        start, end = start_brace, text.rfind("}")
    else:
        start, end = start_bracket, text.rfind("]")
    if end > start:
        return text[start:end + 1]

    raise ValueError("Could not extract complete JSON block")


def _repair_json(text: str) -> str:
    """Common repairs: single-quoted strings and trailing commas."""
    text = re.sub(r"'([^']*)'(?=\s*[:,\}\]])", r'"\1"', text)
    text = re.sub(r',(\s*[}\]])', r'\1', text)
    return text


def parse_json_robust(text: str) -> Any:
    """Extract and parse JSON from LLM output with aggressive repair.

    Attempts:
    1. Direct JSON parse
    2. Clean and parse
    3. Extract block and parse
    4. Apply repair heuristics
    5. Use json_repair library

    Raises:
        ValueError: If no JSON value can be recovered.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = _clean_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidate = cleaned
    try:
        candidate = _extract_json_block(cleaned)
        return json.loads(candidate)
    except (ValueError, json.JSONDecodeError):
        pass

    try:
        return json.loads(_repair_json(candidate))
    except json.JSONDecodeError:
        pass

    repaired = json_repair.loads(candidate)
    if repaired in ("", None, [], {}) and candidate.strip() not in ("{}", "[]"):
        raise ValueError(
            f"Cannot extract valid JSON from LLM response. First 500 chars: {text[:500]}"
        )
    return repaired


# ── Schema Parsing ────────────────────────────────────────────


def parse_structured(text: str, schema: Type[T]) -> T:
    """Parse *text* into *schema*, raising StructuredOutputError on failure."""
    try:
        data = parse_json_robust(text)
    except ValueError as exc:
        raise StructuredOutputError(str(exc)) from exc

    if not isinstance(data, dict):
        raise StructuredOutputError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise StructuredOutputError(f"Schema validation failed: {exc}") from exc

