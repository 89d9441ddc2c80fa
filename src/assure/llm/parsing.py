"""Parsing of untrusted text-generation output."""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?|\n?```\s*$")


class GeneratedContentError(ValueError):
    """Generated text could not be parsed into the expected shape."""


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_json_array(text: str) -> list[Any]:
    """Parse a JSON array, tolerating markdown fences and leading prose."""
    cleaned = strip_code_fences(text or "")
    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("["), cleaned.rfind("]")
        if start == -1 or end <= start:
            raise GeneratedContentError("no JSON array in generated text") from None
        try:
            value = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as exc:
            raise GeneratedContentError(f"invalid JSON array: {exc}") from exc
    if not isinstance(value, list):
        raise GeneratedContentError(f"expected a JSON array, got {type(value).__name__}")
    return value


def parse_json_object(text: str) -> dict[str, Any]:
    cleaned = strip_code_fences(text or "")
    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise GeneratedContentError(f"invalid JSON object: {exc}") from exc
    if not isinstance(value, dict):
        raise GeneratedContentError(f"expected a JSON object, got {type(value).__name__}")
    return value
