"""Shared parsing helpers for runtime values and generative-text payloads."""

from __future__ import annotations

import json
import math
import re
from typing import Any


_CODE_FENCE_PATTERN = re.compile(r"^```(?:json|JSON)?\s*|\s*```$")


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_positive_float(value: object, field_name: str) -> float:
    """Parse a finite, strictly positive float from numeric or textual input."""

    if isinstance(value, bool):
        raise ValueError(f"`{field_name}` must be a positive number.")
    try:
        parsed = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{field_name}` must be a positive number.") from exc
    if not math.isfinite(parsed) or parsed <= 0:
        raise ValueError(f"`{field_name}` must be a positive number.")
    return parsed


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence from a model response."""

    return _CODE_FENCE_PATTERN.sub("", text.strip()).strip()


def parse_json_payload(text: str) -> Any:
    """Decode a JSON document that may be wrapped in markdown code fences.

    Raises:
        ValueError: If the text does not contain a decodable JSON document.
    """

    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Response does not contain a JSON object.")
    try:
        return json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError(f"Response JSON is malformed: {exc.msg}.") from exc


def round_half_up(value: float) -> int:
    """Round a non-negative value to the nearest integer, halves rounding up."""

    return int(math.floor(value + 0.5))
