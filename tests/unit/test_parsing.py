"""Unit tests for shared runtime and payload parsing helpers."""

import pytest

from reelvoice.parsing import (
    normalize_optional_string,
    parse_json_payload,
    parse_positive_float,
    round_half_up,
    strip_code_fences,
)


def test_normalize_optional_string_handles_blank_values() -> None:
    """Normalization should return `None` for `None` and blank textual values."""

    assert normalize_optional_string(None) is None
    assert normalize_optional_string("   ") is None
    assert normalize_optional_string("  value  ") == "value"
    assert normalize_optional_string(42) == "42"


@pytest.mark.parametrize("value", [0, -3, "abc", "nan", True, None])
def test_parse_positive_float_rejects_invalid_values(value: object) -> None:
    """Only finite positive numbers are accepted."""

    with pytest.raises(ValueError, match="`duration` must be a positive number"):
        parse_positive_float(value, "duration")


def test_parse_positive_float_accepts_numeric_text() -> None:
    """Numeric strings are stripped and converted."""

    assert parse_positive_float(" 12.5 ", "duration") == 12.5
    assert parse_positive_float(30, "duration") == 30.0


def test_parse_json_payload_handles_fences_and_surrounding_prose() -> None:
    """JSON responses may arrive fenced or wrapped in explanatory text."""

    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert parse_json_payload('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_payload('Here you go: {"segments": []} Enjoy!') == {"segments": []}


def test_parse_json_payload_rejects_missing_object() -> None:
    """Text without a JSON object is rejected."""

    with pytest.raises(ValueError, match="does not contain a JSON object"):
        parse_json_payload("no json here")
    with pytest.raises(ValueError, match="malformed"):
        parse_json_payload("prefix {not: valid} suffix")


@pytest.mark.parametrize(("value", "expected"), [(0.0, 0), (12.5, 13), (66.4, 66), (99.5, 100)])
def test_round_half_up(value: float, expected: int) -> None:
    """Halves should always round up."""

    assert round_half_up(value) == expected
