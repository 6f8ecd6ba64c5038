import json
import math
import re
from dataclasses import dataclass
from typing import Any

from grading_service.config import Settings

_WHITESPACE_RUN = re.compile(r"\s+")
_MISSING = object()


@dataclass(frozen=True)
class ComparisonPolicy:
    """How actual and expected outputs are judged equal."""

    float_rel_tolerance: float = 1e-9
    float_abs_tolerance: float = 0.0
    collapse_whitespace: bool = True

    @classmethod
    def from_settings(cls, config: Settings) -> "ComparisonPolicy":
        return cls(
            float_rel_tolerance=config.float_rel_tolerance,
            float_abs_tolerance=config.float_abs_tolerance,
            collapse_whitespace=config.collapse_whitespace,
        )


def normalize_output(value: str, policy: ComparisonPolicy = ComparisonPolicy()) -> str:
    """Strip, unify line endings and optionally collapse whitespace runs."""
    if value is None:
        return ""
    text = str(value).replace("\r\n", "\n").replace("\r", "\n").strip()
    if policy.collapse_whitespace:
        text = _WHITESPACE_RUN.sub(" ", text)
    return text


def _as_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return _MISSING


def _numbers_equal(a, b, policy: ComparisonPolicy) -> bool:
    if a == b:
        return True
    if math.isnan(a) or math.isnan(b):
        return False
    return math.isclose(a, b, rel_tol=policy.float_rel_tolerance, abs_tol=policy.float_abs_tolerance)


def values_equal(actual: Any, expected: Any, policy: ComparisonPolicy = ComparisonPolicy()) -> bool:
    """Structural equality over decoded JSON values."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected

    if isinstance(actual, int) and isinstance(expected, int):
        return actual == expected

    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        try:
            return _numbers_equal(float(actual), float(expected), policy)
        except OverflowError:
            return False

    if isinstance(actual, list) and isinstance(expected, list):
        return len(actual) == len(expected) and all(
            values_equal(a, e, policy) for a, e in zip(actual, expected)
        )

    if isinstance(actual, dict) and isinstance(expected, dict):
        return actual.keys() == expected.keys() and all(
            values_equal(actual[k], expected[k], policy) for k in expected
        )

    if isinstance(actual, str) and isinstance(expected, str):
        return normalize_output(actual, policy) == normalize_output(expected, policy)

    return actual is None and expected is None


def outputs_match(actual: str, expected: str, policy: ComparisonPolicy = ComparisonPolicy()) -> bool:
    """
    Compare a serialized return value with a test case's expected output.

    When both sides decode as JSON the comparison is structural, so `[1, 2]`
    matches `[1,2]` and `5.0` matches `5`. Otherwise the canonicalized strings
    must be identical.
    """
    actual_text = normalize_output(actual, policy)
    expected_text = normalize_output(expected, policy)
    if actual_text == expected_text:
        return True

    actual_value = _as_json(actual_text)
    expected_value = _as_json(expected_text)
    if actual_value is _MISSING or expected_value is _MISSING:
        return False
    return values_equal(actual_value, expected_value, policy)
