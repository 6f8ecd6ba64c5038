import json
import math
import re
from typing import Any, List

from grading_service.errors import MalformedInputError
from grading_service.schemas import InputFormat

_INT_LITERAL = re.compile(r"[+-]?[0-9]+", re.ASCII)
_FLOAT_LITERAL = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?", re.ASCII)


def _finite(value: float) -> float:
    if not math.isfinite(value):
        raise MalformedInputError(f"Test input contains a non-finite number: {value}")
    return value


def _reject_constant(name: str):
    raise MalformedInputError(f"Test input contains a non-finite number: {name}")


def coerce_token(token: str) -> Any:
    """Plain decimal literals become int or float; anything else stays a string."""
    if _INT_LITERAL.fullmatch(token):
        return int(token)
    if _FLOAT_LITERAL.fullmatch(token):
        return _finite(float(token))
    return token


def parse_input(raw_input: str, input_format: InputFormat) -> List[Any]:
    """
    Turn a raw test case input into the positional arguments for the
    student's function.
    """
    if raw_input is None or not raw_input.strip():
        return []

    try:
        fmt = InputFormat(input_format)
    except ValueError:
        raise MalformedInputError(f"Unsupported input format: {input_format}")

    if fmt == InputFormat.JSON:
        try:
            parsed = json.loads(
                raw_input,
                parse_float=lambda text: _finite(float(text)),
                parse_constant=_reject_constant,
            )
        except json.JSONDecodeError as e:
            raise MalformedInputError(f"Test input is not valid JSON: {e.msg}") from e
        if not isinstance(parsed, list):
            raise MalformedInputError("Test input must be a JSON array of arguments")
        return parsed

    if fmt == InputFormat.SPACE_SEPARATED:
        return [coerce_token(token) for token in raw_input.split()]

    if fmt == InputFormat.LINE_SEPARATED:
        lines = raw_input.strip().replace("\r\n", "\n").replace("\r", "\n").split("\n")
        return [coerce_token(line.strip()) for line in lines]
