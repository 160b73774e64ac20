import json
import math

import pytest

from calcbot.calc_types import ERROR_KINDS
from calcbot.tools.math import calculate, format_result, json_number


def _strict_loads(text):
    def _reject(constant):
        raise ValueError(f"non-standard JSON constant {constant}")

    return json.loads(text, parse_constant=_reject)


@pytest.mark.parametrize(
    "value, expected",
    [
        (14.0, "14"),
        (3.5, "3.5"),
        (-2.0, "-2"),
        (math.inf, "inf"),
        (-math.inf, "-inf"),
        (math.nan, "nan"),
    ],
)
def test_format_result(value, expected):
    assert format_result(value) == expected


def test_json_number_drops_non_finite():
    assert json_number(2.5) == 2.5
    assert json_number(math.inf) is None
    assert json_number(math.nan) is None


def test_calculate_ok():
    result = calculate("(2+3)*4")
    assert result == {
        "status": "ok",
        "expression": "(2+3)*4",
        "result": 20.0,
        "display": "20",
    }


@pytest.mark.parametrize("expression, display", [("5/0", "inf"), ("0-5/0", "-inf"), ("0/0", "nan")])
def test_calculate_non_finite_serialises_as_strict_json(expression, display):
    result = calculate(expression)
    assert result["status"] == "ok"
    assert result["result"] is None
    assert result["display"] == display
    assert _strict_loads(json.dumps(result, allow_nan=False)) == result


def test_calculate_error_carries_kind_and_message():
    result = calculate("2+3)")
    assert result["status"] == "error"
    assert result["error"] == "unbalanced_parentheses"
    assert result["message"]
    assert result["error"] in ERROR_KINDS


def test_calculate_reports_every_checked_kind():
    assert calculate("2+abc")["error"] == "invalid_character"
    assert calculate("1.2.3")["error"] == "tokenization_failed"
    assert calculate("1+")["error"] == "stack_underflow"
    assert calculate("(2+3")["error"] == "malformed_expression"


@pytest.mark.parametrize("expression", [None, "", "   ", 12])
def test_calculate_missing_expression(expression):
    result = calculate(expression)
    assert result["status"] == "error"
    assert result["error"] == "missing_expression"
