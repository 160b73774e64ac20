"""Stack-based arithmetic tool."""
from __future__ import annotations

import math
from typing import Any, Dict, Optional

from calcbot.calculator import evaluate
from calcbot.calc_types import EvaluationError


def format_result(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def json_number(value: float) -> Optional[float]:
    """JSON has no inf/nan; those travel as null next to their display string."""
    return value if math.isfinite(value) else None


def calculate(expression: str) -> Dict[str, Any]:
    if not isinstance(expression, str) or not expression.strip():
        return {
            "status": "error",
            "error": "missing_expression",
            "message": "expression is required",
        }
    try:
        result = evaluate(expression)
    except EvaluationError as exc:
        return {"status": "error", **exc.to_dict()}
    return {
        "status": "ok",
        "expression": expression,
        "result": json_number(result),
        "display": format_result(result),
    }
