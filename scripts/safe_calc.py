#!/usr/bin/env python3
"""Stack-based safe calculator.

Usage:
  ./scripts/safe_calc.py "2 + 2 * (3 - 1)"
  echo "10/4" | ./scripts/safe_calc.py

Outputs JSON:
  {"status":"ok","result":6.0,"display":"6"}

Non-finite results (division by zero) print "result": null with the
display string ("inf", "-inf", "nan").
"""
from __future__ import annotations

import json
import sys

from calcbot.calc_types import EvaluationError
from calcbot.calculator import evaluate
from calcbot.tools.math import format_result, json_number


def _read_expression(argv: list[str]) -> str:
    if len(argv) > 1:
        return " ".join(argv[1:]).strip()
    return sys.stdin.read().strip()


def main(argv: list[str] | None = None) -> int:
    expr = _read_expression(sys.argv if argv is None else argv)
    try:
        result = evaluate(expr)
    except EvaluationError as exc:
        print(json.dumps({"status": "error", **exc.to_dict()}, allow_nan=False))
        return 2
    payload = {"status": "ok", "result": json_number(result), "display": format_result(result)}
    print(json.dumps(payload, allow_nan=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
