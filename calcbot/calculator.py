"""Infix arithmetic evaluator.

Three stages run in a straight line: validate the raw text, split it into
tokens, then reduce the tokens with an operand stack and an operator stack
(shunting-yard with immediate evaluation).
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List, Optional, Union

from calcbot.calc_types import (
    LEFT_PAREN,
    RIGHT_PAREN,
    EvaluationError,
    ExpressionTooLongError,
    InvalidCharacterError,
    MalformedExpressionError,
    Operator,
    StackUnderflowError,
    Token,
    TokenKind,
    TokenizationError,
    UnbalancedParenthesesError,
    UnknownOperatorError,
)

logger = logging.getLogger("calcbot.calculator")

DEFAULT_MAX_EXPRESSION_CHARS = 1024

DIGITS = frozenset("0123456789")
DECIMAL_POINT = "."
OPERATOR_CHARS = {op.value: op for op in Operator}
ALLOWED_CHARS = DIGITS | {DECIMAL_POINT, "(", ")"} | frozenset(OPERATOR_CHARS)

# Entries on the operator stack: a pending operator or an open-paren barrier.
StackEntry = Union[Operator, Token]


@lru_cache(maxsize=8)
def _parse_limit(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            "Invalid CALC_MAX_EXPRESSION_CHARS, using default",
            extra={"extra": {"value": raw, "default": DEFAULT_MAX_EXPRESSION_CHARS}},
        )
        return DEFAULT_MAX_EXPRESSION_CHARS


def max_expression_chars() -> int:
    """Input cap from CALC_MAX_EXPRESSION_CHARS; 0 or less disables it."""
    raw = os.getenv("CALC_MAX_EXPRESSION_CHARS")
    if raw is None or not raw.strip():
        return DEFAULT_MAX_EXPRESSION_CHARS
    return _parse_limit(raw)


def validate_expression(expression: str) -> str:
    """Strip whitespace and reject anything outside the accepted alphabet."""
    stripped = "".join(expression.split())
    invalid = sorted({ch for ch in stripped if ch not in ALLOWED_CHARS})
    if invalid:
        raise InvalidCharacterError(
            "Invalid characters in the expression: " + " ".join(repr(ch) for ch in invalid)
        )
    return stripped


def _scan_number(text: str, start: int) -> tuple[Token, int]:
    pos = start
    seen_point = False
    seen_digit = False
    while pos < len(text) and (text[pos] in DIGITS or text[pos] == DECIMAL_POINT):
        if text[pos] == DECIMAL_POINT:
            if seen_point:
                raise TokenizationError(f"Malformed number at position {start}: {text[start:pos + 1]!r}")
            seen_point = True
        else:
            seen_digit = True
        pos += 1
    if not seen_digit:
        raise TokenizationError(f"Malformed number at position {start}: {text[start:pos]!r}")
    return Token.number(float(text[start:pos])), pos


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(expression):
        ch = expression[pos]
        if ch in DIGITS or ch == DECIMAL_POINT:
            token, pos = _scan_number(expression, pos)
            tokens.append(token)
            continue
        if ch in OPERATOR_CHARS:
            tokens.append(Token.op(OPERATOR_CHARS[ch]))
        elif ch == "(":
            tokens.append(LEFT_PAREN)
        elif ch == ")":
            tokens.append(RIGHT_PAREN)
        else:
            raise TokenizationError(f"Unexpected character at position {pos}: {ch!r}")
        pos += 1
    if not tokens:
        raise TokenizationError("Invalid expression: no tokens found.")
    return tokens


def _is_left_paren(entry: StackEntry) -> bool:
    return isinstance(entry, Token) and entry.kind is TokenKind.LEFT_PAREN


def _apply(operators: List[StackEntry], operands: List[float]) -> None:
    entry = operators.pop()
    if not isinstance(entry, Operator):
        raise UnknownOperatorError(f"Unknown operator: {entry}")
    if len(operands) < 2:
        raise StackUnderflowError(f"Operator {entry.value!r} is missing an operand.")
    b = operands.pop()
    a = operands.pop()
    operands.append(entry.apply(a, b))


def evaluate_tokens(tokens: List[Token]) -> float:
    operands: List[float] = []
    operators: List[StackEntry] = []

    for token in tokens:
        if token.kind is TokenKind.NUMBER:
            operands.append(float(token.value))
        elif token.kind is TokenKind.OPERATOR:
            op = token.operator
            if not isinstance(op, Operator):
                raise UnknownOperatorError(f"Unknown operator: {op!r}")
            # >= pops equal precedence first, which makes same-tier operators left-associative.
            while (
                operators
                and isinstance(operators[-1], Operator)
                and operators[-1].precedence >= op.precedence
            ):
                _apply(operators, operands)
            operators.append(op)
        elif token.kind is TokenKind.LEFT_PAREN:
            operators.append(token)
        elif token.kind is TokenKind.RIGHT_PAREN:
            while operators and not _is_left_paren(operators[-1]):
                _apply(operators, operands)
            if not operators:
                raise UnbalancedParenthesesError("Closing parenthesis has no matching opener.")
            operators.pop()
        else:
            raise UnknownOperatorError(f"Unknown token: {token}")

    while operators:
        if _is_left_paren(operators[-1]):
            raise MalformedExpressionError("Unclosed parenthesis in the expression.")
        _apply(operators, operands)

    if len(operands) != 1:
        raise MalformedExpressionError(
            f"Malformed expression: expected one result, found {len(operands)} values."
        )
    return operands[0]


def evaluate(expression: str, max_length: Optional[int] = None) -> float:
    """Evaluate an infix arithmetic expression.

    Supports ``+ - * /``, parentheses and non-negative decimal literals. Raises
    an :class:`EvaluationError` subclass describing the first problem found.
    Division by zero yields ``inf``/``-inf``/``nan`` rather than raising.
    """
    if not isinstance(expression, str):
        raise TokenizationError("Expression must be a string.")
    limit = max_expression_chars() if max_length is None else max_length
    if limit > 0 and len(expression) > limit:
        raise ExpressionTooLongError(f"Expression exceeds {limit} characters.")

    try:
        stripped = validate_expression(expression)
        return evaluate_tokens(tokenize(stripped))
    except EvaluationError as exc:
        level = logging.DEBUG if exc.user_error else logging.ERROR
        logger.log(level, "evaluation failed", extra={"extra": {"error": exc.kind}})
        raise
