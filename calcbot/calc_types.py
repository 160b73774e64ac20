from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EvaluationError(ValueError):
    """Base class for every failure raised by the expression evaluator."""

    kind = "evaluation_error"
    user_error = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidCharacterError(EvaluationError):
    kind = "invalid_character"


class TokenizationError(EvaluationError):
    kind = "tokenization_failed"


class UnbalancedParenthesesError(EvaluationError):
    kind = "unbalanced_parentheses"


class StackUnderflowError(EvaluationError):
    kind = "stack_underflow"


class MalformedExpressionError(EvaluationError):
    kind = "malformed_expression"


class UnknownOperatorError(EvaluationError):
    kind = "unknown_operator"
    user_error = False


class ExpressionTooLongError(EvaluationError):
    kind = "expression_too_long"


ERROR_KINDS = tuple(
    cls.kind
    for cls in (
        InvalidCharacterError,
        TokenizationError,
        UnbalancedParenthesesError,
        StackUnderflowError,
        MalformedExpressionError,
        UnknownOperatorError,
        ExpressionTooLongError,
    )
)


def _divide(a: float, b: float) -> float:
    # IEEE-754 result for a zero divisor; Python raises instead.
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


class Operator(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"

    @property
    def precedence(self) -> int:
        return PRECEDENCE[self]

    def apply(self, a: float, b: float) -> float:
        if self is Operator.ADD:
            return a + b
        if self is Operator.SUB:
            return a - b
        if self is Operator.MUL:
            return a * b
        if self is Operator.DIV:
            return _divide(a, b)
        raise UnknownOperatorError(f"Unknown operator: {self.value}")


PRECEDENCE = {
    Operator.ADD: 1,
    Operator.SUB: 1,
    Operator.MUL: 2,
    Operator.DIV: 2,
}


class TokenKind(Enum):
    NUMBER = "number"
    OPERATOR = "operator"
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: Optional[float] = None
    operator: Optional[Operator] = None

    @classmethod
    def number(cls, value: float) -> "Token":
        return cls(kind=TokenKind.NUMBER, value=value)

    @classmethod
    def op(cls, operator: Operator) -> "Token":
        return cls(kind=TokenKind.OPERATOR, operator=operator)

    def __str__(self) -> str:
        if self.kind is TokenKind.NUMBER:
            return repr(self.value)
        if self.kind is TokenKind.OPERATOR and self.operator is not None:
            return self.operator.value
        return self.kind.value


LEFT_PAREN = Token(kind=TokenKind.LEFT_PAREN)
RIGHT_PAREN = Token(kind=TokenKind.RIGHT_PAREN)
