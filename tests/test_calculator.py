import math

import pytest

from calcbot.calc_types import (
    ERROR_KINDS,
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
from calcbot.calculator import evaluate, evaluate_tokens, tokenize, validate_expression


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("2+3*4", 14),
        ("10-3-2", 5),
        ("(2+3)*4", 20),
        ("100/10/5", 2),
        ("2*3+4*5", 26),
        ("((7))", 7),
        ("8/(3-1)", 4),
        ("1 + 2 * (3 - 1)", 5),
        ("  42  ", 42),
        ("1.5+2", 3.5),
        ("7/2", 3.5),
        (".5*4", 2),
        ("3.*2", 6),
    ],
)
def test_evaluate_respects_precedence_and_grouping(expression, expected):
    assert evaluate(expression) == expected


def test_whitespace_is_ignored_everywhere():
    assert evaluate("\t1 0 +\n2") == 12


def test_division_by_zero_returns_ieee_values():
    assert evaluate("5/0") == math.inf
    assert math.isnan(evaluate("0/0"))
    assert evaluate("(0-5)/0") == -math.inf


def test_division_by_negative_zero_flips_sign():
    # 0/(0-1/0) is 0/-inf, which produces -0.0
    assert evaluate("1/(0/(0-1/0))") == -math.inf


def test_evaluate_is_idempotent():
    results = {evaluate("6/4+(2*3)") for _ in range(5)}
    assert results == {7.5}


@pytest.mark.parametrize(
    "expression, error",
    [
        ("2+abc", InvalidCharacterError),
        ("2^3", InvalidCharacterError),
        ("", TokenizationError),
        ("   ", TokenizationError),
        (".", TokenizationError),
        ("1.2.3", TokenizationError),
        ("2+3)", UnbalancedParenthesesError),
        (")", UnbalancedParenthesesError),
        ("(2+3", MalformedExpressionError),
        ("()", MalformedExpressionError),
        ("2(3)", MalformedExpressionError),
        ("2+", StackUnderflowError),
        ("*3", StackUnderflowError),
        ("-5+3", StackUnderflowError),
        ("3*-2", StackUnderflowError),
    ],
)
def test_evaluate_rejects_bad_input(expression, error):
    with pytest.raises(error):
        evaluate(expression)


def test_errors_share_a_closed_taxonomy():
    with pytest.raises(EvaluationError) as excinfo:
        evaluate("2+abc")
    assert excinfo.value.kind == "invalid_character"
    assert excinfo.value.kind in ERROR_KINDS
    assert excinfo.value.user_error is True
    assert excinfo.value.to_dict()["error"] == "invalid_character"
    assert isinstance(excinfo.value, ValueError)


def test_unknown_operator_is_an_internal_error():
    assert UnknownOperatorError("x").user_error is False


def test_invalid_character_message_lists_offenders():
    with pytest.raises(InvalidCharacterError) as excinfo:
        evaluate("2 + a + b")
    assert "'a'" in str(excinfo.value)
    assert "'b'" in str(excinfo.value)


def test_expression_length_is_capped():
    with pytest.raises(ExpressionTooLongError):
        evaluate("1+" * 10 + "1", max_length=5)
    assert evaluate("1+1", max_length=0) == 2


def test_expression_length_cap_reads_env(monkeypatch):
    monkeypatch.setenv("CALC_MAX_EXPRESSION_CHARS", "3")
    with pytest.raises(ExpressionTooLongError):
        evaluate("1+23")
    assert evaluate("1+2") == 3


def test_non_string_input_is_rejected():
    with pytest.raises(TokenizationError):
        evaluate(None)


def test_validate_strips_whitespace():
    assert validate_expression(" 1 +\t2 ") == "1+2"


def test_tokenize_maximal_munch():
    tokens = tokenize("12+(3.5*4)")
    assert [token.kind for token in tokens] == [
        TokenKind.NUMBER,
        TokenKind.OPERATOR,
        TokenKind.LEFT_PAREN,
        TokenKind.NUMBER,
        TokenKind.OPERATOR,
        TokenKind.NUMBER,
        TokenKind.RIGHT_PAREN,
    ]
    assert tokens[0].value == 12.0
    assert tokens[1].operator is Operator.ADD
    assert tokens[3].value == 3.5


def test_operator_precedence_table():
    assert Operator.ADD.precedence == Operator.SUB.precedence == 1
    assert Operator.MUL.precedence == Operator.DIV.precedence == 2


def test_evaluate_tokens_rejects_operator_token_without_operator():
    with pytest.raises(UnknownOperatorError):
        evaluate_tokens([Token.number(1), Token(kind=TokenKind.OPERATOR), Token.number(2)])


def test_evaluate_tokens_accepts_equal_paren_tokens():
    tokens = [
        Token(kind=TokenKind.LEFT_PAREN),
        Token.number(2),
        Token.op(Operator.MUL),
        Token.number(3),
        Token(kind=TokenKind.RIGHT_PAREN),
    ]
    assert evaluate_tokens(tokens) == 6
