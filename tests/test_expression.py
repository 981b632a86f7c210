import pytest

from sheetloader.common.exceptions import InvalidExpressionError
from sheetloader.transformers.expression import Placeholder, compile_expression


def test_placeholder_resolves_to_looked_up_value() -> None:
    expr = compile_expression("${Accounts.Code.Id}")

    assert expr.placeholders == [Placeholder("Accounts", "Code", "Id")]
    assert expr.evaluate("A-1", {Placeholder("Accounts", "Code", "Id"): "001xx"}) == "001xx"


def test_repeated_placeholder_is_listed_once() -> None:
    expr = compile_expression("${S.K.V} + '/' + ${S.K.V}")

    assert len(expr.placeholders) == 1
    assert expr.evaluate("k", {Placeholder("S", "K", "V"): "v"}) == "v/v"


@pytest.mark.parametrize("text, value, expected", [
    ("value + '-X'", "A", "A-X"),
    ("value * 2", "21", "42"),
    ("value / 4", "10", "2.5"),
    ("value % 3", "10", "1"),
    ("-value", "5", "-5"),
    ("(1 + 2) * 3", "", "9"),
    ("'a' + 1", "", "a1"),
    ("value == '' ? 'none' : value", "", "none"),
    ("value == '' ? 'none' : value", "x", "x"),
    ("not value", "", "true"),
    ("!value", "x", "false"),
    ("value && 'yes'", "x", "yes"),
    ("value || 'default'", "", "default"),
    ("value or 'default'", "", "default"),
    ("1 == '1'", "", "true"),
    ("1 === '1'", "", "false"),
    ("1 !== 1.0", "", "false"),
    ("'10' < '9'", "", "true"),
    ("value < 9", "10", "false"),
    ("value >= 10 and value <= 20", "15", "true"),
    ("null", "x", ""),
    ("\"tab\\there\"", "", "tab\there"),
])
def test_evaluation(text: str, value: str, expected: str) -> None:
    assert compile_expression(text).evaluate(value) == expected


@pytest.mark.parametrize("text", [
    "${Accounts.Code}",
    "${Accounts.Code.Id",
    "${.Code.Id}",
    "(1 + 2",
    "value +",
    "foo",
    "'unterminated",
    "value ? 1",
    "1 2",
    "value @ 2",
])
def test_malformed_expressions_fail_to_compile(text: str) -> None:
    with pytest.raises(InvalidExpressionError):
        compile_expression(text)


def test_division_by_zero_fails_at_evaluation() -> None:
    expr = compile_expression("10 / value")

    assert expr.evaluate("4") == "2.5"
    with pytest.raises(InvalidExpressionError, match="Division by zero"):
        expr.evaluate("0")


def test_non_numeric_arithmetic_fails() -> None:
    with pytest.raises(InvalidExpressionError):
        compile_expression("value * 2").evaluate("abc")


def test_deeply_nested_parentheses_fail_to_compile() -> None:
    text = "(" * 5000 + "1" + ")" * 5000

    with pytest.raises(InvalidExpressionError, match="nests too deeply"):
        compile_expression(text)
