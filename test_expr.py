"""Tests for tokenizing, parsing and evaluating single expressions."""

import pytest

from calc_pad.expr import (
    BinaryNode,
    NumberNode,
    ResultKind,
    UnaryNode,
    Value,
    add_values,
    divide_values,
    evaluate_expression,
    is_group_comma,
    parse,
    tokenize,
)
from calc_pad.formatting import format_value


def value_of(source, env=None):
    result = evaluate_expression(source, env)
    assert result.kind == ResultKind.VALUE, result.error
    return result.value


def error_of(source, env=None):
    result = evaluate_expression(source, env)
    assert result.kind == ResultKind.ERROR
    return result.error


# --- Tokenizer ---


def test_currency_literal_with_grouping():
    tokens, error = tokenize("$ 1,200.50")
    assert error is None
    assert len(tokens) == 1
    assert tokens[0].value == Value(1200.5, "usd")


def test_unit_suffix_is_part_of_number():
    tokens, error = tokenize("3cm2 + 2 sq ft")
    assert error is None
    assert [token.type for token in tokens] == ["number", "op", "number"]
    assert tokens[0].value == Value(3, "cm2")
    assert tokens[2].value == Value(2, "ft2")


def test_group_comma_detection():
    assert is_group_comma("2,000", 1)
    assert not is_group_comma("2,00", 1)
    assert not is_group_comma("2,0000", 1)
    assert not is_group_comma("max(2,3)", 5)


def test_tokenizer_errors():
    assert error_of("2 @ 3") == "Unexpected character: @"
    assert error_of("$") == "Expected number after $"
    assert error_of("$x") == "Expected number after $"
    assert error_of("1.2.3") == "Invalid number: 1.2.3"
    assert error_of("12345,678") == "Invalid number: 12345,678"


# --- Parser ---


def test_unary_minus_binds_looser_than_power():
    tokens, _ = tokenize("-2 ^ 2")
    tree, error = parse(tokens)
    assert error is None
    assert tree == UnaryNode("-", BinaryNode("^", NumberNode(Value(2.0)), NumberNode(Value(2.0))))


def test_parse_errors():
    assert error_of("(1 + 2") == "Missing closing )"
    assert error_of("max(1, 2") == "Missing closing )"
    assert error_of("1 +") == "Unexpected end of input"
    assert error_of("1 2") == "Unexpected trailing input"
    assert error_of("1,00 + 1") == "Unexpected trailing input"
    assert error_of("*3") == "Unexpected token: *"


# --- Arithmetic ---


@pytest.mark.parametrize(
    "source, expected",
    [
        ("4 + 4 / 2", 6),
        ("2 * 3 + 4", 10),
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("10 - 4 - 3", 3),
        ("12 / 4 / 3", 1),
        ("2 ^ 3 ^ 2", 512),
        ("-2 ^ 2", -4),
        ("(-2) ^ 2", 4),
        ("2 ^ -1", 0.5),
        ("--3", 3),
        ("2,000 + 1", 2001),
        (".5 * 4", 2),
    ],
)
def test_arithmetic(source, expected):
    assert value_of(source) == Value(expected)


def test_division_by_zero():
    assert error_of("1 / 0") == "Division by zero"
    assert error_of("$1 / 0") == "Division by zero"
    assert error_of("5 m / (2 - 2)") == "Division by zero"


def test_invalid_exponentiation():
    assert error_of("(-8) ^ 0.5") == "Invalid exponentiation"
    assert error_of("10 ^ 400") == "Invalid exponentiation"
    assert error_of("0 ^ -1") == "Invalid exponentiation"


def test_out_of_range_result():
    assert error_of("x * 10", {"x": Value(1e308)}) == "Number out of range"


# --- Units ---


def test_unitless_side_takes_the_other_unit():
    assert value_of("$1 + 2") == Value(3, "usd")
    assert value_of("2 + $1") == Value(3, "usd")
    assert value_of("5 m + 3") == Value(8, "m")
    assert value_of("2 * 3 m") == Value(6, "m")
    assert value_of("-5 m") == Value(-5, "m")


def test_percent_is_a_plain_tag():
    assert value_of("15%") == Value(15, "percent")
    assert value_of("10% + 5") == Value(15, "percent")


def test_unit_mismatch():
    assert error_of("5 m + 3 cm") == "Unit mismatch"
    assert error_of("$5 - 2 m") == "Unit mismatch"
    assert error_of("$6 / 2 m") == "Unit mismatch"
    assert error_of("6 / 2 m") == "Unit mismatch"
    assert add_values(Value(1, "usd"), Value(2, "m")) == (None, "Unit mismatch")


def test_division_by_same_unit_drops_it():
    assert value_of("6 m / 2 m") == Value(3)
    assert value_of("6 m / 2") == Value(3, "m")
    assert divide_values(Value(9, "usd"), Value(3, "usd")) == (Value(3), None)


def test_unit_products_and_powers_are_rejected():
    assert error_of("$1 * $2") == "Cannot multiply two unit values"
    assert error_of("2 m * 3 m") == "Cannot multiply two unit values"
    assert error_of("2 m ^ 2") == "Cannot exponentiate unit values"
    assert error_of("2 ^ 2%") == "Cannot exponentiate unit values"


def test_conversions():
    converted = value_of("5 ft to cm")
    assert converted.unit == "cm"
    assert converted.amount == pytest.approx(152.4)

    converted = value_of("100 c to f")
    assert converted.unit == "f"
    assert converted.amount == pytest.approx(212)

    converted = value_of("2 sq m in sq cm")
    assert converted.unit == "cm2"
    assert converted.amount == pytest.approx(20000)

    converted = value_of("1 gal to l")
    assert converted.amount == pytest.approx(3.785411784)

    assert value_of("5 to m") == Value(5, "m")


@pytest.mark.parametrize(
    "source, expected",
    [
        ("32 f to c", "0°C"),
        ("0 c to f", "32°F"),
        ("-40 c to f", "-40°F"),
        ("100 c to f", "212°F"),
        ("300 k to c", "26.85°C"),
        ("1 acre to sq ft", "43,560 ft^2"),
        ("1 hectare to sq m", "10,000 m^2"),
        ("2 sq m in sq cm", "20,000 cm^2"),
        ("5 ft to cm", "152.4 cm"),
        ("1 cup to tbsp", "16 tbsp"),
    ],
)
def test_conversion_display(source, expected):
    assert format_value(value_of(source)) == expected


def test_conversion_errors():
    assert error_of("$5 to m") == "Cannot convert $ to m"
    assert error_of("5 m to sq m") == "Cannot convert m to m^2"
    assert error_of("5 m to furlongs") == "Unknown unit: furlongs"
    assert error_of("5 m to") == "Expected unit after to"
    assert error_of("5 m to cm 2") == "Unexpected trailing input"


# --- Variables and Functions ---


def test_variables():
    env = {"price": Value(12, "usd"), "qty": Value(3)}
    assert value_of("price * qty", env) == Value(36, "usd")
    assert error_of("x + 1") == "Undefined variable: x"


def test_min_max():
    assert value_of("max($5, 7)") == Value(7, "usd")
    assert value_of("min(3, 4)") == Value(3)
    assert value_of("max(1, 2) + min(5, 6)") == Value(7)
    assert error_of("max(5 m, 3 cm)") == "Unit mismatch"


def test_rounding_functions_keep_units():
    assert value_of("round(2.5)") == Value(3)
    assert value_of("round(-2.5)") == Value(-2)
    assert value_of("round(0.49999999999999994)") == Value(0)
    assert value_of("round(-0.5)") == Value(0)
    assert value_of("round($2.49)") == Value(2, "usd")
    assert value_of("ceil(1.2 m)") == Value(2, "m")
    assert value_of("floor(-1.5)") == Value(-2)
    assert value_of("abs(-3 ft)") == Value(3, "ft")
    assert value_of("sqrt(16)") == Value(4)


def test_function_errors():
    assert error_of("max(1)") == "max expects 2 arguments"
    assert error_of("round(1, 2)") == "round expects 1 argument"
    assert error_of("foo(1)") == "Unknown function: foo"
    assert error_of("sqrt(-1)") == "Invalid square root"


def test_blank_source_is_empty():
    assert evaluate_expression("   ").kind == ResultKind.EMPTY
