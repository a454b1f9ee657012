from __future__ import annotations

import pytest

from mapping_engine.expr.formula import Binary, Literal, evaluate_formula, parse_formula, tokenize_formula


@pytest.mark.parametrize(
    "formula, values, expected",
    [
        ("{price} * {qty}", {"price": 2, "qty": "3"}, 6),
        ("round({total} / 3, 2)", {"total": 10}, 3.33),
        ("round(2.5)", {}, 3),
        ("{first} + ' ' + {last}", {"first": "Ada", "last": "Lovelace"}, "Ada Lovelace"),
        ("({a} + {b}) * 2", {"a": 1, "b": 2}, 6),
        ("-{a} + 10 % 4", {"a": 1}, 1),
        ("{a} > 2 && {b} == '5'", {"a": 3, "b": 5}, True),
        ("{missing} || 'default'", {}, "default"),
        ("1 === '1'", {}, False),
        ("!{flag}", {"flag": ""}, True),
        ("mod(7, 3)", {}, 1),
        ("sum(1, '2', {x})", {"x": 3}, 6),
        ("max({scores})", {"scores": [4, "9", 2]}, 9),
        ("concatStrings('a', 1, null)", {}, "a1"),
        ("stringLength(trim({s}))", {"s": "  hi  "}, 2),
        ("replace({s}, '/o/g', '0')", {"s": "foo boo"}, "f00 b00"),
        ("toBoolean('yes')", {}, True),
        ("isNullOrEmpty({list})", {"list": []}, True),
    ],
)
def test_evaluate_formula(formula, values, expected) -> None:
    assert evaluate_formula(formula, values) == expected


@pytest.mark.parametrize(
    "formula, expected",
    [
        ("addDays('2024-01-31', 1)", "2024-02-01T00:00:00.000Z"),
        ("addMonths('2024-01-31', 1)", "2024-03-02T00:00:00.000Z"),
        ("addYears('2024-02-29T10:30:00Z', 1)", "2025-03-01T10:30:00.000Z"),
        ("setTime('2024-05-01', '14:05')", "2024-05-01T14:05:00.000Z"),
        ("subtractDates('2024-03-01', '2024-02-01')", 29),
        ("subtractDates('2024-03-01T12:00:00Z', '2024-03-01', 'hours')", 12),
        ("addTimes('23:30', '01:45')", "01:15:00"),
        ("subtractTimes('01:00', '02:30')", "22:30:00"),
        ("toTime('7:5')", "07:05:00"),
    ],
)
def test_date_and_time_helpers(formula, expected) -> None:
    assert evaluate_formula(formula, {}) == expected


def test_invalid_dates_give_null() -> None:
    assert evaluate_formula("addDays({d}, 1)", {"d": "not a date"}) is None


@pytest.mark.parametrize(
    "formula, message",
    [
        ("0 / 0", "Error: Result is NaN"),
        ("evil({a})", "Error: Function evil is not allowed"),
        ("foo", "Error: Unknown identifier 'foo'"),
        ("{a} +", "Error: Formula ends unexpectedly"),
        ("{a", "Error: Unclosed field reference at position 1"),
        ("1 2", "Error: Unexpected '2' at position 3"),
        ("'abc", "Error: Unterminated string starting at position 1"),
        ("1 # 2", "Error: Unexpected character '#' at position 3"),
    ],
)
def test_formula_errors_are_reported_as_text(formula, message) -> None:
    assert evaluate_formula(formula, {"a": 1}) == message


def test_blank_formula_evaluates_to_empty_string() -> None:
    assert evaluate_formula("", {}) == ""
    assert evaluate_formula("   ", {}) == ""
    assert evaluate_formula(None, {}) == ""


def test_multiplication_binds_tighter_than_addition() -> None:
    assert parse_formula("1 + 2 * 3") == Binary("+", Literal(1.0), Binary("*", Literal(2.0), Literal(3.0)))


def test_tokenizer_prefers_longest_operator() -> None:
    kinds = [(token.kind, token.value) for token in tokenize_formula("{a} !== {b}")]
    assert kinds == [("FIELD", "a"), ("OP", "!=="), ("FIELD", "b")]
