from __future__ import annotations

import pytest

from mapping_engine.errors import UnsupportedOperatorError
from mapping_engine.expr.conditions import (
    OPERATORS,
    escape_soql_value,
    evaluate_condition,
    to_query_fragment,
)
from mapping_engine.schema.models import Condition


def _cond(field: str, operator: str, value=None) -> Condition:
    return Condition(field=field, operator=operator, value=value)


@pytest.mark.parametrize(
    ("operator", "value", "record", "fragment"),
    [
        ("=", "Active", {"Status": "Active"}, "Status = 'Active'"),
        ("!=", "Active", {"Status": "Closed"}, "Status != 'Active'"),
        ("LIKE", "Act", {"Status": "Active"}, "Status LIKE '%Act%'"),
        ("NOT LIKE", "Clo", {"Status": "Active"}, "Status NOT LIKE '%Clo%'"),
        ("STARTS WITH", "Ac", {"Status": "Active"}, "Status LIKE 'Ac%'"),
        ("ENDS WITH", "ive", {"Status": "Active"}, "Status LIKE '%ive'"),
        ("IS NULL", None, {"Status": None}, "Status = null"),
        ("IS NOT NULL", None, {"Status": "Active"}, "Status != null"),
        (">", "10", {"Status": 11}, "Status > 10"),
        ("<", "10", {"Status": 9}, "Status < 10"),
        (">=", "10", {"Status": 10}, "Status >= 10"),
        ("<=", "10", {"Status": 10}, "Status <= 10"),
        ("BETWEEN", "5,10", {"Status": 7}, "Status >= 5 AND Status <= 10"),
        ("IN", "A,B", {"Status": "B"}, "Status IN ('A','B')"),
        ("NOT IN", "A,B", {"Status": "C"}, "Status NOT IN ('A','B')"),
    ],
)
def test_operator_evaluation_and_fragment_agree(operator, value, record, fragment) -> None:
    condition = _cond("Status", operator, value)

    assert evaluate_condition(record, condition) is True
    assert to_query_fragment("Status", value, operator) == fragment


def test_every_operator_has_both_renderings() -> None:
    assert set(OPERATORS) == {
        "=", "!=", "LIKE", "NOT LIKE", "STARTS WITH", "ENDS WITH", "IS NULL", "IS NOT NULL",
        ">", "<", ">=", "<=", "BETWEEN", "IN", "NOT IN",
    }


def test_equality_does_not_coerce_types() -> None:
    assert evaluate_condition({"Amount": 5}, _cond("Amount", "=", "5")) is False
    assert evaluate_condition({"Amount": 5}, _cond("Amount", "!=", "5")) is True


def test_text_operators_require_string_values() -> None:
    assert evaluate_condition({"Name": 12345}, _cond("Name", "LIKE", "23")) is False
    assert evaluate_condition({"Name": ""}, _cond("Name", "STARTS WITH", "")) is False
    assert evaluate_condition({}, _cond("Name", "NOT LIKE", "x")) is False


def test_missing_field_counts_as_null() -> None:
    assert evaluate_condition({}, _cond("Phone", "IS NULL")) is True
    assert evaluate_condition({"Phone": ""}, _cond("Phone", "IS NOT NULL")) is False


def test_numeric_comparison_with_unparseable_value_is_false() -> None:
    assert evaluate_condition({"Amount": "abc"}, _cond("Amount", ">", "1")) is False
    assert evaluate_condition({"Amount": "abc"}, _cond("Amount", "<=", "1")) is False


def test_unknown_operator_never_matches() -> None:
    assert evaluate_condition({"Status": "Active"}, _cond("Status", "CONTAINS", "Act")) is False


def test_unknown_operator_fragment_raises() -> None:
    with pytest.raises(UnsupportedOperatorError):
        to_query_fragment("Status", "x", "CONTAINS")


def test_quotes_are_escaped_in_literals() -> None:
    assert escape_soql_value("O'Brien") == "O\\'Brien"
    assert to_query_fragment("LastName", "O'Brien", "=") == "LastName = 'O\\'Brien'"
    assert to_query_fragment("Region", "N'a,S", "IN") == "Region IN ('N\\'a','S')"
