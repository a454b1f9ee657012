"""
Single-predicate evaluation against a record, and the matching SOQL fragment.

Each operator is defined once with both renderings so the in-process filter
and the generated query cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

from mapping_engine.errors import UnsupportedOperatorError
from mapping_engine.expr.values import (
    MISSING,
    format_number,
    is_blank,
    strict_equals,
    to_number,
    to_text,
    truthy,
)
from mapping_engine.schema.models import Condition
from shared.logger import get_logger

logger = get_logger("mapping_engine.expr.conditions")


def escape_soql_value(value: Any) -> str:
    return to_text(value).replace("'", "\\'")


@dataclass(frozen=True)
class Operator:
    symbol: str
    evaluate: Callable[[Any, Any], bool]
    to_soql: Callable[[str, Any], str]


def _contains(value: Any, needle: Any) -> bool:
    return truthy(value) and isinstance(value, str) and to_text(needle) in value


def _not_contains(value: Any, needle: Any) -> bool:
    return truthy(value) and isinstance(value, str) and to_text(needle) not in value


def _starts(value: Any, prefix: Any) -> bool:
    return truthy(value) and isinstance(value, str) and value.startswith(to_text(prefix))


def _ends(value: Any, suffix: Any) -> bool:
    return truthy(value) and isinstance(value, str) and value.endswith(to_text(suffix))


def _between(value: Any, bounds: Any) -> bool:
    parts = to_text(bounds).split(",")
    low = to_number(parts[0])
    high = to_number(parts[1]) if len(parts) > 1 else float("nan")
    number = to_number(value)
    return number >= low and number <= high


def _between_soql(field: str, bounds: Any) -> str:
    parts = to_text(bounds).split(",")
    low = format_number(to_number(parts[0]))
    high = format_number(to_number(parts[1])) if len(parts) > 1 else "NaN"
    return f"{field} >= {low} AND {field} <= {high}"


def _in_list_soql(field: str, values: Any, keyword: str) -> str:
    quoted = ",".join(f"'{escape_soql_value(item)}'" for item in to_text(values).split(","))
    return f"{field} {keyword} ({quoted})"


def _member(value: Any, values: Any) -> bool:
    return to_text(value) in to_text(values).split(",")


OPERATORS: Dict[str, Operator] = {
    op.symbol: op
    for op in (
        Operator(
            "=",
            lambda value, target: strict_equals(value, target),
            lambda field, value: f"{field} = '{escape_soql_value(value)}'",
        ),
        Operator(
            "!=",
            lambda value, target: not strict_equals(value, target),
            lambda field, value: f"{field} != '{escape_soql_value(value)}'",
        ),
        Operator(
            "LIKE",
            _contains,
            lambda field, value: f"{field} LIKE '%{escape_soql_value(value)}%'",
        ),
        Operator(
            "NOT LIKE",
            _not_contains,
            lambda field, value: f"{field} NOT LIKE '%{escape_soql_value(value)}%'",
        ),
        Operator(
            "STARTS WITH",
            _starts,
            lambda field, value: f"{field} LIKE '{escape_soql_value(value)}%'",
        ),
        Operator(
            "ENDS WITH",
            _ends,
            lambda field, value: f"{field} LIKE '%{escape_soql_value(value)}'",
        ),
        Operator(
            "IS NULL",
            lambda value, _target: is_blank(value),
            lambda field, _value: f"{field} = null",
        ),
        Operator(
            "IS NOT NULL",
            lambda value, _target: not is_blank(value),
            lambda field, _value: f"{field} != null",
        ),
        Operator(
            ">",
            lambda value, target: to_number(value) > to_number(target),
            lambda field, value: f"{field} > {format_number(to_number(value))}",
        ),
        Operator(
            "<",
            lambda value, target: to_number(value) < to_number(target),
            lambda field, value: f"{field} < {format_number(to_number(value))}",
        ),
        Operator(
            ">=",
            lambda value, target: to_number(value) >= to_number(target),
            lambda field, value: f"{field} >= {format_number(to_number(value))}",
        ),
        Operator(
            "<=",
            lambda value, target: to_number(value) <= to_number(target),
            lambda field, value: f"{field} <= {format_number(to_number(value))}",
        ),
        Operator("BETWEEN", _between, _between_soql),
        Operator(
            "IN",
            _member,
            lambda field, value: _in_list_soql(field, value, "IN"),
        ),
        Operator(
            "NOT IN",
            lambda value, values: not _member(value, values),
            lambda field, value: _in_list_soql(field, value, "NOT IN"),
        ),
    )
}


def evaluate_condition(record: Mapping[str, Any], condition: Condition) -> bool:
    """
    Test one condition against ``record``. Unknown operators never match; they
    are logged rather than raised so a single bad rule cannot abort a filter.
    """

    operator = OPERATORS.get(condition.operator)
    if operator is None:
        logger.warning("Unsupported operator: %s", condition.operator)
        return False
    value = record.get(condition.field, MISSING)
    return bool(operator.evaluate(value, condition.value))


def to_query_fragment(field: str, value: Any, operator: str) -> str:
    spec = OPERATORS.get(operator)
    if spec is None:
        raise UnsupportedOperatorError(f"Unsupported operator: {operator}")
    return spec.to_soql(field, value)


def build_condition_fragment(condition: Condition) -> str:
    return to_query_fragment(condition.field, condition.value, condition.operator)


__all__ = [
    "OPERATORS",
    "Operator",
    "build_condition_fragment",
    "escape_soql_value",
    "evaluate_condition",
    "to_query_fragment",
]
