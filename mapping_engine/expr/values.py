"""
Loose value coercions shared by the condition evaluator, the query builder and
the formatter library.

Form submissions and CRM records arrive as untyped JSON, and the behaviour the
form builder users rely on follows browser-style coercion: blank strings count
as zero, unparseable numbers never compare true, ``None`` stringifies as
``"null"``. These helpers reproduce exactly that and nothing more.
"""

from __future__ import annotations

import math
import re
from typing import Any


class _Missing:
    """Sentinel for a key absent from a record (distinct from an explicit null)."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_DECIMAL = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_RADIX = {"0x": 16, "0o": 8, "0b": 2}


def to_number(value: Any) -> float:
    """Numeric coercion; returns ``nan`` when the value has no numeric reading."""

    if value is MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _DECIMAL.fullmatch(text):
            return float(text)
        if text in {"Infinity", "+Infinity"}:
            return math.inf
        if text == "-Infinity":
            return -math.inf
        prefix = text[:2].lower()
        if prefix in _RADIX:
            try:
                return float(int(text[2:], _RADIX[prefix]))
            except ValueError:
                return math.nan
        return math.nan
    return math.nan


def is_numeric(value: Any) -> bool:
    return not math.isnan(to_number(value))


def format_number(number: float) -> str:
    """Render a float the way it prints in a query literal (``5`` not ``5.0``)."""

    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if number.is_integer() and abs(number) < 1e21:
        return str(int(number))
    return repr(number)


def to_text(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format_number(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else to_text(item) for item in value)
    return str(value)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion (``1`` never equals ``"1"`` or ``True``)."""

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if left is None or right is None:
        return left is right
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return left is right


def loose_equals(left: Any, right: Any) -> bool:
    """Equality with string/number coercion, used for spreadsheet cells."""

    if left is None or right is None or left is MISSING or right is MISSING:
        return (left is None or left is MISSING) and (right is None or right is MISSING)
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, (int, float, bool)) or isinstance(right, (int, float, bool)):
        return to_number(left) == to_number(right)
    return left == right


def is_blank(value: Any) -> bool:
    return value is None or value is MISSING or value == ""


def truthy(value: Any) -> bool:
    if value is MISSING or value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)
