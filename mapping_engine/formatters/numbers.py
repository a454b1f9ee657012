"""
Numeric formatters. Locale-aware output always uses Western Arabic digits.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import math
import re
from typing import Any, Optional, Union

from babel import Locale, UnknownLocaleError
from babel.numbers import format_currency, format_decimal

from mapping_engine.errors import FormatterError
from mapping_engine.expr.values import to_number
from shared.logger import get_logger

logger = get_logger("mapping_engine.formatters.numbers")

Number = Union[int, float]

_CURRENCY_CODE = re.compile(r"[A-Za-z]{3}")


def _numeric_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    number = to_number(value)
    return None if math.isnan(number) else number


def normalize_number(number: float) -> Number:
    """Integral results come back as ``int`` so they serialize as ``5`` not ``5.0``."""
    if math.isfinite(number) and float(number).is_integer():
        return int(number)
    return number


def _locale(tag: Optional[str]) -> Locale:
    return Locale.parse((tag or "en-US").replace("-", "_"))


def locale_format(value: Any, locale: Optional[str] = None) -> Any:
    number = _numeric_or_none(value)
    if number is None:
        logger.warning(f"Invalid number for locale_format: {value}")
        return value
    try:
        return format_decimal(number, locale=_locale(locale), numbering_system="latn")
    except (UnknownLocaleError, ValueError, TypeError):
        logger.warning(f"Invalid locale for locale_format: {locale}")
        return value


def currency_format(value: Any, currency: Optional[str], locale: Optional[str] = None) -> Any:
    number = _numeric_or_none(value)
    if number is None:
        logger.warning(f"Invalid number for currency_format: {value}")
        return value
    if not currency:
        logger.warning("Missing currency code for currency_format")
        return value
    if not _CURRENCY_CODE.fullmatch(str(currency)):
        logger.warning(f"Invalid currency code for currency_format: {currency}")
        return value
    try:
        return format_currency(number, str(currency).upper(), locale=_locale(locale), numbering_system="latn")
    except (UnknownLocaleError, ValueError, TypeError):
        logger.warning(f"Invalid currency code or locale for currency_format: currency={currency}, locale={locale}")
        return value


def round_number(value: Any, decimals: Any = 0) -> Any:
    number = _numeric_or_none(value)
    if number is None or not math.isfinite(number):
        logger.warning(f"Invalid number for round_number: {value}")
        return value
    try:
        places = int(float(decimals)) if decimals not in (None, "") else 0
    except (TypeError, ValueError):
        places = 0
    if places < 0:
        logger.warning(f"Invalid decimal places for round_number: {decimals}")
        return value
    try:
        rounded = Decimal(repr(number)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        logger.warning(f"Error rounding number: {value}")
        return value
    return normalize_number(float(rounded))


def math_operation(value1: Any, value2: Any, operation: Optional[str]) -> Number:
    left = _numeric_or_none(value1)
    right = _numeric_or_none(value2)
    if left is None or right is None:
        logger.warning(f"Invalid numbers for math_operation: value1={value1}, value2={value2}")
        raise FormatterError(f"Invalid numbers: value1={value1}, value2={value2}")

    if operation == "add":
        return normalize_number(left + right)
    if operation == "subtract":
        return normalize_number(left - right)
    if operation == "multiply":
        return normalize_number(left * right)
    if operation == "divide":
        if right == 0:
            raise FormatterError("Division by zero")
        return normalize_number(left / right)
    logger.warning(f"Unsupported math operation: {operation}")
    raise FormatterError(f"Unsupported math operation: {operation}")


__all__ = [
    "currency_format",
    "locale_format",
    "math_operation",
    "normalize_number",
    "round_number",
]
