"""
Date and time formatters.

Formats are written with the token vocabulary form builders already use
(``YYYY-MM-DD``, ``hh:mm A`` ...). Input values are matched strictly against
a fixed, ordered list of accepted patterns; the first pattern that matches
wins and is remembered so operations can render their output in the same
shape the user typed.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
import math
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytz

from mapping_engine.errors import FormatterError
from shared.logger import get_logger

logger = get_logger("mapping_engine.formatters.dates")

ISO_8601 = "ISO_8601"

INPUT_DATE_FORMATS: Tuple[str, ...] = (
    "YYYY-MM-DD",
    "DD/MM/YYYY",
    "MM/DD/YYYY",
    "DD-MM-YYYY",
    "MM-DD-YYYY",
    ISO_8601,
)

INPUT_TIME_FORMATS: Tuple[str, ...] = (
    "HH:mm:ss",
    "hh:mm:ss A",
    "HH:mm",
    "hh:mm A",
    "HH:mm:ss.SSS",
)

INPUT_DATETIME_FORMATS: Tuple[str, ...] = (
    "YYYY-MM-DD HH:mm:ss",
    "DD-MM-YYYY HH:mm:ss",
    "MM-DD-YYYY hh:mm:ss A",
    "YYYY-MM-DD HH:mm",
    "DD/MM/YYYY HH:mm:ss",
    ISO_8601,
)

_DATE_LIKE = INPUT_DATE_FORMATS + INPUT_DATETIME_FORMATS
_ALL_FORMATS = INPUT_DATE_FORMATS + INPUT_TIME_FORMATS + INPUT_DATETIME_FORMATS

_FORMAT_TOKENS = re.compile(
    r"\[[^\]]*\]|YYYY|YY|MMMM|MMM|MM|M|Do|DD|D|dddd|ddd|HH|H|hh|h|mm|m|ss|s|SSS|A|a|ZZ|Z"
)

_PARSE_PATTERNS: Dict[str, str] = {
    "YYYY": r"(?P<year>\d{4})",
    "MM": r"(?P<month>\d{2})",
    "DD": r"(?P<day>\d{2})",
    "HH": r"(?P<hour24>\d{2})",
    "hh": r"(?P<hour12>\d{2})",
    "mm": r"(?P<minute>\d{2})",
    "ss": r"(?P<second>\d{2})",
    "SSS": r"(?P<millis>\d{3})",
    "A": r"(?P<meridiem>[AaPp][Mm])",
}


# -----------------------------
# Parsing
# -----------------------------
def _timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError as exc:
        raise FormatterError(f"Unknown timezone: {name}") from exc


def _compile_format(fmt: str) -> re.Pattern[str]:
    parts: List[str] = []
    pos = 0
    for match in _FORMAT_TOKENS.finditer(fmt):
        parts.append(re.escape(fmt[pos:match.start()]))
        token = match.group(0)
        if token not in _PARSE_PATTERNS:
            raise FormatterError(f"Token {token} is not supported for parsing")
        parts.append(_PARSE_PATTERNS[token])
        pos = match.end()
    parts.append(re.escape(fmt[pos:]))
    return re.compile("".join(parts))


_COMPILED: Dict[str, re.Pattern[str]] = {}


def _pattern(fmt: str) -> re.Pattern[str]:
    if fmt not in _COMPILED:
        _COMPILED[fmt] = _compile_format(fmt)
    return _COMPILED[fmt]


def _parse_with_format(value: str, fmt: str, tz: pytz.BaseTzInfo) -> Optional[datetime]:
    if fmt == ISO_8601:
        return _parse_iso(value, tz)

    match = _pattern(fmt).fullmatch(value)
    if match is None:
        return None
    parts = match.groupdict()

    if parts.get("year") is None:
        today = datetime.now(tz).date()
        year, month, day = today.year, today.month, today.day
    else:
        year, month, day = int(parts["year"]), int(parts["month"]), int(parts["day"])

    hour = 0
    if parts.get("hour24") is not None:
        hour = int(parts["hour24"])
        if hour > 23:
            return None
    elif parts.get("hour12") is not None:
        hour = int(parts["hour12"])
        if not 1 <= hour <= 12:
            return None
        meridiem = (parts.get("meridiem") or "AM").upper()
        hour = hour % 12 + (12 if meridiem == "PM" else 0)

    minute = int(parts.get("minute") or 0)
    second = int(parts.get("second") or 0)
    micros = int(parts.get("millis") or 0) * 1000
    try:
        naive = datetime(year, month, day, hour, minute, second, micros)
    except ValueError:
        return None
    return tz.localize(naive)


def _parse_iso(value: str, tz: pytz.BaseTzInfo) -> Optional[datetime]:
    text = value.strip()
    if not re.match(r"^\d{4}-\d{2}-\d{2}", text):
        return None
    text = re.sub(r"Z$", "+00:00", text)
    text = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return tz.localize(parsed)
    return parsed.astimezone(tz)


@dataclass(frozen=True)
class ParsedValue:
    moment: datetime
    fmt: str


def parse_value(value: Any, formats: Sequence[str], timezone: Optional[str] = "UTC") -> Optional[ParsedValue]:
    """Strict, first-match parse of ``value`` in ``timezone``; ``None`` when nothing matches."""

    if value is None or isinstance(value, bool):
        return None
    text = value.isoformat() if isinstance(value, (date, datetime)) else str(value)
    tz = _timezone(timezone)
    for fmt in formats:
        parsed = _parse_with_format(text, fmt, tz)
        if parsed is not None:
            return ParsedValue(parsed, fmt)
    return None


def detect_input_format(value: Any, formats: Sequence[str]) -> Optional[str]:
    parsed = parse_value(value, formats)
    return parsed.fmt if parsed else None


# -----------------------------
# Rendering
# -----------------------------
def _ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _offset(moment: datetime, sep: str) -> str:
    delta = moment.utcoffset() or timedelta(0)
    minutes = int(delta.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"{sign}{minutes // 60:02d}{sep}{minutes % 60:02d}"


_RENDERERS: Dict[str, Callable[[datetime], str]] = {
    "YYYY": lambda m: f"{m.year:04d}",
    "YY": lambda m: f"{m.year % 100:02d}",
    "MMMM": lambda m: calendar.month_name[m.month],
    "MMM": lambda m: calendar.month_abbr[m.month],
    "MM": lambda m: f"{m.month:02d}",
    "M": lambda m: str(m.month),
    "Do": lambda m: _ordinal(m.day),
    "DD": lambda m: f"{m.day:02d}",
    "D": lambda m: str(m.day),
    "dddd": lambda m: calendar.day_name[m.weekday()],
    "ddd": lambda m: calendar.day_abbr[m.weekday()],
    "HH": lambda m: f"{m.hour:02d}",
    "H": lambda m: str(m.hour),
    "hh": lambda m: f"{(m.hour % 12) or 12:02d}",
    "h": lambda m: str((m.hour % 12) or 12),
    "mm": lambda m: f"{m.minute:02d}",
    "m": lambda m: str(m.minute),
    "ss": lambda m: f"{m.second:02d}",
    "s": lambda m: str(m.second),
    "SSS": lambda m: f"{m.microsecond // 1000:03d}",
    "A": lambda m: "PM" if m.hour >= 12 else "AM",
    "a": lambda m: "pm" if m.hour >= 12 else "am",
    "ZZ": lambda m: _offset(m, ""),
    "Z": lambda m: _offset(m, ":"),
}


def render(moment: datetime, fmt: Optional[str]) -> str:
    """Render ``moment`` with a token format; no format yields ISO 8601."""

    if not fmt or fmt == ISO_8601:
        return moment.isoformat()

    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith("["):
            return token[1:-1]
        return _RENDERERS[token](moment)

    return _FORMAT_TOKENS.sub(replace, fmt)


# -----------------------------
# Calendar arithmetic
# -----------------------------
_UNIT_ALIASES = {
    "y": "years", "year": "years", "years": "years",
    "Q": "quarters", "quarter": "quarters", "quarters": "quarters",
    "M": "months", "month": "months", "months": "months",
    "w": "weeks", "week": "weeks", "weeks": "weeks",
    "d": "days", "day": "days", "days": "days",
    "h": "hours", "hour": "hours", "hours": "hours",
    "m": "minutes", "minute": "minutes", "minutes": "minutes",
    "s": "seconds", "second": "seconds", "seconds": "seconds",
    "ms": "milliseconds", "millisecond": "milliseconds", "milliseconds": "milliseconds",
}


def _unit(name: str) -> str:
    unit = _UNIT_ALIASES.get(name) or _UNIT_ALIASES.get(name.lower())
    if unit is None:
        raise FormatterError(f"Unsupported date unit: {name}")
    return unit


def _add_months(moment: datetime, months: int) -> datetime:
    total = moment.month - 1 + months
    year = moment.year + total // 12
    month = total % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    naive = moment.replace(tzinfo=None, year=year, month=month, day=day)
    return moment.tzinfo.localize(naive) if hasattr(moment.tzinfo, "localize") else naive.replace(tzinfo=moment.tzinfo)


def shift(moment: datetime, unit: str, amount: float) -> datetime:
    unit = _unit(unit)
    if unit in ("years", "quarters", "months"):
        months = int(amount) * {"years": 12, "quarters": 3, "months": 1}[unit]
        return _add_months(moment, months)
    if unit in ("weeks", "days"):
        days = int(amount) * (7 if unit == "weeks" else 1)
        naive = moment.replace(tzinfo=None) + timedelta(days=days)
        return moment.tzinfo.localize(naive) if hasattr(moment.tzinfo, "localize") else naive.replace(tzinfo=moment.tzinfo)
    seconds = {"hours": 3600, "minutes": 60, "seconds": 1, "milliseconds": 0.001}[unit] * amount
    return (moment + timedelta(seconds=seconds)).astimezone(moment.tzinfo)


def _month_diff(a: datetime, b: datetime) -> int:
    if a < b:
        return -_month_diff(b, a)
    months = (a.year - b.year) * 12 + (a.month - b.month)
    if _add_months(b, months) > a:
        months -= 1
    return months


def difference(a: datetime, b: datetime, unit: str) -> int:
    unit = _unit(unit)
    if unit in ("years", "quarters", "months"):
        months = _month_diff(a, b)
        return int(months / {"years": 12, "quarters": 3, "months": 1}[unit])
    seconds = (a - b).total_seconds()
    per_unit = {
        "weeks": 604800,
        "days": 86400,
        "hours": 3600,
        "minutes": 60,
        "seconds": 1,
        "milliseconds": 0.001,
    }[unit]
    return math.trunc(seconds / per_unit)


# -----------------------------
# Operations
# -----------------------------
def format_date(value: Any, fmt: Optional[str], timezone: str = "UTC") -> Any:
    parsed = parse_value(value, INPUT_DATE_FORMATS, timezone)
    if parsed is None:
        logger.warning(f"Invalid date format for value: {value}")
        return value
    return render(parsed.moment, fmt)


def _format_in_zone(
    value: Any,
    formats: Sequence[str],
    fmt: Optional[str],
    timezone: str,
    target_timezone: Optional[str],
    kind: str,
) -> Any:
    parsed = parse_value(value, formats, timezone)
    if parsed is None:
        logger.warning(f"Invalid {kind} format for value: {value}")
        return value
    moment = parsed.moment
    if target_timezone and target_timezone != timezone:
        moment = moment.astimezone(_timezone(target_timezone))
    return render(moment, fmt)


def format_time(value: Any, fmt: Optional[str], timezone: str = "UTC", target_timezone: Optional[str] = None) -> Any:
    return _format_in_zone(value, INPUT_TIME_FORMATS, fmt, timezone, target_timezone, "time")


def format_datetime(
    value: Any,
    fmt: Optional[str],
    timezone: str = "UTC",
    target_timezone: Optional[str] = None,
) -> Any:
    return _format_in_zone(value, INPUT_DATETIME_FORMATS, fmt, timezone, target_timezone, "datetime")


def timezone_conversion(value: Any, source_timezone: str, target_timezone: str) -> Any:
    parsed = parse_value(value, _ALL_FORMATS, source_timezone)
    if parsed is None:
        logger.warning(f"Invalid date/time format for timezone conversion: {value}")
        return value
    converted = parsed.moment.astimezone(_timezone(target_timezone))
    return render(converted, parsed.fmt or "YYYY-MM-DD HH:mm:ss")


def add_date(value: Any, unit: str, amount: Any, timezone: str = "UTC") -> Any:
    parsed = parse_value(value, _DATE_LIKE, timezone)
    if parsed is None:
        logger.warning(f"Invalid date/time format for add_date: {value}")
        return value
    return render(shift(parsed.moment, unit, _amount(amount)), parsed.fmt or "YYYY-MM-DD")


def subtract_date(value: Any, unit: str, amount: Any, timezone: str = "UTC") -> Any:
    parsed = parse_value(value, _DATE_LIKE, timezone)
    if parsed is None:
        logger.warning(f"Invalid date/time format for subtract_date: {value}")
        return value
    return render(shift(parsed.moment, unit, -_amount(amount)), parsed.fmt or "YYYY-MM-DD")


def date_difference(value1: Any, value2: Any, unit: Optional[str] = "days", timezone: str = "UTC") -> int:
    first = parse_value(value1, _DATE_LIKE, timezone)
    second = parse_value(value2, _DATE_LIKE, timezone)
    if first is None or second is None:
        logger.warning(f"Invalid date/time format for date_difference: date1={value1}, date2={value2}")
        raise FormatterError(f"Invalid date/time format: date1={value1}, date2={value2}")
    return abs(difference(first.moment, second.moment, unit or "days"))


def _amount(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise FormatterError(f"Invalid date amount: {raw}") from exc


__all__ = [
    "INPUT_DATETIME_FORMATS",
    "INPUT_DATE_FORMATS",
    "INPUT_TIME_FORMATS",
    "ISO_8601",
    "ParsedValue",
    "add_date",
    "date_difference",
    "detect_input_format",
    "difference",
    "format_date",
    "format_datetime",
    "format_time",
    "parse_value",
    "render",
    "shift",
    "subtract_date",
    "timezone_conversion",
]
