"""
Text formatters. Every operation passes non-string input through unchanged.
"""

from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import quote

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_WORD = re.compile(r"\w\S*")


def uppercase(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


def lowercase(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def title_case(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return _WORD.sub(lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), value)


def trim_whitespace(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def replace(value: Any, search_value: Optional[str], replace_value: Optional[str] = None) -> Any:
    if not isinstance(value, str) or not search_value:
        return value
    return value.replace(str(search_value), str(replace_value or ""))


def extract_email(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    match = EMAIL_PATTERN.search(value)
    return match.group(0) if match else value


def split(value: Any, delimiter: Optional[str], index: Optional[str]) -> Any:
    """Split on a literal delimiter and pick ``first|second|last|second_from_last|all``."""
    if not isinstance(value, str) or not delimiter:
        return value
    parts = value.split(delimiter)
    if len(parts) <= 1:
        return value
    if index == "first":
        return parts[0] or value
    if index == "second":
        return parts[1] or value
    if index == "last":
        return parts[-1] or value
    if index == "second_from_last":
        return parts[-2]
    if index == "all":
        return ", ".join(parts)
    return value


def word_count(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    stripped = value.strip()
    return 0 if not stripped else len(stripped.split())


def url_encode(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return quote(value, safe="-_.!~*'()")
    except UnicodeEncodeError:
        return value


__all__ = [
    "EMAIL_PATTERN",
    "extract_email",
    "lowercase",
    "replace",
    "split",
    "title_case",
    "trim_whitespace",
    "uppercase",
    "url_encode",
    "word_count",
]
