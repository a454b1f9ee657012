from __future__ import annotations

import pytest

from mapping_engine.errors import FormatterError
from mapping_engine.formatters import dates, numbers, text
from mapping_engine.formatters.dispatch import apply_formatter, country_code_key
from mapping_engine.formatters.phone import format_phone
from mapping_engine.schema.models import FormatterConfig


def _config(**kwargs) -> FormatterConfig:
    return FormatterConfig.model_validate({"nodeId": "fmt_1", **kwargs})


# -----------------------------
# Dates
# -----------------------------
def test_format_date_detects_input_format() -> None:
    assert dates.detect_input_format("2024-01-15", dates.INPUT_DATE_FORMATS) == "YYYY-MM-DD"
    assert dates.format_date("2024-01-15", "MM/DD/YYYY") == "01/15/2024"
    assert dates.format_date("15/01/2024", "YYYY-MM-DD") == "2024-01-15"
    assert dates.format_date("2024-01-15", "Do MMMM YYYY") == "15th January 2024"


def test_unparseable_date_is_returned_unchanged() -> None:
    assert dates.format_date("not a date", "MM/DD/YYYY") == "not a date"
    assert dates.format_date("2024-13-45", "MM/DD/YYYY") == "2024-13-45"


def test_format_time_and_zone_shift() -> None:
    assert dates.format_time("14:30", "hh:mm A") == "02:30 PM"
    assert dates.format_datetime("2024-01-15 10:00:00", "YYYY-MM-DD HH:mm", "UTC", "Asia/Kolkata") == "2024-01-15 15:30"


def test_timezone_conversion_keeps_detected_format() -> None:
    assert dates.timezone_conversion("2024-01-15 10:00:00", "UTC", "America/New_York") == "2024-01-15 05:00:00"


def test_unknown_timezone_raises() -> None:
    with pytest.raises(FormatterError):
        dates.timezone_conversion("2024-01-15 10:00:00", "UTC", "Mars/Olympus")


def test_add_and_subtract_date() -> None:
    assert dates.add_date("2024-01-31", "months", 1) == "2024-02-29"
    assert dates.add_date("15/01/2024", "days", "3") == "18/01/2024"
    assert dates.subtract_date("2024-03-01", "days", 1) == "2024-02-29"


def test_date_difference_is_absolute_and_truncated() -> None:
    assert dates.date_difference("2024-01-01", "2024-01-31", "days") == 30
    assert dates.date_difference("2024-03-15", "2024-01-01", "months") == 2
    assert dates.date_difference("2024-01-01", "2024-01-08", "weeks") == 1


def test_date_difference_rejects_invalid_input() -> None:
    with pytest.raises(FormatterError):
        dates.date_difference("2024-01-01", "yesterday", "days")


# -----------------------------
# Text
# -----------------------------
def test_text_operations() -> None:
    assert text.uppercase("acme") == "ACME"
    assert text.title_case("hello wORLD-wide") == "Hello World-wide"
    assert text.trim_whitespace("  x  ") == "x"
    assert text.replace("a.b.c", ".", "-") == "a-b-c"
    assert text.extract_email("Contact: jane@example.com today") == "jane@example.com"
    assert text.extract_email("no email") == "no email"
    assert text.word_count("  one two  three ") == 3
    assert text.url_encode("a b&c") == "a%20b%26c"


def test_text_operations_render_values_like_form_text() -> None:
    trimmed = apply_formatter(_config(formatType="text", operation="trim_whitespace", inputField="f"), {"f": 5.0})
    upper = apply_formatter(_config(formatType="text", operation="uppercase", inputField="flag"), {"flag": True})

    assert trimmed["output"] == "5"
    assert upper["output"] == "TRUE"


@pytest.mark.parametrize(
    ("index", "expected"),
    [("first", "a"), ("second", "b"), ("last", "d"), ("second_from_last", "c"), ("all", "a, b, c, d")],
)
def test_split_positions(index, expected) -> None:
    assert text.split("a;b;c;d", ";", index) == expected


def test_split_without_delimiter_match_returns_input() -> None:
    assert text.split("abcd", ";", "first") == "abcd"


# -----------------------------
# Numbers
# -----------------------------
def test_locale_and_currency_format() -> None:
    assert numbers.locale_format(1234567.891, "en-US") == "1,234,567.891"
    assert numbers.locale_format("1234.5", "de-DE") == "1.234,5"
    assert numbers.currency_format(1234.5, "usd", "en-US") == "$1,234.50"
    assert numbers.currency_format(10, "DOLLARS", "en-US") == 10
    assert numbers.locale_format("abc", "en-US") == "abc"


def test_round_number_half_up() -> None:
    assert numbers.round_number(2.345, 2) == 2.35
    assert numbers.round_number("2.5", 0) == 3
    assert numbers.round_number(2.5, -1) == 2.5


def test_math_operation() -> None:
    assert numbers.math_operation("4", 2, "add") == 6
    assert numbers.math_operation(4, 2, "divide") == 2
    assert numbers.math_operation(1, 4, "divide") == 0.25
    with pytest.raises(FormatterError, match="Division by zero"):
        numbers.math_operation(1, 0, "divide")
    with pytest.raises(FormatterError):
        numbers.math_operation(1, 2, "power")


# -----------------------------
# Phone
# -----------------------------
def test_phone_e164_for_us_number() -> None:
    result = format_phone("5551234567", "E.164", "US")

    assert result.status == "completed"
    assert result.output == "+15551234567"


@pytest.mark.parametrize(
    ("fmt", "expected"),
    [
        ("International", "+1 650-253-0000"),
        ("National", "(650) 253-0000"),
        ("No Country Code", "(650) 253-0000"),
        ("Clean National", "6502530000"),
    ],
)
def test_phone_output_formats(fmt, expected) -> None:
    assert format_phone("6502530000", fmt, "US").output == expected


def test_phone_country_code_mode() -> None:
    assert format_phone("IN", "E.164", "IN", input_type="country_code").output == "+91"


def test_phone_failures_are_skipped_not_raised() -> None:
    missing_country = format_phone("5551234567", "E.164")
    invalid = format_phone("12345", "E.164", "US", input_type="phone_number")
    blank = format_phone("", "E.164", "US")

    assert missing_country.status == "skipped"
    assert missing_country.error == "Country code is required for phone number validation"
    assert missing_country.output == "5551234567"
    assert invalid.status == "skipped"
    assert invalid.error == "Invalid phone number for country US"
    assert blank.error == "Phone number cannot be empty"


def test_phone_uses_sibling_country_field() -> None:
    result = format_phone("02079460000", "E.164", sibling_country="GB")

    assert result.output == "+442079460000"


def test_combined_phone_mode_requires_country() -> None:
    result = format_phone("6502530000", "E.164", input_type="combined")

    assert result.status == "skipped"
    assert result.error == "Country code is required for combined phone number validation"
    assert result.output == "6502530000"


# -----------------------------
# Dispatcher
# -----------------------------
def test_apply_formatter_reports_completed_result() -> None:
    cfg = _config(
        formatType="date",
        operation="format_date",
        inputField="dob",
        options={"format": "MM/DD/YYYY"},
        outputVariable="dob_us",
    )

    result = apply_formatter(cfg, {"dob": "2024-01-15"})

    assert result["status"] == "completed"
    assert result["output"] == "01/15/2024"
    assert result["originalValue"] == "2024-01-15"
    assert result["outputVariable"] == "dob_us"
    assert result["nodeId"] == "fmt_1"


def test_apply_formatter_skips_missing_input() -> None:
    cfg = _config(formatType="text", operation="uppercase", inputField="name")

    result = apply_formatter(cfg, {"other": "x"})

    assert result["status"] == "skipped"
    assert result["error"] == "Missing value for field name"


def test_apply_formatter_records_operation_failure() -> None:
    cfg = _config(
        formatType="number",
        operation="math_operation",
        inputField="a",
        inputField2="b",
        options={"operation": "divide"},
    )

    result = apply_formatter(cfg, {"a": 4, "b": 0})

    assert result["status"] == "failed"
    assert result["error"] == "Division by zero"
    assert result["output"] == 4


def test_apply_formatter_phone_reads_sibling_country() -> None:
    cfg = _config(formatType="number", operation="phone_format", inputField="mobile_phoneNumber", options={"format": "E.164"})

    result = apply_formatter(cfg, {"mobile_phoneNumber": "5551234567", "mobile_countryCode": "US"})

    assert result["status"] == "completed"
    assert result["output"] == "+15551234567"


def test_apply_formatter_custom_input_value() -> None:
    cfg = _config(formatType="text", operation="lowercase", inputField="ignored", useCustomInput=True, customValue="HELLO")

    assert apply_formatter(cfg, {})["output"] == "hello"


def test_unknown_operation_passes_value_through() -> None:
    cfg = _config(formatType="text", operation="reverse", inputField="name")

    result = apply_formatter(cfg, {"name": "abc"})

    assert result["output"] == "abc"
    assert result["status"] == "completed"


def test_country_code_key() -> None:
    assert country_code_key("mobile_phoneNumber") == "mobile_countryCode"
    assert country_code_key("phone") == "phone_countryCode"
