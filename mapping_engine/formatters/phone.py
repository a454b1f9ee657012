"""
Phone number normalisation on top of ``phonenumbers``.

Three input modes are supported:

* ``country_code`` (or any value of three characters or fewer): the value is
  a bare region or calling code and the output is the calling code of the
  requested country, e.g. ``+91``.
* ``phone_number``: the value is validated and formatted against the
  effective country.
* ``combined``: the value is parsed with its original country and, if a
  different target country is requested, its national number is re-parsed
  for that country.

Failures never raise; they are reported as ``status="skipped"``.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumber, PhoneNumberFormat
from phonenumbers.phonemetadata import PhoneMetadata

from shared.logger import get_logger

logger = get_logger("mapping_engine.formatters.phone")

PHONE_FORMATS = ("E.164", "International", "National", "No Country Code", "Clean National")


@dataclass
class PhoneResult:
    output: Any
    status: str = "completed"
    error: Optional[str] = None


def _skip(value: Any, error: str) -> PhoneResult:
    return PhoneResult(output=value, status="skipped", error=error)


def _region_of(number: PhoneNumber) -> Optional[str]:
    region = phonenumbers.region_code_for_number(number)
    if region:
        return region
    return phonenumbers.region_code_for_country_code(number.country_code)


def is_acceptable(number: PhoneNumber) -> bool:
    """
    Valid per number-plan metadata, or at least a possible number that fits
    the region's general national pattern (reserved and fictional exchanges
    such as 555 are common in form submissions).
    """

    if phonenumbers.is_valid_number(number):
        return True
    if not phonenumbers.is_possible_number(number):
        return False
    region = _region_of(number)
    metadata = PhoneMetadata.metadata_for_region(region) if region else None
    pattern = metadata.general_desc.national_number_pattern if metadata and metadata.general_desc else None
    if not pattern:
        return False
    return re.fullmatch(pattern, str(number.national_number)) is not None


def _parse(value: str, region: str) -> Optional[PhoneNumber]:
    number = phonenumbers.parse(value, region.upper())
    return number if is_acceptable(number) else None


def render_number(number: PhoneNumber, fmt: Optional[str]) -> Optional[str]:
    if fmt == "E.164":
        return phonenumbers.format_number(number, PhoneNumberFormat.E164)
    if fmt == "International":
        return phonenumbers.format_number(number, PhoneNumberFormat.INTERNATIONAL)
    if fmt == "National":
        return phonenumbers.format_number(number, PhoneNumberFormat.NATIONAL)
    if fmt == "No Country Code":
        national = phonenumbers.format_number(number, PhoneNumberFormat.NATIONAL)
        return re.sub(r"^[+\d\s-]+", "", national).strip()
    if fmt == "Clean National":
        national = phonenumbers.format_number(number, PhoneNumberFormat.NATIONAL)
        return re.sub(r"\D", "", national)
    return None


def _calling_code(value: str, country_code: Optional[str]) -> PhoneResult:
    if not re.fullmatch(r"\+?\d+", value):
        if phonenumbers.country_code_for_region(value.upper()) == 0:
            return _skip(value, "Could not convert country code")
    target = phonenumbers.country_code_for_region((country_code or "").upper())
    if target == 0:
        return _skip(value, "Could not convert country code")
    return PhoneResult(output=f"+{target}")


def format_phone(
    value: Any,
    fmt: Optional[str],
    country_code: Optional[str] = None,
    *,
    sibling_country: Optional[str] = None,
    input_type: str = "phone_number",
) -> PhoneResult:
    """
    Normalise ``value`` and render it as one of ``PHONE_FORMATS``.

    ``sibling_country`` is the value of the companion ``<field>_countryCode``
    form field; when present it takes precedence over ``country_code`` for
    parsing.
    """

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(int(value))
    if not isinstance(value, str) or not value.strip():
        return _skip(value, "Phone number cannot be empty")

    effective_country = sibling_country or country_code

    try:
        if input_type == "country_code" or len(value) <= 3:
            return _calling_code(value, country_code)

        if input_type == "phone_number":
            if not effective_country:
                return _skip(value, "Country code is required for phone number validation")
            number = _parse(value, effective_country)
            if number is None:
                return _skip(value, f"Invalid phone number for country {effective_country}")
        else:
            if not effective_country:
                return _skip(value, "Country code is required for combined phone number validation")
            number = _parse(value, effective_country)
            if number is None:
                return _skip(value, f"Invalid phone number for country {effective_country}")
            if country_code and _region_of(number) != country_code.upper():
                number = _parse(str(number.national_number), country_code)
                if number is None:
                    return _skip(value, f"Invalid phone number format for country {country_code}")

        rendered = render_number(number, fmt)
        if rendered is None:
            return _skip(value, f"Unsupported format: {fmt}")
        return PhoneResult(output=rendered)
    except NumberParseException as exc:
        logger.warning(f"Phone number {value!r} could not be parsed: {exc}")
        return _skip(value, f"Formatting failed: {exc}")


__all__ = ["PHONE_FORMATS", "PhoneResult", "format_phone", "is_acceptable", "render_number"]
