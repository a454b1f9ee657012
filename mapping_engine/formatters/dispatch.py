"""
Formatter dispatcher: resolves the input value(s) from the execution context,
routes ``(formatType, operation)`` to the matching formatter and reports the
outcome as a result dictionary stored under the node id.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping, Optional

from mapping_engine.errors import FormatterError
from mapping_engine.expr.values import to_text
from mapping_engine.formatters import dates, numbers, text
from mapping_engine.formatters.phone import format_phone
from mapping_engine.schema.models import FormatterConfig
from shared.logger import get_logger

logger = get_logger("mapping_engine.formatters.dispatch")

# (value, second_value, options, config) -> formatted value
OperationFn = Callable[[Any, Any, Mapping[str, Any], FormatterConfig], Any]


def _require(condition: Any, message: str) -> None:
    if not condition:
        raise FormatterError(message)


# -----------------------------
# Date operations
# -----------------------------
def _timezone_conversion(value: Any, _second: Any, options: Mapping[str, Any], _cfg: FormatterConfig) -> Any:
    _require(
        options.get("timezone") and options.get("targetTimezone"),
        "Timezone conversion requires both source and target timezones",
    )
    return dates.timezone_conversion(value, options["timezone"], options["targetTimezone"])


def _add_date(value: Any, _second: Any, options: Mapping[str, Any], _cfg: FormatterConfig) -> Any:
    _require(options.get("unit") and options.get("value"), "Add date requires unit and value")
    return dates.add_date(value, options["unit"], options["value"], options.get("timezone") or "UTC")


def _subtract_date(value: Any, _second: Any, options: Mapping[str, Any], _cfg: FormatterConfig) -> Any:
    _require(options.get("unit") and options.get("value"), "Subtract date requires unit and value")
    return dates.subtract_date(value, options["unit"], options["value"], options.get("timezone") or "UTC")


def _date_difference(value: Any, second: Any, options: Mapping[str, Any], cfg: FormatterConfig) -> Any:
    _require(
        cfg.input_field2 and second is not None,
        f"Date difference requires a valid second input value for field {cfg.input_field2 or 'none'}",
    )
    return dates.date_difference(value, second, options.get("unit") or "days", options.get("timezone") or "UTC")


DATE_OPERATIONS: Dict[str, OperationFn] = {
    "format_date": lambda v, _s, o, _c: dates.format_date(v, o.get("format"), o.get("timezone") or "UTC"),
    "format_time": lambda v, _s, o, _c: dates.format_time(
        v, o.get("format"), o.get("timezone") or "UTC", o.get("targetTimezone")
    ),
    "format_datetime": lambda v, _s, o, _c: dates.format_datetime(
        v, o.get("format"), o.get("timezone") or "UTC", o.get("targetTimezone")
    ),
    "timezone_conversion": _timezone_conversion,
    "add_date": _add_date,
    "subtract_date": _subtract_date,
    "date_difference": _date_difference,
}


# -----------------------------
# Text operations (always applied to the string form of the value)
# -----------------------------
TEXT_OPERATIONS: Dict[str, OperationFn] = {
    "uppercase": lambda v, _s, _o, _c: text.uppercase(to_text(v)),
    "lowercase": lambda v, _s, _o, _c: text.lowercase(to_text(v)),
    "title_case": lambda v, _s, _o, _c: text.title_case(to_text(v)),
    "trim_whitespace": lambda v, _s, _o, _c: text.trim_whitespace(to_text(v)),
    "replace": lambda v, _s, o, _c: text.replace(to_text(v), o.get("searchValue"), o.get("replaceValue")),
    "extract_email": lambda v, _s, _o, _c: text.extract_email(to_text(v)),
    "split": lambda v, _s, o, _c: text.split(to_text(v), o.get("delimiter"), o.get("index")),
    "word_count": lambda v, _s, _o, _c: text.word_count(to_text(v)),
    "url_encode": lambda v, _s, _o, _c: text.url_encode(to_text(v)),
}


# -----------------------------
# Number operations
# -----------------------------
def _math_operation(value: Any, second: Any, options: Mapping[str, Any], cfg: FormatterConfig) -> Any:
    _require(
        cfg.input_field2 and second is not None,
        f"Math operation requires a valid second input value for field {cfg.input_field2 or 'none'}",
    )
    return numbers.math_operation(value, second, options.get("operation"))


NUMBER_OPERATIONS: Dict[str, OperationFn] = {
    "locale_format": lambda v, _s, o, _c: numbers.locale_format(v, o.get("locale")),
    "currency_format": lambda v, _s, o, _c: numbers.currency_format(v, o.get("currency"), o.get("locale")),
    "round_number": lambda v, _s, o, _c: numbers.round_number(v, o.get("decimals")),
    "math_operation": _math_operation,
}

OPERATIONS: Dict[str, Dict[str, OperationFn]] = {
    "date": DATE_OPERATIONS,
    "text": TEXT_OPERATIONS,
    "number": NUMBER_OPERATIONS,
}


def country_code_key(input_field: str) -> str:
    """``mobile_phoneNumber`` -> ``mobile_countryCode``; otherwise ``<field>_countryCode``."""
    if input_field.endswith("_phoneNumber"):
        return input_field[: -len("_phoneNumber")] + "_countryCode"
    return f"{input_field}_countryCode"


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def apply_formatter(config: FormatterConfig, context: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Apply one formatter to the context and return its result record.

    ``status`` is ``completed`` on success, ``skipped`` when the input is
    missing or a phone number cannot be normalised, and ``failed`` when the
    operation itself raised.
    """

    options: Mapping[str, Any] = config.options or {}
    custom = config.custom_value if config.use_custom_input and config.custom_value else None
    user_value = custom if custom is not None else context.get(config.input_field)
    if config.input_field2:
        second_value = context.get(config.input_field2)
    else:
        second_value = custom

    result: Dict[str, Any] = {
        "nodeId": config.node_id or f"formatter_{int(time.time() * 1000)}",
        "status": "processed",
        "operation": config.operation,
        "inputField": config.input_field,
        "originalValue": user_value,
        "secondInputField": config.input_field2 or None,
        "secondOriginalValue": second_value,
        "output": None,
    }

    if _is_missing(user_value):
        logger.warning(
            f"Missing value for field {config.input_field}. Available keys: {', '.join(context.keys())}"
        )
        result["status"] = "skipped"
        result["output"] = user_value
        result["error"] = f"Missing value for field {config.input_field}"
        return result

    try:
        formatted = _dispatch(config, user_value, second_value, options, context, result)
    except Exception as e:  # noqa: BLE001 - formatter failures are recorded on the result
        logger.error(f"Error applying formatter {config.operation} to field {config.input_field}: {e}")
        result["output"] = user_value
        result["status"] = "skipped" if config.operation == "phone_format" else "failed"
        result["error"] = str(e)
        return result

    result["output"] = formatted
    if result["status"] != "skipped":
        result["status"] = "completed"
    if config.output_variable:
        result["outputVariable"] = config.output_variable
    return result


def _dispatch(
    config: FormatterConfig,
    value: Any,
    second_value: Any,
    options: Mapping[str, Any],
    context: Mapping[str, Any],
    result: Dict[str, Any],
) -> Any:
    if config.format_type == "number" and config.operation == "phone_format":
        key = country_code_key(config.input_field)
        phone = format_phone(
            value,
            options.get("format"),
            options.get("countryCode"),
            sibling_country=context.get(key) or None,
            input_type=options.get("inputType") or "phone_number",
        )
        result["status"] = phone.status
        if phone.error:
            result["error"] = phone.error
            result["status"] = "skipped"
        return phone.output

    group = OPERATIONS.get(config.format_type or "")
    if group is None:
        logger.warning(f"Unsupported formatter type: {config.format_type}")
        return value
    operation: Optional[OperationFn] = group.get(config.operation or "")
    if operation is None:
        logger.warning(f"Unsupported {config.format_type} formatter operation: {config.operation}")
        return value
    return operation(value, second_value, options, config)


__all__ = [
    "DATE_OPERATIONS",
    "NUMBER_OPERATIONS",
    "OPERATIONS",
    "TEXT_OPERATIONS",
    "apply_formatter",
    "country_code_key",
]
