from mapping_engine.formatters.dispatch import OPERATIONS, apply_formatter, country_code_key
from mapping_engine.formatters.phone import PhoneResult, format_phone

__all__ = ["OPERATIONS", "PhoneResult", "apply_formatter", "country_code_key", "format_phone"]
