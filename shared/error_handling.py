"""Standardized response bodies for the mapping engine boundary"""

import traceback
from typing import Any, Dict, Optional


def create_error_response(
    error_message: str,
    exception: Optional[Exception] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Create standardized error response with optional traceback.

    Args:
        error_message: User-friendly error message
        exception: Optional exception to include traceback from
        extra: Additional keys merged into the body (e.g. ``results``)

    Returns:
        Dict with standardized error format
    """
    error_data: Dict[str, Any] = {
        "success": False,
        "error": error_message,
    }

    if exception is not None:
        error_data["errorType"] = type(exception).__name__
        error_data["traceback"] = "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        )

    error_data.update(extra)
    return error_data


def create_success_response(data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create standardized success response.

    Args:
        data: Optional additional data to include

    Returns:
        Dict with standardized success format
    """
    response: Dict[str, Any] = {"success": True}
    if data:
        response.update(data)

    return response
