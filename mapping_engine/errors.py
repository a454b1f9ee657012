"""
Shared exception hierarchy for the mapping engine.
"""

from __future__ import annotations

from typing import Any, Optional


class MappingEngineError(Exception):
    """Base class for all mapping engine errors."""


class NodeValidationError(MappingEngineError):
    """Raised when a node definition is missing required configuration."""


class CustomLogicError(MappingEngineError):
    """Raised when a custom logic expression cannot be tokenized or parsed."""


class UnsupportedOperatorError(MappingEngineError):
    """Raised when a query fragment is requested for an unknown operator."""


class FormatterError(MappingEngineError):
    """Raised inside formatter operations; the dispatcher records it on the result."""


class FormulaError(MappingEngineError):
    """Raised when a calculation formula cannot be parsed or evaluated."""


class CredentialNotFoundError(MappingEngineError):
    """Raised when no usable stored credential exists for a user."""


class RemoteCallError(MappingEngineError):
    """Raised for non-2xx responses from a remote service."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class SalesforceApiError(RemoteCallError):
    """CRM REST call failed."""


class SheetsApiError(RemoteCallError):
    """Spreadsheet REST call failed."""


class TokenRefreshError(RemoteCallError):
    """Fetching a fresh bearer token failed."""
