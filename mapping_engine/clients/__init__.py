from mapping_engine.clients.credentials import GoogleCredentialResolver, HttpTokenProvider
from mapping_engine.clients.google_sheets import GoogleSheetsClient
from mapping_engine.clients.salesforce import BatchUpdateResult, SalesforceClient, TokenProvider, TokenState

__all__ = [
    "BatchUpdateResult",
    "GoogleCredentialResolver",
    "GoogleSheetsClient",
    "HttpTokenProvider",
    "SalesforceClient",
    "TokenProvider",
    "TokenState",
]
