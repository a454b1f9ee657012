"""
Credential resolution: the CRM bearer token service and stored spreadsheet
OAuth credentials.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import re
from typing import Any, Callable, Dict, Optional

import httpx

from mapping_engine.clients.salesforce import SalesforceClient
from mapping_engine.errors import CredentialNotFoundError, TokenRefreshError
from mapping_engine.expr.conditions import escape_soql_value
from shared.config import config
from shared.logger import get_logger

logger = get_logger("mapping_engine.clients.credentials")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


# -----------------------------
# CRM token service
# -----------------------------
class HttpTokenProvider:
    """Fetches a fresh CRM access token from the token service."""

    def __init__(self, http_client: httpx.AsyncClient, endpoint: Optional[str] = None) -> None:
        self.http_client = http_client
        self.endpoint = endpoint or config.access_token_endpoint

    async def get_token(self, user_id: str, *, force_refresh: bool = False) -> str:
        # The token service always mints a fresh token; force_refresh is implied.
        if not self.endpoint:
            raise TokenRefreshError("Token refresh endpoint is not configured")

        logger.info(f"Requesting new access token for user {user_id}")
        try:
            response = await self.http_client.post(self.endpoint, json={"userId": user_id})
        except httpx.HTTPError as e:
            logger.error(f"Token service unreachable: {e}")
            raise TokenRefreshError("Failed to fetch new access token") from e

        if response.status_code >= 400:
            logger.error(f"Token service returned {response.status_code}: {response.text[:200]}")
            raise TokenRefreshError("Failed to fetch new access token", status_code=response.status_code)

        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise TokenRefreshError("Failed to fetch new access token", status_code=response.status_code)
        return token


# -----------------------------
# Stored spreadsheet credentials
# -----------------------------
@dataclass
class GoogleCredential:
    record_id: str
    access_token: Optional[str]
    refresh_token: Optional[str]
    last_modified: Optional[datetime]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "GoogleCredential":
        return cls(
            record_id=record.get("Id") or "",
            access_token=record.get("Access_Token__c"),
            refresh_token=record.get("Refresh_Token__c"),
            last_modified=parse_crm_datetime(record.get("LastModifiedDate")),
        )

    def is_fresh(self, now: datetime, ttl_seconds: int) -> bool:
        if not self.access_token or self.last_modified is None:
            return False
        return now < self.last_modified + timedelta(seconds=ttl_seconds)


def parse_crm_datetime(value: Any) -> Optional[datetime]:
    """Parse ``2024-01-15T10:00:00.000+0000`` style timestamps to aware UTC."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace("Z", "+00:00")
    text = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable credential timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class GoogleCredentialResolver:
    """
    Looks up the newest stored spreadsheet credential for a user and
    refreshes it through the OAuth token endpoint when it has aged past the
    configured TTL. Refreshed tokens are written back to the CRM record.
    """

    def __init__(
        self,
        salesforce: SalesforceClient,
        http_client: httpx.AsyncClient,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.salesforce = salesforce
        self.http_client = http_client
        self.now = now

    def credential_query(self, user_id: str) -> str:
        return (
            "SELECT Id, Access_Token__c, Refresh_Token__c, Expiry__c, LastModifiedDate "
            f"FROM {config.google_credential_object} "
            f"WHERE User_Id__c='{escape_soql_value(user_id)}' "
            f"AND TokenType__c='{escape_soql_value(config.google_token_type)}' "
            "ORDER BY LastModifiedDate DESC LIMIT 1"
        )

    async def resolve(self, user_id: str) -> str:
        records = await self.salesforce.query(self.credential_query(user_id))
        if not records:
            raise CredentialNotFoundError("No Google Credentials found for user")

        credential = GoogleCredential.from_record(records[0])
        if credential.is_fresh(self.now(), config.google_token_ttl_seconds):
            return credential.access_token or ""

        logger.info(f"Stored sheet token for user {user_id} is stale, refreshing")
        return await self._refresh(credential)

    async def _refresh(self, credential: GoogleCredential) -> str:
        if not credential.refresh_token:
            raise CredentialNotFoundError("Refresh token missing; please re-authenticate")
        if not config.is_google_oauth_configured:
            raise TokenRefreshError("Google OAuth client credentials not configured")

        refresh_data = {
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            "refresh_token": credential.refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self.http_client.post(GOOGLE_TOKEN_URL, data=refresh_data)
            response.raise_for_status()
            token_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Token refresh failed: {e.response.text}")
            raise TokenRefreshError(
                f"Token refresh failed: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Unexpected error refreshing token: {e}")
            raise TokenRefreshError(f"Token refresh error: {e}") from e

        access_token = token_data.get("access_token")
        if not access_token:
            raise TokenRefreshError("Token refresh response did not include an access token")

        await self.salesforce.update_record(
            config.google_credential_object,
            credential.record_id,
            {
                "Access_Token__c": access_token,
                "Expiry__c": token_data.get("expires_in", config.google_token_ttl_seconds),
                "Refresh_Token__c": token_data.get("refresh_token") or credential.refresh_token,
            },
        )
        logger.info(f"Successfully refreshed sheet token for credential {credential.record_id}")
        return access_token


__all__ = [
    "GOOGLE_TOKEN_URL",
    "GoogleCredential",
    "GoogleCredentialResolver",
    "HttpTokenProvider",
    "parse_crm_datetime",
]
