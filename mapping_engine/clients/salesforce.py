"""
Async CRM REST client used by every query-backed node.

A single ``TokenState`` is shared by all calls of one flow run: the first
401 triggers one token refresh through the configured ``TokenProvider``
and later calls reuse the refreshed token. A second 401 is surfaced to
the caller as a ``SalesforceApiError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from mapping_engine.errors import RemoteCallError, SalesforceApiError
from shared.config import config
from shared.logger import get_logger

logger = get_logger("mapping_engine.clients.salesforce")


class TokenProvider(Protocol):
    async def get_token(self, user_id: str, *, force_refresh: bool = False) -> str:
        ...


@dataclass
class TokenState:
    access_token: str
    refreshed: bool = False
    new_access_token: Optional[str] = None

    def record_refresh(self, token: str) -> None:
        self.access_token = token
        self.new_access_token = token
        self.refreshed = True


@dataclass
class BatchUpdateResult:
    updated: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def _error_message(body: Any, response: httpx.Response) -> str:
    if isinstance(body, list) and body and isinstance(body[0], dict) and body[0].get("message"):
        return str(body[0]["message"])
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


def _item_error(item: Dict[str, Any]) -> str:
    result = item.get("result")
    if isinstance(result, list) and result and isinstance(result[0], dict) and result[0].get("message"):
        return str(result[0]["message"])
    if isinstance(result, dict) and result.get("message"):
        return str(result["message"])
    return f"HTTP {item.get('statusCode')}"


class SalesforceClient:
    def __init__(
        self,
        instance_url: str,
        token: TokenState,
        http_client: httpx.AsyncClient,
        *,
        user_id: str = "",
        token_provider: Optional[TokenProvider] = None,
        api_version: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        host = instance_url.replace("https://", "").replace("http://", "").rstrip("/")
        self.instance_url = f"https://{host}"
        self.api_version = api_version or config.salesforce_api_version
        self.batch_size = batch_size or config.salesforce_batch_size
        self.token = token
        self.http_client = http_client
        self.user_id = user_id
        self.token_provider = token_provider

    @property
    def base_url(self) -> str:
        return f"{self.instance_url}/services/data/{self.api_version}"

    # -----------------------------
    # Transport
    # -----------------------------
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.token.access_token}",
            "Content-Type": "application/json",
        }
        return await self.http_client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._send(method, path, **kwargs)
        if response.status_code == 401 and not self.token.refreshed and self.token_provider is not None:
            logger.info(f"Access token rejected for user {self.user_id}; refreshing once")
            new_token = await self.token_provider.get_token(self.user_id, force_refresh=True)
            self.token.record_refresh(new_token)
            response = await self._send(method, path, **kwargs)
        return response

    # -----------------------------
    # Operations
    # -----------------------------
    async def query_raw(self, soql: str) -> Dict[str, Any]:
        response = await self._request("GET", "/query", params={"q": soql})
        if response.status_code >= 400:
            body = _parse_body(response)
            if isinstance(body, list) and body and isinstance(body[0], dict) and body[0].get("message"):
                detail = body[0]["message"]
            else:
                detail = json.dumps(body) if body else response.text
            raise SalesforceApiError(
                f"SOQL query failed: {detail}",
                status_code=response.status_code,
                payload=body,
            )
        body = _parse_body(response)
        return body if isinstance(body, dict) else {"records": []}

    async def query(self, soql: str) -> List[Dict[str, Any]]:
        data = await self.query_raw(soql)
        return list(data.get("records") or [])

    async def create_record(self, sobject: str, payload: Dict[str, Any]) -> Optional[str]:
        response = await self._request("POST", f"/sobjects/{sobject}/", json=payload)
        body = _parse_body(response)
        if response.status_code >= 400:
            raise SalesforceApiError(
                _error_message(body, response),
                status_code=response.status_code,
                payload=body,
            )
        return body.get("id") if isinstance(body, dict) else None

    async def update_record(self, sobject: str, record_id: str, payload: Dict[str, Any]) -> None:
        response = await self._request("PATCH", f"/sobjects/{sobject}/{record_id}", json=payload)
        if response.status_code >= 400:
            body = _parse_body(response)
            raise SalesforceApiError(
                _error_message(body, response),
                status_code=response.status_code,
                payload=body,
            )

    async def batch_update(
        self,
        sobject: str,
        record_ids: Sequence[str],
        payload: Dict[str, Any],
    ) -> BatchUpdateResult:
        """
        Apply ``payload`` to every record in chunks of ``batch_size``. A failed
        chunk marks only its own records as failed; later chunks still run.
        """

        result = BatchUpdateResult()
        ids = list(record_ids)
        for start in range(0, len(ids), self.batch_size):
            chunk = ids[start:start + self.batch_size]
            await self._update_chunk(sobject, chunk, payload, result)
        logger.info(
            f"Batch update of {sobject}: {len(result.updated)} updated, {len(result.failed)} failed"
        )
        return result

    async def _update_chunk(
        self,
        sobject: str,
        chunk: List[str],
        payload: Dict[str, Any],
        result: BatchUpdateResult,
    ) -> None:
        body = {
            "batchRequests": [
                {
                    "method": "PATCH",
                    "url": f"/services/data/{self.api_version}/sobjects/{sobject}/{record_id}",
                    "richInput": payload,
                }
                for record_id in chunk
            ]
        }
        try:
            response = await self._request("POST", "/composite/batch", json=body)
        except (httpx.HTTPError, RemoteCallError) as exc:
            logger.error(f"Batch chunk for {sobject} failed: {exc}")
            result.failed.extend({"recordId": record_id, "error": str(exc)} for record_id in chunk)
            return

        try:
            data = response.json()
        except ValueError:
            data = None

        items = data.get("results") if isinstance(data, dict) else None
        ok = response.status_code < 400
        if ok and isinstance(items, list) and not data.get("hasErrors"):
            result.updated.extend(chunk)
            return

        if not isinstance(items, list):
            detail = json.dumps(data) if data is not None else response.text
            message = f"Unexpected batch response: {detail}"
            result.failed.extend({"recordId": record_id, "error": message} for record_id in chunk)
            return

        for index, record_id in enumerate(chunk):
            item = items[index] if index < len(items) and isinstance(items[index], dict) else None
            if item is None:
                result.failed.append({"recordId": record_id, "error": "Missing batch result"})
            elif int(item.get("statusCode") or 0) >= 400:
                result.failed.append({"recordId": record_id, "error": _item_error(item)})
            else:
                result.updated.append(record_id)


__all__ = ["BatchUpdateResult", "SalesforceClient", "TokenProvider", "TokenState"]
