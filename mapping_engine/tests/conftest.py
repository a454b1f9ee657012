from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest


INSTANCE_URL = "https://example.my.salesforce.com"


class FakeCrm:
    """In-memory stand-in for the CRM REST surface behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        # substring of the SOQL text -> records returned for it
        self.query_results: Dict[str, List[Dict[str, Any]]] = {}
        self.queries: List[str] = []
        self.created: List[tuple[str, Dict[str, Any]]] = []
        self.patched: List[tuple[str, str, Dict[str, Any]]] = []
        self.batches: List[List[Dict[str, Any]]] = []
        self.auth_headers: List[str] = []
        self.reject_tokens: set[str] = set()
        self.batch_handler: Optional[Callable[[List[Dict[str, Any]]], httpx.Response]] = None
        self._next_id = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "")
        self.auth_headers.append(token)
        if token.replace("Bearer ", "") in self.reject_tokens:
            return httpx.Response(401, json=[{"message": "Session expired or invalid", "errorCode": "INVALID_SESSION_ID"}])

        path = request.url.path
        if path.endswith("/query"):
            soql = request.url.params.get("q", "")
            self.queries.append(soql)
            for needle, records in self.query_results.items():
                if needle in soql:
                    return httpx.Response(200, json={"totalSize": len(records), "done": True, "records": records})
            return httpx.Response(200, json={"totalSize": 0, "done": True, "records": []})

        if path.endswith("/composite/batch"):
            requests = json.loads(request.content)["batchRequests"]
            self.batches.append(requests)
            if self.batch_handler is not None:
                return self.batch_handler(requests)
            return httpx.Response(
                200,
                json={"hasErrors": False, "results": [{"statusCode": 204, "result": None} for _ in requests]},
            )

        if "/sobjects/" in path and request.method == "POST":
            sobject = path.rstrip("/").rsplit("/", 1)[-1]
            self._next_id += 1
            record_id = f"001NEW{self._next_id:03d}"
            self.created.append((sobject, json.loads(request.content)))
            return httpx.Response(201, json={"id": record_id, "success": True, "errors": []})

        if "/sobjects/" in path and request.method == "PATCH":
            sobject, record_id = unquote(path).rsplit("/", 2)[-2:]
            self.patched.append((sobject, record_id, json.loads(request.content)))
            return httpx.Response(204)

        return httpx.Response(404, json=[{"message": f"Unexpected request {request.method} {path}"}])


class StaticTokenProvider:
    def __init__(self, token: str = "refreshed-token") -> None:
        self.token = token
        self.calls: List[tuple[str, bool]] = []

    async def get_token(self, user_id: str, *, force_refresh: bool = False) -> str:
        self.calls.append((user_id, force_refresh))
        return self.token


@pytest.fixture
def crm() -> FakeCrm:
    return FakeCrm()


@pytest.fixture
def token_provider() -> StaticTokenProvider:
    return StaticTokenProvider()


@pytest.fixture
def make_http_client():
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
