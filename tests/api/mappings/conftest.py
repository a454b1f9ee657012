import json
from typing import Any, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

import mapping_engine
from api.main import app
from api.mappings import services
from mapping_engine.registry.node_mappings import InMemoryNodeMappingStore
from mapping_engine.runtime.audit import InMemoryAuditSink


class CrmStub:
    """Answers queries from ``query_results`` and records created records."""

    def __init__(self) -> None:
        self.query_results: Dict[str, List[Dict[str, Any]]] = {}
        self.created: List[tuple] = []
        self.expired_tokens: set = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "").replace("Bearer ", "")
        if token in self.expired_tokens:
            return httpx.Response(401, json=[{"message": "Session expired or invalid"}])
        if request.url.path.endswith("/query"):
            soql = request.url.params.get("q", "")
            for needle, records in self.query_results.items():
                if needle in soql:
                    return httpx.Response(200, json={"records": records})
            return httpx.Response(200, json={"records": []})
        if request.method == "POST" and "/sobjects/" in request.url.path:
            self.created.append((request.url.path.rsplit("/", 1)[-1], json.loads(request.content)))
            return httpx.Response(201, json={"id": f"001NEW{len(self.created):03d}", "success": True})
        return httpx.Response(404, json=[{"message": "Unexpected request"}])


class RefreshingTokenProvider:
    async def get_token(self, user_id: str, *, force_refresh: bool = False) -> str:
        return "refreshed-token"


@pytest.fixture
def crm_stub(monkeypatch) -> CrmStub:
    stub = CrmStub()
    original = mapping_engine.run_mapping_flow

    async def run_against_stub(nodes, **kwargs):
        async with httpx.AsyncClient(transport=httpx.MockTransport(stub)) as client:
            return await original(nodes, http_client=client, token_provider=RefreshingTokenProvider(), **kwargs)

    monkeypatch.setattr(services, "run_mapping_flow", run_against_stub)
    return stub


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def mapping_store() -> InMemoryNodeMappingStore:
    return InMemoryNodeMappingStore()


@pytest.fixture
def client(audit_sink, mapping_store):
    app.state.audit_sink = audit_sink
    app.state.node_mapping_store = mapping_store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        del app.state.audit_sink
        del app.state.node_mapping_store

