from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

import httpx

from mapping_engine.clients.credentials import GoogleCredentialResolver
from mapping_engine.clients.google_sheets import GoogleSheetsClient
from mapping_engine.clients.salesforce import SalesforceClient, TokenState


@dataclass(frozen=True)
class RuntimeServices:
    """Remote collaborators shared by every executor during one flow run."""

    salesforce: SalesforceClient
    credentials: GoogleCredentialResolver
    http_client: httpx.AsyncClient

    def sheets(self, access_token: str) -> GoogleSheetsClient:
        return GoogleSheetsClient(access_token, self.http_client)


@dataclass
class FlowRunContext:
    """
    Mutable state of a single flow invocation. ``context`` starts as a copy of
    the submitted form data and is extended by Formatter and Loop nodes;
    ``results`` maps node ids to their outcome records.
    """

    user_id: str
    form_version_id: str
    form_data: Dict[str, Any]
    token: TokenState
    submission_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    results: Dict[str, Any] = field(default_factory=dict)
    processed_node_ids: Set[str] = field(default_factory=set)
    skip_until_next_condition: bool = False

    def __post_init__(self) -> None:
        if not self.context:
            self.context = dict(self.form_data)

    @property
    def form_id(self) -> Optional[str]:
        return self.form_data.get("formId")

    @property
    def new_access_token(self) -> Optional[str]:
        return self.token.new_access_token if self.token.refreshed else None
