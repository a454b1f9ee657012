"""
Public entrypoint for running a form's mapping flow against the CRM and
spreadsheet services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from mapping_engine.clients.credentials import GoogleCredentialResolver, HttpTokenProvider
from mapping_engine.clients.salesforce import SalesforceClient, TokenProvider, TokenState
from mapping_engine.runtime.audit import AuditSink, LoggerAuditSink
from mapping_engine.runtime.context import FlowRunContext, RuntimeServices
from mapping_engine.runtime.execution import flow_has_critical_errors, run_flow
from mapping_engine.runtime.nodes import NodeRuntime
from mapping_engine.schema.models import AnyNode
from shared.config import config


@dataclass
class MappingRunOutcome:
    results: Dict[str, Any]
    new_access_token: Optional[str] = None

    @property
    def has_critical_errors(self) -> bool:
        return flow_has_critical_errors(self.results)


async def run_mapping_flow(
    nodes: Sequence[AnyNode],
    *,
    user_id: str,
    instance_url: str,
    access_token: str,
    form_version_id: str,
    form_data: Dict[str, Any],
    submission_id: Optional[str] = None,
    audit_sink: Optional[AuditSink] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    token_provider: Optional[TokenProvider] = None,
) -> MappingRunOutcome:
    """
    Execute normalised ``nodes`` for one form submission.

    A caller-supplied ``http_client`` is left open; otherwise a client with
    the configured timeout is created for the duration of the run.
    """

    if http_client is None:
        async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as client:
            return await run_mapping_flow(
                nodes,
                user_id=user_id,
                instance_url=instance_url,
                access_token=access_token,
                form_version_id=form_version_id,
                form_data=form_data,
                submission_id=submission_id,
                audit_sink=audit_sink,
                http_client=client,
                token_provider=token_provider,
            )

    token = TokenState(access_token)
    salesforce = SalesforceClient(
        instance_url,
        token,
        http_client,
        user_id=user_id,
        token_provider=token_provider or HttpTokenProvider(http_client),
    )
    runtime = NodeRuntime(
        RuntimeServices(
            salesforce=salesforce,
            credentials=GoogleCredentialResolver(salesforce, http_client),
            http_client=http_client,
        )
    )
    run = FlowRunContext(
        user_id=user_id,
        form_version_id=form_version_id,
        form_data=dict(form_data),
        token=token,
        submission_id=submission_id,
    )
    results = await run_flow(nodes, run, runtime, audit_sink or LoggerAuditSink())
    return MappingRunOutcome(results=results, new_access_token=run.new_access_token)


__all__ = ["MappingRunOutcome", "run_mapping_flow"]
