"""
Boundary logic for ``POST /api/v1/mappings/run``: request validation, node
normalisation and hydration, flow execution and status mapping.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from mapping_engine import MappingRunOutcome, run_mapping_flow
from mapping_engine.errors import MappingEngineError, NodeValidationError, RemoteCallError
from mapping_engine.expr.custom_logic import validate_custom_logic
from mapping_engine.registry.node_mappings import NodeMappingStore
from mapping_engine.runtime.audit import AuditSink
from mapping_engine.runtime.execution import PASSIVE_NODE_TYPES, critical_results
from mapping_engine.schema.models import AnyNode
from mapping_engine.schema.normalize import node_id_of, node_type_of, normalize_nodes
from shared.error_handling import create_error_response, create_success_response
from shared.logger import get_logger

from api.mappings import models as api_models

logger = get_logger("api.mappings.services")

MISSING_PARAMETERS = (
    "Missing required parameters: userId, instanceUrl, formVersionId, formData, nodes, or Authorization token"
)
NO_ACTION_NODES = "Flow must contain at least one action node"

Response = Tuple[int, Dict[str, Any]]


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or not parts[1].strip():
        return None
    return parts[1].strip()


async def hydrate_nodes(
    raw_nodes: List[Dict[str, Any]],
    *,
    user_id: str,
    form_version_id: str,
    store: Optional[NodeMappingStore],
) -> List[Dict[str, Any]]:
    """Fill in nodes that arrived without a type from the saved form mappings."""
    if store is None:
        return raw_nodes

    hydrated: List[Dict[str, Any]] = []
    for raw in raw_nodes:
        node_id = node_id_of(raw)
        if node_type_of(raw) is None and node_id:
            stored = await store.get_node_mapping(user_id, form_version_id, node_id)
            if stored:
                logger.info(f"Hydrated node {node_id} from saved mappings")
                raw = {**stored, "order": raw.get("Order__c") or raw.get("order") or 0}
        hydrated.append(raw)
    return hydrated


def _only_credential_failures(results: Mapping[str, Any]) -> bool:
    critical = critical_results(results)
    return bool(critical) and all(result.get("errorType") == "CredentialNotFoundError" for result in critical)


def response_for_outcome(outcome: MappingRunOutcome) -> Response:
    if outcome.has_critical_errors:
        body = {"success": False, "message": "Flow executed with critical errors", "results": outcome.results}
        status = 404 if _only_credential_failures(outcome.results) else 500
        return status, body

    body = create_success_response({"message": "Flow executed successfully", "results": outcome.results})
    if outcome.new_access_token:
        body["newAccessToken"] = outcome.new_access_token
    return 200, body


async def run_mapping(
    payload: api_models.RunMappingRequest,
    authorization: Optional[str],
    *,
    store: Optional[NodeMappingStore] = None,
    audit_sink: Optional[AuditSink] = None,
) -> Response:
    token = bearer_token(authorization)
    if (
        not payload.user_id
        or not payload.instance_url
        or not payload.form_version_id
        or payload.form_data is None
        or payload.nodes is None
        or not token
    ):
        return 400, create_error_response(MISSING_PARAMETERS)

    try:
        raw_nodes = await hydrate_nodes(
            payload.nodes,
            user_id=payload.user_id,
            form_version_id=payload.form_version_id,
            store=store,
        )
        nodes: List[AnyNode] = normalize_nodes(raw_nodes)
    except NodeValidationError as e:
        logger.warning(f"Rejected flow definition: {e}")
        return 400, create_error_response(str(e))

    if not [node for node in nodes if node.type not in PASSIVE_NODE_TYPES]:
        return 400, create_error_response(NO_ACTION_NODES)

    try:
        outcome = await run_mapping_flow(
            nodes,
            user_id=payload.user_id,
            instance_url=payload.instance_url,
            access_token=token,
            form_version_id=payload.form_version_id,
            form_data=payload.form_data,
            submission_id=payload.submission_id,
            audit_sink=audit_sink,
        )
    except RemoteCallError as e:
        logger.error(f"Error executing flow: {e}")
        return e.status_code or 500, create_error_response(str(e), e)
    except MappingEngineError as e:
        logger.error(f"Error executing flow: {e}")
        return 500, create_error_response(str(e) or "Failed to execute flow", e)

    return response_for_outcome(outcome)


def validate_logic(payload: api_models.ValidateLogicRequest) -> api_models.ValidateLogicResponse:
    errors = validate_custom_logic(payload.expression, payload.condition_count)
    return api_models.ValidateLogicResponse(valid=not errors, errors=errors)
