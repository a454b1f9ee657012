"""
Boundary adapter turning persisted or builder-produced node payloads into the
canonical node models.

Two shapes reach the engine:

* the persisted record shape with suffix keys (``Node_Id__c``, ``Type__c``,
  ``Conditions__c`` as a JSON string, ``Config__c`` as a JSON string, ...)
* the builder shape with camelCase keys (``nodeId``, ``type`` or
  ``actionType``, ``conditions`` as an object, ...)
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping

from pydantic import TypeAdapter, ValidationError

from mapping_engine.errors import NodeValidationError
from mapping_engine.schema.models import (
    KNOWN_NODE_TYPES,
    AnyNode,
    Node,
    UnsupportedNode,
)

_NODE_ADAPTER: TypeAdapter = TypeAdapter(Node)

# Older builders saved sheet write nodes under a generic action type.
TYPE_ALIASES = {"action": "Google Sheet"}


def _decode(value: Any, *, key: str) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise NodeValidationError(f"Field '{key}' does not contain valid JSON: {exc}") from exc


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def canonical_payload(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Map either accepted input shape onto the camelCase keys the models expect."""

    if not isinstance(raw, Mapping):
        raise NodeValidationError(f"Node definition must be an object, got {type(raw).__name__}")

    node_type = _first(raw, "Type__c", "type", "actionType")
    if isinstance(node_type, str):
        node_type = TYPE_ALIASES.get(node_type, node_type)

    payload: Dict[str, Any] = {
        "nodeId": _first(raw, "Node_Id__c", "nodeId"),
        "type": node_type,
        "order": _first(raw, "Order__c", "order") or 0,
        "salesforceObject": _first(raw, "Salesforce_Object__c", "salesforceObject"),
    }

    conditions = _first(raw, "Conditions__c", "conditions")
    payload["conditions"] = _decode(conditions, key="conditions")

    mappings = _first(raw, "Field_Mappings__c", "fieldMappings")
    payload["fieldMappings"] = _decode(mappings, key="fieldMappings") or []

    config = _decode(raw.get("Config__c"), key="Config__c")
    loop_config = _decode(_first(raw, "Loop_Config__c", "loopConfig"), key="loopConfig")
    formatter_config = _decode(_first(raw, "Formatter_Config__c", "formatterConfig"), key="formatterConfig")
    sheet_config = _decode(raw.get("config"), key="config")

    # Config__c is a single JSON blob whose meaning depends on the node type.
    if node_type == "Loop":
        payload["loopConfig"] = loop_config or config
    elif node_type == "Formatter":
        payload["formatterConfig"] = formatter_config or config
    elif node_type in {"Google Sheet", "FindGoogleSheet"}:
        payload["config"] = sheet_config or config or {}
    else:
        payload["loopConfig"] = loop_config
        payload["formatterConfig"] = formatter_config

    return {key: value for key, value in payload.items() if value is not None}


def normalize_node(raw: Mapping[str, Any]) -> AnyNode:
    """
    Validate one node definition into its canonical model.

    Nodes whose type the engine does not recognise become ``UnsupportedNode``
    so the orchestrator can report them per node instead of rejecting the run.
    """

    payload = canonical_payload(raw)
    node_id = payload.get("nodeId")
    if not node_id:
        raise NodeValidationError("Node definition is missing nodeId")

    node_type = payload.get("type")
    try:
        if node_type not in KNOWN_NODE_TYPES:
            return UnsupportedNode.model_validate(
                {"nodeId": node_id, "type": node_type or "", "order": payload.get("order", 0)}
            )
        return _NODE_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise NodeValidationError(f"Node {node_id} is invalid: {exc}") from exc


def normalize_nodes(raw_nodes: Iterable[Mapping[str, Any]]) -> List[AnyNode]:
    return [normalize_node(raw) for raw in raw_nodes]


def node_type_of(raw: Mapping[str, Any]) -> str | None:
    node_type = _first(raw, "Type__c", "type", "actionType")
    if isinstance(node_type, str):
        return TYPE_ALIASES.get(node_type, node_type)
    return None


def node_id_of(raw: Mapping[str, Any]) -> str | None:
    return _first(raw, "Node_Id__c", "nodeId")


__all__ = [
    "TYPE_ALIASES",
    "canonical_payload",
    "node_id_of",
    "node_type_of",
    "normalize_node",
    "normalize_nodes",
]
