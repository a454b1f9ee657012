"""Per-node audit events and the sinks that persist them"""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from mapping_engine.errors import MappingEngineError
from mapping_engine.query.soql import build_soql_query
from mapping_engine.schema.models import (
    AnyNode,
    CreateUpdateNode,
    FindNode,
    FormatterNode,
    LoopNode,
    has_conditions,
)
from shared.logger import get_logger

logger = get_logger("mapping_engine.runtime.audit")


class AuditStatus:
    """Audit status constants"""
    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class AuditEvent(BaseModel):
    """One audit record per executed or skipped node"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    submission_id: Optional[str] = Field(default=None, alias="submissionId")
    form_id: Optional[str] = Field(default=None, alias="formId")
    form_version_id: str = Field(alias="formVersionId")
    node_id: Optional[str] = Field(default=None, alias="nodeId")
    node_type: str = Field(alias="nodeType")
    type: str = "Mapping"
    sub_type: str = Field(alias="subType")
    status: str
    message: str = ""
    error: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# -----------------------------
# Sinks
# -----------------------------
class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...


class LoggerAuditSink:
    """Writes each event as one JSON line to the audit logger."""

    def __init__(self, name: str = "mapping_engine.audit") -> None:
        self._logger = get_logger(name)

    async def record(self, event: AuditEvent) -> None:
        self._logger.info(json.dumps(event.to_record(), default=str))


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)


async def emit(sink: AuditSink, event: AuditEvent) -> None:
    """Audit writes never change the outcome of a flow; failures are logged."""
    try:
        await sink.record(event)
    except Exception as e:  # noqa: BLE001 - audit is fire-and-forget
        logger.error(f"Failed to store audit event for node {event.node_id}: {e}")


# -----------------------------
# Simplified input/output views
# -----------------------------
def _query_or_placeholder(salesforce_object: Optional[str], conditions: Any) -> Optional[str]:
    if not has_conditions(conditions):
        return None
    try:
        return build_soql_query(salesforce_object, conditions, node_type="Find")
    except MappingEngineError:
        return "Could not build query"


def _create_update_input(node: CreateUpdateNode, context: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "object": node.salesforce_object,
        "query": _query_or_placeholder(node.salesforce_object, node.conditions),
        "formValues": {key: value for key, value in context.items() if value is not None and value != ""},
        "fieldMappings": [
            {
                "from": mapping.form_field_id,
                "to": mapping.salesforce_field,
                "value": context.get(mapping.form_field_id) or "N/A",
            }
            for mapping in node.field_mappings
        ],
    }


def _find_input(node: FindNode, _context: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "object": node.salesforce_object,
        "query": _query_or_placeholder(node.salesforce_object, node.conditions),
    }


def _loop_input(node: LoopNode, _context: Mapping[str, Any], results: Mapping[str, Any]) -> Dict[str, Any]:
    collection = node.loop_config.loop_collection if node.loop_config else None
    source = results.get(collection) if collection else None
    ids = source.get("ids") if isinstance(source, Mapping) else None
    if isinstance(ids, list):
        count = len(ids)
    else:
        count = 1 if ids else 0
    return {"sourceCollection": collection, "itemsToProcess": count}


def _formatter_input(node: FormatterNode, _context: Mapping[str, Any]) -> Dict[str, Any]:
    cfg = node.formatter_config
    if cfg is None:
        return {}
    return {
        "type": cfg.format_type,
        "operation": cfg.operation,
        "inputField": cfg.input_field,
        "options": cfg.options,
    }


def summarize_input(node: AnyNode, context: Mapping[str, Any], results: Mapping[str, Any]) -> Dict[str, Any]:
    if isinstance(node, CreateUpdateNode):
        return _create_update_input(node, context)
    if isinstance(node, FindNode):
        return _find_input(node, context)
    if isinstance(node, LoopNode):
        return _loop_input(node, context, results)
    if isinstance(node, FormatterNode):
        return _formatter_input(node, context)
    return {"context": dict(context)}


def _count(value: Any) -> int:
    return len(value) if isinstance(value, list) else 0


OUTPUT_SUMMARIES: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
    "CreateUpdate": lambda out: {
        "nodeId": out.get("nodeId"),
        "success": out.get("success"),
        "updatedRecords": _count(out.get("updatedRecords")),
        "failedRecords": _count(out.get("failedRecords")),
        "status": out.get("status"),
        "recordId": out.get("recordId"),
    },
    "Find": lambda out: {
        "nodeId": out.get("nodeId"),
        "recordsFound": len(out["ids"]) if isinstance(out.get("ids"), list) else (1 if out.get("ids") else 0),
        "recordIds": out.get("ids"),
        "message": out.get("message"),
    },
    "Loop": lambda out: {
        "nodeId": out.get("nodeId"),
        "processedCount": out.get("processedCount") or 0,
        "status": out.get("status"),
    },
    "Formatter": lambda out: {
        "nodeId": out.get("nodeId"),
        "operation": out.get("operation"),
        "inputValue": out.get("originalValue"),
        "outputValue": out.get("output"),
        "status": out.get("status"),
        "error": out.get("error"),
    },
}
OUTPUT_SUMMARIES["Filter"] = OUTPUT_SUMMARIES["Find"]


def summarize_output(node_type: str, output: Mapping[str, Any]) -> Dict[str, Any]:
    summary = OUTPUT_SUMMARIES.get(node_type)
    return summary(output) if summary else dict(output)


def status_for_result(result: Mapping[str, Any]) -> str:
    if result.get("status") == "skipped":
        return AuditStatus.SKIPPED
    if result.get("status") == "failed" or result.get("error"):
        return AuditStatus.FAILED
    return AuditStatus.SUCCESS


def message_for_result(result: Mapping[str, Any]) -> str:
    return str(result.get("message") or result.get("error") or "Node processed successfully")


__all__ = [
    "AuditEvent",
    "AuditSink",
    "AuditStatus",
    "InMemoryAuditSink",
    "LoggerAuditSink",
    "OUTPUT_SUMMARIES",
    "emit",
    "message_for_result",
    "status_for_result",
    "summarize_input",
    "summarize_output",
]
