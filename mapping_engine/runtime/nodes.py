"""
Runtime node executors. Each handler consumes the shared services, reads the
run context and returns the node's result record; the orchestrator stores it
under the node id and emits the audit event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Dict, List, Mapping, Optional

import httpx

from mapping_engine.errors import NodeValidationError, SalesforceApiError
from mapping_engine.expr.values import to_number, to_text
from mapping_engine.formatters.dispatch import apply_formatter
from mapping_engine.formatters.numbers import normalize_number
from mapping_engine.query.soql import build_soql_query, filter_query_results
from mapping_engine.runtime.context import FlowRunContext, RuntimeServices
from mapping_engine.runtime.sheet_nodes import find_sheet_records, write_sheet
from mapping_engine.schema.models import (
    AnyNode,
    ConditionNode,
    CreateUpdateNode,
    FieldMapping,
    FindGoogleSheetNode,
    FindNode,
    FormatterNode,
    GoogleSheetNode,
    LoopNode,
    PathNode,
    has_conditions,
)
from shared.logger import get_logger

logger = get_logger("mapping_engine.runtime.nodes")

NUMBER_FIELD_TYPES = frozenset({"number", "price"})
TEXT_FIELD_TYPES = frozenset({"picklist", "shorttext", "longtext"})

_UNSET = object()


@dataclass
class ConditionOutcome:
    """Result of a branch node plus what the audit trail records for it."""

    result: Dict[str, Any]
    audit_status: str
    audit_message: str
    audit_output: Dict[str, Any]
    query: Optional[str] = None
    skip_after: bool = False


@dataclass
class PayloadBuild:
    payload: Dict[str, Any] = field(default_factory=dict)
    has_valid_mapping: bool = False


# -----------------------------
# Field mapping
# -----------------------------
def resolve_mapping_value(mapping: FieldMapping, context: Mapping[str, Any]) -> Any:
    """
    ``address_city`` style ids read the compound sub-field, but only when
    the base field was submitted. A blank id with a picklist value maps the
    constant. Otherwise the id is read straight from the context.
    """

    form_field_id = mapping.form_field_id
    if "_" in form_field_id:
        base = form_field_id.split("_", 1)[0]
        if base in context:
            return context.get(form_field_id) or ""
        return _UNSET
    if form_field_id == "" and mapping.picklist_value is not None:
        return mapping.picklist_value
    return context.get(form_field_id, _UNSET)


def coerce_field_value(value: Any, field_type: Optional[str]) -> Any:
    if field_type in NUMBER_FIELD_TYPES:
        number = to_number(value)
        return None if math.isnan(number) else normalize_number(number)
    if field_type in TEXT_FIELD_TYPES:
        return value if isinstance(value, str) else to_text(value)
    return value


def build_payload(mappings: List[FieldMapping], context: Mapping[str, Any]) -> PayloadBuild:
    build = PayloadBuild()
    for mapping in mappings:
        value = resolve_mapping_value(mapping, context)
        if value is _UNSET or value is None:
            logger.warning(f"No form data or picklist value found for field {mapping.form_field_id or 'predefined'}")
            continue
        build.payload[mapping.salesforce_field] = coerce_field_value(value, mapping.field_type)
        if value != "":
            build.has_valid_mapping = True
    return build


def missing_mapping_fields(mappings: List[FieldMapping], context: Mapping[str, Any]) -> List[str]:
    return [
        mapping.form_field_id
        for mapping in mappings
        if not context.get(mapping.form_field_id)
        and not (mapping.form_field_id == "" and mapping.picklist_value is not None)
    ]


# -----------------------------
# Executors
# -----------------------------
class NodeRuntime:
    def __init__(self, services: RuntimeServices) -> None:
        self.services = services

    async def run(self, node: AnyNode, run: FlowRunContext) -> Dict[str, Any]:
        if isinstance(node, CreateUpdateNode):
            return await self.create_update(node, run.context)
        if isinstance(node, FindNode):
            return await self.find(node)
        if isinstance(node, LoopNode):
            return self.loop(node, run)
        if isinstance(node, PathNode):
            return {"status": "processed", "message": "Path node processed"}
        if isinstance(node, FormatterNode):
            return self.format(node, run)
        if isinstance(node, GoogleSheetNode):
            return await self.write_sheet(node, run)
        if isinstance(node, FindGoogleSheetNode):
            return await self.find_sheet(node, run)
        return {"error": f"Unsupported node type: {node.type}"}

    async def _matching_records(
        self,
        salesforce_object: Optional[str],
        conditions: Any,
        *,
        node_type: str,
        node_id: str,
    ) -> List[Dict[str, Any]]:
        soql = build_soql_query(salesforce_object, conditions, node_type=node_type, node_id=node_id)
        if soql is None:
            return []
        data = await self.services.salesforce.query_raw(soql)
        return filter_query_results(data, conditions)

    async def create_update(self, node: CreateUpdateNode, context: Mapping[str, Any]) -> Dict[str, Any]:
        if not node.salesforce_object:
            raise NodeValidationError(f"Node {node.node_id} of type CreateUpdate is missing salesforceObject")

        matched: List[Dict[str, Any]] = []
        if has_conditions(node.conditions):
            matched = await self._matching_records(
                node.salesforce_object,
                node.conditions,
                node_type="CreateUpdate",
                node_id=node.node_id,
            )
            logger.info(f"Matched {len(matched)} {node.salesforce_object} records for node {node.node_id}")

        build = build_payload(node.field_mappings, context)
        if not build.has_valid_mapping:
            missing = missing_mapping_fields(node.field_mappings, context)
            raise NodeValidationError(
                f"No valid field mappings for node {node.node_id}. Missing or invalid fields: {', '.join(missing)}"
            )

        if matched:
            record_ids = [record.get("Id") for record in matched if record.get("Id")]
            outcome = await self.services.salesforce.batch_update(node.salesforce_object, record_ids, build.payload)
            return {
                "nodeId": node.node_id,
                "success": outcome.success,
                "updatedRecords": outcome.updated,
                "failedRecords": outcome.failed,
                "status": "success" if outcome.success else "partial",
            }

        try:
            record_id = await self.services.salesforce.create_record(node.salesforce_object, build.payload)
        except (SalesforceApiError, httpx.HTTPError) as e:
            logger.error(f"Create {node.salesforce_object} failed for node {node.node_id}: {e}")
            return {"nodeId": node.node_id, "error": str(e), "success": False, "status": "failed"}
        return {"nodeId": node.node_id, "recordId": record_id, "success": True}

    async def find(self, node: FindNode) -> Dict[str, Any]:
        records = await self._matching_records(
            node.salesforce_object,
            node.conditions,
            node_type=node.type,
            node_id=node.node_id,
        )
        conditions = _dump_conditions(node.conditions)
        ids = [record.get("Id") for record in records]
        if not ids:
            return {
                "nodeId": node.node_id,
                "ids": None,
                "conditions": conditions,
                "message": "No data found for the given query conditions",
            }
        return {"nodeId": node.node_id, "conditions": conditions, "ids": ids if len(ids) > 1 else ids[0]}

    def loop(self, node: LoopNode, run: FlowRunContext) -> Dict[str, Any]:
        cfg = node.loop_config
        if cfg is None:
            raise NodeValidationError(f"Loop node {node.node_id} is missing loop configuration")

        source = run.results.get(cfg.loop_collection)
        if not source:
            raise NodeValidationError(f"Source collection {cfg.loop_collection} not found in previous results")
        if not isinstance(source, Mapping) or source.get("error"):
            raise NodeValidationError(
                f"Source collection {cfg.loop_collection} is invalid or contains an error: {source}"
            )

        raw_ids = source.get("ids")
        items = list(raw_ids) if isinstance(raw_ids, list) else [raw_ids]
        if not items or any(item is None for item in items):
            logger.info(f"No valid items to process in loop {node.node_id}")
            return {"nodeId": node.node_id, "processedCount": 0}

        variables = cfg.loop_variables
        name = cfg.current_item_variable_name or "currentItem"
        loop_results: List[Dict[str, Any]] = []
        for position, item in enumerate(items):
            if cfg.max_iterations > 0 and len(loop_results) >= cfg.max_iterations:
                logger.info(f"Reached max iterations ({cfg.max_iterations}) for loop {node.node_id}")
                break
            index = position + variables.index_base if variables.current_index else None
            counter = len(loop_results) + 1 if variables.counter else None

            iteration = dict(run.context)
            iteration[name] = item
            if index is not None:
                iteration[f"{name}_index"] = index
            if counter is not None:
                iteration[f"{name}_counter"] = counter
            loop_results.append({"item": item, "index": index, "counter": counter, "context": iteration})

        return {
            "nodeId": node.node_id,
            "processedCount": len(loop_results),
            "loopResults": loop_results,
            "loopContext": loop_results[0]["context"] if loop_results else dict(run.context),
            "status": "processed",
        }

    def format(self, node: FormatterNode, run: FlowRunContext) -> Dict[str, Any]:
        cfg = node.formatter_config
        if cfg is None:
            raise NodeValidationError(f"Formatter node {node.node_id} is missing formatter configuration")
        if not cfg.node_id:
            cfg = cfg.model_copy(update={"node_id": node.node_id})
        return apply_formatter(cfg, run.context)

    async def _sheet_token(self, run: FlowRunContext) -> str:
        return await self.services.credentials.resolve(run.user_id)

    async def write_sheet(self, node: GoogleSheetNode, run: FlowRunContext) -> Dict[str, Any]:
        token = await self._sheet_token(run)
        return await write_sheet(node, run.context, self.services.sheets(token))

    async def find_sheet(self, node: FindGoogleSheetNode, run: FlowRunContext) -> Dict[str, Any]:
        if not node.config.spreadsheet_id:
            return {"nodeId": node.node_id, "error": "Missing required field: spreadsheetId"}
        token = await self._sheet_token(run)
        return await find_sheet_records(node, self.services.sheets(token))

    # -----------------------------
    # Branching
    # -----------------------------
    async def condition(self, node: ConditionNode, run: FlowRunContext) -> ConditionOutcome:
        """
        Evaluate a branch node against the current skip state. ``skip_after``
        is the skip state the orchestrator carries to the following nodes.
        """

        path = node.path_option
        if path == "Always Run":
            message = "Always Run path - proceeding to next node"
            return ConditionOutcome(
                result={"nodeId": node.node_id, "status": "processed", "message": message},
                audit_status="Success",
                audit_message=message,
                audit_output={"result": "always_run"},
                skip_after=False,
            )

        if path == "Fallback":
            if not run.skip_until_next_condition:
                reason = "Previous condition succeeded - fallback not needed"
                return ConditionOutcome(
                    result={"nodeId": node.node_id, "status": "skipped", "reason": reason},
                    audit_status="Skipped",
                    audit_message=reason,
                    audit_output={"result": "fallback_skipped"},
                    skip_after=False,
                )
            message = "Fallback path - proceeding to next node"
            return ConditionOutcome(
                result={"nodeId": node.node_id, "status": "processed", "message": message},
                audit_status="Success",
                audit_message=message,
                audit_output={"result": "fallback_executed"},
                skip_after=False,
            )

        if path != "Rules":
            raise NodeValidationError(f"Unsupported path option {path} for condition node {node.node_id}")

        soql = build_soql_query(node.salesforce_object, node.conditions, node_type="Condition", node_id=node.node_id)
        data = await self.services.salesforce.query_raw(soql or "")
        matched = filter_query_results(data, node.conditions)
        if matched:
            message = f"{len(matched)} records matched - proceeding"
            return ConditionOutcome(
                result={
                    "nodeId": node.node_id,
                    "status": "processed",
                    "message": message,
                    "recordsMatched": len(matched),
                },
                audit_status="Success",
                audit_message=message,
                audit_output={
                    "recordsMatched": len(matched),
                    "recordIds": [record.get("Id") for record in matched],
                },
                query=soql,
                skip_after=False,
            )
        message = "No records matched - skipping until next condition"
        return ConditionOutcome(
            result={"nodeId": node.node_id, "status": "processed", "message": message, "recordsMatched": 0},
            audit_status="Success",
            audit_message=message,
            audit_output={"recordsMatched": 0},
            query=soql,
            skip_after=True,
        )


def _dump_conditions(conditions: Any) -> Any:
    if conditions is None:
        return None
    if isinstance(conditions, list):
        return [condition.model_dump(by_alias=True) for condition in conditions]
    return conditions.model_dump(by_alias=True, exclude_none=True)


__all__ = [
    "ConditionOutcome",
    "NodeRuntime",
    "build_payload",
    "coerce_field_value",
    "missing_mapping_fields",
    "resolve_mapping_value",
]
