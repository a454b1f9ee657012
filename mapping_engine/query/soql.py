"""
SOQL statement assembly for query-backed nodes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from mapping_engine.errors import NodeValidationError
from mapping_engine.expr.conditions import build_condition_fragment, evaluate_condition
from mapping_engine.expr.custom_logic import compile_to_query, evaluate_custom_logic
from mapping_engine.schema.models import Condition, ConditionsSpec
from shared.logger import get_logger

logger = get_logger("mapping_engine.query.soql")


@dataclass(frozen=True)
class QueryPlan:
    """Normalised view of either condition shape a node may carry."""

    conditions: Sequence[Condition]
    logic_type: Optional[str] = None
    custom_logic: Optional[str] = None
    return_limit: Any = None
    sort_field: Optional[str] = None
    sort_order: Optional[str] = None

    @classmethod
    def from_spec(cls, spec: ConditionsSpec) -> "QueryPlan":
        if spec is None:
            return cls(conditions=())
        if isinstance(spec, list):
            return cls(conditions=tuple(spec))
        return cls(
            conditions=tuple(spec.conditions),
            logic_type=spec.logic_type,
            custom_logic=spec.custom_logic,
            return_limit=spec.return_limit,
            sort_field=spec.sort_field,
            sort_order=spec.sort_order,
        )

    @property
    def uses_custom_logic(self) -> bool:
        return self.logic_type == "Custom" and bool(self.custom_logic)


SORT_ORDERS = ("ASC", "DESC")


def _sort_clause(plan: QueryPlan) -> str:
    order = (plan.sort_order or "").strip().upper()
    if not plan.sort_field or order not in SORT_ORDERS:
        return ""
    return f" ORDER BY {plan.sort_field} {order}"


def _limit_clause(limit: Any) -> str:
    if isinstance(limit, bool):
        return ""
    if isinstance(limit, str) and limit.strip().isdigit():
        limit = int(limit.strip())
    if not isinstance(limit, int) or limit <= 0:
        return ""
    return f" LIMIT {limit}"


def build_soql_query(
    salesforce_object: Optional[str],
    conditions: ConditionsSpec,
    *,
    node_type: str,
    node_id: str = "",
) -> Optional[str]:
    """
    Build ``SELECT Id, <fields> FROM <object> WHERE ...`` for a node.

    Returns ``None`` for a CreateUpdate node without conditions (always create);
    any other node type without conditions is a configuration error.
    """

    plan = QueryPlan.from_spec(conditions)
    if not plan.conditions:
        if node_type == "CreateUpdate":
            return None
        raise NodeValidationError(f"Node {node_id} of type {node_type} must have conditions")
    if not salesforce_object:
        raise NodeValidationError(f"Node {node_id} of type {node_type} is missing salesforceObject")

    fields: List[str] = list(dict.fromkeys(cond.field for cond in plan.conditions))
    clauses = [build_condition_fragment(cond) for cond in plan.conditions]

    if plan.uses_custom_logic:
        where = compile_to_query(plan.custom_logic or "", clauses)
    else:
        joiner = f" {plan.logic_type or 'AND'} "
        where = joiner.join(f"({clause})" for clause in clauses)

    soql = f"SELECT Id, {', '.join(fields)} FROM {salesforce_object} WHERE {where}"

    soql += _sort_clause(plan) + _limit_clause(plan.return_limit)

    logger.debug("Built SOQL for node %s: %s", node_id, soql)
    return soql


def filter_query_results(
    data: Mapping[str, Any],
    conditions: ConditionsSpec,
) -> List[Dict[str, Any]]:
    """
    Post-filter query records in process when custom logic applies, guarding
    against expressions the query language evaluates differently.
    """

    records = list(data.get("records") or [])
    if not records:
        return []

    plan = QueryPlan.from_spec(conditions)
    if not plan.uses_custom_logic:
        return records

    expression = plan.custom_logic or ""

    def matches(record: Mapping[str, Any]) -> bool:
        def condition_result(index: int) -> bool:
            if 1 <= index <= len(plan.conditions):
                return evaluate_condition(record, plan.conditions[index - 1])
            return False

        return evaluate_custom_logic(expression, condition_result)

    return [record for record in records if matches(record)]


__all__ = ["QueryPlan", "build_soql_query", "filter_query_results"]
