"""
Flow orchestrator: runs nodes strictly in ascending ``order`` and maintains
the branch skip state, the processed-node guard and the audit trail.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from mapping_engine.runtime.audit import (
    AuditEvent,
    AuditSink,
    AuditStatus,
    emit,
    message_for_result,
    status_for_result,
    summarize_input,
    summarize_output,
)
from mapping_engine.runtime.context import FlowRunContext
from mapping_engine.runtime.nodes import NodeRuntime
from mapping_engine.schema.models import AnyNode, ConditionNode, FormatterNode, LoopNode
from shared.logger import get_logger

logger = get_logger("mapping_engine.runtime.execution")

PASSIVE_NODE_TYPES = frozenset({"Start", "End"})


def _event(run: FlowRunContext, node: AnyNode, **fields: Any) -> AuditEvent:
    return AuditEvent(
        user_id=run.user_id,
        submission_id=run.submission_id,
        form_id=run.form_id,
        form_version_id=run.form_version_id,
        node_id=node.node_id,
        node_type=node.type,
        sub_type=node.type,
        **fields,
    )


async def run_flow(
    nodes: Sequence[AnyNode],
    run: FlowRunContext,
    runtime: NodeRuntime,
    audit: AuditSink,
) -> Dict[str, Any]:
    """
    Execute ``nodes`` against ``run`` and return the results map.

    A failing node is recorded as ``{"error", "errorType"}``, counts as
    processed, and the flow continues with the next node. After a ``Rules``
    branch with no matches every node up to the next Condition node is skipped.
    """

    for node in sorted(nodes, key=lambda n: n.order):
        node_id = node.node_id
        if node.type in PASSIVE_NODE_TYPES or node_id in run.processed_node_ids:
            continue

        logger.info(f"Processing node {node_id} of type {node.type}")

        if run.skip_until_next_condition and not isinstance(node, ConditionNode):
            reason = "Previous condition not met"
            run.results[node_id] = {"nodeId": node_id, "status": "skipped", "reason": reason}
            await emit(
                audit,
                _event(
                    run,
                    node,
                    status=AuditStatus.SKIPPED,
                    message=reason,
                    input={"context": dict(run.context)},
                    output={"result": "skipped"},
                ),
            )
            run.processed_node_ids.add(node_id)
            continue

        try:
            if isinstance(node, ConditionNode):
                await _run_condition(node, run, runtime, audit)
            else:
                await _run_action(node, run, runtime, audit)
            run.processed_node_ids.add(node_id)
        except Exception as e:  # noqa: BLE001 - one failing node never aborts the flow
            logger.exception(f"Error processing node {node_id}: {e}")
            run.results[node_id] = {"error": str(e), "errorType": type(e).__name__}
            await emit(
                audit,
                _event(
                    run,
                    node,
                    status=AuditStatus.FAILED,
                    message="Error processing node",
                    error=str(e),
                    input={"context": dict(run.context)},
                    output={"error": str(e)},
                ),
            )
            run.processed_node_ids.add(node_id)

    return run.results


async def _run_condition(node: ConditionNode, run: FlowRunContext, runtime: NodeRuntime, audit: AuditSink) -> None:
    outcome = await runtime.condition(node, run)
    run.skip_until_next_condition = outcome.skip_after
    run.results[node.node_id] = outcome.result

    audit_input: Dict[str, Any] = {"pathOption": node.path_option}
    if outcome.query:
        audit_input = {"query": outcome.query, **audit_input}
    await emit(
        audit,
        _event(
            run,
            node,
            status=outcome.audit_status,
            message=outcome.audit_message,
            input=audit_input,
            output=outcome.audit_output,
        ),
    )


async def _run_action(node: AnyNode, run: FlowRunContext, runtime: NodeRuntime, audit: AuditSink) -> None:
    audit_input = summarize_input(node, run.context, run.results)
    result = await runtime.run(node, run)

    if isinstance(node, LoopNode) and result.get("loopContext"):
        run.context = {**run.context, **result["loopContext"]}
    if isinstance(node, FormatterNode) and result.get("outputVariable") and result.get("output") is not None:
        run.context[result["outputVariable"]] = result["output"]

    run.results[node.node_id] = result
    await emit(
        audit,
        _event(
            run,
            node,
            status=status_for_result(result),
            message=message_for_result(result),
            error=_error_text(result),
            input=audit_input,
            output=summarize_output(node.type, result),
        ),
    )


def _error_text(result: Mapping[str, Any]) -> Optional[str]:
    error = result.get("error")
    return None if error is None else str(error)


def critical_results(results: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    """Results of nodes that failed outright or carry an error without having been skipped."""
    return [
        result
        for result in results.values()
        if isinstance(result, Mapping)
        and (result.get("status") == "failed" or (result.get("error") and result.get("status") != "skipped"))
    ]


def flow_has_critical_errors(results: Mapping[str, Any]) -> bool:
    return bool(critical_results(results))


__all__ = ["PASSIVE_NODE_TYPES", "critical_results", "flow_has_critical_errors", "run_flow"]
