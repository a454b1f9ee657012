from mapping_engine.runtime.audit import (
    AuditEvent,
    AuditSink,
    AuditStatus,
    InMemoryAuditSink,
    LoggerAuditSink,
)
from mapping_engine.runtime.context import FlowRunContext, RuntimeServices
from mapping_engine.runtime.execution import flow_has_critical_errors, run_flow
from mapping_engine.runtime.nodes import ConditionOutcome, NodeRuntime

__all__ = [
    "AuditEvent",
    "AuditSink",
    "AuditStatus",
    "ConditionOutcome",
    "FlowRunContext",
    "InMemoryAuditSink",
    "LoggerAuditSink",
    "NodeRuntime",
    "RuntimeServices",
    "flow_has_critical_errors",
    "run_flow",
]
