"""Data models for workflow graphs and executions."""

from .core import (
    WorkflowStatus,
    NodeKind,
    LogStatus,
    ExecutionStatus,
    RunState,
    LogMarker,
    ValidationReason,
    Position,
    TaskData,
    ApiData,
    DecisionData,
    TaskNode,
    ApiNode,
    DecisionNode,
    FlowNode,
    Edge,
    LogEntry,
    Execution,
    Workflow,
    ValidationIssue,
    ValidationResult,
    WorkflowSummary,
)

__all__ = [
    "WorkflowStatus",
    "NodeKind",
    "LogStatus",
    "ExecutionStatus",
    "RunState",
    "LogMarker",
    "ValidationReason",
    "Position",
    "TaskData",
    "ApiData",
    "DecisionData",
    "TaskNode",
    "ApiNode",
    "DecisionNode",
    "FlowNode",
    "Edge",
    "LogEntry",
    "Execution",
    "Workflow",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowSummary",
]
