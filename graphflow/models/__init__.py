"""Data models for graphflow."""

from .core import (
    MAIN_HANDLE,
    ExecutionStatusEnum,
    NodeExecutionStatus,
    LogLevel,
    LogCategory,
    ValidationResult,
    Position,
    Node,
    Connection,
    Workflow,
    NodeExecution,
    LogEntry,
    ExecutionRun,
    WorkflowSummary,
)

__all__ = [
    "MAIN_HANDLE",
    "ExecutionStatusEnum",
    "NodeExecutionStatus",
    "LogLevel",
    "LogCategory",
    "ValidationResult",
    "Position",
    "Node",
    "Connection",
    "Workflow",
    "NodeExecution",
    "LogEntry",
    "ExecutionRun",
    "WorkflowSummary",
]
