"""Data models for the workflow engine."""

from .core import (
    NodeStatus,
    NodeType,
    ExecutionStatusEnum,
    FailureKind,
    OutputFormat,
    UserInputConfig,
    GenerateConfig,
    OutputConfig,
    AddAssetsConfig,
    CustomConfig,
    BaseNode,
    UserInputNode,
    GenerateNode,
    OutputNode,
    AddAssetsNode,
    CustomNode,
    Node,
    Connection,
    Workflow,
    ValidationIssue,
    ValidationResult,
    ReadinessResult,
    ExecutionResult,
    WorkflowError,
    ExecutionState,
    CanExecuteResult,
    WorkflowExecutionResult,
    ExecutionSummary,
)

__all__ = [
    "NodeStatus",
    "NodeType",
    "ExecutionStatusEnum",
    "FailureKind",
    "OutputFormat",
    "UserInputConfig",
    "GenerateConfig",
    "OutputConfig",
    "AddAssetsConfig",
    "CustomConfig",
    "BaseNode",
    "UserInputNode",
    "GenerateNode",
    "OutputNode",
    "AddAssetsNode",
    "CustomNode",
    "Node",
    "Connection",
    "Workflow",
    "ValidationIssue",
    "ValidationResult",
    "ReadinessResult",
    "ExecutionResult",
    "WorkflowError",
    "ExecutionState",
    "CanExecuteResult",
    "WorkflowExecutionResult",
    "ExecutionSummary",
]
