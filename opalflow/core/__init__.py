"""Core workflow engine components."""

from .exceptions import (
    ErrorCode,
    WorkflowEngineError,
    StructuralError,
    ReadinessError,
    HandlerError,
    HandlerRegistryError,
    ExecutionEngineError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .graph_validator import GraphValidator, validate
from .topology import order
from .handler_registry import ExecutionContext, HandlerRegistry, create_default_registry
from .node_executor import NodeExecutor
from .coordinator import ExecutionCoordinator

__all__ = [
    "ErrorCode",
    "WorkflowEngineError",
    "StructuralError",
    "ReadinessError",
    "HandlerError",
    "HandlerRegistryError",
    "ExecutionEngineError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "GraphValidator",
    "validate",
    "order",
    "ExecutionContext",
    "HandlerRegistry",
    "create_default_registry",
    "NodeExecutor",
    "ExecutionCoordinator",
]
