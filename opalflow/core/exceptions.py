"""Custom exceptions for the workflow engine with detailed error information."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    READINESS = "readiness"
    EXECUTION = "execution"
    CONFIGURATION = "configuration"


class ErrorCode(str, Enum):
    """Machine-readable codes attached to validation and execution failures."""
    EMPTY_GRAPH = "empty-graph"
    DANGLING_REFERENCE = "dangling-reference"
    SELF_LOOP = "self-loop"
    CYCLE_DETECTED = "cycle-detected"
    ISOLATED_NODE = "isolated-node"
    NODE_NOT_FOUND = "node-not-found"
    DEPENDENCY_NOT_READY = "dependency-not-ready"
    INSUFFICIENT_CONFIGURATION = "insufficient-configuration"
    NO_INPUT = "no-input"
    ALREADY_RUNNING = "already-running"
    UNKNOWN_NODE_TYPE = "unknown-node-type"
    HANDLER_FAILED = "handler-failed"
    HANDLER_TIMEOUT = "handler-timeout"
    UNEXPECTED = "unexpected"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if isinstance(error_code, ErrorCode):
            error_code = error_code.value
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class StructuralError(WorkflowEngineError):
    """Raised when a graph is structurally unsound (empty, dangling, cyclic)."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_name: Optional[str] = None,
        issues: Optional[List[Any]] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        self.issues = issues or []
        if workflow_name:
            self.add_context(workflow_name=workflow_name)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class ReadinessError(WorkflowEngineError):
    """Raised before dispatch when a node's preconditions are not met."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DEPENDENCY_NOT_READY,
        node_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.READINESS,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)


class HandlerError(WorkflowEngineError):
    """Raised when a node-type handler fails."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.HANDLER_FAILED,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
        execution_time: Optional[float] = None,
        **kwargs
    ):
        super().__init__(
            message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if node_type:
            self.add_context(node_type=node_type)
        if execution_time:
            self.add_details(execution_time=execution_time)


class HandlerRegistryError(WorkflowEngineError):
    """Raised when handler registry operations fail."""

    def __init__(
        self,
        message: str,
        node_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if node_type:
            self.add_context(node_type=node_type)
        if operation:
            self.add_context(operation=operation)


class ExecutionEngineError(WorkflowEngineError):
    """Raised when the coordinator cannot start or continue a run."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if run_id:
            self.add_context(run_id=run_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
