"""Execution Coordinator: drives full workflow runs and owns the execution state."""

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (
    BaseNode,
    CanExecuteResult,
    ExecutionResult,
    ExecutionState,
    ExecutionStatusEnum,
    ExecutionSummary,
    FailureKind,
    NodeStatus,
    NodeType,
    ValidationResult,
    Workflow,
    WorkflowError,
    WorkflowExecutionResult,
    node_type_name,
)
from .exceptions import ErrorCode, ExecutionEngineError, ReadinessError, StructuralError
from .graph_validator import GraphValidator
from .logging import clear_logging_context, get_logger, log_event, node_context, set_logging_context
from .node_executor import NodeExecutor, check_static_configuration
from .topology import order

logger = get_logger(__name__)

StateListener = Callable[[ExecutionState], None]
NodeUpdateCallback = Callable[[str, Dict[str, Any]], None]


class ExecutionCoordinator:
    """Runs workflows node by node in topological order.

    State machine: idle -> running -> completed | failed, running -> stopped
    through `stop()`, and `reset()` back to idle. Nodes run strictly one at a
    time, even on independent branches. The first node failure halts the whole
    run; nothing is retried automatically.

    Each coordinator owns its own ExecutionState, so independent instances
    never share progress, errors or subscribers.
    """

    def __init__(
        self,
        executor: Optional[NodeExecutor] = None,
        validator: Optional[GraphValidator] = None
    ):
        """Initialize the coordinator.

        Args:
            executor: Node executor, defaults to one with the built-in handlers
            validator: Graph validator, defaults to warning on isolated nodes
        """
        self.executor = executor if executor is not None else NodeExecutor()
        self.validator = validator if validator is not None else GraphValidator()
        self._state = ExecutionState()
        self._listeners: List[StateListener] = []
        self._stop_requested = False

    # Subscription

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called synchronously with a state copy on every change.

        Returns:
            A function that unregisters the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_state(self) -> ExecutionState:
        return self._state.model_copy(deep=True)

    def _update_state(self, **updates) -> None:
        """Apply updates to the execution state and notify listeners in registration order."""
        for key, value in updates.items():
            setattr(self._state, key, value)

        for listener in list(self._listeners):
            try:
                listener(self.get_state())
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {str(e)}", exc_info=True)

    # Control

    def stop(self) -> bool:
        """
        Request cancellation of the running workflow.

        The request is honoured between nodes; a node already executing is never
        interrupted.

        Returns:
            True if a run was in progress
        """
        if not self._state.is_running:
            logger.debug("Stop requested with no workflow running")
            return False
        logger.info(f"Stop requested for run {self._state.run_id}")
        self._stop_requested = True
        return True

    def reset(self) -> None:
        """Return to idle, clearing progress and errors. Node statuses are not touched."""
        if self._state.is_running:
            raise ExecutionEngineError("Cannot reset while a workflow is running", run_id=self._state.run_id)
        self._stop_requested = False
        self._update_state(
            run_id=None,
            status=ExecutionStatusEnum.IDLE,
            is_running=False,
            current_node_id=None,
            completed_nodes=[],
            failed_nodes=[],
            progress=0.0,
            errors=[],
            start_time=None,
            end_time=None,
        )

    # Pre-checks

    def validate(self, workflow: Workflow) -> ValidationResult:
        return self.validator.validate(workflow)

    def can_execute(self, workflow: Workflow) -> CanExecuteResult:
        """Check whether a full run of `workflow` may start."""
        if self._state.is_running:
            return CanExecuteResult(can_execute=False, reason="Another workflow is currently running")

        if not workflow.nodes:
            return CanExecuteResult(can_execute=False, reason="Workflow must contain at least one node")

        try:
            self.validator.ensure_valid(workflow)
        except StructuralError as e:
            return CanExecuteResult(can_execute=False, reason=e.validation_errors[0])

        for node in workflow.nodes:
            try:
                check_static_configuration(node, len(workflow.input_nodes(node.id)))
            except ReadinessError as e:
                return CanExecuteResult(can_execute=False, reason=f"{node.display_name()}: {e.message}")

        return CanExecuteResult(can_execute=True)

    def get_execution_summary(self) -> ExecutionSummary:
        state = self._state
        duration = None
        if state.start_time and state.end_time:
            duration = (state.end_time - state.start_time).total_seconds() * 1000

        return ExecutionSummary(
            total_nodes=len(state.completed_nodes) + len(state.failed_nodes),
            completed_nodes=len(state.completed_nodes),
            failed_nodes=len(state.failed_nodes),
            duration_ms=duration,
            has_errors=bool(state.errors),
        )

    # Execution

    async def run(
        self,
        workflow: Workflow,
        on_node_update: Optional[NodeUpdateCallback] = None
    ) -> WorkflowExecutionResult:
        """
        Execute a complete workflow.

        Args:
            workflow: Workflow snapshot; node status and result are updated in place
            on_node_update: Called with (node_id, changed fields) for every node change

        Returns:
            WorkflowExecutionResult with final outputs keyed by node id, and by
            title for output nodes

        Raises:
            ExecutionEngineError: If a workflow is already running on this coordinator
        """
        if self._state.is_running:
            raise ExecutionEngineError(
                "Another workflow is currently running",
                error_code=ErrorCode.ALREADY_RUNNING,
                run_id=self._state.run_id,
                workflow_id=workflow.id
            )

        run_id = str(uuid.uuid4())
        set_logging_context(run_id=run_id, workflow_id=workflow.id)
        self._stop_requested = False
        self._update_state(
            run_id=run_id,
            status=ExecutionStatusEnum.RUNNING,
            is_running=True,
            current_node_id=None,
            completed_nodes=[],
            failed_nodes=[],
            progress=0.0,
            errors=[],
            start_time=datetime.utcnow(),
            end_time=None,
        )
        logger.info(f"Starting workflow '{workflow.name}' with {len(workflow.nodes)} nodes")

        final_outputs: Dict[str, Any] = {}
        try:
            return await self._run(workflow, on_node_update, final_outputs)
        except Exception as e:
            logger.error(f"Unexpected error during workflow execution: {str(e)}", exc_info=True)
            node_id = self._state.current_node_id
            error = WorkflowError(
                node_id=node_id,
                message=str(e) or "Unexpected workflow execution error",
                kind=FailureKind.ENGINE,
                code=ErrorCode.UNEXPECTED.value
            )
            updates: Dict[str, Any] = {"errors": self._state.errors + [error]}

            # The update callback may be what failed, so it is not called again
            node = workflow.get_node(node_id) if node_id else None
            if node is not None and node.status == NodeStatus.RUNNING:
                node.status = NodeStatus.ERROR
                if node_id not in self._state.failed_nodes:
                    updates["failed_nodes"] = self._state.failed_nodes + [node_id]

            self._update_state(**updates)
            return self._finish(ExecutionStatusEnum.FAILED, final_outputs)
        finally:
            clear_logging_context()

    async def _run(
        self,
        workflow: Workflow,
        on_node_update: Optional[NodeUpdateCallback],
        final_outputs: Dict[str, Any]
    ) -> WorkflowExecutionResult:
        try:
            validation = self.validator.ensure_valid(workflow)
        except StructuralError as e:
            errors = [
                WorkflowError(message=issue.message, kind=FailureKind.STRUCTURAL, code=issue.code)
                for issue in e.issues
            ]
            log_event(
                logger, logging.ERROR, "validation_failed",
                f"Workflow validation failed: {'; '.join(e.validation_errors)}",
                code=e.error_code
            )
            return self._finish(ExecutionStatusEnum.FAILED, final_outputs, errors=errors)
        for warning in validation.warnings:
            logger.warning(warning)

        execution_order = order(workflow.nodes, workflow.connections)
        if len(execution_order) != len(workflow.nodes):
            error = WorkflowError(
                message="Workflow contains circular dependencies that prevent execution",
                kind=FailureKind.STRUCTURAL,
                code=ErrorCode.CYCLE_DETECTED.value
            )
            logger.error(error.message)
            return self._finish(ExecutionStatusEnum.FAILED, final_outputs, errors=[error])

        total = len(execution_order)
        for index, node_id in enumerate(execution_order):
            node = workflow.get_node(node_id)

            if self._stop_requested:
                log_event(
                    logger, logging.INFO, "run_stopped", f"Workflow stopped before node {node_id}",
                    completed=len(self._state.completed_nodes),
                    total=total
                )
                if node.status != NodeStatus.IDLE:
                    self._set_node(node, on_node_update, status=NodeStatus.IDLE)
                return self._finish(ExecutionStatusEnum.STOPPED, final_outputs)

            self._update_state(current_node_id=node_id, progress=index / total * 100)

            with node_context(node_id):
                readiness = self.executor.check_ready(node_id, workflow)
                if not readiness.ready:
                    result = ExecutionResult(
                        node_id=node_id, success=False, error=readiness.reason,
                        code=readiness.code, kind=FailureKind.READINESS
                    )
                    return self._fail_node(node, result, on_node_update, final_outputs)

                self._set_node(node, on_node_update, status=NodeStatus.RUNNING)
                started = time.monotonic()
                result = await self.executor.execute_node(node_id, workflow)

                if not result.success:
                    return self._fail_node(node, result, on_node_update, final_outputs)

                self._update_state(completed_nodes=self._state.completed_nodes + [node_id])
                self._set_node(node, on_node_update, status=NodeStatus.COMPLETED, result=result.result)
                log_event(
                    logger, logging.INFO, "node_completed", f"Node {node_id} completed",
                    node_type=node_type_name(node),
                    duration_ms=round((time.monotonic() - started) * 1000, 3),
                    completed=len(self._state.completed_nodes),
                    total=total
                )

            final_outputs[node_id] = result.result
            if node.type == NodeType.OUTPUT:
                final_outputs[node.config.title or "Output"] = result.result

        log_event(
            logger, logging.INFO, "run_completed", f"Workflow '{workflow.name}' completed: {total} nodes executed",
            total=total
        )
        return self._finish(ExecutionStatusEnum.COMPLETED, final_outputs, progress=100.0)

    async def execute_node(
        self,
        node_id: str,
        workflow: Workflow,
        on_node_update: Optional[NodeUpdateCallback] = None
    ) -> ExecutionResult:
        """
        Execute one node outside a full run, e.g. a manual per-node run.

        A node that is not ready is reported without its status ever changing.
        The workflow execution state is left untouched. Nothing is raised: an
        exception from `on_node_update` leaves the node in error and comes back
        as an engine failure.
        """
        node = workflow.get_node(node_id)
        readiness = self.executor.check_ready(node_id, workflow)
        if not readiness.ready:
            return ExecutionResult(
                node_id=node_id, success=False, error=readiness.reason,
                code=readiness.code, kind=FailureKind.READINESS
            )

        try:
            self._set_node(node, on_node_update, status=NodeStatus.RUNNING)
            result = await self.executor.execute_node(node_id, workflow)
            if result.success:
                self._set_node(node, on_node_update, status=NodeStatus.COMPLETED, result=result.result)
            else:
                self._set_node(node, on_node_update, status=NodeStatus.ERROR)
        except Exception as e:
            logger.error(f"Unexpected error executing node {node_id}: {str(e)}", exc_info=True)
            node.status = NodeStatus.ERROR
            return ExecutionResult(
                node_id=node_id, success=False, error=str(e) or "Unexpected node execution error",
                code=ErrorCode.UNEXPECTED.value, kind=FailureKind.ENGINE
            )
        return result

    # Helpers

    def _set_node(self, node: BaseNode, on_node_update: Optional[NodeUpdateCallback], **changes) -> None:
        for key, value in changes.items():
            setattr(node, key, value)
        if on_node_update:
            on_node_update(node.id, dict(changes))

    def _fail_node(
        self,
        node: BaseNode,
        result: ExecutionResult,
        on_node_update: Optional[NodeUpdateCallback],
        final_outputs: Dict[str, Any]
    ) -> WorkflowExecutionResult:
        """Record a node failure and halt the run."""
        error = WorkflowError(
            node_id=node.id,
            message=result.error or "Unknown execution error",
            kind=result.kind or FailureKind.HANDLER,
            code=result.code
        )
        log_event(
            logger, logging.ERROR, "node_failed", f"Node {node.id} failed, halting workflow: {error.message}",
            kind=error.kind.value,
            code=error.code
        )

        self._update_state(
            failed_nodes=self._state.failed_nodes + [node.id],
            errors=self._state.errors + [error],
        )
        self._set_node(node, on_node_update, status=NodeStatus.ERROR)

        return self._finish(ExecutionStatusEnum.FAILED, final_outputs)

    def _finish(
        self,
        status: ExecutionStatusEnum,
        final_outputs: Dict[str, Any],
        errors: Optional[List[WorkflowError]] = None,
        progress: Optional[float] = None
    ) -> WorkflowExecutionResult:
        updates: Dict[str, Any] = {
            "status": status,
            "is_running": False,
            "end_time": datetime.utcnow(),
        }
        if status != ExecutionStatusEnum.FAILED:
            updates["current_node_id"] = None
        if errors is not None:
            updates["errors"] = errors
        if progress is not None:
            updates["progress"] = progress

        self._stop_requested = False
        self._update_state(**updates)

        return WorkflowExecutionResult(
            success=status == ExecutionStatusEnum.COMPLETED,
            status=status,
            final_outputs=final_outputs,
            errors=list(self._state.errors),
            execution_state=self.get_state(),
        )
