"""FastAPI REST and WebSocket endpoints for the workflow engine."""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from ..core.coordinator import ExecutionCoordinator
from ..core.exceptions import ExecutionEngineError, create_error_response
from ..core.handler_registry import HandlerRegistry
from ..core.logging import get_logger
from ..core.monitor import ExecutionMonitor, MonitorEvent
from ..models.core import (
    CanExecuteResult,
    ExecutionResult,
    ExecutionState,
    ExecutionSummary,
    ReadinessResult,
    ValidationResult,
    Workflow,
    WorkflowExecutionResult,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])


def get_coordinator(request: Request) -> ExecutionCoordinator:
    """Dependency to get the execution coordinator."""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution coordinator not initialized"
        )
    return coordinator


def get_registry(request: Request) -> HandlerRegistry:
    """Dependency to get the handler registry."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Handler registry not initialized"
        )
    return registry


def get_monitor(request: Request) -> ExecutionMonitor:
    return request.app.state.monitor


# Request/Response models

class RunWorkflowResponse(WorkflowExecutionResult):
    """Run result plus the workflow with updated node statuses and results."""
    workflow: Workflow = Field(..., description="Workflow after the run")


class ExecuteNodeResponse(ExecutionResult):
    """Single-node result plus the workflow with the node's updated status."""
    workflow: Workflow = Field(..., description="Workflow after the node ran")


class StopResponse(BaseModel):
    stop_requested: bool = Field(..., description="Whether a running workflow will stop at the next node boundary")
    state: ExecutionState


# Endpoints

@router.post(
    "/workflow/validate",
    response_model=ValidationResult,
    summary="Validate a workflow graph",
    description="Check referential integrity, self-loops, cycles and isolated nodes"
)
async def validate_workflow(
    workflow: Workflow,
    coordinator: ExecutionCoordinator = Depends(get_coordinator)
) -> ValidationResult:
    return coordinator.validate(workflow)


@router.post(
    "/workflow/can-execute",
    response_model=CanExecuteResult,
    summary="Check whether a workflow can be run"
)
async def can_execute_workflow(
    workflow: Workflow,
    coordinator: ExecutionCoordinator = Depends(get_coordinator)
) -> CanExecuteResult:
    return coordinator.can_execute(workflow)


@router.post(
    "/workflow/run",
    response_model=RunWorkflowResponse,
    summary="Execute a complete workflow",
    description="Run every node in topological order, halting at the first failure"
)
async def run_workflow(
    workflow: Workflow,
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
    monitor: ExecutionMonitor = Depends(get_monitor)
) -> RunWorkflowResponse:
    """
    Execute a workflow.

    Node updates are streamed to monitoring clients while the run progresses.

    Raises:
        HTTPException: 409 if another workflow is running on this coordinator
    """
    logger.info(f"Received run request for workflow '{workflow.name}'")
    try:
        result = await coordinator.run(workflow, on_node_update=monitor.node_update)
    except ExecutionEngineError as e:
        logger.warning(f"Rejected run request: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=create_error_response(e)
        )

    return RunWorkflowResponse(**result.model_dump(), workflow=workflow)


@router.post(
    "/workflow/stop",
    response_model=StopResponse,
    summary="Stop the running workflow at the next node boundary"
)
async def stop_workflow(coordinator: ExecutionCoordinator = Depends(get_coordinator)) -> StopResponse:
    stop_requested = coordinator.stop()
    return StopResponse(stop_requested=stop_requested, state=coordinator.get_state())


@router.post(
    "/workflow/reset",
    response_model=ExecutionState,
    summary="Reset the execution state to idle"
)
async def reset_workflow(coordinator: ExecutionCoordinator = Depends(get_coordinator)) -> ExecutionState:
    try:
        coordinator.reset()
    except ExecutionEngineError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=create_error_response(e)
        )
    return coordinator.get_state()


@router.get(
    "/workflow/state",
    response_model=ExecutionState,
    summary="Get the current execution state"
)
async def get_workflow_state(coordinator: ExecutionCoordinator = Depends(get_coordinator)) -> ExecutionState:
    return coordinator.get_state()


@router.get(
    "/workflow/summary",
    response_model=ExecutionSummary,
    summary="Get a summary of the last run"
)
async def get_workflow_summary(coordinator: ExecutionCoordinator = Depends(get_coordinator)) -> ExecutionSummary:
    return coordinator.get_execution_summary()


@router.post(
    "/nodes/{node_id}/execute",
    response_model=ExecuteNodeResponse,
    summary="Execute a single node",
    description="Run one node against the results already present on its upstream nodes"
)
async def execute_node(
    node_id: str,
    workflow: Workflow,
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
    monitor: ExecutionMonitor = Depends(get_monitor)
) -> ExecuteNodeResponse:
    result = await coordinator.execute_node(node_id, workflow, on_node_update=monitor.node_update)
    return ExecuteNodeResponse(**result.model_dump(), workflow=workflow)


@router.post(
    "/nodes/{node_id}/readiness",
    response_model=ReadinessResult,
    summary="Check whether a node is ready to execute"
)
async def node_readiness(
    node_id: str,
    workflow: Workflow,
    coordinator: ExecutionCoordinator = Depends(get_coordinator)
) -> ReadinessResult:
    return coordinator.executor.is_node_ready(node_id, workflow)


@router.get(
    "/handlers",
    response_model=Dict[str, str],
    summary="List registered node handlers"
)
async def list_handlers(registry: HandlerRegistry = Depends(get_registry)) -> Dict[str, str]:
    return registry.list_handlers()


# WebSocket endpoint for real-time monitoring

@router.websocket("/ws/monitor")
async def websocket_monitor(websocket: WebSocket):
    """
    WebSocket endpoint for real-time execution monitoring.

    On connect the server sends a "connection_established" event holding the
    current state, then a "state_changed" or "node_updated" event for every
    change. Clients may send {"action": "ping"} or {"action": "get_state"}.
    """
    monitor: ExecutionMonitor = getattr(websocket.app.state, "monitor", None)
    if monitor is None:
        await websocket.close(code=1011, reason="Execution monitoring not available")
        return

    connection_id = await monitor.connect(websocket)
    pump = asyncio.create_task(monitor.pump(connection_id))

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message: Dict[str, Any] = json.loads(data)
            except json.JSONDecodeError:
                message = None
            if not isinstance(message, dict):
                await monitor.send(connection_id, MonitorEvent(
                    event_type="error", data={"message": "Invalid JSON message format"}
                ))
                continue

            action = message.get("action")
            if action == "ping":
                await monitor.send(connection_id, MonitorEvent(event_type="pong"))
            elif action == "get_state":
                await monitor.send(connection_id, MonitorEvent(
                    event_type="state",
                    data=monitor.coordinator.get_state().model_dump(mode="json")
                ))
            else:
                await monitor.send(connection_id, MonitorEvent(
                    event_type="error", data={"message": f"Unknown action: {action}"}
                ))
    except WebSocketDisconnect:
        logger.info(f"Monitor client disconnected: {connection_id}")
    finally:
        monitor.disconnect(connection_id)
        pump.cancel()


@router.get("/ws/connections", summary="Monitoring connection statistics")
async def get_websocket_connections(monitor: ExecutionMonitor = Depends(get_monitor)) -> Dict[str, Any]:
    return {
        "websocket_monitoring": "active",
        "timestamp": datetime.utcnow().isoformat(),
        **monitor.get_connection_info()
    }
