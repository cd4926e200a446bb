"""Fan-out of coordinator state changes and node updates to WebSocket clients."""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import WebSocket
from pydantic import BaseModel, Field

from ..models.core import ExecutionState
from .coordinator import ExecutionCoordinator
from .logging import get_logger

logger = get_logger(__name__)


class MonitorEvent(BaseModel):
    """Message pushed to monitoring clients."""
    event_type: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)


class MonitorConnection:
    """A connected WebSocket with its pending event queue."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.connected_at = datetime.utcnow()
        self.queue: "asyncio.Queue[MonitorEvent]" = asyncio.Queue()


class ExecutionMonitor:
    """Subscribes to a coordinator and queues every change for each connection.

    Coordinator notifications are synchronous, so events are only enqueued
    there; each connection drains its queue in `pump`.
    """

    def __init__(self, coordinator: ExecutionCoordinator):
        self.coordinator = coordinator
        self._connections: Dict[str, MonitorConnection] = {}
        self._unsubscribe = coordinator.subscribe(self._on_state_change)
        logger.info("ExecutionMonitor initialized")

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _broadcast(self, event: MonitorEvent) -> None:
        for connection in list(self._connections.values()):
            connection.queue.put_nowait(event)

    def _on_state_change(self, state: ExecutionState) -> None:
        self._broadcast(MonitorEvent(event_type="state_changed", data=state.model_dump(mode="json")))

    def node_update(self, node_id: str, changes: Dict[str, Any]) -> None:
        """Node update callback suitable for `ExecutionCoordinator.run`."""
        data = {"node_id": node_id}
        data.update({key: getattr(value, "value", value) for key, value in changes.items()})
        self._broadcast(MonitorEvent(event_type="node_updated", data=data))

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket and send it the current execution state."""
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = MonitorConnection(websocket, connection_id)
        logger.info(f"Monitor connection established: {connection_id}")

        await self.send(connection_id, MonitorEvent(
            event_type="connection_established",
            data={
                "connection_id": connection_id,
                "state": self.coordinator.get_state().model_dump(mode="json"),
            }
        ))
        return connection_id

    async def send(self, connection_id: str, event: MonitorEvent) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        await connection.websocket.send_json(event.model_dump(mode="json"))

    async def pump(self, connection_id: str) -> None:
        """Forward queued events to one connection until it goes away."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        while connection_id in self._connections:
            event = await connection.queue.get()
            await self.send(connection_id, event)

    def disconnect(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.info(f"Monitor connection closed: {connection_id}")

    def close(self) -> None:
        """Detach from the coordinator and drop all connections."""
        self._unsubscribe()
        self._connections.clear()

    def get_connection_info(self, connection_id: Optional[str] = None) -> Dict[str, Any]:
        if connection_id is not None:
            connection = self._connections.get(connection_id)
            if connection is None:
                return {}
            return {
                "connection_id": connection_id,
                "connected_at": connection.connected_at.isoformat(),
                "pending_events": connection.queue.qsize(),
            }
        return {"active_connections": self.connection_count}
