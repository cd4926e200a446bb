"""Tests for the execution monitor fan-out."""

import pytest

from opalflow.core.monitor import ExecutionMonitor, MonitorEvent


class FakeWebSocket:
    """Records what the monitor sends."""

    def __init__(self):
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.sent.append(data)


def drain(monitor, connection_id):
    queue = monitor._connections[connection_id].queue
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestExecutionMonitor:
    """Test cases for ExecutionMonitor."""

    @pytest.mark.asyncio
    async def test_connect_sends_current_state(self, coordinator):
        monitor = ExecutionMonitor(coordinator)
        websocket = FakeWebSocket()

        connection_id = await monitor.connect(websocket)

        assert websocket.accepted
        assert websocket.sent[0]["event_type"] == "connection_established"
        assert websocket.sent[0]["data"]["connection_id"] == connection_id
        assert websocket.sent[0]["data"]["state"]["status"] == "idle"
        assert monitor.connection_count == 1

    @pytest.mark.asyncio
    async def test_run_events_are_queued_per_connection(self, coordinator, pipeline_workflow):
        monitor = ExecutionMonitor(coordinator)
        first = await monitor.connect(FakeWebSocket())
        second = await monitor.connect(FakeWebSocket())

        await coordinator.run(pipeline_workflow, on_node_update=monitor.node_update)

        assert monitor.get_connection_info(first)["pending_events"] > 0
        events = drain(monitor, first)
        assert len(events) == len(drain(monitor, second))
        assert events[0].event_type == "state_changed"
        assert events[0].data["status"] == "running"
        assert events[-1].data["status"] == "completed"

        node_events = [event.data for event in events if event.event_type == "node_updated"]
        assert node_events[0] == {"node_id": "in", "status": "running"}
        assert node_events[-1] == {"node_id": "out", "status": "completed", "result": "Hello Ada"}

    @pytest.mark.asyncio
    async def test_send_after_disconnect_is_ignored(self, coordinator):
        monitor = ExecutionMonitor(coordinator)
        websocket = FakeWebSocket()
        connection_id = await monitor.connect(websocket)

        monitor.disconnect(connection_id)
        await monitor.send(connection_id, MonitorEvent(event_type="pong"))

        assert len(websocket.sent) == 1
        assert monitor.get_connection_info() == {"active_connections": 0}
        assert monitor.get_connection_info(connection_id) == {}

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, coordinator, pipeline_workflow):
        monitor = ExecutionMonitor(coordinator)
        connection_id = await monitor.connect(FakeWebSocket())
        connection = monitor._connections[connection_id]

        monitor.close()
        await coordinator.run(pipeline_workflow)

        assert monitor.connection_count == 0
        assert connection.queue.empty()
