"""Tests for workflow runs driven by the ExecutionCoordinator."""

import asyncio

import pytest

from opalflow.core.coordinator import ExecutionCoordinator
from opalflow.core.exceptions import ErrorCode, ExecutionEngineError
from opalflow.core.graph_validator import GraphValidator
from opalflow.core.logging import get_logging_context
from opalflow.models.core import (
    CustomNode,
    ExecutionStatusEnum,
    FailureKind,
    NodeStatus,
    Workflow,
)

from .builders import generate, make_workflow, output, user_input


@pytest.fixture
def failing_chain(registry):
    """A -> B -> C where B always raises and C records whether it ran."""
    dispatched = []

    def explode(context):
        raise RuntimeError("kaboom")

    def spy(context):
        dispatched.append(context.node_id)
        return "spied"

    registry.register_handler("boom", explode)
    registry.register_handler("spy", spy)

    workflow = make_workflow(
        [user_input("a", "A", value="start"), CustomNode(id="b", type="boom"), CustomNode(id="c", type="spy")],
        [("a", "b"), ("b", "c")],
    )
    return workflow, dispatched


class TestRun:
    """Test cases for complete workflow runs."""

    @pytest.mark.asyncio
    async def test_pipeline_produces_greeting(self, coordinator, pipeline_workflow):
        result = await coordinator.run(pipeline_workflow)

        assert result.success
        assert result.status == ExecutionStatusEnum.COMPLETED
        assert pipeline_workflow.get_node("gen").result == "Hello Ada"
        assert pipeline_workflow.get_node("out").result == "Hello Ada"
        assert result.final_outputs["out"] == "Hello Ada"
        assert result.final_outputs["Out"] == "Hello Ada"
        assert all(node.status == NodeStatus.COMPLETED for node in pipeline_workflow.nodes)

        state = coordinator.get_state()
        assert state.status == ExecutionStatusEnum.COMPLETED
        assert not state.is_running
        assert state.progress == 100.0
        assert state.completed_nodes == ["in", "gen", "out"]
        assert state.current_node_id is None
        assert state.end_time is not None

    @pytest.mark.asyncio
    async def test_independent_chains_all_complete(self, coordinator):
        workflow = make_workflow(
            [user_input("a1", "A1", value="x"), output("a2", "A2"), user_input("b1", "B1", value="y"), output("b2", "B2")],
            [("a1", "a2"), ("b1", "b2")],
        )

        result = await coordinator.run(workflow)

        assert result.success
        completed = coordinator.get_state().completed_nodes
        assert sorted(completed) == ["a1", "a2", "b1", "b2"]
        assert completed.index("a1") < completed.index("a2")
        assert completed.index("b1") < completed.index("b2")

    @pytest.mark.asyncio
    async def test_cycle_fails_before_any_node_runs(self, coordinator):
        workflow = make_workflow(
            [generate("a", "A", "x"), generate("b", "B", "y"), generate("c", "C", "z")],
            [("c", "a"), ("a", "b"), ("b", "c")],
        )

        result = await coordinator.run(workflow)

        assert not result.success
        assert result.status == ExecutionStatusEnum.FAILED
        assert result.errors[0].kind == FailureKind.STRUCTURAL
        assert result.errors[0].code == ErrorCode.CYCLE_DETECTED.value
        assert result.errors[0].message == "Workflow contains circular dependencies: A → B → C → A"
        assert all(node.status == NodeStatus.IDLE for node in workflow.nodes)

    @pytest.mark.asyncio
    async def test_first_failure_halts_the_run(self, coordinator, failing_chain):
        workflow, dispatched = failing_chain

        result = await coordinator.run(workflow)

        assert result.status == ExecutionStatusEnum.FAILED
        assert workflow.get_node("a").status == NodeStatus.COMPLETED
        assert workflow.get_node("b").status == NodeStatus.ERROR
        assert workflow.get_node("c").status == NodeStatus.IDLE
        assert dispatched == []

        state = coordinator.get_state()
        assert state.failed_nodes == ["b"]
        assert state.current_node_id == "b"
        assert state.progress == pytest.approx(100 / 3)
        assert state.last_error.node_id == "b"
        assert state.last_error.message == "kaboom"
        assert state.last_error.kind == FailureKind.HANDLER

    @pytest.mark.asyncio
    async def test_readiness_failure_in_run(self, coordinator):
        workflow = make_workflow(
            [user_input("u", "U", value="x"), output("o", "O"), output("lonely", "Lonely")],
            [("u", "o")],
        )

        result = await coordinator.run(workflow)

        assert result.status == ExecutionStatusEnum.FAILED
        assert result.errors[0].kind == FailureKind.READINESS
        assert result.errors[0].code == ErrorCode.NO_INPUT.value
        assert workflow.get_node("lonely").status == NodeStatus.ERROR

    @pytest.mark.asyncio
    async def test_stop_after_first_node(self, coordinator):
        workflow = make_workflow(
            [user_input("n1", "N1", value="x"), generate("n2", "N2", "{{N1}}!"), output("n3", "N3")],
            [("n1", "n2"), ("n2", "n3")],
        )
        touched = []

        def on_node_update(node_id, changes):
            touched.append(node_id)
            if node_id == "n1" and changes.get("status") == NodeStatus.COMPLETED:
                coordinator.stop()

        result = await coordinator.run(workflow, on_node_update=on_node_update)

        assert result.status == ExecutionStatusEnum.STOPPED
        assert not result.success
        assert workflow.get_node("n1").status == NodeStatus.COMPLETED
        assert workflow.get_node("n2").status == NodeStatus.IDLE
        assert workflow.get_node("n3").status == NodeStatus.IDLE
        assert "n3" not in touched
        assert coordinator.get_state().completed_nodes == ["n1"]

    @pytest.mark.asyncio
    async def test_node_updates_reported_in_order(self, coordinator, pipeline_workflow):
        updates = []

        await coordinator.run(pipeline_workflow, on_node_update=lambda node_id, changes: updates.append(
            (node_id, changes["status"])
        ))

        assert updates == [
            ("in", NodeStatus.RUNNING), ("in", NodeStatus.COMPLETED),
            ("gen", NodeStatus.RUNNING), ("gen", NodeStatus.COMPLETED),
            ("out", NodeStatus.RUNNING), ("out", NodeStatus.COMPLETED),
        ]

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, registry, coordinator):
        gate = asyncio.Event()

        async def wait_for_gate(context):
            await gate.wait()
            return "released"

        registry.register_handler("gate", wait_for_gate)
        workflow = make_workflow([CustomNode(id="g", type="gate")])

        task = asyncio.create_task(coordinator.run(workflow))
        for _ in range(10):
            if coordinator.get_state().is_running:
                break
            await asyncio.sleep(0)

        assert coordinator.get_state().is_running
        with pytest.raises(ExecutionEngineError) as exc_info:
            await coordinator.run(make_workflow([user_input("u", value="x")]))
        assert exc_info.value.error_code == ErrorCode.ALREADY_RUNNING.value
        assert coordinator.can_execute(workflow).reason == "Another workflow is currently running"
        with pytest.raises(ExecutionEngineError):
            coordinator.reset()

        gate.set()
        result = await task

        assert result.success
        assert result.final_outputs == {"g": "released"}

    @pytest.mark.asyncio
    async def test_logging_context_cleared_after_run(self, coordinator, pipeline_workflow):
        await coordinator.run(pipeline_workflow)

        assert get_logging_context() == {}

    @pytest.mark.asyncio
    async def test_sibling_branches_run_one_at_a_time(self, registry, coordinator):
        events = []

        def recorder(name):
            async def handler(context):
                events.append(("enter", name))
                await asyncio.sleep(0.01)
                events.append(("exit", name))
                return name
            return handler

        registry.register_handler("left", recorder("left"))
        registry.register_handler("right", recorder("right"))
        workflow = make_workflow(
            [user_input("root", "Root", value="x"), CustomNode(id="l", type="left"), CustomNode(id="r", type="right")],
            [("root", "l"), ("root", "r")],
        )

        result = await coordinator.run(workflow)

        assert result.success
        assert events == [("enter", "left"), ("exit", "left"), ("enter", "right"), ("exit", "right")]

    @pytest.mark.asyncio
    async def test_failing_update_callback_settles_running_node(self, executor, coordinator, pipeline_workflow):
        def on_node_update(node_id, changes):
            if node_id == "gen" and changes["status"] == NodeStatus.RUNNING:
                raise RuntimeError("ui render failed")

        result = await coordinator.run(pipeline_workflow, on_node_update=on_node_update)

        assert result.status == ExecutionStatusEnum.FAILED
        assert pipeline_workflow.get_node("gen").status == NodeStatus.ERROR
        assert pipeline_workflow.get_node("out").status == NodeStatus.IDLE

        state = coordinator.get_state()
        assert state.failed_nodes == ["gen"]
        assert state.last_error.node_id == "gen"
        assert state.last_error.message == "ui render failed"
        assert state.last_error.kind == FailureKind.ENGINE
        assert state.last_error.code == ErrorCode.UNEXPECTED.value
        assert executor.is_node_ready("gen", pipeline_workflow).ready


class TestExecuteSingleNode:

    @pytest.mark.asyncio
    async def test_output_without_inputs_never_runs(self, coordinator):
        workflow = make_workflow([output("out", "Out")])
        updates = []

        result = await coordinator.execute_node("out", workflow, on_node_update=lambda *args: updates.append(args))

        assert not result.success
        assert result.code == ErrorCode.NO_INPUT.value
        assert workflow.get_node("out").status == NodeStatus.IDLE
        assert updates == []

    @pytest.mark.asyncio
    async def test_executes_against_existing_results(self, coordinator, pipeline_workflow):
        pipeline_workflow.get_node("gen").result = "Hi there"

        result = await coordinator.execute_node("out", pipeline_workflow)

        assert result.success
        assert pipeline_workflow.get_node("out").status == NodeStatus.COMPLETED
        assert pipeline_workflow.get_node("out").result == "Hi there"
        assert coordinator.get_state().status == ExecutionStatusEnum.IDLE

    @pytest.mark.asyncio
    async def test_handler_failure_marks_error(self, coordinator):
        workflow = make_workflow([user_input("u", value="", required=True)])

        result = await coordinator.execute_node("u", workflow)

        assert not result.success
        assert workflow.get_node("u").status == NodeStatus.ERROR

    @pytest.mark.asyncio
    async def test_failing_update_callback_is_returned_as_result(self, coordinator):
        workflow = make_workflow([user_input("u", value="x")])

        def on_node_update(node_id, changes):
            raise RuntimeError("ui render failed")

        result = await coordinator.execute_node("u", workflow, on_node_update=on_node_update)

        assert not result.success
        assert result.kind == FailureKind.ENGINE
        assert result.code == ErrorCode.UNEXPECTED.value
        assert result.error == "ui render failed"
        assert workflow.get_node("u").status == NodeStatus.ERROR


class TestCanExecute:
    """Test cases for pre-run checks."""

    def test_valid_pipeline(self, coordinator, pipeline_workflow):
        assert coordinator.can_execute(pipeline_workflow).can_execute

    def test_empty_workflow(self, coordinator):
        check = coordinator.can_execute(Workflow())

        assert not check.can_execute
        assert check.reason == "Workflow must contain at least one node"

    def test_structural_error_reported(self, coordinator):
        workflow = make_workflow([generate("a", "A", "x"), generate("b", "B", "y")], [("a", "b"), ("b", "a")])

        assert coordinator.can_execute(workflow).reason == "Workflow contains circular dependencies: A → B → A"

    def test_fatal_isolated_policy_blocks_execution(self, executor):
        coordinator = ExecutionCoordinator(executor=executor, validator=GraphValidator(isolated_nodes="error"))
        workflow = make_workflow(
            [user_input("a", "A", value="v"), output("b", "B"), user_input("c", "C", value="w")],
            [("a", "b")],
        )

        check = coordinator.can_execute(workflow)

        assert not check.can_execute
        assert check.reason == "Isolated nodes detected (not connected to workflow): C"

    def test_output_without_inputs(self, coordinator):
        check = coordinator.can_execute(make_workflow([output("out", "Out")]))

        assert not check.can_execute
        assert check.reason == "Out: Output node needs at least one connected input"


class TestStateManagement:
    """Test cases for state, subscriptions and reset."""

    @pytest.mark.asyncio
    async def test_subscribers_see_every_transition(self, coordinator, pipeline_workflow):
        seen = []
        coordinator.subscribe(lambda state: seen.append(state.status))

        await coordinator.run(pipeline_workflow)

        assert seen[0] == ExecutionStatusEnum.RUNNING
        assert seen[-1] == ExecutionStatusEnum.COMPLETED

    @pytest.mark.asyncio
    async def test_unsubscribe(self, coordinator, pipeline_workflow):
        seen = []
        unsubscribe = coordinator.subscribe(lambda state: seen.append(state))
        unsubscribe()
        unsubscribe()

        await coordinator.run(pipeline_workflow)

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_abort_run(self, coordinator, pipeline_workflow):
        def broken(state):
            raise RuntimeError("listener bug")

        seen = []
        coordinator.subscribe(broken)
        coordinator.subscribe(lambda state: seen.append(state.status))

        result = await coordinator.run(pipeline_workflow)

        assert result.success
        assert seen[-1] == ExecutionStatusEnum.COMPLETED

    def test_unsubscribe_during_notification(self, coordinator):
        seen = []
        handles = []
        coordinator.subscribe(lambda state: handles[0]())
        handles.append(coordinator.subscribe(lambda state: seen.append(state.status)))

        coordinator.reset()
        assert seen == [ExecutionStatusEnum.IDLE]

        coordinator.reset()
        assert seen == [ExecutionStatusEnum.IDLE]

    def test_get_state_returns_a_copy(self, coordinator):
        state = coordinator.get_state()
        state.completed_nodes.append("tampered")
        state.status = ExecutionStatusEnum.FAILED

        fresh = coordinator.get_state()
        assert fresh.completed_nodes == []
        assert fresh.status == ExecutionStatusEnum.IDLE

    def test_stop_when_idle_is_a_no_op(self, coordinator):
        assert coordinator.stop() is False
        assert coordinator.get_state().status == ExecutionStatusEnum.IDLE

    @pytest.mark.asyncio
    async def test_reset_clears_progress(self, coordinator, failing_chain):
        workflow, _ = failing_chain
        await coordinator.run(workflow)

        coordinator.reset()

        state = coordinator.get_state()
        assert state.status == ExecutionStatusEnum.IDLE
        assert state.errors == []
        assert state.failed_nodes == []
        assert state.progress == 0.0
        assert state.run_id is None

    @pytest.mark.asyncio
    async def test_summary(self, coordinator, pipeline_workflow):
        await coordinator.run(pipeline_workflow)

        summary = coordinator.get_execution_summary()

        assert summary.total_nodes == 3
        assert summary.completed_nodes == 3
        assert summary.failed_nodes == 0
        assert summary.duration_ms is not None
        assert summary.has_errors is False

    @pytest.mark.asyncio
    async def test_coordinators_are_independent(self, executor, pipeline_workflow):
        first = ExecutionCoordinator(executor=executor)
        second = ExecutionCoordinator(executor=executor)
        seen = []
        second.subscribe(seen.append)

        await first.run(pipeline_workflow)

        assert first.get_state().status == ExecutionStatusEnum.COMPLETED
        assert second.get_state().status == ExecutionStatusEnum.IDLE
        assert seen == []
