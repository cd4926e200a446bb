"""Tests for execution ordering."""

from opalflow.core.topology import (
    has_cycle,
    has_input_connections,
    has_output_connections,
    order,
    workflow_order,
)

from .builders import generate, make_workflow, output, user_input


class TestOrder:
    """Test cases for Kahn's ordering."""

    def test_linear_chain(self, pipeline_workflow):
        assert workflow_order(pipeline_workflow) == ["in", "gen", "out"]

    def test_independent_nodes_keep_insertion_order(self):
        workflow = make_workflow([user_input("c"), user_input("a"), user_input("b")])

        assert workflow_order(workflow) == ["c", "a", "b"]

    def test_siblings_follow_connection_order(self):
        workflow = make_workflow(
            [user_input("root"), output("x"), output("y")],
            [("root", "y"), ("root", "x")],
        )

        assert workflow_order(workflow) == ["root", "y", "x"]

    def test_every_edge_respected_in_diamond(self):
        workflow = make_workflow(
            [output("d"), generate("b"), generate("c"), user_input("a")],
            [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")],
        )

        result = workflow_order(workflow)

        position = {node_id: index for index, node_id in enumerate(result)}
        for conn in workflow.connections:
            assert position[conn.source_node_id] < position[conn.target_node_id]
        assert result == ["a", "b", "c", "d"]

    def test_order_is_deterministic(self):
        workflow = make_workflow(
            [user_input("a"), user_input("b"), generate("g"), output("o")],
            [("b", "g"), ("a", "g"), ("g", "o")],
        )

        assert order(workflow.nodes, workflow.connections) == order(workflow.nodes, workflow.connections)

    def test_cycle_yields_short_order(self):
        workflow = make_workflow(
            [user_input("s"), generate("a"), generate("b")],
            [("s", "a"), ("a", "b"), ("b", "a")],
        )

        assert workflow_order(workflow) == ["s"]
        assert has_cycle(workflow)

    def test_unknown_endpoints_are_ignored(self):
        workflow = make_workflow([user_input("a"), output("b")], [("a", "b"), ("ghost", "b"), ("a", "nowhere")])

        assert workflow_order(workflow) == ["a", "b"]
        assert not has_cycle(workflow)


class TestConnectionQueries:

    def test_input_and_output_connections(self, pipeline_workflow):
        connections = pipeline_workflow.connections

        assert not has_input_connections("in", connections)
        assert has_output_connections("in", connections)
        assert has_input_connections("out", connections)
        assert not has_output_connections("out", connections)
