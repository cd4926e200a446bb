"""Execution ordering for workflow graphs."""

from collections import deque
from typing import Dict, List, Sequence

from ..models.core import BaseNode, Connection, Workflow


def order(nodes: Sequence[BaseNode], connections: Sequence[Connection]) -> List[str]:
    """
    Compute a topological execution order with Kahn's algorithm.

    Nodes whose in-degree reaches zero at the same time are processed in the
    order they entered the queue, seeded in node insertion order, so a given
    graph always yields the same sequence.

    Args:
        nodes: Workflow nodes in insertion order
        connections: Directed connections between nodes

    Returns:
        Node ids in execution order. A result shorter than `nodes` means the
        unresolved remainder contains a cycle.
    """
    adjacency: Dict[str, List[str]] = {}
    in_degree: Dict[str, int] = {}

    for node in nodes:
        adjacency[node.id] = []
        in_degree[node.id] = 0

    for conn in connections:
        if conn.source_node_id not in adjacency or conn.target_node_id not in in_degree:
            continue
        adjacency[conn.source_node_id].append(conn.target_node_id)
        in_degree[conn.target_node_id] += 1

    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    result: List[str] = []

    while queue:
        current = queue.popleft()
        result.append(current)

        for neighbor in adjacency[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    return result


def workflow_order(workflow: Workflow) -> List[str]:
    return order(workflow.nodes, workflow.connections)


def has_cycle(workflow: Workflow) -> bool:
    """True when Kahn's algorithm cannot resolve every node."""
    return len(workflow_order(workflow)) != len(workflow.nodes)


def has_input_connections(node_id: str, connections: Sequence[Connection]) -> bool:
    return any(conn.target_node_id == node_id for conn in connections)


def has_output_connections(node_id: str, connections: Sequence[Connection]) -> bool:
    return any(conn.source_node_id == node_id for conn in connections)
