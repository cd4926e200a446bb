"""Structural validation of workflow graphs."""

from typing import Dict, List, Optional

from ..models.core import Workflow, ValidationIssue, ValidationResult
from .exceptions import ConfigurationError, ErrorCode, StructuralError
from .logging import get_logger

logger = get_logger(__name__)

ISOLATED_WARN = "warn"
ISOLATED_ERROR = "error"


class GraphValidator:
    """Checks a workflow snapshot for referential integrity, self-loops, cycles and isolated nodes.

    Validation is a pure function of the snapshot: nothing on the workflow is
    mutated and repeated calls return identical results.
    """

    def __init__(self, isolated_nodes: str = ISOLATED_WARN):
        """Initialize the validator.

        Args:
            isolated_nodes: "warn" to report isolated nodes as warnings, "error" to block on them
        """
        if isolated_nodes not in (ISOLATED_WARN, ISOLATED_ERROR):
            raise ConfigurationError(
                f"Unknown isolated node policy: {isolated_nodes}",
                config_key="isolated_nodes"
            )
        self.isolated_nodes = isolated_nodes

    def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a workflow for structural correctness.

        Args:
            workflow: The workflow snapshot to validate

        Returns:
            ValidationResult: Validation results with errors and warnings
        """
        logger.debug(f"Validating workflow '{workflow.name}' ({len(workflow.nodes)} nodes)")

        issues: List[ValidationIssue] = []

        self._validate_not_empty(workflow, issues)
        self._validate_references(workflow, issues)
        self._validate_self_loops(workflow, issues)
        self._validate_cycles(workflow, issues)
        self._validate_isolated_nodes(workflow, issues)

        errors = [issue.message for issue in issues if issue.fatal]
        warnings = [issue.message for issue in issues if not issue.fatal]

        result = ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            issues=issues
        )

        logger.debug(f"Workflow validation completed. Valid: {result.is_valid}, "
                     f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
        return result

    def ensure_valid(self, workflow: Workflow) -> ValidationResult:
        """
        Validate and raise when the workflow cannot be executed.

        Raises:
            StructuralError: If any fatal issue was found
        """
        result = self.validate(workflow)
        if not result.is_valid:
            raise StructuralError(
                f"Workflow '{workflow.name}' is not executable: {result.errors[0]}",
                error_code=next(issue.code for issue in result.issues if issue.fatal),
                validation_errors=result.errors,
                workflow_name=workflow.name,
                issues=[issue for issue in result.issues if issue.fatal]
            )
        return result

    def find_cycle(self, workflow: Workflow) -> Optional[List[str]]:
        """
        Find one cycle using depth-first search from every node.

        Returns:
            The node ids along the cycle, closed on its first node, or None
        """
        node_ids = workflow.node_ids()
        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        for conn in workflow.connections:
            # Self-loops and dangling references are reported on their own
            if conn.source_node_id == conn.target_node_id:
                continue
            if conn.source_node_id in adjacency and conn.target_node_id in adjacency:
                adjacency[conn.source_node_id].append(conn.target_node_id)

        visited = set()
        recursion_stack = set()

        for root in node_ids:
            if root in visited:
                continue

            path = [root]
            stack = [(root, iter(adjacency[root]))]
            visited.add(root)
            recursion_stack.add(root)

            while stack:
                node_id, neighbors = stack[-1]
                advanced = False
                for neighbor in neighbors:
                    if neighbor in recursion_stack:
                        start = path.index(neighbor)
                        return path[start:] + [neighbor]
                    if neighbor not in visited:
                        visited.add(neighbor)
                        recursion_stack.add(neighbor)
                        path.append(neighbor)
                        stack.append((neighbor, iter(adjacency[neighbor])))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    path.pop()
                    recursion_stack.discard(node_id)

        return None

    def _validate_not_empty(self, workflow: Workflow, issues: List[ValidationIssue]):
        if not workflow.nodes:
            issues.append(ValidationIssue(
                code=ErrorCode.EMPTY_GRAPH.value,
                message="Workflow must contain at least one node"
            ))

    def _validate_references(self, workflow: Workflow, issues: List[ValidationIssue]):
        """Report every connection endpoint that names a missing node."""
        node_ids = set(workflow.node_ids())

        for conn in workflow.connections:
            if conn.source_node_id not in node_ids:
                issues.append(ValidationIssue(
                    code=ErrorCode.DANGLING_REFERENCE.value,
                    message=f"Connection references non-existent source node: {conn.source_node_id}",
                    node_ids=[conn.source_node_id]
                ))
            if conn.target_node_id not in node_ids:
                issues.append(ValidationIssue(
                    code=ErrorCode.DANGLING_REFERENCE.value,
                    message=f"Connection references non-existent target node: {conn.target_node_id}",
                    node_ids=[conn.target_node_id]
                ))

    def _validate_self_loops(self, workflow: Workflow, issues: List[ValidationIssue]):
        for conn in workflow.connections:
            if conn.source_node_id == conn.target_node_id:
                node = workflow.get_node(conn.source_node_id)
                name = node.display_name() if node else conn.source_node_id
                issues.append(ValidationIssue(
                    code=ErrorCode.SELF_LOOP.value,
                    message=f"Connection '{conn.id}' connects node '{name}' to itself",
                    node_ids=[conn.source_node_id]
                ))

    def _validate_cycles(self, workflow: Workflow, issues: List[ValidationIssue]):
        cycle = self.find_cycle(workflow)
        if not cycle:
            return

        names = []
        for node_id in cycle:
            node = workflow.get_node(node_id)
            names.append(node.display_name() if node else node_id[:8])

        issues.append(ValidationIssue(
            code=ErrorCode.CYCLE_DETECTED.value,
            message=f"Workflow contains circular dependencies: {' → '.join(names)}",
            node_ids=cycle[:-1]
        ))

    def _validate_isolated_nodes(self, workflow: Workflow, issues: List[ValidationIssue]):
        """Nodes without any incident connection, only meaningful with more than one node."""
        if len(workflow.nodes) <= 1:
            return

        connected = set()
        for conn in workflow.connections:
            connected.add(conn.source_node_id)
            connected.add(conn.target_node_id)

        isolated = [node for node in workflow.nodes if node.id not in connected]
        if not isolated:
            return

        names = ", ".join(node.display_name() for node in isolated)
        fatal = self.isolated_nodes == ISOLATED_ERROR
        prefix = "" if fatal else "Warning: "
        issues.append(ValidationIssue(
            code=ErrorCode.ISOLATED_NODE.value,
            message=f"{prefix}Isolated nodes detected (not connected to workflow): {names}",
            fatal=fatal,
            node_ids=[node.id for node in isolated]
        ))


def validate(workflow: Workflow, isolated_nodes: str = ISOLATED_WARN) -> ValidationResult:
    """Validate `workflow` with a throwaway validator."""
    return GraphValidator(isolated_nodes=isolated_nodes).validate(workflow)
