"""Single-node execution: readiness checks, context assembly and handler dispatch."""

import asyncio
import inspect
import logging
import time
from typing import Any, Dict, List, Optional

from ..models.core import (
    BaseNode,
    ExecutionResult,
    FailureKind,
    NodeStatus,
    NodeType,
    ReadinessResult,
    Workflow,
    node_type_name,
)
from .exceptions import ErrorCode, HandlerError, HandlerRegistryError, ReadinessError
from .handler_registry import ExecutionContext, HandlerRegistry, create_default_registry
from .logging import get_logger, log_event

logger = get_logger(__name__)


def input_key(node: BaseNode, index: int) -> str:
    """Name under which an upstream node's result is exposed downstream."""
    return node.config.title or f"input_{index}"


def check_static_configuration(node: BaseNode, input_count: int) -> None:
    """
    Type-specific rules that depend only on how many inputs a node has.

    Raises:
        ReadinessError: If the node cannot run with this wiring
    """
    if node.type == NodeType.GENERATE:
        if input_count == 0 and not node.config.prompt_template:
            raise ReadinessError(
                "Generate node needs either connected inputs or a prompt template",
                error_code=ErrorCode.INSUFFICIENT_CONFIGURATION,
                node_id=node.id
            )
    elif node.type == NodeType.OUTPUT:
        if input_count == 0:
            raise ReadinessError(
                "Output node needs at least one connected input",
                error_code=ErrorCode.NO_INPUT,
                node_id=node.id
            )
    # userInput, addAssets and host-defined kinds have no upstream requirement


class NodeExecutor:
    """Executes one node of a workflow against the handler registered for its type.

    Every failure is returned as an ExecutionResult; `execute_node` never raises.
    Node status and result are left untouched, that is the coordinator's job.
    """

    def __init__(self, registry: Optional[HandlerRegistry] = None, node_timeout: Optional[float] = None):
        """Initialize the executor.

        Args:
            registry: Handler registry, defaults to the built-in handlers
            node_timeout: Optional limit in seconds for awaiting a handler
        """
        self.registry = registry if registry is not None else create_default_registry()
        self.node_timeout = node_timeout

    def get_execution_dependencies(self, node_id: str, workflow: Workflow) -> List[BaseNode]:
        return workflow.input_nodes(node_id)

    def check_ready(self, node_id: str, workflow: Workflow) -> ReadinessResult:
        """Check whether a node may be dispatched now."""
        try:
            self._check_readiness(self._require_node(node_id, workflow), workflow)
        except ReadinessError as e:
            return ReadinessResult(ready=False, reason=e.message, code=e.error_code)
        return ReadinessResult(ready=True)

    def is_node_ready(self, node_id: str, workflow: Workflow) -> ReadinessResult:
        """Like `check_ready`, but also rejects a node that is already running."""
        node = workflow.get_node(node_id)
        if node is not None and node.status == NodeStatus.RUNNING:
            return ReadinessResult(ready=False, reason="Node is already running")
        return self.check_ready(node_id, workflow)

    def build_context(self, node: BaseNode, workflow: Workflow) -> ExecutionContext:
        """Collect upstream results into the inputs and template variables of `node`."""
        inputs: Dict[str, Any] = {}
        variables: Dict[str, Any] = {}

        for index, input_node in enumerate(self.get_execution_dependencies(node.id, workflow)):
            key = input_key(input_node, index)
            inputs[key] = input_node.result
            variables[key] = input_node.result

        return ExecutionContext(node=node, inputs=inputs, variables=variables)

    async def execute_node(self, node_id: str, workflow: Workflow) -> ExecutionResult:
        """
        Execute a single node.

        Args:
            node_id: ID of the node to execute
            workflow: Workflow snapshot holding the node and its upstream results

        Returns:
            ExecutionResult with the produced value or the failure message
        """
        try:
            node = self._require_node(node_id, workflow)
            self._check_readiness(node, workflow)
            context = self.build_context(node, workflow)
            value = await self._dispatch(node, context)
        except ReadinessError as e:
            logger.info(f"Node {node_id} is not ready: {e.message}")
            return ExecutionResult(
                node_id=node_id, success=False, error=e.message,
                code=e.error_code, kind=FailureKind.READINESS
            )
        except HandlerError as e:
            log_event(
                logger, logging.WARNING, "handler_failed", f"Node {node_id} failed: {e.message}",
                code=e.error_code,
                execution_time=e.details.get("execution_time")
            )
            return ExecutionResult(
                node_id=node_id, success=False, error=e.message,
                code=e.error_code, kind=FailureKind.HANDLER
            )
        except Exception as e:
            logger.error(f"Unexpected error executing node {node_id}: {str(e)}", exc_info=True)
            return ExecutionResult(
                node_id=node_id, success=False, error=str(e) or "Unknown execution error",
                code=ErrorCode.UNEXPECTED.value, kind=FailureKind.ENGINE
            )

        logger.debug(f"Successfully executed node {node_id}")
        return ExecutionResult(node_id=node_id, success=True, result=value)

    def _require_node(self, node_id: str, workflow: Workflow) -> BaseNode:
        node = workflow.get_node(node_id)
        if node is None:
            raise ReadinessError(
                f"Node {node_id} not found in workflow",
                error_code=ErrorCode.NODE_NOT_FOUND,
                node_id=node_id
            )
        return node

    def _check_readiness(self, node: BaseNode, workflow: Workflow) -> None:
        input_nodes = self.get_execution_dependencies(node.id, workflow)

        for input_node in input_nodes:
            # A prior result is enough, even if the status has since been reset
            if input_node.status != NodeStatus.COMPLETED and input_node.result is None:
                raise ReadinessError(
                    f'Input node "{input_node.display_name()}" has not been executed yet',
                    error_code=ErrorCode.DEPENDENCY_NOT_READY,
                    node_id=node.id
                ).add_details(dependency=input_node.id)

        check_static_configuration(node, len(input_nodes))

    async def _dispatch(self, node: BaseNode, context: ExecutionContext) -> Any:
        node_type = node_type_name(node)

        try:
            handler = self.registry.get_handler(node_type)
        except HandlerRegistryError:
            raise HandlerError(
                f"Unknown node type: {node_type}",
                error_code=ErrorCode.UNKNOWN_NODE_TYPE,
                node_id=node.id,
                node_type=node_type
            )

        started = time.monotonic()
        try:
            value = handler(context)
            if inspect.isawaitable(value):
                value = await self._await_handler(value, node, node_type, started)
        except HandlerError:
            raise
        except Exception as e:
            raise HandlerError(
                str(e) or "Unknown execution error",
                node_id=node.id,
                node_type=node_type,
                execution_time=time.monotonic() - started
            )

        return value

    async def _await_handler(self, pending: Any, node: BaseNode, node_type: str, started: float) -> Any:
        if not self.node_timeout:
            return await pending

        # Only expiry of node_timeout is a timeout; a TimeoutError raised by the
        # handler itself surfaces through task.result() with its own message
        task = asyncio.ensure_future(pending)
        done, _ = await asyncio.wait({task}, timeout=self.node_timeout)
        if task not in done:
            task.cancel()
            elapsed = time.monotonic() - started
            log_event(
                logger, logging.WARNING, "handler_timeout",
                f"Handler for node {node.id} exceeded {self.node_timeout}s, cancelled",
                node_type=node_type,
                timeout=self.node_timeout
            )
            raise HandlerError(
                f"Handler for node {node.id} timed out after {self.node_timeout} seconds",
                error_code=ErrorCode.HANDLER_TIMEOUT,
                node_id=node.id,
                node_type=node_type,
                execution_time=elapsed
            )
        return task.result()
