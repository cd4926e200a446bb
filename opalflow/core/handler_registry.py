"""Registry mapping node types to the handlers that execute them."""

import inspect
from typing import Any, Callable, Dict, List, Optional

from ..models.core import BaseNode, NodeType
from .exceptions import HandlerRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionContext:
    """Inputs assembled for a node from its upstream results."""

    def __init__(self, node: BaseNode, inputs: Dict[str, Any], variables: Dict[str, Any]):
        self.node = node
        self.inputs = inputs
        self.variables = variables

    @property
    def node_id(self) -> str:
        return self.node.id

    def __repr__(self) -> str:
        return f"ExecutionContext(node_id={self.node_id!r}, inputs={list(self.inputs)!r})"


Handler = Callable[[ExecutionContext], Any]


class HandlerRegistry:
    """Registry of per-node-type handlers.

    A handler receives an ExecutionContext and returns the node's result,
    either directly or as an awaitable.
    """

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}
        self._descriptions: Dict[str, str] = {}

    @staticmethod
    def _normalize(node_type) -> str:
        if isinstance(node_type, NodeType):
            return node_type.value
        if not node_type or not str(node_type).strip():
            raise HandlerRegistryError("Node type cannot be empty")
        return str(node_type).strip()

    def register_handler(self, node_type, handler: Handler, description: str = "", replace: bool = False) -> None:
        """Register the handler for a node type.

        Args:
            node_type: Node type tag the handler serves
            handler: Callable taking an ExecutionContext
            description: Optional description of the handler's purpose
            replace: Allow overriding an existing registration

        Raises:
            HandlerRegistryError: If the type is already registered or the handler is invalid
        """
        name = self._normalize(node_type)

        if not callable(handler):
            raise HandlerRegistryError(
                f"Handler for '{name}' must be callable",
                node_type=name,
                operation="register"
            )

        try:
            sig = inspect.signature(handler)
            if len(sig.parameters) == 0:
                raise HandlerRegistryError(
                    f"Handler for '{name}' must accept an execution context",
                    node_type=name,
                    operation="register"
                )
        except (ValueError, TypeError) as e:
            raise HandlerRegistryError(f"Cannot inspect handler signature for '{name}': {e}")

        if name in self._handlers and not replace:
            raise HandlerRegistryError(
                f"Handler for node type '{name}' is already registered",
                node_type=name,
                operation="register"
            )

        self._handlers[name] = handler
        self._descriptions[name] = description.strip() if description else ""
        logger.info(f"Registered handler for node type '{name}'")

    def get_handler(self, node_type) -> Handler:
        """Retrieve the handler for a node type.

        Raises:
            HandlerRegistryError: If no handler is registered
        """
        name = self._normalize(node_type)
        handler = self._handlers.get(name)
        if handler is None:
            raise HandlerRegistryError(
                f"No handler registered for node type '{name}'",
                node_type=name,
                operation="get"
            )
        return handler

    def unregister_handler(self, node_type) -> bool:
        """Remove a handler. Returns False if nothing was registered."""
        name = self._normalize(node_type)
        if name not in self._handlers:
            return False
        del self._handlers[name]
        self._descriptions.pop(name, None)
        logger.info(f"Unregistered handler for node type '{name}'")
        return True

    def handler_exists(self, node_type) -> bool:
        try:
            name = self._normalize(node_type)
        except HandlerRegistryError:
            return False
        return name in self._handlers

    def list_handlers(self) -> Dict[str, str]:
        """Registered node types mapped to their descriptions."""
        return dict(self._descriptions)

    def node_types(self) -> List[str]:
        return list(self._handlers)

    def call_handler(self, node_type, context: ExecutionContext) -> Any:
        """Invoke the handler for `node_type`; the result may be awaitable."""
        return self.get_handler(node_type)(context)


def create_default_registry(generator: Optional[Callable[..., Any]] = None) -> HandlerRegistry:
    """Registry populated with the built-in node handlers.

    Args:
        generator: Optional text generator `(prompt, config)` used by generate nodes
    """
    from .handlers import (
        AddAssetsHandler,
        GenerateHandler,
        OutputHandler,
        UserInputHandler,
    )

    registry = HandlerRegistry()
    registry.register_handler(NodeType.USER_INPUT, UserInputHandler(), "Validates and returns the value typed by the user")
    registry.register_handler(NodeType.GENERATE, GenerateHandler(generator), "Renders the prompt template and calls the generator")
    registry.register_handler(NodeType.OUTPUT, OutputHandler(), "Combines upstream results as text, JSON or a numbered list")
    registry.register_handler(NodeType.ADD_ASSETS, AddAssetsHandler(), "Summarises text and files attached to the node")
    return registry
