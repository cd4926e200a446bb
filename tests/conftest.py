"""Pytest configuration and fixtures."""

import pytest

from opalflow.core.coordinator import ExecutionCoordinator
from opalflow.core.graph_validator import GraphValidator
from opalflow.core.handler_registry import create_default_registry
from opalflow.core.logging import clear_logging_context
from opalflow.core.node_executor import NodeExecutor

from .builders import generate, make_workflow, output, user_input


@pytest.fixture(autouse=True)
def reset_logging_context():
    """Keep run context from leaking between tests."""
    yield
    clear_logging_context()


@pytest.fixture
def registry():
    """Handler registry with the built-in node handlers."""
    return create_default_registry()


@pytest.fixture
def executor(registry):
    return NodeExecutor(registry=registry)


@pytest.fixture
def coordinator(executor):
    """Create an ExecutionCoordinator instance for testing."""
    return ExecutionCoordinator(executor=executor, validator=GraphValidator())


@pytest.fixture
def pipeline_workflow():
    """In -> Gen -> Out with a user value of "Ada"."""
    return make_workflow(
        [
            user_input("in", "In", value="Ada"),
            generate("gen", "Gen", "Hello {{In}}"),
            output("out", "Out"),
        ],
        [("in", "gen"), ("gen", "out")],
    )
