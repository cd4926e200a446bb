"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig, get_config
from .core.coordinator import ExecutionCoordinator
from .core.graph_validator import GraphValidator
from .core.handler_registry import HandlerRegistry, create_default_registry
from .core.logging import setup_logging
from .core.monitor import ExecutionMonitor
from .core.node_executor import NodeExecutor
from .api.endpoints import router


def initialize_core_components(
    app: FastAPI,
    config: AppConfig,
    registry: Optional[HandlerRegistry] = None,
    generator: Optional[Callable[..., Any]] = None
) -> None:
    """Build the engine components and attach them to `app.state`."""
    if registry is None:
        registry = create_default_registry(generator)

    executor = NodeExecutor(registry=registry, node_timeout=config.node_timeout)
    validator = GraphValidator(isolated_nodes=config.isolated_nodes.value)
    coordinator = ExecutionCoordinator(executor=executor, validator=validator)

    app.state.config = config
    app.state.registry = registry
    app.state.coordinator = coordinator
    app.state.monitor = ExecutionMonitor(coordinator)


def create_lifespan_handler(config: AppConfig):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")
        logger.info(f"Registered node handlers: {', '.join(app.state.registry.node_types())}")

        yield

        logger.info(f"Shutting down {config.app_name}")
        coordinator: ExecutionCoordinator = app.state.coordinator
        if coordinator.stop():
            logger.warning("Workflow still running at shutdown, stop requested")
        app.state.monitor.close()

    return lifespan


def create_app(
    config: Optional[AppConfig] = None,
    registry: Optional[HandlerRegistry] = None,
    generator: Optional[Callable[..., Any]] = None
) -> FastAPI:
    """
    Create and configure FastAPI application instance.

    Args:
        config: Application configuration, loaded from the environment when omitted
        registry: Handler registry, defaults to the built-in node handlers
        generator: Text generator passed to the built-in generate handler

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = get_config()

    app = FastAPI(
        title=config.app_name,
        description="Validates, orders and executes node-based content workflows",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    initialize_core_components(app, config, registry=registry, generator=generator)

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        state = app.state.coordinator.get_state()
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "execution_status": state.status.value,
            "monitor_connections": app.state.monitor.connection_count,
        }
