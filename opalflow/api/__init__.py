"""HTTP and WebSocket surface of the workflow engine."""

from .endpoints import router

__all__ = ["router"]
