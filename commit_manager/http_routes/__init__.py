"""Starlette route registration helpers."""

from .chat import register_chat_routes
from .healthz import register_healthz_route
from .tool_registry import register_tool_registry_routes

__all__ = [
    "register_chat_routes",
    "register_healthz_route",
    "register_tool_registry_routes",
]
