from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..tools.registry import ToolRegistry


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _tool_catalog(registry: ToolRegistry, *, include_parameters: bool) -> Dict[str, Any]:
    tools = registry.catalog()
    if not include_parameters:
        tools = [{k: v for k, v in t.items() if k != "inputSchema"} for t in tools]
    return {"tools": tools, "count": len(tools)}


def build_tool_registry_endpoint(registry: ToolRegistry) -> Callable[[Request], Any]:
    async def _endpoint(request: Request) -> Response:
        include_parameters = _parse_bool(request.query_params.get("include_parameters"))
        if include_parameters is None:
            include_parameters = True
        return JSONResponse(_tool_catalog(registry, include_parameters=include_parameters))

    return _endpoint


def build_tool_detail_endpoint(registry: ToolRegistry) -> Callable[[Request], Any]:
    async def _endpoint(request: Request) -> Response:
        tool_name = request.path_params.get("tool_name")
        descriptor = registry.get(tool_name) if tool_name else None
        if descriptor is None:
            return JSONResponse({"error": f"Unknown tool {tool_name!r}."}, status_code=404)
        return JSONResponse(descriptor.catalog_entry())

    return _endpoint


def register_tool_registry_routes(app: Any, registry: ToolRegistry) -> None:
    app.add_route("/tools", build_tool_registry_endpoint(registry), methods=["GET"])
    app.add_route("/tools/{tool_name:str}", build_tool_detail_endpoint(registry), methods=["GET"])


__all__ = ["register_tool_registry_routes"]
