from __future__ import annotations

import platform
import sys
import time
from collections.abc import Callable
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse

from ..config import ERROR_LOG_HANDLER, MODEL_API_KEY, MODEL_NAME

SERVER_START_TIME = time.time()


def _build_health_payload() -> dict[str, Any]:
    uptime_seconds = max(0, int(time.time() - SERVER_START_TIME))
    return {
        "status": "ok",
        "uptime_seconds": uptime_seconds,
        "model": {"name": MODEL_NAME, "api_key_present": bool(MODEL_API_KEY)},
        "recent_errors": len(ERROR_LOG_HANDLER.records),
        "runtime": {
            "python": sys.version.split()[0],
            "platform": platform.platform(),
        },
    }


def build_healthz_endpoint() -> Callable[[Request], Any]:
    async def _endpoint(_: Request) -> JSONResponse:
        return JSONResponse(_build_health_payload())

    return _endpoint


def register_healthz_route(app: Any) -> None:
    """Register the /healthz route on the ASGI app."""

    app.add_route("/healthz", build_healthz_endpoint(), methods=["GET"])


__all__ = ["register_healthz_route"]
