"""HTTP entry point for the commit manager assistant.

``uvicorn main:app`` serves:

- ``GET /healthz``
- ``GET /tools`` and ``GET /tools/{name}`` (the tool catalog with schema hashes)
- ``POST /chat`` (one orchestration turn; approvals ride along in the body)
- ``GET /approvals`` (pending approval requests)

The approval store is process-wide so a turn that suspends on one request can
be resumed by the next.
"""

from __future__ import annotations

import os
from typing import Callable, Optional
from urllib.parse import urlparse

from starlette.applications import Starlette
from starlette.middleware.trustedhost import TrustedHostMiddleware

from commit_manager.approval import ApprovalGate
from commit_manager.config import BASE_LOGGER, configure_logging
from commit_manager.facade import RepositoryOperations
from commit_manager.http_routes import (
    register_chat_routes,
    register_healthz_route,
    register_tool_registry_routes,
)
from commit_manager.llm import LanguageModel, OpenAICompatibleModel
from commit_manager.tools import default_registry
from commit_manager.tools.registry import ToolRegistry

configure_logging()

APPROVAL_GATE = ApprovalGate()


def _extract_hostname(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if "://" in cleaned:
        parsed = urlparse(cleaned)
        host = parsed.hostname or parsed.netloc
        return host or None
    return cleaned


def _allowed_hosts() -> list[str]:
    allowed_hosts_env = os.getenv("ALLOWED_HOSTS")
    if not allowed_hosts_env:
        return ["*"]
    hosts = [host.strip() for host in allowed_hosts_env.split(",") if host.strip()]
    external = _extract_hostname(os.getenv("EXTERNAL_URL"))
    if external and external not in hosts:
        hosts.append(external)
    return hosts or ["*"]


def build_app(
    *,
    model_factory: Optional[Callable[[], LanguageModel]] = None,
    gate: Optional[ApprovalGate] = None,
    registry: Optional[ToolRegistry] = None,
    operations_factory: Callable[[Optional[str]], RepositoryOperations] = RepositoryOperations,
) -> Starlette:
    registry = registry or default_registry()
    gate = gate or APPROVAL_GATE

    app = Starlette()
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=_allowed_hosts())

    register_healthz_route(app)
    register_tool_registry_routes(app, registry)
    register_chat_routes(
        app,
        registry=registry,
        gate=gate,
        model_factory=model_factory or OpenAICompatibleModel,
        operations_factory=operations_factory,
    )

    BASE_LOGGER.info("Commit manager app ready with %d tools", len(registry))
    return app


app = build_app()
