"""POST /chat runs one orchestration turn; GET /approvals lists pending calls.

Approval requests belong to the credential that started the turn. Only the
same bearer token can list or answer them.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..approval import ApprovalGate, credential_fingerprint
from ..config import BASE_LOGGER
from ..exceptions import (
    ApprovalOwnershipError,
    ApprovalStateError,
    ModelAPIError,
    StepTimeoutError,
    ValidationError,
)
from ..facade import RepositoryOperations
from ..llm import LanguageModel
from ..models import repository_ref_from_dict
from ..orchestrator import OrchestrationLoop
from ..tools.errors import _structured_tool_error
from ..tools.registry import ToolRegistry

ModelFactory = Callable[[], LanguageModel]
OperationsFactory = Callable[[Optional[str]], RepositoryOperations]


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def _parse_approvals(raw: Any) -> Dict[str, bool]:
    """Accept ``{"call_1": true}`` or ``[{"id": "call_1", "approved": true}]``."""

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {str(k): bool(v) for k, v in raw.items()}
    if isinstance(raw, list):
        out: Dict[str, bool] = {}
        for entry in raw:
            if not isinstance(entry, Mapping) or not entry.get("id"):
                raise ValidationError("approvals entries need an id", field="approvals")
            out[str(entry["id"])] = bool(entry.get("approved"))
        return out
    raise ValidationError("approvals must be an object or a list", field="approvals")


def _error_response(exc: BaseException, status_code: int) -> JSONResponse:
    return JSONResponse(_structured_tool_error(exc, context="chat"), status_code=status_code)


def build_chat_endpoint(
    *,
    registry: ToolRegistry,
    gate: ApprovalGate,
    model_factory: ModelFactory,
    operations_factory: OperationsFactory,
) -> Callable[[Request], Any]:
    async def _endpoint(request: Request) -> Response:
        try:
            payload = await request.json()
        except ValueError:
            return _error_response(ValidationError("Request body must be JSON"), 400)
        if not isinstance(payload, dict):
            return _error_response(ValidationError("Request body must be a JSON object"), 400)

        messages = payload.get("messages")
        if not isinstance(messages, list) or not all(isinstance(m, dict) for m in messages):
            return _error_response(
                ValidationError("messages must be a list of objects", field="messages"), 400
            )

        try:
            repository = repository_ref_from_dict(payload.get("repository"))
            approvals = _parse_approvals(payload.get("approvals"))
        except ValidationError as exc:
            return _error_response(exc, 400)

        body_token = payload.get("token")
        token = _bearer_token(request) or (body_token if isinstance(body_token, str) else None) or None
        operations = operations_factory(token)
        loop = OrchestrationLoop(
            model_factory(),
            registry,
            gate,
            operations,
            requester=credential_fingerprint(token),
        )
        try:
            result = await loop.run_turn(
                messages, repository=repository, approval_responses=approvals
            )
        except StepTimeoutError as exc:
            return _error_response(exc, 504)
        except ApprovalOwnershipError as exc:
            return _error_response(exc, 403)
        except ApprovalStateError as exc:
            return _error_response(exc, 409)
        except ValidationError as exc:
            return _error_response(exc, 400)
        except ModelAPIError as exc:
            BASE_LOGGER.error("Model call failed: %s", exc)
            return _error_response(exc, 502)
        finally:
            await operations.aclose()

        return JSONResponse(result.to_dict())

    return _endpoint


def build_approvals_endpoint(gate: ApprovalGate) -> Callable[[Request], Any]:
    async def _endpoint(request: Request) -> Response:
        owner = credential_fingerprint(_bearer_token(request))
        pending = [req.event() for req in gate.pending(owner)]
        return JSONResponse({"pending": pending, "count": len(pending)})

    return _endpoint


def register_chat_routes(
    app: Any,
    *,
    registry: ToolRegistry,
    gate: ApprovalGate,
    model_factory: ModelFactory,
    operations_factory: OperationsFactory = RepositoryOperations,
) -> None:
    app.add_route(
        "/chat",
        build_chat_endpoint(
            registry=registry,
            gate=gate,
            model_factory=model_factory,
            operations_factory=operations_factory,
        ),
        methods=["POST"],
    )
    app.add_route("/approvals", build_approvals_endpoint(gate), methods=["GET"])


__all__ = ["register_chat_routes"]
