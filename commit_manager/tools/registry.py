"""Tool descriptors, the registry, and the single invocation boundary.

Every tool call from the model goes through ``ToolRegistry.invoke``:

- arguments are decoded and validated against the tool's JSON schema
  (Draft 2020-12) before anything runs; defaults are filled in afterwards;
- tools that need a repository fail fast with a ``no_repository`` error when
  the turn has none selected;
- mutating tools are handed to the approval gate instead of running;
- any exception from an executor becomes a structured error payload.

Each call logs one ``[tool]`` line per phase with the full structured event
attached as a compact JSON string under ``tool_json``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import jsonschema

from ..approval import ToolCallState
from ..config import DETAILED_LEVEL, TOOLS_LOGGER
from ..exceptions import ContextError, ValidationError
from .context import ToolContext
from .errors import _structured_tool_error, is_error_payload

ToolExecutor = Callable[[Dict[str, Any], ToolContext], Awaitable[Dict[str, Any]]]
DestructivePredicate = Union[bool, Callable[[Mapping[str, Any]], bool]]


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def _schema_hash(schema: Mapping[str, Any]) -> str:
    raw = json.dumps(schema, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def _log_tool_event(payload: Mapping[str, Any]) -> None:
    """Emit one readable console line and attach the payload as JSON."""

    try:
        safe = {k: _jsonable(v) for k, v in payload.items()}
        event = safe.get("event", "tool")
        status = safe.get("status", "")
        tool = safe.get("tool_name", "")
        call_id = safe.get("call_id", "")
        dur = safe.get("duration_ms")
        dur_s = f" {int(dur)}ms" if isinstance(dur, (int, float)) else ""

        msg = f"[tool] {tool} {status}{dur_s} ({event})"
        tool_json = json.dumps(safe, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
        extra = {"event": "tool_json", "tool_json": tool_json, "tool_name": tool, "call_id": call_id}

        if TOOLS_LOGGER.isEnabledFor(DETAILED_LEVEL) and status != "error":
            TOOLS_LOGGER.detailed(msg, extra=extra)
        else:
            TOOLS_LOGGER.info(msg, extra=extra)
    except Exception:
        # Never allow logging to break tool execution.
        return


def _apply_defaults(schema: Mapping[str, Any], args: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(args)
    for key, prop in (schema.get("properties") or {}).items():
        if key not in out and isinstance(prop, Mapping) and "default" in prop:
            out[key] = copy.deepcopy(prop["default"])
    return out


def _decode_arguments(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValidationError(f"Tool arguments are not valid JSON: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ValidationError("Tool arguments must be a JSON object")
    return dict(raw)


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: Mapping[str, Any]
    execute: ToolExecutor = field(repr=False, compare=False)
    mutating: bool = False
    writes_context: bool = False
    requires_repository: bool = True
    destructive: DestructivePredicate = field(default=False, compare=False)

    @property
    def schema_hash(self) -> str:
        return _schema_hash(self.input_schema)

    def is_destructive(self, args: Mapping[str, Any]) -> bool:
        if callable(self.destructive):
            return bool(self.destructive(args))
        return bool(self.destructive)

    def spec(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": copy.deepcopy(dict(self.input_schema)),
        }

    def catalog_entry(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": copy.deepcopy(dict(self.input_schema)),
            "mutating": self.mutating,
            "writesContext": self.writes_context,
            "requiresRepository": self.requires_repository,
            "schemaHash": self.schema_hash,
        }


@dataclass
class ToolOutcome:
    """What one ``invoke`` produced for the model transport."""

    call_id: str
    tool_name: str
    state: ToolCallState
    output: Dict[str, Any]
    input: Dict[str, Any] = field(default_factory=dict)

    @property
    def pending(self) -> bool:
        return self.state is ToolCallState.APPROVAL_REQUESTED

    @property
    def failed(self) -> bool:
        return self.state is ToolCallState.OUTPUT_ERROR


class ToolRegistry:
    """Ordered catalog of tools."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self._validators: Dict[str, jsonschema.protocols.Validator] = {}

    def register(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        if descriptor.name in self._tools:
            raise ValueError(f"Tool {descriptor.name!r} is already registered")
        jsonschema.Draft202012Validator.check_schema(descriptor.input_schema)
        self._tools[descriptor.name] = descriptor
        self._validators[descriptor.name] = jsonschema.Draft202012Validator(descriptor.input_schema)
        return descriptor

    def tool(
        self,
        name: str,
        description: str,
        *,
        input_schema: Optional[Mapping[str, Any]] = None,
        mutating: bool = False,
        writes_context: bool = False,
        requires_repository: bool = True,
        destructive: DestructivePredicate = False,
    ) -> Callable[[ToolExecutor], ToolExecutor]:
        """Register an async ``(args, ctx) -> dict`` function as a tool."""

        schema = dict(input_schema or {"type": "object", "properties": {}})
        schema.setdefault("additionalProperties", False)

        def decorator(func: ToolExecutor) -> ToolExecutor:
            descriptor = self.register(
                ToolDescriptor(
                    name=name,
                    description=description,
                    input_schema=schema,
                    execute=func,
                    mutating=mutating,
                    writes_context=writes_context,
                    requires_repository=requires_repository,
                    destructive=destructive,
                )
            )
            func.__tool_descriptor__ = descriptor  # type: ignore[attr-defined]
            return func

        return decorator

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self) -> List[Dict[str, Any]]:
        return [d.spec() for d in self._tools.values()]

    def catalog(self) -> List[Dict[str, Any]]:
        return [d.catalog_entry() for d in self._tools.values()]

    def validate(self, name: str, args: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate ``args`` and return them with schema defaults applied."""

        descriptor = self._tools[name]
        error = jsonschema.exceptions.best_match(self._validators[name].iter_errors(args))
        if error is not None:
            raise error
        return _apply_defaults(descriptor.input_schema, dict(args))

    async def invoke(
        self,
        name: str,
        args: Any,
        ctx: ToolContext,
        *,
        call_id: Optional[str] = None,
    ) -> ToolOutcome:
        call_id = call_id or f"call_{uuid.uuid4().hex}"
        descriptor = self._tools.get(name)

        def _error(exc: BaseException, phase: str, payload_args: Dict[str, Any]) -> ToolOutcome:
            payload = _structured_tool_error(exc, context=name, call_id=call_id)
            _log_tool_event(
                {
                    "event": "tool_call.error",
                    "status": "error",
                    "phase": phase,
                    "tool_name": name,
                    "call_id": call_id,
                    "error": payload["error"],
                }
            )
            return ToolOutcome(
                call_id=call_id,
                tool_name=name,
                state=ToolCallState.OUTPUT_ERROR,
                output=payload,
                input=payload_args,
            )

        if descriptor is None:
            return _error(ValidationError(f"Unknown tool {name!r}"), "lookup", {})

        try:
            decoded = _decode_arguments(args)
        except ValidationError as exc:
            return _error(exc, "decode", {})

        try:
            validated = self.validate(name, decoded)
        except jsonschema.ValidationError as exc:
            return _error(exc, "validate", decoded)

        repository = ctx.repository.snapshot()
        if descriptor.requires_repository and repository is None:
            try:
                ctx.repository.require()
            except ContextError as exc:
                return _error(exc, "context", validated)

        if descriptor.mutating:
            return self._request_approval(descriptor, validated, ctx, call_id)

        start = time.perf_counter()
        _log_tool_event(
            {
                "event": "tool_call.start",
                "status": "start",
                "tool_name": name,
                "call_id": call_id,
                "schema_hash": descriptor.schema_hash,
                "arg_keys": sorted(validated)[:32],
                "repository": repository.label if repository is not None else None,
            }
        )
        try:
            result = await descriptor.execute(validated, ctx)
        except Exception as exc:
            return _error(exc, "execute", validated)

        _log_tool_event(
            {
                "event": "tool_call.ok",
                "status": "ok",
                "tool_name": name,
                "call_id": call_id,
                "duration_ms": int((time.perf_counter() - start) * 1000),
                "schema_hash": descriptor.schema_hash,
                "result_type": type(result).__name__,
            }
        )
        return ToolOutcome(
            call_id=call_id,
            tool_name=name,
            state=ToolCallState.OUTPUT_ERROR if is_error_payload(result) else ToolCallState.OUTPUT_AVAILABLE,
            output=result,
            input=validated,
        )

    def _request_approval(
        self,
        descriptor: ToolDescriptor,
        args: Dict[str, Any],
        ctx: ToolContext,
        call_id: str,
    ) -> ToolOutcome:
        if ctx.gate is None:
            return ToolOutcome(
                call_id=call_id,
                tool_name=descriptor.name,
                state=ToolCallState.OUTPUT_ERROR,
                output=_structured_tool_error(
                    RuntimeError("No approval gate is configured; mutating tools are disabled."),
                    context=descriptor.name,
                    call_id=call_id,
                ),
                input=args,
            )

        bound_ctx = ctx.detached()
        bound_args = copy.deepcopy(args)

        async def _execute() -> Dict[str, Any]:
            start = time.perf_counter()
            result = await descriptor.execute(bound_args, bound_ctx)
            _log_tool_event(
                {
                    "event": "tool_call.ok",
                    "status": "ok",
                    "phase": "approved",
                    "tool_name": descriptor.name,
                    "call_id": call_id,
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                    "schema_hash": descriptor.schema_hash,
                }
            )
            return result

        request = ctx.gate.request(
            descriptor.name,
            args,
            _execute,
            call_id=call_id,
            destructive=descriptor.is_destructive(args),
            owner=ctx.requester,
        )
        _log_tool_event(
            {
                "event": "tool_call.approval_requested",
                "status": "pending",
                "tool_name": descriptor.name,
                "call_id": call_id,
                "schema_hash": descriptor.schema_hash,
                "destructive": request.destructive,
            }
        )
        return ToolOutcome(
            call_id=call_id,
            tool_name=descriptor.name,
            state=request.state,
            output=request.event(),
            input=args,
        )


# Shared catalog; tool modules register into it on import.
REGISTRY = ToolRegistry()


__all__ = ["REGISTRY", "ToolDescriptor", "ToolOutcome", "ToolRegistry", "_schema_hash"]
