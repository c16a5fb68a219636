"""Approval gate for mutating tool calls.

A mutating call is parked as an ``ApprovalRequest`` holding an immutable copy
of its input and an executor bound to the repository it was requested
against. Nothing runs until a human responds; the executor runs at most once.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .config import APPROVAL_TTL_SECONDS, MAX_PENDING_APPROVALS, TOOLS_LOGGER
from .exceptions import ApprovalOwnershipError, ApprovalStateError, StepTimeoutError
from .tools.errors import _structured_tool_error, denial_payload

Executor = Callable[[], Awaitable[Dict[str, Any]]]

_ANY_OWNER = object()


class ToolCallState(str, Enum):
    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    APPROVAL_REQUESTED = "approval-requested"
    APPROVAL_RESPONDED = "approval-responded"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_DENIED = "output-denied"
    OUTPUT_ERROR = "output-error"


_TRANSITIONS: Dict[ToolCallState, frozenset] = {
    ToolCallState.INPUT_STREAMING: frozenset({ToolCallState.INPUT_AVAILABLE}),
    ToolCallState.INPUT_AVAILABLE: frozenset(
        {
            ToolCallState.APPROVAL_REQUESTED,
            ToolCallState.OUTPUT_AVAILABLE,
            ToolCallState.OUTPUT_ERROR,
        }
    ),
    ToolCallState.APPROVAL_REQUESTED: frozenset({ToolCallState.APPROVAL_RESPONDED}),
    ToolCallState.APPROVAL_RESPONDED: frozenset(
        {ToolCallState.OUTPUT_AVAILABLE, ToolCallState.OUTPUT_DENIED}
    ),
    ToolCallState.OUTPUT_AVAILABLE: frozenset(),
    ToolCallState.OUTPUT_DENIED: frozenset(),
    ToolCallState.OUTPUT_ERROR: frozenset(),
}


def can_transition(current: ToolCallState, target: ToolCallState) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def check_transition(current: ToolCallState, target: ToolCallState) -> None:
    if not can_transition(current, target):
        raise ApprovalStateError(
            f"Illegal tool call transition {current.value} -> {target.value}"
        )


def credential_fingerprint(token: Optional[str]) -> Optional[str]:
    """Stable, non-reversible tag for the credential behind a request."""

    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


@dataclass
class ApprovalRequest:
    id: str
    tool_name: str
    input: Mapping[str, Any]
    state: ToolCallState = ToolCallState.INPUT_AVAILABLE
    destructive: bool = False
    created_at: float = field(default_factory=time.time)
    approved: Optional[bool] = None
    output: Optional[Dict[str, Any]] = None
    owner: Optional[str] = field(default=None, repr=False)
    _execute: Optional[Executor] = field(default=None, repr=False)

    def transition(self, target: ToolCallState) -> None:
        check_transition(self.state, target)
        self.state = target

    def event(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "toolName": self.tool_name,
            "input": copy.deepcopy(dict(self.input)),
            "state": self.state.value,
            "destructive": self.destructive,
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.event()
        out["approved"] = self.approved
        if self.output is not None:
            out["output"] = self.output
        return out


class ApprovalGate:
    """In-memory store of approval requests keyed by tool call id.

    Only unanswered requests are kept. A request leaves the store as soon as
    its response has been handled, and parked requests nobody answers are
    dropped after ``ttl_seconds`` or once more than ``max_pending`` pile up.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = APPROVAL_TTL_SECONDS,
        max_pending: int = MAX_PENDING_APPROVALS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._requests: Dict[str, ApprovalRequest] = {}
        self.ttl_seconds = float(ttl_seconds)
        self.max_pending = max(1, int(max_pending))
        self._clock = clock

    def _prune(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        for request_id, req in list(self._requests.items()):
            if req.state is ToolCallState.APPROVAL_REQUESTED and req.created_at < cutoff:
                self._drop(request_id, "expired")

        parked = [r for r in self._requests.values() if r.state is ToolCallState.APPROVAL_REQUESTED]
        overflow = len(parked) - self.max_pending + 1
        for req in sorted(parked, key=lambda r: r.created_at)[: max(0, overflow)]:
            self._drop(req.id, "evicted")

    def _drop(self, request_id: str, reason: str) -> None:
        req = self._requests.pop(request_id, None)
        if req is None:
            return
        req._execute = None
        TOOLS_LOGGER.info(
            "[approval] %s %s (%s)",
            reason,
            req.tool_name,
            request_id,
            extra={"tool_name": req.tool_name, "call_id": request_id},
        )

    def request(
        self,
        tool_name: str,
        input: Mapping[str, Any],
        execute: Executor,
        call_id: Optional[str] = None,
        destructive: bool = False,
        owner: Optional[str] = None,
    ) -> ApprovalRequest:
        self._prune()
        request_id = call_id or f"call_{uuid.uuid4().hex}"
        if request_id in self._requests:
            raise ApprovalStateError(f"Approval request {request_id!r} already exists")

        req = ApprovalRequest(
            id=request_id,
            tool_name=tool_name,
            input=copy.deepcopy(dict(input)),
            destructive=bool(destructive),
            created_at=self._clock(),
            owner=owner,
            _execute=execute,
        )
        req.transition(ToolCallState.APPROVAL_REQUESTED)
        self._requests[request_id] = req

        TOOLS_LOGGER.info(
            "[approval] requested %s (%s)%s",
            tool_name,
            request_id,
            " destructive" if destructive else "",
            extra={"tool_name": tool_name, "call_id": request_id},
        )
        return req

    def check(self, request_id: str, owner: Optional[str] = None) -> ApprovalRequest:
        """Return the request if ``owner`` may answer it now, else raise."""

        self._prune()
        req = self._requests.get(request_id)
        if req is None:
            raise ApprovalStateError(f"Unknown approval request {request_id!r}")
        if req.owner != owner:
            raise ApprovalOwnershipError(
                f"Approval request {request_id!r} belongs to another requester"
            )
        check_transition(req.state, ToolCallState.APPROVAL_RESPONDED)
        return req

    async def respond(
        self,
        request_id: str,
        approved: bool,
        *,
        owner: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ApprovalRequest:
        req = self.check(request_id, owner)

        # State changes before any await so a concurrent second response fails.
        req.transition(ToolCallState.APPROVAL_RESPONDED)
        req.approved = bool(approved)
        execute, req._execute = req._execute, None

        TOOLS_LOGGER.info(
            "[approval] %s %s (%s)",
            "approved" if approved else "denied",
            req.tool_name,
            request_id,
            extra={"tool_name": req.tool_name, "call_id": request_id},
        )

        try:
            if not approved or execute is None:
                req.output = denial_payload(req.tool_name)
                req.transition(ToolCallState.OUTPUT_DENIED)
                return req

            try:
                if timeout is not None:
                    req.output = await asyncio.wait_for(execute(), timeout=timeout)
                else:
                    req.output = await execute()
            except asyncio.TimeoutError:
                req.output = _structured_tool_error(
                    StepTimeoutError(
                        f"{req.tool_name} did not finish within {timeout:g}s; "
                        "check the repository before retrying"
                    ),
                    context=req.tool_name,
                    call_id=request_id,
                )
            except Exception as exc:
                req.output = _structured_tool_error(exc, context=req.tool_name, call_id=request_id)
            req.transition(ToolCallState.OUTPUT_AVAILABLE)
            return req
        finally:
            # The caller holds the returned request; the store keeps nothing.
            self._requests.pop(request_id, None)

    def get(self, request_id: str) -> Optional[ApprovalRequest]:
        return self._requests.get(request_id)

    def pending(self, owner: Any = _ANY_OWNER) -> List[ApprovalRequest]:
        self._prune()
        return [
            r
            for r in self._requests.values()
            if r.state is ToolCallState.APPROVAL_REQUESTED
            and (owner is _ANY_OWNER or r.owner == owner)
        ]

    def events(self) -> List[Dict[str, Any]]:
        return [r.event() for r in self._requests.values()]

    def __len__(self) -> int:
        return len(self._requests)


__all__ = [
    "ApprovalGate",
    "ApprovalRequest",
    "ToolCallState",
    "can_transition",
    "check_transition",
    "credential_fingerprint",
]
