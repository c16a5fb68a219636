"""Step-bounded model -> tool -> model loop for one chat turn.

A turn starts from the client's message history, optionally applies approval
responses left over from the previous turn, and then alternates model calls
with tool dispatch until the model answers without tool calls, a mutating call
needs a human decision, or the step budget runs out.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .approval import ApprovalGate, ToolCallState
from .config import MAX_STEPS, ORCHESTRATOR_LOGGER, STEP_TIMEOUT_SECONDS
from .exceptions import ApprovalStateError, StepTimeoutError, ValidationError
from .facade import RepositoryOperations
from .llm import LanguageModel, ModelToolCall
from .models import RemoteRepository, RepositoryRef, repository_ref_from_dict
from .prompts import build_system_prompt
from .tools.context import RepositoryContext, ToolContext
from .tools.errors import _structured_tool_error, is_error_payload
from .tools.registry import ToolOutcome, ToolRegistry

EventCallback = Callable[[Dict[str, Any]], None]

CONTEXT_WRITERS = ("selectRepository", "createRepository")
_REPOSITORY_MENTION = re.compile(r"Repository:\s*([^/\s]+)\/(\S+)")

STATUS_COMPLETED = "completed"
STATUS_AWAITING_APPROVAL = "awaiting_approval"
STATUS_STEP_LIMIT = "step_limit_reached"


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------


def tool_message(call_id: str, output: Any) -> Dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "content": json.dumps(output, ensure_ascii=False, default=str),
    }


def _message_text(message: Mapping[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part.get("text") or ""
            for part in content
            if isinstance(part, Mapping) and part.get("type") == "text"
        )
    return ""


def _decode_tool_content(content: Any) -> Any:
    if isinstance(content, str):
        try:
            return json.loads(content)
        except ValueError:
            return None
    return content


def extract_repository_from_history(messages: Sequence[Mapping[str, Any]]) -> Optional[RepositoryRef]:
    """Recover the repository a conversation was last working on.

    Most recent first: a successful ``selectRepository``/``createRepository``
    tool result, or a ``Repository: owner/repo`` mention in a user message.
    """

    call_names: Dict[str, str] = {}
    for message in messages:
        if message.get("role") == "assistant":
            for call in message.get("tool_calls") or []:
                fn = call.get("function") or {}
                if call.get("id") and fn.get("name"):
                    call_names[call["id"]] = fn["name"]

    for message in reversed(messages):
        role = message.get("role")
        if role == "tool":
            if call_names.get(message.get("tool_call_id") or "") not in CONTEXT_WRITERS:
                continue
            output = _decode_tool_content(message.get("content"))
            if not isinstance(output, dict) or is_error_payload(output):
                continue
            try:
                ref = repository_ref_from_dict(output.get("repository"))
            except ValidationError:
                continue
            if ref is not None:
                return ref
        elif role == "user":
            match = _REPOSITORY_MENTION.search(_message_text(message))
            if match:
                return RemoteRepository(owner=match.group(1), repo=match.group(2))
    return None


def _answer_position(messages: Sequence[Mapping[str, Any]]) -> int:
    """Index just past the last assistant message and the tool results after it."""

    for index in range(len(messages) - 1, -1, -1):
        if messages[index].get("role") == "assistant":
            position = index + 1
            while position < len(messages) and messages[position].get("role") == "tool":
                position += 1
            return position
    return len(messages)


def _superseded(messages: Sequence[Mapping[str, Any]]) -> bool:
    """True when the user wrote again after the last assistant message."""

    position = _answer_position(messages)
    return any(m.get("role") == "user" for m in messages[position:])


def _unanswered_call_ids(messages: Sequence[Mapping[str, Any]]) -> List[str]:
    """Tool call ids of the last assistant message that have no tool result yet."""

    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.get("role") != "assistant":
            continue
        calls = [c.get("id") for c in message.get("tool_calls") or [] if c.get("id")]
        if not calls:
            return []
        answered = {
            m.get("tool_call_id") for m in messages[index + 1 :] if m.get("role") == "tool"
        }
        return [c for c in calls if c not in answered]
    return []


# ---------------------------------------------------------------------------
# Turn result
# ---------------------------------------------------------------------------


@dataclass
class TurnResult:
    status: str
    text: str = ""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    pending_approvals: List[Dict[str, Any]] = field(default_factory=list)
    steps: int = 0
    repository: Optional[RepositoryRef] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "text": self.text,
            "messages": self.messages,
            "events": self.events,
            "pendingApprovals": self.pending_approvals,
            "steps": self.steps,
            "repository": self.repository.to_dict() if self.repository is not None else None,
        }


@dataclass
class _Turn:
    messages: List[Dict[str, Any]]
    context: ToolContext
    on_event: Optional[EventCallback] = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    text: str = ""

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)
        if self.on_event is not None:
            self.on_event(event)


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class OrchestrationLoop:
    def __init__(
        self,
        model: LanguageModel,
        registry: ToolRegistry,
        gate: ApprovalGate,
        operations: RepositoryOperations,
        *,
        max_steps: int = MAX_STEPS,
        step_timeout: float = STEP_TIMEOUT_SECONDS,
        requester: Optional[str] = None,
    ) -> None:
        self.model = model
        self.registry = registry
        self.gate = gate
        self.operations = operations
        self.max_steps = max(1, int(max_steps))
        self.step_timeout = float(step_timeout)
        self.requester = requester

    async def run_turn(
        self,
        messages: Sequence[Mapping[str, Any]],
        repository: Optional[RepositoryRef] = None,
        approval_responses: Optional[Mapping[str, bool]] = None,
        on_event: Optional[EventCallback] = None,
    ) -> TurnResult:
        history = [dict(m) for m in messages]
        ref = repository if repository is not None else extract_repository_from_history(history)
        turn = _Turn(
            messages=history,
            context=ToolContext(
                repository=RepositoryContext(ref),
                operations=self.operations,
                gate=self.gate,
                requester=self.requester,
            ),
            on_event=on_event,
        )
        started = time.perf_counter()

        if approval_responses:
            await self._apply_approvals(turn, approval_responses)

        waiting = await self._resolve_unanswered(turn)
        if waiting:
            return self._finish(turn, STATUS_AWAITING_APPROVAL, 0, started, pending=waiting)

        steps = 0
        while steps < self.max_steps:
            steps += 1
            try:
                status, pending = await asyncio.wait_for(
                    self._step(turn, steps), timeout=self.step_timeout
                )
            except asyncio.TimeoutError as exc:
                ORCHESTRATOR_LOGGER.warning(
                    "[turn] step %d exceeded %.1fs", steps, self.step_timeout
                )
                raise StepTimeoutError(
                    f"Step {steps} exceeded the {self.step_timeout:g}s time limit"
                ) from exc

            if status == STATUS_COMPLETED:
                return self._finish(turn, STATUS_COMPLETED, steps, started)
            if status == STATUS_AWAITING_APPROVAL:
                return self._finish(turn, STATUS_AWAITING_APPROVAL, steps, started, pending=pending)

        turn.emit({"type": "step-limit", "maxSteps": self.max_steps})
        return self._finish(turn, STATUS_STEP_LIMIT, steps, started)

    # ------------------------------------------------------------------

    def _finish(
        self,
        turn: _Turn,
        status: str,
        steps: int,
        started: float,
        *,
        pending: Optional[List[Dict[str, Any]]] = None,
    ) -> TurnResult:
        turn.emit({"type": "finish", "status": status, "steps": steps})
        ref = turn.context.repository.snapshot()
        ORCHESTRATOR_LOGGER.info(
            "[turn] %s after %d step(s) in %dms%s",
            status,
            steps,
            int((time.perf_counter() - started) * 1000),
            f" ({ref.label})" if ref is not None else "",
            extra={"turn_status": status, "steps": steps},
        )
        return TurnResult(
            status=status,
            text=turn.text,
            messages=turn.messages,
            events=turn.events,
            pending_approvals=pending or [],
            steps=steps,
            repository=ref,
        )

    async def _apply_approvals(self, turn: _Turn, responses: Mapping[str, bool]) -> None:
        # Every id must be answerable before any approved write runs.
        for call_id in responses:
            self.gate.check(call_id, self.requester)

        for call_id, approved in responses.items():
            try:
                req = await self.gate.respond(
                    call_id,
                    bool(approved),
                    owner=self.requester,
                    timeout=self.step_timeout,
                )
            except ApprovalStateError as exc:
                # Answered by a concurrent request after the check above.
                self._answer(
                    turn,
                    call_id,
                    "",
                    ToolCallState.OUTPUT_ERROR,
                    _structured_tool_error(exc, context="approval", call_id=call_id),
                )
                continue

            output = req.output or {}
            self._answer(turn, req.id, req.tool_name, req.state, output)
            descriptor = self.registry.get(req.tool_name)
            if (
                descriptor is not None
                and descriptor.writes_context
                and req.state is ToolCallState.OUTPUT_AVAILABLE
                and not is_error_payload(output)
            ):
                self._adopt_repository(turn, output)

    def _answer(
        self,
        turn: _Turn,
        call_id: str,
        tool_name: str,
        state: ToolCallState,
        output: Mapping[str, Any],
    ) -> None:
        """Record a tool result right after the assistant message that asked for it."""

        turn.messages.insert(_answer_position(turn.messages), tool_message(call_id, output))
        turn.emit(
            {
                "type": "tool-result",
                "toolCallId": call_id,
                "toolName": tool_name,
                "state": state.value,
                "output": output,
            }
        )

    def _adopt_repository(self, turn: _Turn, output: Mapping[str, Any]) -> None:
        try:
            ref = repository_ref_from_dict(output.get("repository"))
        except ValidationError:
            return
        if ref is not None:
            turn.context.repository.replace(ref)
            ORCHESTRATOR_LOGGER.chat("[turn] repository -> %s", ref.label)

    async def _resolve_unanswered(self, turn: _Turn) -> List[Dict[str, Any]]:
        """Pending approvals that still block the last assistant message.

        A new user message supersedes the calls it did not answer: they are
        denied so the conversation can move on.
        """

        superseded = _superseded(turn.messages)
        waiting: List[Dict[str, Any]] = []
        for call_id in _unanswered_call_ids(turn.messages):
            req = self.gate.get(call_id)
            if (
                req is not None
                and req.owner == self.requester
                and req.state is ToolCallState.APPROVAL_REQUESTED
            ):
                if not superseded:
                    waiting.append(req.event())
                    continue
                req = await self.gate.respond(call_id, False, owner=self.requester)
                self._answer(turn, call_id, req.tool_name, req.state, req.output or {})
                continue
            # A call the gate no longer knows can never resolve; answer it so
            # the history stays well formed for the model.
            output = _structured_tool_error(
                ApprovalStateError(f"No pending approval for tool call {call_id!r}"),
                context="approval",
                call_id=call_id,
            )
            turn.messages.insert(_answer_position(turn.messages), tool_message(call_id, output))
        return waiting

    async def _step(self, turn: _Turn, step: int) -> Tuple[str, List[Dict[str, Any]]]:
        system = build_system_prompt(turn.context.repository.snapshot())
        response = await self.model.complete(system, turn.messages, self.registry.specs())
        turn.messages.append(response.assistant_message())

        if response.text:
            turn.text = response.text
            turn.emit({"type": "text", "text": response.text})

        if not response.tool_calls:
            return STATUS_COMPLETED, []

        ORCHESTRATOR_LOGGER.chat(
            "[turn] step %d: %s",
            step,
            ", ".join(c.name for c in response.tool_calls),
            extra={"step": step},
        )
        for call in response.tool_calls:
            turn.emit(
                {
                    "type": "tool-call",
                    "toolCallId": call.id,
                    "toolName": call.name,
                    "input": _decode_tool_content(call.arguments),
                }
            )

        outcomes = await self._dispatch(response.tool_calls, turn.context)

        pending: List[Dict[str, Any]] = []
        for outcome in outcomes:
            if outcome.pending:
                pending.append(outcome.output)
                turn.emit({"type": "approval-requested", **outcome.output})
                continue
            turn.messages.append(tool_message(outcome.call_id, outcome.output))
            turn.emit(
                {
                    "type": "tool-result",
                    "toolCallId": outcome.call_id,
                    "toolName": outcome.tool_name,
                    "state": outcome.state.value,
                    "output": outcome.output,
                }
            )

        if pending:
            return STATUS_AWAITING_APPROVAL, pending
        return "continue", []

    async def _dispatch(self, calls: Sequence[ModelToolCall], ctx: ToolContext) -> List[ToolOutcome]:
        """Run one step's tool calls, in order where it matters.

        Calls that neither write the context nor need approval run
        concurrently in runs; anything else runs alone so later calls see its
        effect on the context.
        """

        results: List[Optional[ToolOutcome]] = [None] * len(calls)
        batch: List[int] = []

        async def _flush() -> None:
            if not batch:
                return
            outcomes = await asyncio.gather(
                *(
                    self.registry.invoke(calls[i].name, calls[i].arguments, ctx, call_id=calls[i].id)
                    for i in batch
                )
            )
            for i, outcome in zip(batch, outcomes):
                results[i] = outcome
            batch.clear()

        for index, call in enumerate(calls):
            descriptor = self.registry.get(call.name)
            if descriptor is not None and (descriptor.writes_context or descriptor.mutating):
                await _flush()
                results[index] = await self.registry.invoke(
                    call.name, call.arguments, ctx, call_id=call.id
                )
            else:
                batch.append(index)
        await _flush()

        return [r for r in results if r is not None]


__all__ = [
    "OrchestrationLoop",
    "TurnResult",
    "extract_repository_from_history",
    "tool_message",
]
