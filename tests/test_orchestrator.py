import asyncio
import json

import pytest

from conftest import commit_file, git

from commit_manager.approval import ApprovalGate, ToolCallState
from commit_manager.exceptions import ApprovalStateError, StepTimeoutError
from commit_manager.facade import RepositoryOperations
from commit_manager.llm import ModelResponse, ModelToolCall
from commit_manager.models import LocalRepository, RemoteRepository
from commit_manager.orchestrator import (
    OrchestrationLoop,
    extract_repository_from_history,
    tool_message,
)
from commit_manager.tools import default_registry


class FakeModel:
    """Replays scripted responses and records what it was asked."""

    def __init__(self, responses, delay=0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls = []

    async def complete(self, system, messages, tools):
        self.calls.append({"system": system, "messages": [dict(m) for m in messages], "tools": tools})
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            return ModelResponse(text="done")
        return self.responses.pop(0)


def _call(call_id, tool, **args):
    return ModelToolCall(id=call_id, name=tool, arguments=json.dumps(args))


def _loop(model, gate=None, **kwargs):
    return OrchestrationLoop(
        model, default_registry(), gate if gate is not None else ApprovalGate(), RepositoryOperations(), **kwargs
    )


def _tool_results(result):
    return {e["toolCallId"]: e for e in result.events if e["type"] == "tool-result"}


def _other_repo(tmp_path):
    other = tmp_path / "other"
    other.mkdir()
    git(other, "init", "-q")
    git(other, "symbolic-ref", "HEAD", "refs/heads/main")
    git(other, "config", "commit.gpgsign", "false")
    commit_file(other, "notes.txt", "notes\n", "Other start")
    return other


@pytest.mark.asyncio
async def test_plain_answer_completes_in_one_step():
    model = FakeModel([ModelResponse(text="Hello! Which repository?")])
    result = await _loop(model).run_turn([{"role": "user", "content": "hi"}])

    assert result.status == "completed"
    assert result.text == "Hello! Which repository?"
    assert result.steps == 1
    assert result.repository is None
    assert result.messages[-1] == {"role": "assistant", "content": "Hello! Which repository?"}
    assert [e["type"] for e in result.events] == ["text", "finish"]
    assert len(model.calls[0]["tools"]) == len(default_registry())


@pytest.mark.asyncio
async def test_read_tool_result_is_fed_back_to_the_model(git_repo):
    model = FakeModel(
        [
            ModelResponse(tool_calls=(_call("c1", "getCommitHistory", maxCount=2),)),
            ModelResponse(text="Two commits shown."),
        ]
    )
    result = await _loop(model).run_turn(
        [{"role": "user", "content": "recent commits?"}], repository=LocalRepository(str(git_repo))
    )

    assert result.status == "completed"
    assert result.steps == 2
    tool_msg = model.calls[1]["messages"][-1]
    assert tool_msg["role"] == "tool"
    assert tool_msg["tool_call_id"] == "c1"
    payload = json.loads(tool_msg["content"])
    assert [c["message"] for c in payload["commits"]] == ["Update readme", "Add app"]
    assert str(git_repo) in model.calls[0]["system"]


@pytest.mark.asyncio
async def test_step_limit_is_reported(git_repo):
    model = FakeModel(
        [ModelResponse(tool_calls=(_call(f"c{i}", "getRepoOverview"),)) for i in range(5)]
    )
    result = await _loop(model, max_steps=2).run_turn(
        [{"role": "user", "content": "loop"}], repository=LocalRepository(str(git_repo))
    )

    assert result.status == "step_limit_reached"
    assert result.steps == 2
    assert {"type": "step-limit", "maxSteps": 2} in result.events
    assert len(model.calls) == 2


@pytest.mark.asyncio
async def test_slow_step_raises_timeout():
    model = FakeModel([ModelResponse(text="late")], delay=1.0)
    with pytest.raises(StepTimeoutError):
        await _loop(model, step_timeout=0.05).run_turn([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_mutating_call_suspends_then_resumes(git_repo):
    gate = ApprovalGate()
    ref = LocalRepository(str(git_repo))
    first = await _loop(
        FakeModel([ModelResponse(text="Creating it.", tool_calls=(_call("call_1", "createBranch", name="topic"),))]),
        gate,
    ).run_turn([{"role": "user", "content": "create branch topic"}], repository=ref)

    assert first.status == "awaiting_approval"
    assert [p["id"] for p in first.pending_approvals] == ["call_1"]
    assert any(e["type"] == "approval-requested" and e["id"] == "call_1" for e in first.events)
    assert first.messages[-1]["role"] == "assistant"
    assert git(git_repo, "branch", "--list", "topic") == ""

    # Resending the history without a decision keeps waiting.
    idle = FakeModel([])
    again = await _loop(idle, gate).run_turn(first.messages, repository=ref)
    assert again.status == "awaiting_approval"
    assert idle.calls == []

    model = FakeModel([ModelResponse(text="Branch topic created.")])
    second = await _loop(model, gate).run_turn(
        first.messages, repository=ref, approval_responses={"call_1": True}
    )

    assert second.status == "completed"
    assert "topic" in git(git_repo, "branch", "--list", "topic")
    answered = model.calls[0]["messages"][-1]
    assert answered["tool_call_id"] == "call_1"
    assert json.loads(answered["content"])["success"] is True
    assert _tool_results(second)["call_1"]["state"] == "output-available"

    with pytest.raises(ApprovalStateError):
        await _loop(FakeModel([]), gate).run_turn(
            second.messages, repository=ref, approval_responses={"call_1": True}
        )


@pytest.mark.asyncio
async def test_denied_call_is_reported_to_the_model(git_repo):
    gate = ApprovalGate()
    ref = LocalRepository(str(git_repo))
    first = await _loop(
        FakeModel([ModelResponse(tool_calls=(_call("del", "deleteBranch", name="feature"),))]), gate
    ).run_turn([{"role": "user", "content": "delete feature"}], repository=ref)

    model = FakeModel([ModelResponse(text="Okay, kept it.")])
    second = await _loop(model, gate).run_turn(
        first.messages, repository=ref, approval_responses={"del": False}
    )

    assert second.status == "completed"
    assert json.loads(model.calls[0]["messages"][-1]["content"])["denied"] is True
    assert "feature" in git(git_repo, "branch", "--list", "feature")


@pytest.mark.asyncio
async def test_reads_in_a_mixed_step_run_before_suspending(git_repo):
    gate = ApprovalGate()
    result = await _loop(
        FakeModel(
            [
                ModelResponse(
                    tool_calls=(
                        _call("read", "listBranches"),
                        _call("write", "createBranch", name="topic"),
                    )
                )
            ]
        ),
        gate,
    ).run_turn([{"role": "user", "content": "branch off"}], repository=LocalRepository(str(git_repo)))

    assert result.status == "awaiting_approval"
    answered = [m["tool_call_id"] for m in result.messages if m["role"] == "tool"]
    assert answered == ["read"]
    assert [r.id for r in gate.pending()] == ["write"]


@pytest.mark.asyncio
async def test_select_repository_applies_to_later_calls_in_the_same_step(git_repo, tmp_path):
    other = _other_repo(tmp_path)
    model = FakeModel(
        [
            ModelResponse(
                tool_calls=(
                    _call("sel", "selectRepository", kind="local", path=str(other)),
                    _call("ov", "getRepoOverview"),
                )
            ),
            ModelResponse(text="Switched."),
        ]
    )
    result = await _loop(model).run_turn(
        [{"role": "user", "content": "switch"}], repository=LocalRepository(str(git_repo))
    )

    assert result.status == "completed"
    assert _tool_results(result)["ov"]["output"]["headMessage"] == "Other start"
    assert result.repository == LocalRepository(str(other))
    assert str(other) in model.calls[1]["system"]


@pytest.mark.asyncio
async def test_invalid_arguments_come_back_as_tool_errors(git_repo):
    gate = ApprovalGate()
    model = FakeModel(
        [
            ModelResponse(tool_calls=(ModelToolCall(id="bad", name="cherryPick", arguments="{oops"),)),
            ModelResponse(text="Sorry."),
        ]
    )
    result = await _loop(model, gate).run_turn(
        [{"role": "user", "content": "pick"}], repository=LocalRepository(str(git_repo))
    )

    assert result.status == "completed"
    error = json.loads(model.calls[1]["messages"][-1]["content"])["error"]
    assert error["category"] == "validation"
    assert gate.pending() == []


@pytest.mark.asyncio
async def test_unknown_pending_call_is_answered_with_an_error():
    history = [
        {"role": "user", "content": "do it"},
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "ghost", "type": "function", "function": {"name": "createBranch", "arguments": "{}"}}
            ],
        },
    ]
    model = FakeModel([ModelResponse(text="That request expired.")])
    result = await _loop(model).run_turn(history)

    assert result.status == "completed"
    sent = model.calls[0]["messages"][-1]
    assert sent["tool_call_id"] == "ghost"
    assert "error" in json.loads(sent["content"])


def test_history_extraction_prefers_latest_context_writer():
    history = [
        {"role": "user", "content": "Repository: octo/hello\nshow commits"},
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "s1", "type": "function", "function": {"name": "selectRepository", "arguments": "{}"}},
                {"id": "s2", "type": "function", "function": {"name": "selectRepository", "arguments": "{}"}},
            ],
        },
        tool_message("s1", {"selected": True, "repository": {"kind": "local", "path": "/work/app"}}),
        tool_message("s2", {"error": {"message": "not found"}}),
    ]
    assert extract_repository_from_history(history) == LocalRepository("/work/app")
    assert extract_repository_from_history(history[:1]) == RemoteRepository("octo", "hello")
    assert extract_repository_from_history([{"role": "user", "content": "hi"}]) is None


def test_history_extraction_ignores_other_tools():
    history = [
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "r1", "type": "function", "function": {"name": "getRepoOverview", "arguments": "{}"}}
            ],
        },
        tool_message("r1", {"repository": {"kind": "remote", "owner": "x", "repo": "y"}}),
    ]
    assert extract_repository_from_history(history) is None


def _pending_history(call_id, tool="createBranch"):
    return [
        {"role": "user", "content": "do it"},
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": call_id, "type": "function", "function": {"name": tool, "arguments": "{}"}}
            ],
        },
    ]


def _park(gate, call_id, calls, delay=0.0):
    async def _execute():
        calls.append(call_id)
        if delay:
            await asyncio.sleep(delay)
        return {"success": True, "message": "done"}

    return gate.request("createBranch", {"name": "topic"}, _execute, call_id=call_id)


@pytest.mark.asyncio
async def test_unknown_id_in_approvals_runs_nothing_and_can_be_retried():
    gate = ApprovalGate()
    calls = []
    _park(gate, "good", calls)
    history = _pending_history("good")

    with pytest.raises(ApprovalStateError):
        await _loop(FakeModel([]), gate).run_turn(
            history, approval_responses={"good": True, "stale": True}
        )
    assert calls == []
    assert gate.get("good").state is ToolCallState.APPROVAL_REQUESTED

    model = FakeModel([ModelResponse(text="Created.")])
    result = await _loop(model, gate).run_turn(history, approval_responses={"good": True})

    assert result.status == "completed"
    assert calls == ["good"]
    assert _tool_results(result)["good"]["state"] == "output-available"
    assert json.loads(model.calls[0]["messages"][-1]["content"])["success"] is True


@pytest.mark.asyncio
async def test_slow_approved_write_is_bounded_by_the_step_timeout():
    gate = ApprovalGate()
    calls = []
    _park(gate, "slow", calls, delay=1.0)

    model = FakeModel([ModelResponse(text="It timed out.")])
    result = await _loop(model, gate, step_timeout=0.05).run_turn(
        _pending_history("slow"), approval_responses={"slow": True}
    )

    assert result.status == "completed"
    assert calls == ["slow"]
    error = json.loads(model.calls[0]["messages"][-1]["content"])["error"]
    assert error["category"] == "timeout"


@pytest.mark.asyncio
async def test_new_user_message_denies_calls_left_pending():
    gate = ApprovalGate()
    calls = []
    _park(gate, "old", calls)
    history = _pending_history("old") + [{"role": "user", "content": "never mind, list tags"}]

    model = FakeModel([ModelResponse(text="Sure.")])
    result = await _loop(model, gate).run_turn(history)

    assert result.status == "completed"
    assert calls == []
    assert gate.get("old") is None
    sent = model.calls[0]["messages"]
    assert [m["role"] for m in sent] == ["user", "assistant", "tool", "user"]
    assert sent[2]["tool_call_id"] == "old"
    assert json.loads(sent[2]["content"])["denied"] is True
