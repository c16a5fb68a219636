import asyncio
import json

import pytest
from starlette.testclient import TestClient

from conftest import git

import main
from commit_manager.approval import ApprovalGate
from commit_manager.facade import RepositoryOperations
from commit_manager.llm import ModelResponse, ModelToolCall
from commit_manager.tools import default_registry


class ScriptedModel:
    def __init__(self, responses):
        # Shared across requests so one script can span several turns.
        self.responses = responses

    async def complete(self, system, messages, tools):
        if not self.responses:
            return ModelResponse(text="done")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def _client(responses=(), gate=None, operations_factory=RepositoryOperations):
    script = list(responses)
    app = main.build_app(
        model_factory=lambda: ScriptedModel(script),
        gate=gate if gate is not None else ApprovalGate(),
        operations_factory=operations_factory,
    )
    return TestClient(app)


def test_healthz_reports_status_and_model():
    resp = _client().get("/healthz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert set(payload["model"]) == {"name", "api_key_present"}
    assert payload["uptime_seconds"] >= 0


def test_tool_catalog_lists_all_tools():
    client = _client()
    resp = client.get("/tools")
    assert resp.status_code == 200
    assert resp.json()["count"] == len(default_registry())

    slim = client.get("/tools", params={"include_parameters": "false"}).json()
    assert "inputSchema" not in slim["tools"][0]

    detail = client.get("/tools/reset")
    assert detail.status_code == 200
    assert detail.json()["mutating"] is True
    assert client.get("/tools/nope").status_code == 404


def test_chat_completes_a_turn():
    resp = _client([ModelResponse(text="Hi there.")]).post(
        "/chat", json={"messages": [{"role": "user", "content": "hello"}]}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["text"] == "Hi there."
    assert body["pendingApprovals"] == []
    assert body["repository"] is None


@pytest.mark.parametrize(
    "payload",
    [
        {"messages": "hello"},
        {"messages": ["hello"]},
        {},
        {"messages": [], "repository": {"kind": "local"}},
        {"messages": [], "approvals": "yes"},
    ],
)
def test_chat_rejects_malformed_bodies(payload):
    resp = _client().post("/chat", json=payload)
    assert resp.status_code == 400
    assert resp.json()["error"]["category"] == "validation"


def test_chat_rejects_non_json_body():
    resp = _client().post("/chat", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


def test_unknown_approval_id_is_a_conflict():
    resp = _client().post(
        "/chat",
        json={"messages": [{"role": "user", "content": "go"}], "approvals": {"call_missing": True}},
    )
    assert resp.status_code == 409


def test_step_timeout_maps_to_gateway_timeout():
    resp = _client([asyncio.TimeoutError()]).post(
        "/chat", json={"messages": [{"role": "user", "content": "hi"}]}
    )
    assert resp.status_code == 504
    assert resp.json()["error"]["category"] == "timeout"


def test_bearer_token_reaches_operations():
    seen = []

    def factory(token):
        seen.append(token)
        return RepositoryOperations(token)

    client = _client([ModelResponse(text="ok")], operations_factory=factory)
    client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers={"Authorization": "Bearer gho_secret"},
    )
    assert seen == ["gho_secret"]


def test_approval_round_trip_over_http(git_repo):
    gate = ApprovalGate()
    repository = {"kind": "local", "path": str(git_repo)}
    call = ModelToolCall(id="call_topic", name="createBranch", arguments=json.dumps({"name": "topic"}))
    client = _client(
        [ModelResponse(tool_calls=(call,)), ModelResponse(text="Created topic.")], gate=gate
    )

    first = client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "make topic"}], "repository": repository},
    ).json()
    assert first["status"] == "awaiting_approval"
    assert first["pendingApprovals"][0]["id"] == "call_topic"

    listed = client.get("/approvals").json()
    assert listed["count"] == 1
    assert listed["pending"][0]["toolName"] == "createBranch"

    second = client.post(
        "/chat",
        json={
            "messages": first["messages"],
            "repository": repository,
            "approvals": [{"id": "call_topic", "approved": True}],
        },
    ).json()
    assert second["status"] == "completed"
    assert second["text"] == "Created topic."
    assert "topic" in git(git_repo, "branch", "--list", "topic")
    assert client.get("/approvals").json()["count"] == 0


def test_approvals_are_scoped_to_the_requesting_token(git_repo):
    gate = ApprovalGate()
    repository = {"kind": "local", "path": str(git_repo)}
    call = ModelToolCall(
        id="call_del",
        name="deleteBranch",
        arguments=json.dumps({"name": "feature", "force": True}),
    )
    client = _client([ModelResponse(tool_calls=(call,)), ModelResponse(text="Deleted.")], gate=gate)
    alice = {"Authorization": "Bearer token-alice"}
    mallory = {"Authorization": "Bearer token-mallory"}

    first = client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "delete feature"}], "repository": repository},
        headers=alice,
    ).json()
    assert first["status"] == "awaiting_approval"

    assert client.get("/approvals", headers=alice).json()["count"] == 1
    assert client.get("/approvals", headers=mallory).json()["count"] == 0
    assert client.get("/approvals").json()["count"] == 0

    hijack = client.post(
        "/chat",
        json={"messages": first["messages"], "repository": repository, "approvals": {"call_del": True}},
        headers=mallory,
    )
    assert hijack.status_code == 403
    assert "feature" in git(git_repo, "branch", "--list", "feature")

    owned = client.post(
        "/chat",
        json={"messages": first["messages"], "repository": repository, "approvals": {"call_del": True}},
        headers=alice,
    ).json()
    assert owned["status"] == "completed"
    assert git(git_repo, "branch", "--list", "feature") == ""
