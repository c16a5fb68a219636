import json

import httpx
import pytest

from conftest import commit_file, git

from commit_manager.approval import ApprovalGate, ToolCallState
from commit_manager.facade import RepositoryOperations
from commit_manager.http_clients import GitHubClient
from commit_manager.models import LocalRepository, RemoteRepository
from commit_manager.tools import default_registry
from commit_manager.tools.context import RepositoryContext, ToolContext
from commit_manager.tools.registry import ToolRegistry, _schema_hash

MUTATING = {
    "createBranch",
    "deleteBranch",
    "cherryPick",
    "revert",
    "reset",
    "mergeBranch",
    "createOrUpdateFile",
    "deleteFile",
    "createRelease",
    "createPullRequest",
    "mergePullRequest",
    "deleteRepository",
    "createRepository",
}


def _ctx(ref=None, gate=None):
    return ToolContext(
        repository=RepositoryContext(ref),
        operations=RepositoryOperations(),
        gate=gate if gate is not None else ApprovalGate(),
    )


def _registry_with_echo(calls):
    registry = ToolRegistry()

    @registry.tool(
        "echo",
        "Echo the message back.",
        input_schema={
            "type": "object",
            "properties": {
                "message": {"type": "string", "minLength": 1},
                "times": {"type": "integer", "minimum": 1, "default": 1},
            },
            "required": ["message"],
        },
        requires_repository=False,
    )
    async def echo(args, ctx):
        calls.append(args)
        return {"echo": args["message"] * args["times"]}

    return registry


def test_default_catalog_lists_every_tool_once():
    registry = default_registry()
    catalog = registry.catalog()
    names = [entry["name"] for entry in catalog]

    assert len(names) == 29
    assert len(set(names)) == len(names)
    assert {e["name"] for e in catalog if e["mutating"]} == MUTATING
    assert {e["name"] for e in catalog if e["writesContext"]} == {"selectRepository", "createRepository"}
    for entry in catalog:
        assert len(entry["schemaHash"]) == 16
        assert entry["schemaHash"] == _schema_hash(entry["inputSchema"])
        assert entry["inputSchema"]["additionalProperties"] is False


def test_specs_use_function_parameter_shape():
    spec = next(s for s in default_registry().specs() if s["name"] == "cherryPick")
    assert set(spec) == {"name", "description", "parameters"}
    assert spec["parameters"]["required"] == ["branch", "hash"]


def test_schema_hash_is_order_independent():
    a = {"type": "object", "properties": {"x": {"type": "string"}, "y": {"type": "integer"}}}
    b = {"properties": {"y": {"type": "integer"}, "x": {"type": "string"}}, "type": "object"}
    assert _schema_hash(a) == _schema_hash(b)


def test_duplicate_registration_is_rejected():
    registry = _registry_with_echo([])
    with pytest.raises(ValueError):

        @registry.tool("echo", "again", requires_repository=False)
        async def again(args, ctx):  # pragma: no cover
            return {}


@pytest.mark.asyncio
async def test_invoke_applies_defaults_after_validation():
    calls = []
    registry = _registry_with_echo(calls)
    outcome = await registry.invoke("echo", {"message": "hi"}, _ctx(), call_id="c1")

    assert outcome.state is ToolCallState.OUTPUT_AVAILABLE
    assert outcome.output == {"echo": "hi"}
    assert calls == [{"message": "hi", "times": 1}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "args",
    [
        {},
        {"message": ""},
        {"message": "hi", "times": 0},
        {"message": "hi", "extra": True},
        {"message": 5},
    ],
)
async def test_invalid_arguments_never_execute(args):
    calls = []
    registry = _registry_with_echo(calls)
    outcome = await registry.invoke("echo", args, _ctx(), call_id="c1")

    assert outcome.failed
    assert outcome.output["error"]["category"] == "validation"
    assert calls == []


@pytest.mark.asyncio
async def test_arguments_may_arrive_as_json_text():
    calls = []
    registry = _registry_with_echo(calls)

    ok = await registry.invoke("echo", json.dumps({"message": "x", "times": 2}), _ctx())
    assert ok.output == {"echo": "xx"}

    bad = await registry.invoke("echo", "{not json", _ctx())
    assert bad.failed
    assert "not valid JSON" in bad.output["error"]["message"]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_unknown_tool_is_an_error_payload():
    outcome = await default_registry().invoke("noSuchTool", {}, _ctx(), call_id="c9")
    assert outcome.failed
    assert outcome.call_id == "c9"
    assert "noSuchTool" in outcome.output["error"]["message"]


@pytest.mark.asyncio
async def test_executor_exception_becomes_error_payload():
    registry = ToolRegistry()

    @registry.tool("explode", "Always fails.", requires_repository=False)
    async def explode(args, ctx):
        raise RuntimeError("kaboom")

    outcome = await registry.invoke("explode", {}, _ctx())
    assert outcome.failed
    assert outcome.output["error"]["message"] == "kaboom"
    assert outcome.output["error"]["context"] == "explode"


@pytest.mark.asyncio
async def test_repository_tools_fail_fast_without_selection():
    gate = ApprovalGate()
    ctx = _ctx(gate=gate)

    read = await default_registry().invoke("getRepoOverview", {}, ctx)
    write = await default_registry().invoke("createBranch", {"name": "topic"}, ctx)

    for outcome in (read, write):
        assert outcome.failed
        assert outcome.output["error"]["category"] == "no_repository"
        assert outcome.output["error"]["next_steps"][0]["tool"] == "selectRepository"
    assert gate.pending() == []


@pytest.mark.asyncio
async def test_mutating_tool_is_parked_not_executed(git_repo):
    gate = ApprovalGate()
    ref = LocalRepository(str(git_repo))
    outcome = await default_registry().invoke(
        "createBranch", {"name": "topic"}, _ctx(ref, gate), call_id="call_branch"
    )

    assert outcome.pending
    assert outcome.output["id"] == "call_branch"
    assert outcome.output["state"] == "approval-requested"
    assert [r.id for r in gate.pending()] == ["call_branch"]
    assert "topic" not in git(git_repo, "branch", "--list")


@pytest.mark.asyncio
async def test_mutating_tool_without_gate_is_refused(git_repo):
    ctx = ToolContext(
        repository=RepositoryContext(LocalRepository(str(git_repo))),
        operations=RepositoryOperations(),
        gate=None,
    )
    outcome = await default_registry().invoke("createBranch", {"name": "topic"}, ctx)
    assert outcome.failed
    assert "approval gate" in outcome.output["error"]["message"]


@pytest.mark.asyncio
@pytest.mark.parametrize("mode, destructive", [("hard", True), ("mixed", False), (None, False)])
async def test_reset_is_destructive_only_in_hard_mode(git_repo, mode, destructive):
    gate = ApprovalGate()
    args = {"branch": "main", "hash": "HEAD~1"}
    if mode:
        args["mode"] = mode
    outcome = await default_registry().invoke(
        "reset", args, _ctx(LocalRepository(str(git_repo)), gate)
    )
    assert outcome.pending
    assert outcome.output["destructive"] is destructive


@pytest.mark.asyncio
async def test_select_repository_rescopes_later_calls(git_repo, tmp_path):
    other = tmp_path / "other"
    other.mkdir()
    git(other, "init", "-q")
    git(other, "symbolic-ref", "HEAD", "refs/heads/main")
    git(other, "config", "commit.gpgsign", "false")
    commit_file(other, "notes.txt", "notes\n", "Other start")

    registry = default_registry()
    ctx = _ctx(LocalRepository(str(git_repo)))

    before = await registry.invoke("getRepoOverview", {}, ctx)
    assert before.output["headMessage"] == "Update readme"

    selected = await registry.invoke("selectRepository", {"kind": "local", "path": str(other)}, ctx)
    assert selected.output["selected"] is True
    assert selected.output["repository"] == {"kind": "local", "path": str(other)}
    assert ctx.repository.snapshot() == LocalRepository(str(other))

    after = await registry.invoke("getRepoOverview", {}, ctx)
    assert after.output["headMessage"] == "Other start"


@pytest.mark.asyncio
async def test_failed_selection_keeps_previous_repository(git_repo, tmp_path):
    ref = LocalRepository(str(git_repo))
    ctx = _ctx(ref)
    outcome = await default_registry().invoke(
        "selectRepository", {"kind": "local", "path": str(tmp_path / "missing")}, ctx
    )
    assert outcome.failed
    assert ctx.repository.snapshot() == ref


@pytest.mark.asyncio
async def test_commit_history_count_is_clamped(git_repo, monkeypatch):
    ops = RepositoryOperations()
    ref = LocalRepository(str(git_repo))
    backend = ops.backend(ref)
    original = backend.list_commits
    seen = {}

    async def spy(**kwargs):
        seen.update(kwargs)
        return await original(**kwargs)

    monkeypatch.setattr(backend, "list_commits", spy)
    ctx = ToolContext(repository=RepositoryContext(ref), operations=ops, gate=ApprovalGate())
    outcome = await default_registry().invoke("getCommitHistory", {"maxCount": 1000}, ctx)

    assert outcome.state is ToolCallState.OUTPUT_AVAILABLE
    assert seen["max_count"] == 50
    assert outcome.output["total"] == 3


@pytest.mark.asyncio
async def test_select_repository_with_owner_and_repo_only():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/repos/octo/hello":
            return httpx.Response(
                200,
                json={"name": "hello", "owner": {"login": "octo"}, "full_name": "octo/hello"},
            )
        if request.url.path == "/repos/octo/hello/tags":
            return httpx.Response(200, json=[{"name": "v1.0.0", "commit": {"sha": "a" * 40}}])
        return httpx.Response(404, json={"message": "Not Found"})

    def factory(token):
        return httpx.AsyncClient(
            base_url="https://api.github.test", transport=httpx.MockTransport(handler)
        )

    ops = RepositoryOperations(github=GitHubClient("tok", client_factory=factory))
    ctx = ToolContext(repository=RepositoryContext(None), operations=ops, gate=ApprovalGate())
    registry = default_registry()

    selected = await registry.invoke("selectRepository", {"owner": "octo", "repo": "hello"}, ctx)
    assert selected.state is ToolCallState.OUTPUT_AVAILABLE, selected.output
    assert ctx.repository.snapshot() == RemoteRepository("octo", "hello")

    tags = await registry.invoke("listTags", {}, ctx)
    assert tags.state is ToolCallState.OUTPUT_AVAILABLE, tags.output
    assert "/repos/octo/hello/tags" in seen
    await ops.aclose()


@pytest.mark.asyncio
async def test_select_repository_infers_local_from_path(git_repo):
    ctx = _ctx()
    outcome = await default_registry().invoke("selectRepository", {"path": str(git_repo)}, ctx)
    assert outcome.output["repository"] == {"kind": "local", "path": str(git_repo)}
    assert ctx.repository.snapshot() == LocalRepository(str(git_repo))


@pytest.mark.asyncio
@pytest.mark.parametrize("args", [{}, {"owner": "octo"}, {"kind": "remote"}])
async def test_select_repository_needs_path_or_owner_and_repo(args):
    ctx = _ctx()
    outcome = await default_registry().invoke("selectRepository", args, ctx)
    assert outcome.failed
    assert outcome.output["error"]["category"] == "validation"
    assert ctx.repository.snapshot() is None
