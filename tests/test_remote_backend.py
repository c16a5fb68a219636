import base64
import json

import httpx
import pytest

import commit_manager.http_clients as http_clients
from commit_manager.facade import RepositoryOperations
from commit_manager.http_clients import GitHubClient
from commit_manager.models import RemoteRepository

REPO = RemoteRepository(owner="octo", repo="hello")
BASE = "/repos/octo/hello"

HEAD = "a" * 40
PICKED = "b" * 40


def _operations(handler):
    def factory(tok):
        return httpx.AsyncClient(
            base_url="https://api.github.test",
            transport=httpx.MockTransport(handler),
        )

    return RepositoryOperations(github=GitHubClient("tok", client_factory=factory))


def _commit(sha, message, name="Octo Cat"):
    return {
        "sha": sha,
        "commit": {
            "message": message,
            "author": {"name": name, "email": "octo@example.com", "date": "2024-05-01T10:00:00Z"},
        },
        "author": {"login": "octocat"},
    }


class Recorder:
    """Routes requests by ``(method, path)`` and keeps a log of what was called."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, request):
        key = (request.method, request.url.path)
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, dict(request.url.params), body))
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return route(request) if callable(route) else route


@pytest.mark.asyncio
async def test_list_commits_total_comes_from_last_page_link():
    def commits(request):
        if request.url.params.get("per_page") == "1":
            return httpx.Response(
                200,
                json=[_commit(HEAD, "latest")],
                headers={
                    "Link": '<https://api.github.test/repos/octo/hello/commits?per_page=1&page=2>; rel="next", '
                    '<https://api.github.test/repos/octo/hello/commits?per_page=1&page=3>; rel="last"'
                },
            )
        return httpx.Response(
            200,
            json=[_commit(HEAD, "latest\n\nbody"), _commit(PICKED, "older"), _commit("c" * 40, "first")],
        )

    ops = _operations(Recorder({("GET", f"{BASE}/commits"): commits}))
    page = await ops.list_commits(REPO, max_count=2)

    assert page.total == 3
    assert [c.message for c in page.commits] == ["latest", "older"]
    assert page.commits[0].abbreviated_hash == "aaaaaaa"
    await ops.aclose()


@pytest.mark.asyncio
async def test_list_commits_search_filters_client_side():
    recorder = Recorder(
        {
            ("GET", f"{BASE}/commits"): httpx.Response(
                200,
                json=[
                    _commit(HEAD, "Fix login bug"),
                    _commit(PICKED, "Add docs", name="Someone Else"),
                    _commit("c" * 40, "fix typo"),
                ],
            )
        }
    )
    ops = _operations(recorder)
    page = await ops.list_commits(REPO, search="FIX")

    assert page.total == 2
    assert [c.hash for c in page.commits] == [HEAD, "c" * 40]


@pytest.mark.asyncio
async def test_list_commits_on_empty_repository_is_empty():
    ops = _operations(
        Recorder(
            {("GET", f"{BASE}/commits"): httpx.Response(409, json={"message": "Git Repository is empty."})}
        )
    )
    page = await ops.list_commits(REPO)
    assert page.total == 0
    assert page.commits == ()


@pytest.mark.asyncio
async def test_default_branch_is_the_current_branch():
    recorder = Recorder(
        {
            ("GET", BASE): httpx.Response(200, json={"default_branch": "main", "full_name": "octo/hello"}),
            ("GET", f"{BASE}/branches"): httpx.Response(
                200,
                json=[
                    {"name": "dev", "commit": {"sha": PICKED}},
                    {"name": "main", "commit": {"sha": HEAD}},
                ],
            ),
        }
    )
    ops = _operations(recorder)
    branches = await ops.list_branches(REPO)

    assert [(b.name, b.current) for b in branches] == [("dev", False), ("main", True)]
    assert branches[1].commit == "aaaaaaa"


@pytest.mark.asyncio
async def test_remote_tags_do_not_claim_annotation():
    ops = _operations(
        Recorder(
            {
                ("GET", f"{BASE}/tags"): httpx.Response(
                    200, json=[{"name": "v1.0.0", "commit": {"sha": HEAD}}]
                )
            }
        )
    )
    tags = await ops.list_tags(REPO)
    assert tags[0].name == "v1.0.0"
    assert tags[0].hash == "aaaaaaa"
    assert tags[0].is_annotated is None


@pytest.mark.asyncio
async def test_commit_detail_combines_json_and_diff():
    payload = dict(_commit(HEAD, "Subject line\n\nLonger body"))
    payload["parents"] = [{"sha": PICKED}]
    payload["files"] = [
        {"filename": "app.py", "status": "modified", "additions": 3, "deletions": 1, "patch": "@@"},
        {"filename": "logo.png", "status": "added", "additions": 0, "deletions": 0},
    ]

    def commit(request):
        if request.headers.get("accept") == http_clients.DIFF_MEDIA_TYPE:
            return httpx.Response(200, text="diff --git a/app.py b/app.py\n")
        return httpx.Response(200, json=payload)

    ops = _operations(Recorder({("GET", f"{BASE}/commits/{HEAD}"): commit}))
    detail = await ops.get_commit_detail(REPO, HEAD)

    assert detail.summary.message == "Subject line"
    assert detail.body == "Longer body"
    assert detail.parent_hashes == (PICKED,)
    assert detail.stats.changed == 2
    assert detail.stats.insertions == 3
    assert detail.files[1].binary is True
    assert detail.diff.startswith("diff --git")


@pytest.mark.asyncio
async def test_read_file_decodes_base64_content():
    encoded = base64.b64encode(b"hello remote\n").decode("ascii")
    ops = _operations(
        Recorder(
            {
                ("GET", f"{BASE}/contents/docs/readme.md"): httpx.Response(
                    200,
                    json={"type": "file", "encoding": "base64", "content": encoded, "size": 13, "sha": "f1"},
                )
            }
        )
    )
    content = await ops.read_file(REPO, "docs/readme.md", at_ref="main")
    assert content.content == "hello remote\n"
    assert content.ref == "main"
    assert content.sha == "f1"


@pytest.mark.asyncio
async def test_cherry_pick_builds_tree_commit_and_moves_ref():
    picked = dict(_commit(PICKED, "Picked change"))
    picked["files"] = [
        {"filename": "new.txt", "status": "added", "sha": "blob1"},
        {"filename": "gone.txt", "status": "removed", "sha": "blob2"},
    ]
    recorder = Recorder(
        {
            ("GET", f"{BASE}/commits/{PICKED}"): httpx.Response(200, json=picked),
            ("GET", f"{BASE}/git/ref/heads/main"): httpx.Response(200, json={"object": {"sha": HEAD}}),
            ("GET", f"{BASE}/git/commits/{HEAD}"): httpx.Response(200, json={"tree": {"sha": "tree0"}}),
            ("POST", f"{BASE}/git/trees"): httpx.Response(201, json={"sha": "tree1"}),
            ("POST", f"{BASE}/git/commits"): httpx.Response(201, json={"sha": "d" * 40}),
            ("PATCH", f"{BASE}/git/refs/heads/main"): httpx.Response(200, json={"object": {"sha": "d" * 40}}),
        }
    )
    ops = _operations(recorder)
    result = await ops.cherry_pick(REPO, "main", PICKED)

    assert result.success, result.message
    assert result.data["commit"] == "d" * 40

    bodies = {(method, path): body for method, path, _, body in recorder.calls}
    tree = bodies[("POST", f"{BASE}/git/trees")]
    assert tree["base_tree"] == "tree0"
    assert {"path": "gone.txt", "mode": "100644", "type": "blob", "sha": None} in tree["tree"]
    assert {"path": "new.txt", "mode": "100644", "type": "blob", "sha": "blob1"} in tree["tree"]
    commit = bodies[("POST", f"{BASE}/git/commits")]
    assert commit["parents"] == [HEAD]
    assert commit["message"] == "Picked change"
    assert bodies[("PATCH", f"{BASE}/git/refs/heads/main")] == {"sha": "d" * 40, "force": False}


@pytest.mark.asyncio
async def test_merge_conflict_is_a_failed_result():
    ops = _operations(
        Recorder({("POST", f"{BASE}/merges"): httpx.Response(409, json={"message": "Merge conflict"})})
    )
    result = await ops.merge_branch(REPO, "main", "feature")
    assert not result.success
    assert "conflicts" in result.message


@pytest.mark.asyncio
async def test_create_branch_refuses_existing_name():
    recorder = Recorder(
        {("GET", f"{BASE}/git/ref/heads/dev"): httpx.Response(200, json={"object": {"sha": HEAD}})}
    )
    ops = _operations(recorder)
    result = await ops.create_branch(REPO, "dev")

    assert not result.success
    assert "already exists" in result.message
    assert all(method == "GET" for method, *_ in recorder.calls)


@pytest.mark.asyncio
async def test_api_failure_during_write_becomes_failed_result():
    recorder = Recorder(
        {
            ("PUT", f"{BASE}/contents/notes.md"): httpx.Response(
                422, json={"message": "Invalid request. \"sha\" wasn't supplied."}
            )
        }
    )
    ops = _operations(recorder)
    result = await ops.create_or_update_file(REPO, "notes.md", "text", "Add notes")

    assert not result.success
    assert result.data["error"] == "GitHubAPIError"


@pytest.mark.asyncio
async def test_create_repository_and_list_user_repos():
    def create(request):
        assert json.loads(request.content)["auto_init"] is True
        return httpx.Response(
            201,
            json={
                "name": "fresh",
                "full_name": "octo/fresh",
                "owner": {"login": "octo"},
                "html_url": "https://github.com/octo/fresh",
                "default_branch": "main",
                "private": True,
            },
        )

    recorder = Recorder(
        {
            ("POST", "/user/repos"): create,
            ("GET", "/user/repos"): httpx.Response(
                200,
                json=[
                    {"name": "fresh", "full_name": "octo/fresh", "owner": {"login": "octo"}},
                    {"name": "other", "full_name": "octo/other", "owner": {"login": "octo"}, "description": "Fresh ideas"},
                    {"name": "misc", "full_name": "octo/misc", "owner": {"login": "octo"}},
                ],
            ),
        }
    )
    ops = _operations(recorder)

    created = await ops.create_repository("fresh", private=True)
    assert created.success
    assert created.data["fullName"] == "octo/fresh"
    assert created.data["isPrivate"] is True

    repos = await ops.list_user_repos("fresh")
    assert [r["fullName"] for r in repos] == ["octo/fresh", "octo/other"]


@pytest.mark.asyncio
async def test_empty_repository_still_has_one_current_branch():
    ops = _operations(
        Recorder(
            {
                ("GET", BASE): httpx.Response(200, json={"default_branch": "main"}),
                ("GET", f"{BASE}/branches"): httpx.Response(200, json=[]),
            }
        )
    )
    branches = await ops.list_branches(REPO)

    assert [(b.name, b.commit, b.current) for b in branches] == [("main", "", True)]
    await ops.aclose()


@pytest.mark.asyncio
async def test_delete_origin_branch_deletes_the_ref():
    recorder = Recorder(
        {
            ("GET", BASE): httpx.Response(200, json={"default_branch": "main"}),
            ("GET", f"{BASE}/git/ref/heads/dev"): httpx.Response(200, json={"object": {"sha": HEAD}}),
            ("DELETE", f"{BASE}/git/refs/heads/dev"): httpx.Response(204),
        }
    )
    ops = _operations(recorder)
    result = await ops.delete_branch(REPO, "origin/dev", remote=True)

    assert result.success, result.message
    assert result.data == {"remote": "origin", "branch": "dev"}
    assert ("DELETE", f"{BASE}/git/refs/heads/dev", {}, None) in recorder.calls
    await ops.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["upstream/dev", "origin/main"])
async def test_delete_origin_branch_refuses_other_remotes_and_default(name):
    recorder = Recorder({("GET", BASE): httpx.Response(200, json={"default_branch": "main"})})
    ops = _operations(recorder)
    result = await ops.delete_branch(REPO, name, remote=True)

    assert not result.success
    assert all(method == "GET" for method, *_ in recorder.calls)
    await ops.aclose()
