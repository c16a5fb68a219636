"""Tools scoped to the selected repository.

Every tool here reads the repository from the turn context at call time, so a
``selectRepository`` earlier in the same turn is always honored.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ..config import (
    DEFAULT_COMMIT_COUNT,
    DEFAULT_CONTRIBUTOR_COUNT,
    MAX_LISTED_FILES,
    MAX_LISTED_REMOTE_BRANCHES,
    MAX_LISTED_TAGS,
)
from ..facade import MERGE_METHODS, PULL_REQUEST_STATES
from ..models import RESET_MODES
from .context import ToolContext
from .registry import REGISTRY

_STRING = {"type": "string"}
_NON_EMPTY = {"type": "string", "minLength": 1}
_HASH = {"type": "string", "minLength": 4, "description": "Full or abbreviated commit hash."}


def _capped(items: Sequence[Any], limit: int, key: str) -> Dict[str, Any]:
    return {
        key: [item.to_dict() if hasattr(item, "to_dict") else item for item in items[:limit]],
        "total": len(items),
        "truncated": len(items) > limit,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@REGISTRY.tool(
    "getRepoOverview",
    "Summarize the selected repository: current/default branch, remotes, "
    "clean state and the head commit.",
)
async def get_repo_overview(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    return await ctx.operations.get_overview(ref)


@REGISTRY.tool(
    "getCommitHistory",
    "List commits newest first. maxCount is capped at 50. search and author are "
    "case-insensitive substring filters on the message and the author.",
    input_schema={
        "type": "object",
        "properties": {
            "branch": {**_STRING, "description": "Branch or ref; defaults to the current branch."},
            "maxCount": {"type": "integer", "default": DEFAULT_COMMIT_COUNT},
            "skip": {"type": "integer", "minimum": 0, "default": 0},
            "search": _STRING,
            "author": _STRING,
        },
    },
)
async def get_commit_history(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    page = await ctx.operations.list_commits(
        ref,
        branch=args.get("branch"),
        max_count=args.get("maxCount"),
        skip=args.get("skip"),
        search=args.get("search"),
        author=args.get("author"),
    )
    return page.to_dict()


@REGISTRY.tool(
    "getCommitDetails",
    "Show one commit: metadata, changed files with line stats, and the diff "
    "(truncated when large).",
    input_schema={
        "type": "object",
        "properties": {"hash": _HASH},
        "required": ["hash"],
    },
)
async def get_commit_details(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    detail = await ctx.operations.get_commit_detail(ref, args["hash"])
    return detail.to_dict()


@REGISTRY.tool(
    "listBranches",
    "List local and remote-tracking branches. Exactly one branch is marked current.",
)
async def list_branches(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    branches = await ctx.operations.list_branches(ref)
    local = [b for b in branches if not b.is_remote]
    remote = [b for b in branches if b.is_remote]
    current = next((b.name for b in local if b.current), None)
    out: Dict[str, Any] = {
        "current": current,
        "local": [b.to_dict() for b in local],
    }
    listed = _capped(remote, MAX_LISTED_REMOTE_BRANCHES, "remote")
    out["remote"] = listed["remote"]
    out["remoteTotal"] = listed["total"]
    out["remoteTruncated"] = listed["truncated"]
    return out


@REGISTRY.tool(
    "compareDiff",
    "Unified diff between two refs (branches, tags or commits).",
    input_schema={
        "type": "object",
        "properties": {"from": _NON_EMPTY, "to": _NON_EMPTY},
        "required": ["from", "to"],
    },
)
async def compare_diff(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.diff_between(ref, args["from"], args["to"])
    return result.to_dict()


@REGISTRY.tool(
    "getWorkingTreeStatus",
    "Working tree status: staged, modified, deleted, untracked and conflicted "
    "paths plus ahead/behind counts. Remote repositories have no working tree "
    "and always report clean.",
)
async def get_working_tree_status(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    status = await ctx.operations.get_status(ref)
    return status.to_dict()


@REGISTRY.tool("listTags", "List tags, newest first.")
async def list_tags(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    tags = await ctx.operations.list_tags(ref)
    return _capped(tags, MAX_LISTED_TAGS, "tags")


@REGISTRY.tool("listStashes", "List stash entries (local repositories only).")
async def list_stashes(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    stashes = await ctx.operations.list_stashes(ref)
    return {"stashes": [s.to_dict() for s in stashes], "total": len(stashes)}


@REGISTRY.tool(
    "getFileContent",
    "Read a text file at a ref (defaults to the current/default branch). Large "
    "files are truncated.",
    input_schema={
        "type": "object",
        "properties": {"path": _NON_EMPTY, "ref": _STRING},
        "required": ["path"],
    },
)
async def get_file_content(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    content = await ctx.operations.read_file(ref, args["path"], args.get("ref"))
    return content.to_dict()


@REGISTRY.tool(
    "listFiles",
    "List one directory of the tree at a ref, directories first.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {**_STRING, "default": "", "description": "Directory; empty for the root."},
            "ref": _STRING,
        },
    },
)
async def list_files(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    entries = await ctx.operations.list_files(ref, args.get("path") or "", args.get("ref"))
    out = _capped(entries, MAX_LISTED_FILES, "entries")
    out["path"] = args.get("path") or ""
    return out


@REGISTRY.tool(
    "listContributors",
    "List contributors by commit count (GitHub repositories only).",
    input_schema={
        "type": "object",
        "properties": {"maxCount": {"type": "integer", "default": DEFAULT_CONTRIBUTOR_COUNT}},
    },
)
async def list_contributors(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    contributors = await ctx.operations.list_contributors(ref, args.get("maxCount"))
    return {"contributors": contributors, "total": len(contributors)}


@REGISTRY.tool(
    "listPullRequests",
    "List pull requests (GitHub repositories only).",
    input_schema={
        "type": "object",
        "properties": {
            "state": {"type": "string", "enum": list(PULL_REQUEST_STATES), "default": "open"},
            "maxCount": {"type": "integer", "default": DEFAULT_CONTRIBUTOR_COUNT},
        },
    },
)
async def list_pull_requests(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    pulls: List[Dict[str, Any]] = await ctx.operations.list_pull_requests(
        ref, args["state"], args.get("maxCount")
    )
    return {"pullRequests": pulls, "total": len(pulls), "state": args["state"]}


@REGISTRY.tool(
    "getPullRequest",
    "Show one pull request with its changed files (GitHub repositories only).",
    input_schema={
        "type": "object",
        "properties": {"number": {"type": "integer", "minimum": 1}},
        "required": ["number"],
    },
)
async def get_pull_request(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    return await ctx.operations.get_pull_request(ref, args["number"])


# ---------------------------------------------------------------------------
# Writes (gated by approval)
# ---------------------------------------------------------------------------


@REGISTRY.tool(
    "createBranch",
    "Create a branch from a ref (default: the current/default branch). Does not "
    "switch to it.",
    input_schema={
        "type": "object",
        "properties": {"name": _NON_EMPTY, "from": _STRING},
        "required": ["name"],
    },
    mutating=True,
)
async def create_branch(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.create_branch(ref, args["name"], args.get("from"))
    return result.to_dict()


@REGISTRY.tool(
    "deleteBranch",
    "Delete a branch. The current branch cannot be deleted. With remote=true the "
    "name must be '<remote>/<branch>' and the branch is deleted on the remote.",
    input_schema={
        "type": "object",
        "properties": {
            "name": _NON_EMPTY,
            "force": {"type": "boolean", "default": False},
            "remote": {"type": "boolean", "default": False},
        },
        "required": ["name"],
    },
    mutating=True,
)
async def delete_branch(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.delete_branch(
        ref, args["name"], force=args["force"], remote=args["remote"]
    )
    return result.to_dict()


@REGISTRY.tool(
    "cherryPick",
    "Apply exactly one commit onto a branch as a new commit.",
    input_schema={
        "type": "object",
        "properties": {"branch": _NON_EMPTY, "hash": _HASH},
        "required": ["branch", "hash"],
    },
    mutating=True,
)
async def cherry_pick(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.cherry_pick(ref, args["branch"], args["hash"])
    return result.to_dict()


@REGISTRY.tool(
    "revert",
    "Create one new commit on a branch that undoes the given commit.",
    input_schema={
        "type": "object",
        "properties": {"branch": _NON_EMPTY, "hash": _HASH},
        "required": ["branch", "hash"],
    },
    mutating=True,
)
async def revert(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.revert(ref, args["branch"], args["hash"])
    return result.to_dict()


@REGISTRY.tool(
    "reset",
    "Move a branch to a commit. mode=hard discards working tree changes on a "
    "local checkout.",
    input_schema={
        "type": "object",
        "properties": {
            "branch": _NON_EMPTY,
            "hash": _HASH,
            "mode": {"type": "string", "enum": list(RESET_MODES), "default": "mixed"},
        },
        "required": ["branch", "hash"],
    },
    mutating=True,
    destructive=lambda args: args.get("mode") == "hard",
)
async def reset(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.reset(ref, args["branch"], args["hash"], args["mode"])
    return result.to_dict()


@REGISTRY.tool(
    "mergeBranch",
    "Merge head into base.",
    input_schema={
        "type": "object",
        "properties": {"base": _NON_EMPTY, "head": _NON_EMPTY, "message": _STRING},
        "required": ["base", "head"],
    },
    mutating=True,
)
async def merge_branch(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.merge_branch(ref, args["base"], args["head"], args.get("message"))
    return result.to_dict()


@REGISTRY.tool(
    "createOrUpdateFile",
    "Commit a file's full content to a branch (GitHub repositories only). Pass "
    "sha when updating an existing file.",
    input_schema={
        "type": "object",
        "properties": {
            "path": _NON_EMPTY,
            "content": _STRING,
            "message": _NON_EMPTY,
            "branch": _STRING,
            "sha": _STRING,
        },
        "required": ["path", "content", "message"],
    },
    mutating=True,
)
async def create_or_update_file(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.create_or_update_file(
        ref, args["path"], args["content"], args["message"], args.get("branch"), args.get("sha")
    )
    return result.to_dict()


@REGISTRY.tool(
    "deleteFile",
    "Delete a file in one commit (GitHub repositories only). sha is the blob sha "
    "from getFileContent.",
    input_schema={
        "type": "object",
        "properties": {
            "path": _NON_EMPTY,
            "message": _NON_EMPTY,
            "sha": _NON_EMPTY,
            "branch": _STRING,
        },
        "required": ["path", "message", "sha"],
    },
    mutating=True,
)
async def delete_file(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.delete_file(
        ref, args["path"], args["message"], args["sha"], args.get("branch")
    )
    return result.to_dict()


@REGISTRY.tool(
    "createRelease",
    "Create a release and its tag (GitHub repositories only).",
    input_schema={
        "type": "object",
        "properties": {
            "tagName": _NON_EMPTY,
            "name": _STRING,
            "body": _STRING,
            "target": {**_STRING, "description": "Branch or commit; defaults to the default branch."},
            "draft": {"type": "boolean", "default": False},
            "prerelease": {"type": "boolean", "default": False},
        },
        "required": ["tagName"],
    },
    mutating=True,
)
async def create_release(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.create_release(
        ref,
        args["tagName"],
        name=args.get("name"),
        body=args.get("body"),
        target=args.get("target"),
        draft=args["draft"],
        prerelease=args["prerelease"],
    )
    return result.to_dict()


@REGISTRY.tool(
    "createPullRequest",
    "Open a pull request from head into base (GitHub repositories only).",
    input_schema={
        "type": "object",
        "properties": {
            "title": _NON_EMPTY,
            "head": _NON_EMPTY,
            "base": _NON_EMPTY,
            "body": _STRING,
            "draft": {"type": "boolean", "default": False},
        },
        "required": ["title", "head", "base"],
    },
    mutating=True,
)
async def create_pull_request(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.create_pull_request(
        ref, args["title"], args["head"], args["base"], args.get("body"), args["draft"]
    )
    return result.to_dict()


@REGISTRY.tool(
    "mergePullRequest",
    "Merge a pull request (GitHub repositories only).",
    input_schema={
        "type": "object",
        "properties": {
            "number": {"type": "integer", "minimum": 1},
            "mergeMethod": {"type": "string", "enum": list(MERGE_METHODS), "default": "merge"},
            "commitTitle": _STRING,
            "commitMessage": _STRING,
        },
        "required": ["number"],
    },
    mutating=True,
)
async def merge_pull_request(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.merge_pull_request(
        ref,
        args["number"],
        args["mergeMethod"],
        args.get("commitTitle"),
        args.get("commitMessage"),
    )
    return result.to_dict()


@REGISTRY.tool(
    "deleteRepository",
    "Permanently delete the selected GitHub repository.",
    mutating=True,
    destructive=True,
)
async def delete_repository(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = ctx.repository.require()
    result = await ctx.operations.delete_repository(ref)
    return result.to_dict()
