"""Account-level tools and the two tools that change the turn's repository."""

from __future__ import annotations

from typing import Any, Dict

from ..config import MAX_LISTED_REPOS
from ..models import RemoteRepository, repository_ref_from_dict
from .context import ToolContext
from .registry import REGISTRY


@REGISTRY.tool(
    "selectRepository",
    "Switch the conversation to a repository. Pass owner and repo for a GitHub "
    "repository, or path for a local working copy; kind is inferred when omitted. "
    "Every later tool call in this turn uses the new repository.",
    input_schema={
        "type": "object",
        "properties": {
            "kind": {"type": "string", "enum": ["local", "remote"]},
            "path": {"type": "string"},
            "owner": {"type": "string"},
            "repo": {"type": "string"},
        },
        "anyOf": [
            {"required": ["path"]},
            {"required": ["owner", "repo"]},
        ],
    },
    writes_context=True,
    requires_repository=False,
)
async def select_repository(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    ref = repository_ref_from_dict(args)

    # Confirm the target exists before the context moves.
    if isinstance(ref, RemoteRepository):
        info = await ctx.operations.get_repository_info(ref.owner, ref.repo)
        ref = RemoteRepository(owner=info["owner"], repo=info["name"])
    else:
        info = await ctx.operations.get_overview(ref)

    ctx.repository.replace(ref)
    return {
        "selected": True,
        "repository": ref.to_dict(),
        "label": ref.label,
        "info": info,
    }


@REGISTRY.tool(
    "createRepository",
    "Create a GitHub repository for the authenticated user and select it.",
    input_schema={
        "type": "object",
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "private": {"type": "boolean", "default": False},
            "autoInit": {"type": "boolean", "default": True},
            "gitignoreTemplate": {"type": "string"},
            "licenseTemplate": {"type": "string"},
        },
        "required": ["name"],
    },
    mutating=True,
    writes_context=True,
    requires_repository=False,
)
async def create_repository(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    result = await ctx.operations.create_repository(
        args["name"],
        description=args.get("description"),
        private=args["private"],
        auto_init=args["autoInit"],
        gitignore_template=args.get("gitignoreTemplate"),
        license_template=args.get("licenseTemplate"),
    )
    out = result.to_dict()
    if result.success and result.data.get("owner") and result.data.get("repo"):
        ref = RemoteRepository(owner=result.data["owner"], repo=result.data["repo"])
        ctx.repository.replace(ref)
        out["repository"] = ref.to_dict()
    return out


@REGISTRY.tool(
    "listUserRepos",
    "List GitHub repositories the user can access, most recently updated first. "
    "query filters on name and description.",
    input_schema={
        "type": "object",
        "properties": {"query": {"type": "string"}},
    },
    requires_repository=False,
)
async def list_user_repos(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    repos = await ctx.operations.list_user_repos(args.get("query"))
    return {
        "repositories": repos[:MAX_LISTED_REPOS],
        "total": len(repos),
        "truncated": len(repos) > MAX_LISTED_REPOS,
    }


@REGISTRY.tool(
    "getUserProfile",
    "Show a GitHub user's public profile.",
    input_schema={
        "type": "object",
        "properties": {"username": {"type": "string", "minLength": 1}},
        "required": ["username"],
    },
    requires_repository=False,
)
async def get_user_profile(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    return await ctx.operations.get_user_profile(args["username"])
