"""Unified repository operations over the local and remote backends.

``RepositoryOperations`` is built per request. It picks one adapter per
``RepositoryRef`` and keeps it for its own lifetime, clamps model-supplied
counts, bounds payloads, and converts adapter failures into either a
``BackendError`` (reads) or ``OperationResult(success=False)`` (writes).
"""

from __future__ import annotations

import dataclasses
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .backends import GitHubAccount, RepositoryBackend, backend_for, branch_name_problem
from .config import (
    BASE_LOGGER,
    DEFAULT_COMMIT_COUNT,
    DEFAULT_CONTRIBUTOR_COUNT,
    MAX_COMMIT_COUNT,
    MAX_CONTRIBUTOR_COUNT,
    MAX_PAYLOAD_CHARS,
)
from .diff_utils import truncate_payload
from .exceptions import BackendError, CommitManagerError, ValidationError
from .http_clients import GitHubClient
from .models import (
    RESET_MODES,
    BranchInfo,
    CommitDetail,
    CommitPage,
    DiffResult,
    FileContent,
    FileEntry,
    OperationResult,
    RepositoryRef,
    StashEntry,
    TagInfo,
    WorkingTreeStatus,
)
from .workspace import redact_sensitive

T = TypeVar("T")

PULL_REQUEST_STATES = ("open", "closed", "all")
MERGE_METHODS = ("merge", "squash", "rebase")


def clamp_count(value: Any, *, default: int, maximum: int) -> int:
    """Coerce ``value`` into ``[1, maximum]``; None and junk mean ``default``."""

    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(number, maximum))


def _required(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} must be non-empty", field=field)
    return value


def single_current(branches: List[BranchInfo]) -> List[BranchInfo]:
    """Demote every ``current`` flag after the first."""

    seen = False
    out: List[BranchInfo] = []
    for branch in branches:
        if branch.current:
            if seen:
                branch = dataclasses.replace(branch, current=False)
            seen = True
        out.append(branch)
    return out


class RepositoryOperations:
    def __init__(self, token: Optional[str] = None, *, github: Optional[GitHubClient] = None) -> None:
        self._token = token
        self.github = github or GitHubClient(token)
        self.account = GitHubAccount(self.github)
        self._backends: Dict[RepositoryRef, RepositoryBackend] = {}

    def backend(self, ref: RepositoryRef) -> RepositoryBackend:
        cached = self._backends.get(ref)
        if cached is None:
            cached = backend_for(ref, self.github)
            self._backends[ref] = cached
        return cached

    async def aclose(self) -> None:
        await self.github.aclose()

    def _redact(self, text: str) -> str:
        return redact_sensitive(text, secrets=(self._token,) if self._token else ())

    async def _read(
        self,
        operation: str,
        ref: Optional[RepositoryRef],
        call: Callable[[Any], Awaitable[T]],
    ) -> T:
        target = self.account if ref is None else self.backend(ref)
        try:
            return await call(target)
        except CommitManagerError:
            raise
        except Exception as exc:
            message = self._redact(f"{operation} failed: {exc}")
            BASE_LOGGER.warning(message, extra={"operation": operation})
            raise BackendError(message) from exc

    async def _write(
        self,
        operation: str,
        ref: Optional[RepositoryRef],
        call: Callable[[Any], Awaitable[OperationResult]],
    ) -> OperationResult:
        target = self.account if ref is None else self.backend(ref)
        try:
            result = await call(target)
        except Exception as exc:
            message = self._redact(str(exc) or f"{operation} failed")
            BASE_LOGGER.warning(
                "%s failed: %s",
                operation,
                message,
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            return OperationResult.failed(message, error=type(exc).__name__)
        BASE_LOGGER.info(
            "%s %s: %s",
            operation,
            "ok" if result.success else "refused",
            result.message,
            extra={"operation": operation},
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_overview(self, ref: RepositoryRef) -> Dict[str, Any]:
        return await self._read("get_overview", ref, lambda b: b.get_overview())

    async def list_commits(
        self,
        ref: RepositoryRef,
        branch: Optional[str] = None,
        max_count: Any = DEFAULT_COMMIT_COUNT,
        skip: Any = 0,
        search: Optional[str] = None,
        author: Optional[str] = None,
    ) -> CommitPage:
        count = clamp_count(max_count, default=DEFAULT_COMMIT_COUNT, maximum=MAX_COMMIT_COUNT)
        try:
            offset = max(0, int(skip or 0))
        except (TypeError, ValueError):
            offset = 0
        return await self._read(
            "list_commits",
            ref,
            lambda b: b.list_commits(
                branch=(branch or "").strip() or None,
                max_count=count,
                skip=offset,
                search=(search or "").strip() or None,
                author=(author or "").strip() or None,
            ),
        )

    async def get_commit_detail(self, ref: RepositoryRef, commit_hash: str) -> CommitDetail:
        commit_hash = _required(commit_hash, "hash")
        detail = await self._read(
            "get_commit_detail", ref, lambda b: b.get_commit_detail(commit_hash)
        )
        diff, truncated = truncate_payload(detail.diff, limit=MAX_PAYLOAD_CHARS)
        return dataclasses.replace(detail, diff=diff, diff_truncated=truncated)

    async def diff_between(self, ref: RepositoryRef, from_ref: str, to_ref: str) -> DiffResult:
        from_ref = _required(from_ref, "from")
        to_ref = _required(to_ref, "to")
        result = await self._read("diff_between", ref, lambda b: b.diff_between(from_ref, to_ref))
        diff, truncated = truncate_payload(result.diff, limit=MAX_PAYLOAD_CHARS)
        return dataclasses.replace(
            result, diff=diff, truncated=truncated, diff_length=len(result.diff)
        )

    async def list_branches(self, ref: RepositoryRef) -> List[BranchInfo]:
        branches = await self._read("list_branches", ref, lambda b: b.list_branches())
        return single_current(branches)

    async def list_tags(self, ref: RepositoryRef) -> List[TagInfo]:
        return await self._read("list_tags", ref, lambda b: b.list_tags())

    async def list_files(
        self, ref: RepositoryRef, directory: str = "", at_ref: Optional[str] = None
    ) -> List[FileEntry]:
        entries = await self._read(
            "list_files", ref, lambda b: b.list_files(directory or "", (at_ref or "").strip() or None)
        )
        return sorted(entries, key=lambda e: (e.type != "dir", e.path))

    async def read_file(
        self, ref: RepositoryRef, path: str, at_ref: Optional[str] = None
    ) -> FileContent:
        path = _required(path, "path")
        content = await self._read(
            "read_file", ref, lambda b: b.read_file(path, (at_ref or "").strip() or None)
        )
        text, truncated = truncate_payload(content.content, limit=MAX_PAYLOAD_CHARS)
        return dataclasses.replace(content, content=text, truncated=truncated)

    async def get_status(self, ref: RepositoryRef) -> WorkingTreeStatus:
        return await self._read("get_status", ref, lambda b: b.get_status())

    async def list_stashes(self, ref: RepositoryRef) -> List[StashEntry]:
        return await self._read("list_stashes", ref, lambda b: b.list_stashes())

    async def list_contributors(
        self, ref: RepositoryRef, max_count: Any = DEFAULT_CONTRIBUTOR_COUNT
    ) -> List[Dict[str, Any]]:
        count = clamp_count(max_count, default=DEFAULT_CONTRIBUTOR_COUNT, maximum=MAX_CONTRIBUTOR_COUNT)
        return await self._read("list_contributors", ref, lambda b: b.list_contributors(count))

    async def list_pull_requests(
        self, ref: RepositoryRef, state: str = "open", max_count: Any = DEFAULT_CONTRIBUTOR_COUNT
    ) -> List[Dict[str, Any]]:
        if state not in PULL_REQUEST_STATES:
            raise ValidationError(
                f"state must be one of {', '.join(PULL_REQUEST_STATES)}", field="state"
            )
        count = clamp_count(max_count, default=DEFAULT_CONTRIBUTOR_COUNT, maximum=MAX_CONTRIBUTOR_COUNT)
        return await self._read(
            "list_pull_requests", ref, lambda b: b.list_pull_requests(state, count)
        )

    async def get_pull_request(self, ref: RepositoryRef, number: int) -> Dict[str, Any]:
        if not isinstance(number, int) or number < 1:
            raise ValidationError("number must be a positive integer", field="number")
        return await self._read("get_pull_request", ref, lambda b: b.get_pull_request(number))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_branch(
        self, ref: RepositoryRef, name: str, from_ref: Optional[str] = None
    ) -> OperationResult:
        name = (name or "").strip()
        problem = branch_name_problem(name)
        if problem:
            return OperationResult.failed(problem)
        source = (from_ref or "").strip() or None
        return await self._write("create_branch", ref, lambda b: b.create_branch(name, source))

    async def delete_branch(
        self, ref: RepositoryRef, name: str, force: bool = False, remote: bool = False
    ) -> OperationResult:
        name = (name or "").strip()
        if not name:
            return OperationResult.failed("branch name must be non-empty")

        if remote:
            remote_name, sep, branch = name.partition("/")
            if not sep or not remote_name or not branch:
                return OperationResult.failed(
                    f"Remote branch must be given as '<remote>/<branch>', got '{name}'"
                )
            return await self._write(
                "delete_remote_branch", ref, lambda b: b.delete_remote_branch(remote_name, branch)
            )

        async def _delete(backend: RepositoryBackend) -> OperationResult:
            for info in await backend.list_branches():
                if info.current and not info.is_remote and info.name == name:
                    return OperationResult.failed(
                        f"Cannot delete '{name}': it is the current branch", branch=name
                    )
            return await backend.delete_branch(name, bool(force))

        return await self._write("delete_branch", ref, _delete)

    async def cherry_pick(self, ref: RepositoryRef, branch: str, commit_hash: str) -> OperationResult:
        branch = (branch or "").strip()
        commit_hash = (commit_hash or "").strip()
        if not branch or not commit_hash:
            return OperationResult.failed("branch and hash are required")
        return await self._write("cherry_pick", ref, lambda b: b.cherry_pick(branch, commit_hash))

    async def revert(self, ref: RepositoryRef, branch: str, commit_hash: str) -> OperationResult:
        branch = (branch or "").strip()
        commit_hash = (commit_hash or "").strip()
        if not branch or not commit_hash:
            return OperationResult.failed("branch and hash are required")
        return await self._write("revert", ref, lambda b: b.revert(branch, commit_hash))

    async def reset(
        self, ref: RepositoryRef, branch: str, commit_hash: str, mode: str = "mixed"
    ) -> OperationResult:
        branch = (branch or "").strip()
        commit_hash = (commit_hash or "").strip()
        if not branch or not commit_hash:
            return OperationResult.failed("branch and hash are required")
        if mode not in RESET_MODES:
            return OperationResult.failed(f"mode must be one of {', '.join(RESET_MODES)}")
        return await self._write("reset", ref, lambda b: b.reset(branch, commit_hash, mode))

    async def merge_branch(
        self, ref: RepositoryRef, base: str, head: str, message: Optional[str] = None
    ) -> OperationResult:
        base = (base or "").strip()
        head = (head or "").strip()
        if not base or not head:
            return OperationResult.failed("base and head are required")
        return await self._write("merge_branch", ref, lambda b: b.merge_branch(base, head, message))

    async def create_or_update_file(
        self,
        ref: RepositoryRef,
        path: str,
        content: str,
        message: str,
        branch: Optional[str] = None,
        sha: Optional[str] = None,
    ) -> OperationResult:
        if not (path or "").strip() or not (message or "").strip():
            return OperationResult.failed("path and message are required")
        return await self._write(
            "create_or_update_file",
            ref,
            lambda b: b.create_or_update_file(path, content or "", message, branch, sha),
        )

    async def delete_file(
        self,
        ref: RepositoryRef,
        path: str,
        message: str,
        sha: str,
        branch: Optional[str] = None,
    ) -> OperationResult:
        if not (path or "").strip() or not (message or "").strip() or not (sha or "").strip():
            return OperationResult.failed("path, message and sha are required")
        return await self._write(
            "delete_file", ref, lambda b: b.delete_file(path, message, sha, branch)
        )

    async def create_release(
        self,
        ref: RepositoryRef,
        tag_name: str,
        *,
        name: Optional[str] = None,
        body: Optional[str] = None,
        target: Optional[str] = None,
        draft: bool = False,
        prerelease: bool = False,
    ) -> OperationResult:
        tag_name = (tag_name or "").strip()
        if not tag_name:
            return OperationResult.failed("tagName is required")
        return await self._write(
            "create_release",
            ref,
            lambda b: b.create_release(
                tag_name, name=name, body=body, target=target, draft=draft, prerelease=prerelease
            ),
        )

    async def create_pull_request(
        self,
        ref: RepositoryRef,
        title: str,
        head: str,
        base: str,
        body: Optional[str] = None,
        draft: bool = False,
    ) -> OperationResult:
        if not (title or "").strip() or not (head or "").strip() or not (base or "").strip():
            return OperationResult.failed("title, head and base are required")
        return await self._write(
            "create_pull_request",
            ref,
            lambda b: b.create_pull_request(title.strip(), head.strip(), base.strip(), body, draft),
        )

    async def merge_pull_request(
        self,
        ref: RepositoryRef,
        number: int,
        merge_method: str = "merge",
        commit_title: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> OperationResult:
        if merge_method not in MERGE_METHODS:
            return OperationResult.failed(f"mergeMethod must be one of {', '.join(MERGE_METHODS)}")
        return await self._write(
            "merge_pull_request",
            ref,
            lambda b: b.merge_pull_request(number, merge_method, commit_title, commit_message),
        )

    async def delete_repository(self, ref: RepositoryRef) -> OperationResult:
        return await self._write("delete_repository", ref, lambda b: b.delete_repository())

    # ------------------------------------------------------------------
    # Account level
    # ------------------------------------------------------------------

    async def list_user_repos(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._read(
            "list_user_repos", None, lambda a: a.list_user_repos((query or "").strip() or None)
        )

    async def get_user_profile(self, username: str) -> Dict[str, Any]:
        username = _required(username, "username")
        return await self._read("get_user_profile", None, lambda a: a.get_user_profile(username))

    async def get_repository_info(self, owner: str, repo: str) -> Dict[str, Any]:
        owner = _required(owner, "owner")
        repo = _required(repo, "repo")
        return await self._read(
            "get_repository_info", None, lambda a: a.get_repository_info(owner, repo)
        )

    async def create_repository(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        private: bool = False,
        auto_init: bool = True,
        gitignore_template: Optional[str] = None,
        license_template: Optional[str] = None,
    ) -> OperationResult:
        name = (name or "").strip()
        if not name:
            return OperationResult.failed("name is required")
        return await self._write(
            "create_repository",
            None,
            lambda a: a.create_repository(
                name,
                description=description,
                private=private,
                auto_init=auto_init,
                gitignore_template=gitignore_template,
                license_template=license_template,
            ),
        )


__all__ = ["MERGE_METHODS", "PULL_REQUEST_STATES", "RepositoryOperations", "clamp_count", "single_current"]
