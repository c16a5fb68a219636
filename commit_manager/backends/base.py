"""Abstract adapter every repository backend implements.

Adapters are bound to one repository and return raw (untruncated, unclamped)
results in the shared data model. The facade owns clamping, truncation and
error normalization.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from ..exceptions import UnsupportedOperationError
from ..models import (
    BranchInfo,
    CommitDetail,
    CommitPage,
    DiffResult,
    FileContent,
    FileEntry,
    OperationResult,
    StashEntry,
    TagInfo,
    WorkingTreeStatus,
)

_BRANCH_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._/-]{0,199}")


def branch_name_problem(name: str) -> Optional[str]:
    """Return why ``name`` is not a usable branch name, or None when it is."""

    if not name or not name.strip():
        return "branch name must be non-empty"
    if not _BRANCH_NAME_RE.fullmatch(name):
        return "branch name contains invalid characters"
    if ".." in name or "@{" in name or "//" in name:
        return "branch name contains an invalid ref sequence"
    if name.endswith("/") or name.endswith("."):
        return "branch name must not end with '/' or '.'"
    if name.endswith(".lock"):
        return "branch name must not end with '.lock'"
    return None


class RepositoryBackend:
    """Operations a repository backend may support.

    The default implementation of every capability raises
    ``UnsupportedOperationError``.
    """

    kind = "unknown"

    @property
    def label(self) -> str:
        raise NotImplementedError

    def _unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(
            f"{operation} is not supported for {self.kind} repositories"
        )

    # Reads -----------------------------------------------------------------

    async def get_overview(self) -> Dict[str, Any]:
        raise self._unsupported("get_overview")

    async def list_commits(
        self,
        *,
        branch: Optional[str],
        max_count: int,
        skip: int,
        search: Optional[str],
        author: Optional[str],
    ) -> CommitPage:
        raise self._unsupported("list_commits")

    async def get_commit_detail(self, commit_hash: str) -> CommitDetail:
        raise self._unsupported("get_commit_detail")

    async def diff_between(self, from_ref: str, to_ref: str) -> DiffResult:
        raise self._unsupported("diff_between")

    async def list_branches(self) -> List[BranchInfo]:
        raise self._unsupported("list_branches")

    async def list_tags(self) -> List[TagInfo]:
        raise self._unsupported("list_tags")

    async def list_files(self, directory: str, at_ref: Optional[str]) -> List[FileEntry]:
        raise self._unsupported("list_files")

    async def read_file(self, path: str, at_ref: Optional[str]) -> FileContent:
        raise self._unsupported("read_file")

    async def get_status(self) -> WorkingTreeStatus:
        raise self._unsupported("get_status")

    async def list_stashes(self) -> List[StashEntry]:
        raise self._unsupported("list_stashes")

    async def list_contributors(self, max_count: int) -> List[Dict[str, Any]]:
        raise self._unsupported("list_contributors")

    async def list_pull_requests(self, state: str, max_count: int) -> List[Dict[str, Any]]:
        raise self._unsupported("list_pull_requests")

    async def get_pull_request(self, number: int) -> Dict[str, Any]:
        raise self._unsupported("get_pull_request")

    # Writes ----------------------------------------------------------------

    async def create_branch(self, name: str, from_ref: Optional[str]) -> OperationResult:
        raise self._unsupported("create_branch")

    async def delete_branch(self, name: str, force: bool) -> OperationResult:
        raise self._unsupported("delete_branch")

    async def delete_remote_branch(self, remote: str, branch: str) -> OperationResult:
        raise self._unsupported("delete_remote_branch")

    async def cherry_pick(self, branch: str, commit_hash: str) -> OperationResult:
        raise self._unsupported("cherry_pick")

    async def revert(self, branch: str, commit_hash: str) -> OperationResult:
        raise self._unsupported("revert")

    async def reset(self, branch: str, commit_hash: str, mode: str) -> OperationResult:
        raise self._unsupported("reset")

    async def merge_branch(self, base: str, head: str, message: Optional[str]) -> OperationResult:
        raise self._unsupported("merge_branch")

    async def create_or_update_file(
        self,
        path: str,
        content: str,
        message: str,
        branch: Optional[str],
        sha: Optional[str],
    ) -> OperationResult:
        raise self._unsupported("create_or_update_file")

    async def delete_file(
        self, path: str, message: str, sha: str, branch: Optional[str]
    ) -> OperationResult:
        raise self._unsupported("delete_file")

    async def create_release(
        self,
        tag_name: str,
        *,
        name: Optional[str],
        body: Optional[str],
        target: Optional[str],
        draft: bool,
        prerelease: bool,
    ) -> OperationResult:
        raise self._unsupported("create_release")

    async def create_pull_request(
        self, title: str, head: str, base: str, body: Optional[str], draft: bool
    ) -> OperationResult:
        raise self._unsupported("create_pull_request")

    async def merge_pull_request(
        self,
        number: int,
        merge_method: str,
        commit_title: Optional[str],
        commit_message: Optional[str],
    ) -> OperationResult:
        raise self._unsupported("merge_pull_request")

    async def delete_repository(self) -> OperationResult:
        raise self._unsupported("delete_repository")


__all__ = ["RepositoryBackend", "branch_name_problem"]
