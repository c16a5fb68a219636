"""GitHub-hosted repository adapter over the REST API."""

from __future__ import annotations

import asyncio
import base64
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..config import REMOTE_SEARCH_MAX_PAGES
from ..diff_utils import map_github_file_status
from ..exceptions import GitHubAPIError, NotFoundError, ValidationError
from ..http_clients import GitHubClient
from ..models import (
    BranchInfo,
    CommitDetail,
    CommitPage,
    CommitStats,
    CommitSummary,
    DiffResult,
    FileChange,
    FileContent,
    FileEntry,
    OperationResult,
    RemoteRepository,
    TagInfo,
    WorkingTreeStatus,
    abbreviate,
)
from .base import RepositoryBackend

PAGE_SIZE = 100
RAW_MEDIA_TYPE = "application/vnd.github.raw"

_LAST_PAGE_RE = re.compile(r'[?&]page=(\d+)[^>]*>;\s*rel="last"')


def _quote_ref(value: str) -> str:
    return quote(value.strip(), safe="/")


def _commit_summary(payload: Dict[str, Any]) -> CommitSummary:
    commit = payload.get("commit") or {}
    author = commit.get("author") or {}
    message = commit.get("message") or ""
    return CommitSummary(
        hash=payload.get("sha") or "",
        message=message.split("\n", 1)[0],
        author_name=author.get("name") or "Unknown",
        author_email=author.get("email") or "",
        date=author.get("date") or "",
    )


def _matches(payload: Dict[str, Any], search: Optional[str], author: Optional[str]) -> bool:
    commit = payload.get("commit") or {}
    if search and search.lower() not in (commit.get("message") or "").lower():
        return False
    if author:
        needle = author.lower()
        names = [
            (commit.get("author") or {}).get("name") or "",
            (commit.get("author") or {}).get("email") or "",
            (payload.get("author") or {}).get("login") or "",
        ]
        if not any(needle in n.lower() for n in names):
            return False
    return True


def _last_page(link_header: Optional[str]) -> Optional[int]:
    if not link_header:
        return None
    match = _LAST_PAGE_RE.search(link_header)
    return int(match.group(1)) if match else None


def _entry_type(item_type: str) -> str:
    return {"dir": "dir", "symlink": "symlink", "submodule": "submodule"}.get(item_type, "file")


class GitHubBackend(RepositoryBackend):
    """Adapter for ``owner/repo`` on GitHub. There is no working tree."""

    kind = "remote"

    def __init__(self, ref: RemoteRepository, client: GitHubClient) -> None:
        self.ref = ref
        self.client = client
        self._repo_info: Optional[Dict[str, Any]] = None

    @property
    def label(self) -> str:
        return self.ref.full_name

    @property
    def _base(self) -> str:
        return f"/repos/{self.ref.owner}/{self.ref.repo}"

    async def _info(self) -> Dict[str, Any]:
        if self._repo_info is None:
            self._repo_info = await self.client.get_json(self._base) or {}
        return self._repo_info

    async def default_branch(self) -> str:
        return (await self._info()).get("default_branch") or "main"

    async def _resolve_commit_sha(self, ref: str) -> str:
        ref = (ref or "").strip()
        if not ref:
            raise ValidationError("hash must be non-empty", field="hash")
        return (await self._commit_with_files(ref))["sha"]

    async def _branch_head(self, branch: str) -> str:
        payload = await self.client.get_json(f"{self._base}/git/ref/heads/{_quote_ref(branch)}")
        return payload["object"]["sha"]

    async def _branch_exists(self, branch: str) -> bool:
        try:
            await self._branch_head(branch)
        except NotFoundError:
            return False
        return True

    async def _commit_with_files(self, commit_hash: str) -> Dict[str, Any]:
        try:
            return await self.client.get_json(f"{self._base}/commits/{_quote_ref(commit_hash)}")
        except GitHubAPIError as exc:
            if exc.status_code == 422:
                raise NotFoundError(f"Commit {commit_hash!r} not found or ambiguous") from exc
            raise

    async def _commit_tree_onto(
        self,
        branch: str,
        tree_entries: List[Dict[str, Any]],
        message: str,
        author: Optional[Dict[str, Any]] = None,
    ) -> str:
        head_sha = await self._branch_head(branch)
        head_commit = await self.client.get_json(f"{self._base}/git/commits/{head_sha}")

        tree = await self.client.request(
            "POST",
            f"{self._base}/git/trees",
            json_body={"base_tree": head_commit["tree"]["sha"], "tree": tree_entries},
        )
        body: Dict[str, Any] = {
            "message": message,
            "tree": tree["json"]["sha"],
            "parents": [head_sha],
        }
        if author:
            body["author"] = author
        commit = await self.client.request("POST", f"{self._base}/git/commits", json_body=body)
        new_sha = commit["json"]["sha"]

        await self.client.request(
            "PATCH",
            f"{self._base}/git/refs/heads/{_quote_ref(branch)}",
            json_body={"sha": new_sha, "force": False},
        )
        return new_sha

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_overview(self) -> Dict[str, Any]:
        info = await self._info()
        default = info.get("default_branch") or "main"
        head_commit = ""
        head_message = ""
        try:
            branch = await self.client.get_json(f"{self._base}/branches/{_quote_ref(default)}")
            commit = branch.get("commit") or {}
            head_commit = abbreviate(commit.get("sha") or "")
            head_message = ((commit.get("commit") or {}).get("message") or "").split("\n", 1)[0]
        except NotFoundError:
            # Empty repositories have no default branch yet.
            pass

        return {
            "path": info.get("full_name") or self.ref.full_name,
            "currentBranch": default,
            "defaultBranch": default,
            "description": info.get("description"),
            "isPrivate": bool(info.get("private")),
            "remotes": [{"name": "origin", "fetchUrl": info.get("clone_url") or ""}],
            "isClean": True,
            "headCommit": head_commit,
            "headMessage": head_message,
            "staged": 0,
            "modified": 0,
            "untracked": 0,
            "url": info.get("html_url") or "",
        }

    async def _commits_page(self, branch: Optional[str], page: int, per_page: int) -> Dict[str, Any]:
        return await self.client.request(
            "GET",
            f"{self._base}/commits",
            params={"sha": branch, "per_page": per_page, "page": page},
            allow_status=(409,),
        )

    async def list_commits(
        self,
        *,
        branch: Optional[str],
        max_count: int,
        skip: int,
        search: Optional[str],
        author: Optional[str],
    ) -> CommitPage:
        if search or author:
            matched: List[Dict[str, Any]] = []
            for page in range(1, REMOTE_SEARCH_MAX_PAGES + 1):
                resp = await self._commits_page(branch, page, PAGE_SIZE)
                if resp["status_code"] == 409:
                    return CommitPage(commits=(), total=0)
                items = resp["json"] or []
                matched.extend(c for c in items if _matches(c, search, author))
                if len(items) < PAGE_SIZE:
                    break
            window = matched[skip : skip + max_count]
            return CommitPage(commits=tuple(_commit_summary(c) for c in window), total=len(matched))

        first_page = skip // PAGE_SIZE + 1
        offset = skip % PAGE_SIZE
        collected: List[Dict[str, Any]] = []
        page = first_page
        while len(collected) < offset + max_count:
            resp = await self._commits_page(branch, page, PAGE_SIZE)
            if resp["status_code"] == 409:
                return CommitPage(commits=(), total=0)
            items = resp["json"] or []
            collected.extend(items)
            if len(items) < PAGE_SIZE:
                break
            page += 1
        window = collected[offset : offset + max_count]

        # With per_page=1 the "last" page number is the commit count.
        count_resp = await self._commits_page(branch, 1, 1)
        total = _last_page(count_resp["headers"].get("link"))
        if total is None:
            total = len(count_resp["json"] or [])
        return CommitPage(commits=tuple(_commit_summary(c) for c in window), total=total)

    async def get_commit_detail(self, commit_hash: str) -> CommitDetail:
        commit_hash = (commit_hash or "").strip()
        if not commit_hash:
            raise ValidationError("hash must be non-empty", field="hash")
        payload = await self._commit_with_files(commit_hash)
        # Fetch the patch by full sha so both requests describe the same commit.
        diff = await self.client.get_text(f"{self._base}/commits/{payload['sha']}")

        message = (payload.get("commit") or {}).get("message") or ""
        files = tuple(
            FileChange(
                file=f.get("filename") or "",
                status=map_github_file_status(f.get("status")),
                insertions=int(f.get("additions") or 0),
                deletions=int(f.get("deletions") or 0),
                binary="patch" not in f and f.get("status") != "renamed",
            )
            for f in payload.get("files") or []
        )
        return CommitDetail(
            summary=_commit_summary(payload),
            body=message.split("\n", 1)[1].strip() if "\n" in message else "",
            parent_hashes=tuple(p.get("sha") or "" for p in payload.get("parents") or []),
            stats=CommitStats(
                changed=len(files),
                insertions=sum(f.insertions for f in files),
                deletions=sum(f.deletions for f in files),
            ),
            files=files,
            diff=diff,
        )

    async def diff_between(self, from_ref: str, to_ref: str) -> DiffResult:
        from_ref = (from_ref or "").strip()
        to_ref = (to_ref or "").strip()
        if not from_ref or not to_ref:
            raise ValidationError("from and to must be non-empty", field="from")
        diff = await self.client.get_text(
            f"{self._base}/compare/{_quote_ref(from_ref)}...{_quote_ref(to_ref)}"
        )
        return DiffResult(diff=diff, from_ref=from_ref, to_ref=to_ref, diff_length=len(diff))

    async def list_branches(self) -> List[BranchInfo]:
        default, items = await asyncio.gather(
            self.default_branch(),
            self.client.get_json(f"{self._base}/branches", per_page=PAGE_SIZE),
        )
        branches = [
            BranchInfo(
                name=b["name"],
                commit=abbreviate((b.get("commit") or {}).get("sha") or ""),
                current=b["name"] == default,
            )
            for b in items or []
        ]
        if not branches:
            # Empty repository: the default branch exists only as a name.
            return [BranchInfo(name=default, commit="", current=True)]
        if not any(b.current for b in branches):
            # Default branch fell outside the first page.
            payload = await self.client.get_json(f"{self._base}/branches/{_quote_ref(default)}")
            branches.insert(
                0,
                BranchInfo(
                    name=default,
                    commit=abbreviate((payload.get("commit") or {}).get("sha") or ""),
                    current=True,
                ),
            )
        return branches

    async def list_tags(self) -> List[TagInfo]:
        items = await self.client.get_json(f"{self._base}/tags", per_page=PAGE_SIZE)
        return [
            TagInfo(
                name=t["name"],
                hash=abbreviate((t.get("commit") or {}).get("sha") or ""),
                is_annotated=None,
            )
            for t in items or []
        ]

    async def list_files(self, directory: str, at_ref: Optional[str]) -> List[FileEntry]:
        directory = (directory or "").strip().strip("/")
        path = f"{self._base}/contents/{_quote_ref(directory)}" if directory else f"{self._base}/contents"
        data = await self.client.get_json(path, ref=at_ref)
        items = data if isinstance(data, list) else [data]
        return [
            FileEntry(
                name=item.get("name") or "",
                path=item.get("path") or "",
                type=_entry_type(item.get("type") or "file"),
                size=item.get("size") if item.get("type") != "dir" else None,
            )
            for item in items
            if isinstance(item, dict)
        ]

    async def read_file(self, path: str, at_ref: Optional[str]) -> FileContent:
        path = (path or "").strip().lstrip("/")
        if not path:
            raise ValidationError("path must be non-empty", field="path")
        url = f"{self._base}/contents/{_quote_ref(path)}"
        data = await self.client.get_json(url, ref=at_ref)
        if isinstance(data, list) or not isinstance(data, dict) or data.get("type") != "file":
            raise ValidationError(f"Path '{path}' is not a file", field="path")

        encoded = data.get("content") or ""
        if data.get("encoding") == "base64" and encoded:
            content = base64.b64decode(encoded).decode("utf-8", errors="replace")
        elif data.get("size"):
            # Files above the contents API inline limit come back without content.
            content = await self.client.get_text(url, media_type=RAW_MEDIA_TYPE, ref=at_ref)
        else:
            content = ""

        return FileContent(
            path=path,
            ref=at_ref or await self.default_branch(),
            content=content,
            size=int(data.get("size") or len(content)),
            sha=data.get("sha") or "",
        )

    async def get_status(self) -> WorkingTreeStatus:
        return WorkingTreeStatus(current=await self.default_branch())

    async def list_contributors(self, max_count: int) -> List[Dict[str, Any]]:
        items = await self.client.get_json(f"{self._base}/contributors", per_page=max_count)
        return [
            {
                "username": c.get("login") or "Unknown",
                "avatarUrl": c.get("avatar_url") or "",
                "contributions": c.get("contributions") or 0,
                "type": c.get("type") or "User",
                "profileUrl": c.get("html_url") or f"https://github.com/{c.get('login') or 'ghost'}",
            }
            for c in items or []
        ]

    async def list_pull_requests(self, state: str, max_count: int) -> List[Dict[str, Any]]:
        items = await self.client.get_json(
            f"{self._base}/pulls",
            state=state,
            sort="updated",
            direction="desc",
            per_page=max_count,
        )
        return [
            {
                "number": pr.get("number"),
                "title": pr.get("title") or "",
                "state": "merged" if pr.get("merged_at") else pr.get("state"),
                "author": (pr.get("user") or {}).get("login") or "unknown",
                "createdAt": pr.get("created_at"),
                "updatedAt": pr.get("updated_at"),
                "draft": bool(pr.get("draft")),
                "labels": [label.get("name") or "" for label in pr.get("labels") or []],
                "head": (pr.get("head") or {}).get("ref"),
                "base": (pr.get("base") or {}).get("ref"),
                "url": pr.get("html_url"),
            }
            for pr in items or []
        ]

    async def get_pull_request(self, number: int) -> Dict[str, Any]:
        pr, reviews, files = await asyncio.gather(
            self.client.get_json(f"{self._base}/pulls/{number}"),
            self.client.get_json(f"{self._base}/pulls/{number}/reviews"),
            self.client.get_json(f"{self._base}/pulls/{number}/files", per_page=PAGE_SIZE),
        )
        return {
            "number": pr.get("number"),
            "title": pr.get("title") or "",
            "body": pr.get("body") or "",
            "state": "merged" if pr.get("merged_at") else pr.get("state"),
            "merged": bool(pr.get("merged")),
            "mergeable": pr.get("mergeable"),
            "draft": bool(pr.get("draft")),
            "author": (pr.get("user") or {}).get("login") or "unknown",
            "createdAt": pr.get("created_at"),
            "updatedAt": pr.get("updated_at"),
            "mergedAt": pr.get("merged_at"),
            "mergedBy": (pr.get("merged_by") or {}).get("login"),
            "commits": pr.get("commits"),
            "additions": pr.get("additions"),
            "deletions": pr.get("deletions"),
            "changedFiles": pr.get("changed_files"),
            "head": (pr.get("head") or {}).get("ref"),
            "base": (pr.get("base") or {}).get("ref"),
            "labels": [label.get("name") or "" for label in pr.get("labels") or []],
            "reviews": [
                {
                    "user": (r.get("user") or {}).get("login") or "unknown",
                    "state": r.get("state"),
                    "submittedAt": r.get("submitted_at") or "",
                }
                for r in reviews or []
            ],
            "files": [
                {
                    "filename": f.get("filename"),
                    "status": f.get("status"),
                    "additions": f.get("additions"),
                    "deletions": f.get("deletions"),
                    "changes": f.get("changes"),
                }
                for f in files or []
            ],
            "url": pr.get("html_url"),
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_branch(self, name: str, from_ref: Optional[str]) -> OperationResult:
        if await self._branch_exists(name):
            return OperationResult.failed(f"Branch '{name}' already exists")
        source = from_ref or await self.default_branch()
        sha = await self._resolve_commit_sha(source)
        await self.client.request(
            "POST",
            f"{self._base}/git/refs",
            json_body={"ref": f"refs/heads/{name}", "sha": sha},
        )
        return OperationResult.ok(
            f"Branch '{name}' created from {source} ({abbreviate(sha)})",
            branch=name,
            commit=sha,
        )

    async def delete_branch(self, name: str, force: bool) -> OperationResult:
        if not await self._branch_exists(name):
            return OperationResult.failed(f"Branch '{name}' does not exist")
        await self.client.request(
            "DELETE", f"{self._base}/git/refs/heads/{_quote_ref(name)}", expect_json=False
        )
        return OperationResult.ok(f"Branch '{name}' deleted", branch=name)

    async def delete_remote_branch(self, remote: str, branch: str) -> OperationResult:
        # The GitHub repository is itself the remote, known locally as origin.
        if remote != "origin":
            return OperationResult.failed(
                f"Unknown remote '{remote}'; a GitHub repository only has 'origin'"
            )
        if branch == await self.default_branch():
            return OperationResult.failed(
                f"Cannot delete '{branch}': it is the default branch", branch=branch
            )
        result = await self.delete_branch(branch, force=True)
        if result.success:
            return OperationResult.ok(
                f"Remote branch '{remote}/{branch}' deleted", remote=remote, branch=branch
            )
        return result

    async def cherry_pick(self, branch: str, commit_hash: str) -> OperationResult:
        detail = await self._commit_with_files(commit_hash)
        files = detail.get("files") or []
        if not files:
            return OperationResult.failed(f"Commit {abbreviate(detail['sha'])} has no file changes")

        entries: List[Dict[str, Any]] = []
        for f in files:
            status = f.get("status")
            if status == "removed":
                entries.append({"path": f["filename"], "mode": "100644", "type": "blob", "sha": None})
                continue
            if status == "renamed" and f.get("previous_filename"):
                entries.append(
                    {"path": f["previous_filename"], "mode": "100644", "type": "blob", "sha": None}
                )
            entries.append({"path": f["filename"], "mode": "100644", "type": "blob", "sha": f["sha"]})

        commit = detail.get("commit") or {}
        author = commit.get("author") or None
        new_sha = await self._commit_tree_onto(
            branch, entries, commit.get("message") or "", author=author
        )
        return OperationResult.ok(
            f"Cherry-picked {abbreviate(detail['sha'])} onto '{branch}' ({abbreviate(new_sha)})",
            branch=branch,
            commit=new_sha,
        )

    async def revert(self, branch: str, commit_hash: str) -> OperationResult:
        detail = await self._commit_with_files(commit_hash)
        parents = detail.get("parents") or []
        if not parents:
            return OperationResult.failed("Cannot revert the initial commit")
        files = detail.get("files") or []
        if not files:
            return OperationResult.failed(f"Commit {abbreviate(detail['sha'])} has no file changes")
        parent_sha = parents[0]["sha"]

        entries: List[Dict[str, Any]] = []
        lookups: List[str] = []
        for f in files:
            status = f.get("status")
            if status == "added":
                entries.append({"path": f["filename"], "mode": "100644", "type": "blob", "sha": None})
            elif status == "renamed" and f.get("previous_filename"):
                entries.append({"path": f["filename"], "mode": "100644", "type": "blob", "sha": None})
                lookups.append(f["previous_filename"])
            else:
                lookups.append(f["filename"])

        async def _parent_blob(path: str) -> Optional[Dict[str, Any]]:
            try:
                data = await self.client.get_json(
                    f"{self._base}/contents/{_quote_ref(path)}", ref=parent_sha
                )
            except NotFoundError:
                return None
            if isinstance(data, dict) and data.get("type") == "file":
                return {"path": path, "mode": "100644", "type": "blob", "sha": data["sha"]}
            return None

        for blob in await asyncio.gather(*(_parent_blob(p) for p in lookups)):
            if blob is not None:
                entries.append(blob)

        subject = ((detail.get("commit") or {}).get("message") or "").split("\n", 1)[0]
        new_sha = await self._commit_tree_onto(
            branch,
            entries,
            f'Revert "{subject}"\n\nThis reverts commit {detail["sha"]}.',
        )
        return OperationResult.ok(
            f"Reverted {abbreviate(detail['sha'])} on '{branch}' ({abbreviate(new_sha)})",
            branch=branch,
            commit=new_sha,
        )

    async def reset(self, branch: str, commit_hash: str, mode: str) -> OperationResult:
        sha = await self._resolve_commit_sha(commit_hash)
        if not await self._branch_exists(branch):
            return OperationResult.failed(f"Branch '{branch}' does not exist")
        await self.client.request(
            "PATCH",
            f"{self._base}/git/refs/heads/{_quote_ref(branch)}",
            json_body={"sha": sha, "force": True},
        )
        return OperationResult.ok(
            f"Branch '{branch}' reset to {abbreviate(sha)}",
            branch=branch,
            commit=sha,
            mode=mode,
        )

    async def merge_branch(self, base: str, head: str, message: Optional[str]) -> OperationResult:
        body: Dict[str, Any] = {"base": base, "head": head}
        if message:
            body["commit_message"] = message
        resp = await self.client.request(
            "POST", f"{self._base}/merges", json_body=body, allow_status=(409,)
        )
        if resp["status_code"] == 409:
            return OperationResult.failed(
                f"Merge of '{head}' into '{base}' has conflicts", base=base, head=head
            )
        if resp["status_code"] == 204:
            return OperationResult.ok(f"'{base}' already contains '{head}'", base=base, head=head)
        sha = (resp["json"] or {}).get("sha") or ""
        return OperationResult.ok(
            f"Merged '{head}' into '{base}' ({abbreviate(sha)})", base=base, head=head, commit=sha
        )

    async def create_or_update_file(
        self,
        path: str,
        content: str,
        message: str,
        branch: Optional[str],
        sha: Optional[str],
    ) -> OperationResult:
        path = (path or "").strip().lstrip("/")
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if branch:
            body["branch"] = branch
        if sha:
            body["sha"] = sha
        resp = await self.client.request(
            "PUT", f"{self._base}/contents/{_quote_ref(path)}", json_body=body
        )
        data = resp["json"] or {}
        return OperationResult.ok(
            f"File '{path}' {'updated' if sha else 'created'}",
            path=path,
            sha=(data.get("content") or {}).get("sha") or "",
            commitSha=(data.get("commit") or {}).get("sha") or "",
        )

    async def delete_file(
        self, path: str, message: str, sha: str, branch: Optional[str]
    ) -> OperationResult:
        path = (path or "").strip().lstrip("/")
        body: Dict[str, Any] = {"message": message, "sha": sha}
        if branch:
            body["branch"] = branch
        resp = await self.client.request(
            "DELETE", f"{self._base}/contents/{_quote_ref(path)}", json_body=body
        )
        data = resp["json"] or {}
        return OperationResult.ok(
            f"File '{path}' deleted",
            path=path,
            commitSha=(data.get("commit") or {}).get("sha") or "",
        )

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
        payload: Dict[str, Any] = {
            "tag_name": tag_name,
            "draft": draft,
            "prerelease": prerelease,
        }
        if name:
            payload["name"] = name
        if body:
            payload["body"] = body
        if target:
            payload["target_commitish"] = target
        resp = await self.client.request("POST", f"{self._base}/releases", json_body=payload)
        data = resp["json"] or {}
        return OperationResult.ok(
            f"Release '{tag_name}' created",
            tagName=data.get("tag_name") or tag_name,
            id=data.get("id"),
            url=data.get("html_url") or "",
            draft=bool(data.get("draft")),
            prerelease=bool(data.get("prerelease")),
        )

    async def create_pull_request(
        self, title: str, head: str, base: str, body: Optional[str], draft: bool
    ) -> OperationResult:
        payload: Dict[str, Any] = {"title": title, "head": head, "base": base, "draft": draft}
        if body:
            payload["body"] = body
        resp = await self.client.request("POST", f"{self._base}/pulls", json_body=payload)
        data = resp["json"] or {}
        return OperationResult.ok(
            f"Pull request #{data.get('number')} '{data.get('title') or title}' created",
            number=data.get("number"),
            url=data.get("html_url") or "",
            draft=bool(data.get("draft")),
        )

    async def merge_pull_request(
        self,
        number: int,
        merge_method: str,
        commit_title: Optional[str],
        commit_message: Optional[str],
    ) -> OperationResult:
        payload: Dict[str, Any] = {"merge_method": merge_method}
        if commit_title:
            payload["commit_title"] = commit_title
        if commit_message:
            payload["commit_message"] = commit_message
        resp = await self.client.request(
            "PUT",
            f"{self._base}/pulls/{number}/merge",
            json_body=payload,
            allow_status=(405, 409),
        )
        data = resp["json"] or {}
        if resp["status_code"] in (405, 409) or not data.get("merged"):
            return OperationResult.failed(
                data.get("message") or f"Pull request #{number} could not be merged",
                number=number,
            )
        return OperationResult.ok(
            data.get("message") or f"Pull request #{number} merged",
            number=number,
            sha=data.get("sha") or "",
        )

    async def delete_repository(self) -> OperationResult:
        await self.client.request("DELETE", self._base, expect_json=False)
        return OperationResult.ok(
            f"Repository '{self.ref.full_name}' has been permanently deleted",
            owner=self.ref.owner,
            repo=self.ref.repo,
        )


class GitHubAccount:
    """Account-level GitHub operations that need no selected repository."""

    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    async def list_user_repos(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        items = await self.client.get_json(
            "/user/repos",
            sort="updated",
            per_page=PAGE_SIZE,
            affiliation="owner,collaborator,organization_member",
        )
        repos = [
            {
                "owner": (r.get("owner") or {}).get("login") or "",
                "name": r.get("name") or "",
                "fullName": r.get("full_name") or "",
                "defaultBranch": r.get("default_branch"),
                "isPrivate": bool(r.get("private")),
                "description": r.get("description"),
                "language": r.get("language"),
                "updatedAt": r.get("updated_at"),
                "stargazersCount": r.get("stargazers_count") or 0,
                "url": r.get("html_url"),
            }
            for r in items or []
        ]
        if query:
            needle = query.lower()
            repos = [
                r
                for r in repos
                if needle in r["fullName"].lower() or needle in (r["description"] or "").lower()
            ]
        return repos

    async def get_user_profile(self, username: str) -> Dict[str, Any]:
        data = await self.client.get_json(f"/users/{quote(username.strip(), safe='')}")
        return {
            "username": data.get("login"),
            "name": data.get("name"),
            "avatarUrl": data.get("avatar_url"),
            "bio": data.get("bio"),
            "company": data.get("company"),
            "location": data.get("location"),
            "blog": data.get("blog") or None,
            "publicRepos": data.get("public_repos"),
            "followers": data.get("followers"),
            "following": data.get("following"),
            "createdAt": data.get("created_at"),
            "profileUrl": data.get("html_url"),
            "type": data.get("type"),
        }

    async def get_repository_info(self, owner: str, repo: str) -> Dict[str, Any]:
        data = await self.client.get_json(f"/repos/{owner}/{repo}")
        return {
            "owner": (data.get("owner") or {}).get("login") or owner,
            "name": data.get("name") or repo,
            "fullName": data.get("full_name") or f"{owner}/{repo}",
            "defaultBranch": data.get("default_branch"),
            "isPrivate": bool(data.get("private")),
            "description": data.get("description"),
            "url": data.get("html_url"),
        }

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
        payload: Dict[str, Any] = {"name": name, "private": private, "auto_init": auto_init}
        if description:
            payload["description"] = description
        if gitignore_template:
            payload["gitignore_template"] = gitignore_template
        if license_template:
            payload["license_template"] = license_template
        resp = await self.client.request("POST", "/user/repos", json_body=payload)
        data = resp["json"] or {}
        owner = (data.get("owner") or {}).get("login") or ""
        return OperationResult.ok(
            f"Repository '{data.get('full_name') or name}' created",
            owner=owner,
            repo=data.get("name") or name,
            fullName=data.get("full_name") or f"{owner}/{name}",
            url=data.get("html_url") or "",
            defaultBranch=data.get("default_branch"),
            isPrivate=bool(data.get("private")),
        )


__all__ = ["GitHubAccount", "GitHubBackend"]
