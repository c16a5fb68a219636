"""Local working-copy adapter driven by the ``git`` CLI."""

from __future__ import annotations

import os
import re
import shlex
import shutil
import tempfile
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..config import GIT_LOGGER
from ..diff_utils import numstat_path, parse_name_status, parse_numstat
from ..exceptions import GitCommandError, NotFoundError, ValidationError
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
    LocalRepository,
    OperationResult,
    RemoteInfo,
    StashEntry,
    TagInfo,
    WorkingTreeStatus,
    abbreviate,
)
from ..workspace import run_shell
from .base import RepositoryBackend

# Field and record separators for --format strings. Neither can appear in a
# ref name and both survive output sanitizing.
FS = "\x1f"
RS = "\x1e"

_LOG_FORMAT = "%H%x1f%s%x1f%an%x1f%ae%x1f%aI%x1f%D%x1e"
_SHOW_FORMAT = "%H%x1f%s%x1f%an%x1f%ae%x1f%aI%x1f%D%x1f%P%x1f%b"

_NOT_FOUND_MARKERS = (
    "unknown revision",
    "bad revision",
    "not a valid object name",
    "does not exist",
    "exists on disk, but not in",
    "invalid object name",
    "not a tree object",
    "bad object",
)

_CONFLICT_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}

_AHEAD_RE = re.compile(r"ahead (\d+)")
_BEHIND_RE = re.compile(r"behind (\d+)")


def _git_command(args: Sequence[str]) -> str:
    return "git " + " ".join(shlex.quote(str(a)) for a in args)


def _detail(result: Dict[str, Any]) -> str:
    detail = (result.get("stderr") or "").strip() or (result.get("stdout") or "").strip()
    if len(detail) > 2000:
        detail = detail[:2000] + "…"
    return detail


def _reject_option(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} must be non-empty", field=field)
    if value.startswith("-"):
        raise ValidationError(f"{field} must not start with '-'", field=field)
    return value


def _parse_status_header(header: str) -> Dict[str, Any]:
    """Parse the ``## ...`` line of ``git status --porcelain=v1 --branch``."""

    text = header[2:].strip()
    out: Dict[str, Any] = {"current": None, "tracking": None, "ahead": 0, "behind": 0}

    for prefix in ("No commits yet on ", "Initial commit on "):
        if text.startswith(prefix):
            out["current"] = text[len(prefix):].strip()
            return out
    if text.startswith("HEAD (no branch)"):
        return out

    bracket = ""
    if " [" in text and text.endswith("]"):
        text, bracket = text.split(" [", 1)
    if "..." in text:
        current, tracking = text.split("...", 1)
        out["current"] = current
        out["tracking"] = tracking or None
    else:
        out["current"] = text or None

    ahead = _AHEAD_RE.search(bracket)
    behind = _BEHIND_RE.search(bracket)
    out["ahead"] = int(ahead.group(1)) if ahead else 0
    out["behind"] = int(behind.group(1)) if behind else 0
    return out


def parse_porcelain_status(stdout: str) -> WorkingTreeStatus:
    """Build a ``WorkingTreeStatus`` from porcelain v1 output with a branch header."""

    lines = [ln for ln in (stdout or "").split("\n") if ln]
    header: Dict[str, Any] = {"current": None, "tracking": None, "ahead": 0, "behind": 0}
    if lines and lines[0].startswith("##"):
        header = _parse_status_header(lines.pop(0))

    staged: List[str] = []
    modified: List[str] = []
    deleted: List[str] = []
    untracked: List[str] = []
    conflicted: List[str] = []

    for ln in lines:
        if ln.startswith("?? "):
            untracked.append(ln[3:])
            continue
        if len(ln) < 4:
            continue
        code = ln[:2]
        path = ln[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if code in _CONFLICT_CODES:
            conflicted.append(path)
            continue
        idx, wtree = code[0], code[1]
        if idx in "MADRC":
            staged.append(path)
        if wtree == "M":
            modified.append(path)
        if idx == "D" or wtree == "D":
            deleted.append(path)

    return WorkingTreeStatus(
        current=header["current"],
        tracking=header["tracking"],
        ahead=header["ahead"],
        behind=header["behind"],
        staged=tuple(staged),
        modified=tuple(modified),
        deleted=tuple(deleted),
        untracked=tuple(untracked),
        conflicted=tuple(conflicted),
    )


def _parse_log_records(stdout: str) -> List[CommitSummary]:
    commits: List[CommitSummary] = []
    for record in (stdout or "").split(RS):
        record = record.strip("\n")
        if not record:
            continue
        parts = record.split(FS)
        if len(parts) < 6:
            continue
        sha, subject, author_name, author_email, date, refs = parts[:6]
        commits.append(
            CommitSummary(
                hash=sha,
                message=subject,
                author_name=author_name,
                author_email=author_email,
                date=date,
                refs=refs.strip(),
            )
        )
    return commits


def _entry_type(mode: str, object_type: str) -> str:
    if object_type == "tree":
        return "dir"
    if object_type == "commit":
        return "submodule"
    if mode == "120000":
        return "symlink"
    return "file"


class LocalGitBackend(RepositoryBackend):
    """Adapter for a working copy on the local filesystem."""

    kind = "local"

    def __init__(self, ref: LocalRepository) -> None:
        self.ref = ref
        self.path = os.path.abspath(os.path.expanduser(ref.path))
        self._validated = False

    @property
    def label(self) -> str:
        return self.ref.path

    # ------------------------------------------------------------------
    # git plumbing
    # ------------------------------------------------------------------

    async def _git_raw(
        self, *args: str, cwd: Optional[str] = None, raw: bool = False
    ) -> Dict[str, Any]:
        cmd = _git_command(args)
        result = await run_shell(cmd, cwd=cwd or self.path, raw_stdout=raw)
        GIT_LOGGER.detailed(
            "[git] %s -> exit=%s",
            cmd,
            result.get("exit_code"),
            extra={"repo_path": self.path},
        )
        return result

    async def _git(
        self,
        *args: str,
        cwd: Optional[str] = None,
        action: Optional[str] = None,
        raw: bool = False,
    ) -> str:
        """Run git and return stdout, raising on a non-zero exit code.

        ``raw`` keeps stdout byte-faithful (file contents, patches).
        """

        await self._ensure_repository()
        result = await self._git_raw(*args, cwd=cwd, raw=raw)
        if result.get("timed_out"):
            raise GitCommandError(action or f"git {args[0]}", detail="timed out")
        if result.get("exit_code") != 0:
            detail = _detail(result)
            lowered = detail.lower()
            if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
                raise NotFoundError(detail)
            raise GitCommandError(
                action or f"git {args[0]}",
                exit_code=result.get("exit_code"),
                detail=detail,
            )
        return result.get("stdout") or ""

    async def _ensure_repository(self) -> None:
        if self._validated:
            return
        if not os.path.isdir(self.path):
            raise NotFoundError(f"Repository path does not exist: {self.ref.path}")
        result = await self._git_raw("rev-parse", "--is-inside-work-tree")
        if result.get("exit_code") != 0 or (result.get("stdout") or "").strip() != "true":
            raise NotFoundError(f"Not a git working tree: {self.ref.path}")
        self._validated = True

    async def _current_branch(self) -> Optional[str]:
        """Name of the checked-out branch, or None on a detached HEAD."""

        await self._ensure_repository()
        result = await self._git_raw("symbolic-ref", "--quiet", "--short", "HEAD")
        if result.get("exit_code") != 0:
            return None
        return (result.get("stdout") or "").strip() or None

    async def _head_commit(self) -> Optional[str]:
        await self._ensure_repository()
        result = await self._git_raw("rev-parse", "--verify", "--quiet", "HEAD^{commit}")
        if result.get("exit_code") != 0:
            return None
        return (result.get("stdout") or "").strip() or None

    async def _branch_exists(self, name: str) -> bool:
        await self._ensure_repository()
        result = await self._git_raw("show-ref", "--verify", "--quiet", f"refs/heads/{name}")
        return result.get("exit_code") == 0

    async def _resolve_commit(self, commit_hash: str) -> str:
        commit_hash = _reject_option(commit_hash, "hash")
        await self._ensure_repository()
        result = await self._git_raw("rev-parse", "--verify", "--quiet", f"{commit_hash}^{{commit}}")
        sha = (result.get("stdout") or "").strip()
        if result.get("exit_code") != 0 or not sha:
            raise NotFoundError(f"Commit {commit_hash!r} not found or ambiguous")
        return sha

    async def _parent_count(self, sha: str) -> int:
        out = await self._git("rev-list", "--parents", "-n", "1", sha)
        return max(0, len(out.split()) - 1)

    @asynccontextmanager
    async def _checkout_of(self, branch: str) -> AsyncIterator[str]:
        """Yield a directory with ``branch`` checked out.

        That is the repository itself for the current branch; any other branch
        gets a temporary worktree that is removed on exit.
        """

        if branch == await self._current_branch():
            yield self.path
            return

        tmp_root = tempfile.mkdtemp(prefix="commit-manager-")
        worktree = os.path.join(tmp_root, "worktree")
        try:
            await self._git("worktree", "add", "--quiet", worktree, branch, action="git worktree add")
            yield worktree
        finally:
            await self._git_raw("worktree", "remove", "--force", worktree)
            shutil.rmtree(tmp_root, ignore_errors=True)
            await self._git_raw("worktree", "prune")

    async def _apply_commit(
        self, branch: str, commit_hash: str, *, verb: str, past: str
    ) -> OperationResult:
        sha = await self._resolve_commit(commit_hash)
        if not await self._branch_exists(branch):
            return OperationResult.failed(f"Branch '{branch}' does not exist")

        args = [verb]
        if verb == "revert":
            args.append("--no-edit")
        if await self._parent_count(sha) > 1:
            args.extend(["-m", "1"])
        args.append(sha)

        async with self._checkout_of(branch) as cwd:
            result = await self._git_raw(*args, cwd=cwd)
            if result.get("exit_code") != 0 or result.get("timed_out"):
                await self._git_raw(verb, "--abort", cwd=cwd)
                return OperationResult.failed(
                    f"git {verb} of {abbreviate(sha)} onto '{branch}' failed: {_detail(result)}",
                    branch=branch,
                )
            new_head = (await self._git("rev-parse", "HEAD", cwd=cwd)).strip()

        return OperationResult.ok(
            f"{past} {abbreviate(sha)} on '{branch}' ({abbreviate(new_head)})",
            branch=branch,
            commit=new_head,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_overview(self) -> Dict[str, Any]:
        current = await self._current_branch()
        status = await self.get_status()
        remotes = await self._list_remotes()

        head_commit = ""
        head_message = ""
        if await self._head_commit():
            out = await self._git("log", "-1", "--format=%H%x1f%s")
            sha, _, subject = out.strip("\n").partition(FS)
            head_commit = abbreviate(sha)
            head_message = subject

        return {
            "path": self.ref.path,
            "currentBranch": current,
            "remotes": [r.to_dict() for r in remotes],
            "isClean": status.is_clean,
            "headCommit": head_commit,
            "headMessage": head_message,
            "staged": len(status.staged),
            "modified": len(status.modified),
            "untracked": len(status.untracked),
        }

    async def _list_remotes(self) -> List[RemoteInfo]:
        out = await self._git("remote", "-v")
        remotes: List[RemoteInfo] = []
        seen = set()
        for line in out.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[2] == "(fetch)" and parts[0] not in seen:
                seen.add(parts[0])
                remotes.append(RemoteInfo(name=parts[0], fetch_url=parts[1]))
        return remotes

    async def list_commits(
        self,
        *,
        branch: Optional[str],
        max_count: int,
        skip: int,
        search: Optional[str],
        author: Optional[str],
    ) -> CommitPage:
        if branch:
            rev = _reject_option(branch, "branch")
        else:
            if await self._head_commit() is None:
                return CommitPage(commits=(), total=0)
            rev = "HEAD"

        filters: List[str] = []
        if search or author:
            filters.extend(["--fixed-strings", "--regexp-ignore-case"])
        if search:
            filters.append(f"--grep={search}")
        if author:
            filters.append(f"--author={author}")

        out = await self._git(
            "log",
            f"--format={_LOG_FORMAT}",
            f"--max-count={max_count}",
            f"--skip={skip}",
            *filters,
            rev,
            "--",
            action="git log",
        )
        total_out = await self._git("rev-list", "--count", *filters, rev, "--", action="git rev-list")
        try:
            total = int(total_out.strip() or 0)
        except ValueError:
            total = 0
        return CommitPage(commits=tuple(_parse_log_records(out)), total=total)

    async def get_commit_detail(self, commit_hash: str) -> CommitDetail:
        sha = await self._resolve_commit(commit_hash)

        meta = await self._git("show", "-s", f"--format={_SHOW_FORMAT}", sha, action="git show")
        parts = meta.split(FS)
        if len(parts) < 8:
            raise GitCommandError("git show", detail=f"unexpected output for {abbreviate(sha)}")
        full_sha, subject, author_name, author_email, date, refs, parents = parts[:7]
        body = FS.join(parts[7:]).strip()

        numstat = await self._git("show", "--format=", "--numstat", "-M", sha)
        name_status = parse_name_status(
            await self._git("show", "--format=", "--name-status", "-M", sha)
        )
        diff = await self._git("show", "--format=", "--patch", "-M", "--no-color", sha, raw=True)

        files: List[FileChange] = []
        for entry in parse_numstat(numstat):
            path = numstat_path(entry["path"])
            files.append(
                FileChange(
                    file=path,
                    status=name_status.get(path, "M"),
                    insertions=entry["added"],
                    deletions=entry["removed"],
                    binary=entry["is_binary"],
                )
            )

        summary = CommitSummary(
            hash=full_sha.strip(),
            message=subject,
            author_name=author_name,
            author_email=author_email,
            date=date,
            refs=refs.strip(),
        )
        return CommitDetail(
            summary=summary,
            body=body,
            parent_hashes=tuple(parents.split()),
            stats=CommitStats(
                changed=len(files),
                insertions=sum(f.insertions for f in files),
                deletions=sum(f.deletions for f in files),
            ),
            files=tuple(files),
            diff=diff.lstrip("\n"),
        )

    async def diff_between(self, from_ref: str, to_ref: str) -> DiffResult:
        from_ref = _reject_option(from_ref, "from")
        to_ref = _reject_option(to_ref, "to")
        diff = await self._git(
            "diff", "--no-color", "-M", from_ref, to_ref, "--", action="git diff", raw=True
        )
        return DiffResult(diff=diff, from_ref=from_ref, to_ref=to_ref, diff_length=len(diff))

    async def list_branches(self) -> List[BranchInfo]:
        fmt = FS.join(["%(refname)", "%(objectname)", "%(HEAD)"])
        out = await self._git(
            "for-each-ref",
            "--sort=-committerdate",
            f"--format={fmt}",
            "refs/heads",
            "refs/remotes",
            action="git for-each-ref",
        )

        branches: List[BranchInfo] = []
        for line in out.splitlines():
            parts = line.split(FS)
            if len(parts) < 3:
                continue
            refname, sha, head_marker = parts[0], parts[1], parts[2]
            if refname.startswith("refs/heads/"):
                name, is_remote = refname[len("refs/heads/"):], False
            elif refname.startswith("refs/remotes/"):
                name, is_remote = refname[len("refs/remotes/"):], True
                if name.endswith("/HEAD"):
                    continue
            else:
                continue
            branches.append(
                BranchInfo(
                    name=name,
                    commit=abbreviate(sha),
                    current=head_marker.strip() == "*" and not is_remote,
                    is_remote=is_remote,
                )
            )

        if not any(b.current for b in branches):
            current = await self._current_branch()
            if current:
                # Unborn branch: HEAD names a branch that has no commits yet.
                branches.insert(0, BranchInfo(name=current, commit="", current=True))
            else:
                head = await self._head_commit()
                if head:
                    branches.insert(
                        0,
                        BranchInfo(
                            name=f"(HEAD detached at {abbreviate(head)})",
                            commit=abbreviate(head),
                            current=True,
                        ),
                    )
        return branches

    async def list_tags(self) -> List[TagInfo]:
        fmt = FS.join(
            [
                "%(refname:short)",
                "%(objecttype)",
                "%(objectname)",
                "%(*objectname)",
                "%(contents:subject)",
                "%(creatordate:iso-strict)",
                "%(taggername)",
            ]
        )
        out = await self._git(
            "for-each-ref", "--sort=-creatordate", f"--format={fmt}", "refs/tags",
            action="git for-each-ref",
        )
        tags: List[TagInfo] = []
        for line in out.splitlines():
            parts = line.split(FS)
            if len(parts) < 7:
                continue
            name, object_type, object_name, peeled, subject, date, tagger = parts[:7]
            annotated = object_type == "tag"
            tags.append(
                TagInfo(
                    name=name,
                    hash=abbreviate(peeled if annotated and peeled else object_name),
                    message=subject if annotated else "",
                    date=date,
                    tagger=tagger,
                    is_annotated=annotated,
                )
            )
        return tags

    async def list_files(self, directory: str, at_ref: Optional[str]) -> List[FileEntry]:
        ref = _reject_option(at_ref or "HEAD", "ref")
        directory = (directory or "").strip().strip("/")
        args = ["ls-tree", "-l", ref]
        if directory:
            args.extend(["--", f"{directory}/"])
        out = await self._git(*args, action="git ls-tree")

        entries: List[FileEntry] = []
        for line in out.splitlines():
            meta, sep, path = line.partition("\t")
            if not sep:
                continue
            fields = meta.split()
            if len(fields) < 4:
                continue
            mode, object_type, _object, size = fields[:4]
            entries.append(
                FileEntry(
                    name=path.rsplit("/", 1)[-1],
                    path=path,
                    type=_entry_type(mode, object_type),
                    size=int(size) if size.isdigit() else None,
                )
            )
        if directory and not entries:
            raise NotFoundError(f"Directory '{directory}' not found at ref '{ref}'")
        return entries

    async def read_file(self, path: str, at_ref: Optional[str]) -> FileContent:
        ref = _reject_option(at_ref or "HEAD", "ref")
        path = (path or "").strip().lstrip("/")
        if not path:
            raise ValidationError("path must be non-empty", field="path")

        spec = f"{ref}:{path}"
        object_type = (await self._git("cat-file", "-t", spec, action="git cat-file")).strip()
        if object_type != "blob":
            raise ValidationError(f"Path '{path}' is not a file at ref '{ref}'", field="path")
        sha = (await self._git("rev-parse", spec)).strip()
        size_out = (await self._git("cat-file", "-s", sha)).strip()
        content = await self._git("cat-file", "blob", sha, action="git cat-file", raw=True)
        return FileContent(
            path=path,
            ref=ref,
            content=content,
            size=int(size_out) if size_out.isdigit() else len(content),
            sha=sha,
        )

    async def get_status(self) -> WorkingTreeStatus:
        out = await self._git(
            "status", "--porcelain=v1", "--branch", "--untracked-files=all",
            action="git status",
        )
        return parse_porcelain_status(out)

    async def list_stashes(self) -> List[StashEntry]:
        out = await self._git("stash", "list", "--format=%gd%x1f%s%x1f%cI%x1f%H", action="git stash list")
        stashes: List[StashEntry] = []
        for line in out.splitlines():
            parts = line.split(FS)
            if len(parts) < 4:
                continue
            selector, message, date, sha = parts[:4]
            match = re.search(r"\{(\d+)\}", selector)
            stashes.append(
                StashEntry(
                    index=int(match.group(1)) if match else len(stashes),
                    message=message,
                    date=date,
                    hash=sha,
                )
            )
        return stashes

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_branch(self, name: str, from_ref: Optional[str]) -> OperationResult:
        check = await self._git_raw("check-ref-format", "--branch", name)
        if check.get("exit_code") != 0:
            return OperationResult.failed(f"'{name}' is not a valid branch name")
        if await self._branch_exists(name):
            return OperationResult.failed(f"Branch '{name}' already exists")

        args = ["branch", name]
        if from_ref:
            args.append(_reject_option(from_ref, "fromRef"))
        await self._git(*args, action="git branch")
        sha = (await self._git("rev-parse", f"refs/heads/{name}")).strip()
        return OperationResult.ok(
            f"Branch '{name}' created from {from_ref or 'HEAD'} ({abbreviate(sha)})",
            branch=name,
            commit=sha,
        )

    async def delete_branch(self, name: str, force: bool) -> OperationResult:
        if not await self._branch_exists(name):
            return OperationResult.failed(f"Branch '{name}' does not exist")
        await self._git("branch", "-D" if force else "-d", name, action="git branch -d")
        return OperationResult.ok(f"Branch '{name}' deleted", branch=name)

    async def delete_remote_branch(self, remote: str, branch: str) -> OperationResult:
        remote = _reject_option(remote, "remote")
        branch = _reject_option(branch, "branch")
        await self._git("push", remote, "--delete", branch, action="git push --delete")
        return OperationResult.ok(f"Remote branch '{remote}/{branch}' deleted", remote=remote, branch=branch)

    async def cherry_pick(self, branch: str, commit_hash: str) -> OperationResult:
        return await self._apply_commit(branch, commit_hash, verb="cherry-pick", past="Cherry-picked")

    async def revert(self, branch: str, commit_hash: str) -> OperationResult:
        return await self._apply_commit(branch, commit_hash, verb="revert", past="Reverted")

    async def reset(self, branch: str, commit_hash: str, mode: str) -> OperationResult:
        sha = await self._resolve_commit(commit_hash)
        current = await self._current_branch()
        if branch == current:
            await self._git("reset", f"--{mode}", sha, action=f"git reset --{mode}")
            return OperationResult.ok(
                f"Branch '{branch}' reset ({mode}) to {abbreviate(sha)}",
                branch=branch,
                commit=sha,
                mode=mode,
            )
        if not await self._branch_exists(branch):
            return OperationResult.failed(f"Branch '{branch}' does not exist")
        # A branch that is not checked out has no index or working tree to reset.
        await self._git("branch", "-f", branch, sha, action="git branch -f")
        return OperationResult.ok(
            f"Branch '{branch}' moved to {abbreviate(sha)}",
            branch=branch,
            commit=sha,
            mode=mode,
        )

    async def merge_branch(self, base: str, head: str, message: Optional[str]) -> OperationResult:
        head = _reject_option(head, "head")
        if not await self._branch_exists(base):
            return OperationResult.failed(f"Branch '{base}' does not exist")

        args = ["merge", "--no-edit"]
        if message:
            args.extend(["-m", message])
        args.append(head)

        async with self._checkout_of(base) as cwd:
            result = await self._git_raw(*args, cwd=cwd)
            if result.get("exit_code") != 0 or result.get("timed_out"):
                await self._git_raw("merge", "--abort", cwd=cwd)
                return OperationResult.failed(
                    f"Merge of '{head}' into '{base}' failed: {_detail(result)}",
                    base=base,
                    head=head,
                )
            new_head = (await self._git("rev-parse", "HEAD", cwd=cwd)).strip()

        return OperationResult.ok(
            f"Merged '{head}' into '{base}' ({abbreviate(new_head)})",
            base=base,
            head=head,
            commit=new_head,
        )


__all__ = ["LocalGitBackend", "parse_porcelain_status"]
