"""Backend-neutral data model.

Every adapter maps its raw results into these types; ``to_dict`` produces the
camelCase JSON shape the model and the HTTP surface see.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional, Union

from .exceptions import ValidationError

ResetMode = Literal["soft", "mixed", "hard"]
RESET_MODES: tuple[str, ...] = ("soft", "mixed", "hard")

FileStatus = Literal["A", "M", "D", "R", "C", "U"]


# ---------------------------------------------------------------------------
# Repository references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalRepository:
    path: str

    @property
    def kind(self) -> str:
        return "local"

    @property
    def label(self) -> str:
        return self.path

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "local", "path": self.path}


@dataclass(frozen=True)
class RemoteRepository:
    owner: str
    repo: str

    @property
    def kind(self) -> str:
        return "remote"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def label(self) -> str:
        return self.full_name

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "remote", "owner": self.owner, "repo": self.repo}


RepositoryRef = Union[LocalRepository, RemoteRepository]


def repository_ref_from_dict(payload: Any) -> Optional[RepositoryRef]:
    """Parse ``{"kind": "local", "path": ...}`` / ``{"kind": "remote", ...}``.

    ``None`` or an empty mapping means "no repository selected".
    """

    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ValidationError("repository must be an object", field="repository")
    if not payload:
        return None

    kind = payload.get("kind")
    if kind is None:
        kind = "local" if "path" in payload else "remote"

    if kind == "local":
        path = payload.get("path")
        if not isinstance(path, str) or not path.strip():
            raise ValidationError("local repository requires a non-empty path", field="path")
        return LocalRepository(path=path.strip())

    if kind == "remote":
        owner = payload.get("owner")
        repo = payload.get("repo")
        if not isinstance(owner, str) or not owner.strip():
            raise ValidationError("remote repository requires owner", field="owner")
        if not isinstance(repo, str) or not repo.strip():
            raise ValidationError("remote repository requires repo", field="repo")
        return RemoteRepository(owner=owner.strip(), repo=repo.strip())

    raise ValidationError(f"unknown repository kind {kind!r}", field="kind")


# ---------------------------------------------------------------------------
# Commits
# ---------------------------------------------------------------------------


def abbreviate(sha: str) -> str:
    return sha[:7]


@dataclass(frozen=True)
class CommitSummary:
    hash: str
    message: str
    author_name: str
    date: str
    author_email: str = ""
    refs: str = ""

    @property
    def abbreviated_hash(self) -> str:
        return abbreviate(self.hash)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "hash": self.hash,
            "abbreviatedHash": self.abbreviated_hash,
            "message": self.message,
            "authorName": self.author_name,
            "authorEmail": self.author_email,
            "date": self.date,
        }
        if self.refs:
            out["refs"] = self.refs
        return out


@dataclass(frozen=True)
class FileChange:
    file: str
    status: str
    insertions: int = 0
    deletions: int = 0
    binary: bool = False

    @property
    def changes(self) -> int:
        return self.insertions + self.deletions

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "status": self.status,
            "insertions": self.insertions,
            "deletions": self.deletions,
            "changes": self.changes,
            "binary": self.binary,
        }


@dataclass(frozen=True)
class CommitStats:
    changed: int = 0
    insertions: int = 0
    deletions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "changed": self.changed,
            "insertions": self.insertions,
            "deletions": self.deletions,
        }


@dataclass(frozen=True)
class CommitDetail:
    summary: CommitSummary
    body: str = ""
    parent_hashes: tuple[str, ...] = ()
    stats: CommitStats = field(default_factory=CommitStats)
    files: tuple[FileChange, ...] = ()
    diff: str = ""
    diff_truncated: bool = False

    @property
    def hash(self) -> str:
        return self.summary.hash

    def to_dict(self) -> dict[str, Any]:
        out = self.summary.to_dict()
        out.update(
            {
                "body": self.body,
                "parentHashes": list(self.parent_hashes),
                "stats": self.stats.to_dict(),
                "files": [f.to_dict() for f in self.files],
                "diff": self.diff,
                "diffTruncated": self.diff_truncated,
            }
        )
        return out


@dataclass(frozen=True)
class CommitPage:
    commits: tuple[CommitSummary, ...]
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "count": len(self.commits),
            "commits": [c.to_dict() for c in self.commits],
        }


# ---------------------------------------------------------------------------
# Refs, tags, trees
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BranchInfo:
    name: str
    commit: str
    current: bool = False
    is_remote: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current,
            "commit": self.commit,
            "isRemote": self.is_remote,
        }


@dataclass(frozen=True)
class TagInfo:
    name: str
    hash: str
    message: str = ""
    date: str = ""
    tagger: str = ""
    # None when the backend cannot tell cheaply.
    is_annotated: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "hash": self.hash,
            "message": self.message,
            "date": self.date,
            "tagger": self.tagger,
            "isAnnotated": self.is_annotated,
        }


@dataclass(frozen=True)
class FileEntry:
    name: str
    path: str
    type: str
    size: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "path": self.path, "type": self.type, "size": self.size}


@dataclass(frozen=True)
class FileContent:
    path: str
    ref: str
    content: str
    size: int
    sha: str = ""
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "ref": self.ref,
            "size": self.size,
            "sha": self.sha,
            "content": self.content,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class DiffResult:
    diff: str
    from_ref: str
    to_ref: str
    diff_length: int = 0
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_ref,
            "to": self.to_ref,
            "diffLength": self.diff_length,
            "diff": self.diff,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class WorkingTreeStatus:
    current: Optional[str]
    tracking: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    staged: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()
    untracked: tuple[str, ...] = ()
    conflicted: tuple[str, ...] = ()

    @property
    def is_clean(self) -> bool:
        return not (
            self.staged or self.modified or self.deleted or self.untracked or self.conflicted
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "tracking": self.tracking,
            "ahead": self.ahead,
            "behind": self.behind,
            "staged": list(self.staged),
            "modified": list(self.modified),
            "deleted": list(self.deleted),
            "untracked": list(self.untracked),
            "conflicted": list(self.conflicted),
            "isClean": self.is_clean,
        }


@dataclass(frozen=True)
class StashEntry:
    index: int
    message: str
    date: str
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "message": self.message, "date": self.date, "hash": self.hash}


@dataclass(frozen=True)
class RemoteInfo:
    name: str
    fetch_url: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "fetchUrl": self.fetch_url}


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationResult:
    success: bool
    message: str
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, message: str, **data: Any) -> "OperationResult":
        return cls(success=False, message=message, data=data)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        for key, value in self.data.items():
            out.setdefault(key, value)
        return out


__all__ = [
    "BranchInfo",
    "CommitDetail",
    "CommitPage",
    "CommitStats",
    "CommitSummary",
    "DiffResult",
    "FileChange",
    "FileContent",
    "FileEntry",
    "LocalRepository",
    "OperationResult",
    "RESET_MODES",
    "RemoteInfo",
    "RemoteRepository",
    "RepositoryRef",
    "ResetMode",
    "StashEntry",
    "TagInfo",
    "WorkingTreeStatus",
    "abbreviate",
    "repository_ref_from_dict",
]
