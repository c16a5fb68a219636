"""Backend adapters and the ref-type dispatch that selects one."""

from __future__ import annotations

from functools import singledispatch

from ..exceptions import ValidationError
from ..http_clients import GitHubClient
from ..models import LocalRepository, RemoteRepository
from .base import RepositoryBackend, branch_name_problem
from .local import LocalGitBackend
from .remote import GitHubAccount, GitHubBackend


@singledispatch
def backend_for(ref: object, github: GitHubClient) -> RepositoryBackend:
    raise ValidationError(f"unsupported repository reference: {ref!r}", field="repository")


@backend_for.register(LocalRepository)
def _local_backend(ref: LocalRepository, github: GitHubClient) -> RepositoryBackend:
    return LocalGitBackend(ref)


@backend_for.register(RemoteRepository)
def _remote_backend(ref: RemoteRepository, github: GitHubClient) -> RepositoryBackend:
    return GitHubBackend(ref, github)


__all__ = [
    "GitHubAccount",
    "GitHubBackend",
    "LocalGitBackend",
    "RepositoryBackend",
    "backend_for",
    "branch_name_problem",
]
