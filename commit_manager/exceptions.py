"""Exception types used across the commit manager core."""

from __future__ import annotations


class CommitManagerError(Exception):
    """Base class for every error raised by this package."""

    code = "COMMIT_MANAGER_ERROR"


class ValidationError(CommitManagerError):
    """Raised when tool or operation input is malformed.

    Schema violations surface to the model before any execution happens.
    """

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ContextError(CommitManagerError):
    """Raised when a tool needs a repository and none is selected."""

    code = "NO_REPOSITORY_SELECTED"


class NotFoundError(CommitManagerError):
    code = "NOT_FOUND"


class BackendError(CommitManagerError):
    """Network, auth, subprocess or API failure inside a backend adapter."""

    code = "BACKEND_ERROR"


class GitCommandError(BackendError):
    code = "GIT_COMMAND_FAILED"

    def __init__(self, action: str, *, exit_code: int | None = None, detail: str = "") -> None:
        message = f"{action} failed"
        if exit_code is not None:
            message += f" (exit_code={exit_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.action = action
        self.exit_code = exit_code
        self.detail = detail


class GitHubAPIError(BackendError):
    code = "GITHUB_API_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubAPIError):
    code = "GITHUB_AUTH_FAILED"


class GitHubRateLimitError(GitHubAPIError):
    """Raised when GitHub responds with a rate limit error."""

    code = "GITHUB_RATE_LIMITED"


class UnsupportedOperationError(BackendError):
    """Raised when a backend has no way to perform an operation."""

    code = "UNSUPPORTED_OPERATION"


class ModelAPIError(BackendError):
    """Raised when the language model endpoint fails or returns garbage."""

    code = "MODEL_API_ERROR"


class ApprovalStateError(CommitManagerError):
    """Raised on an illegal approval transition (e.g. responding twice)."""

    code = "APPROVAL_STATE_ERROR"


class ApprovalOwnershipError(ApprovalStateError):
    """Raised when a caller answers or lists an approval it did not request."""

    code = "APPROVAL_NOT_OWNED"


class StepTimeoutError(CommitManagerError):
    """Raised when one orchestration step exceeds its wall-clock budget."""

    code = "STEP_TIMEOUT"


__all__ = [
    "ApprovalOwnershipError",
    "ApprovalStateError",
    "BackendError",
    "CommitManagerError",
    "ContextError",
    "GitCommandError",
    "GitHubAPIError",
    "GitHubAuthError",
    "GitHubRateLimitError",
    "ModelAPIError",
    "NotFoundError",
    "StepTimeoutError",
    "UnsupportedOperationError",
    "ValidationError",
]
