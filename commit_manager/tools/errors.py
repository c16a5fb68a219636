"""Utilities for producing consistent tool-failure payloads.

The payload shape is part of the wire contract with the model and the HTTP
surface; keep it stable.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import jsonschema

from ..config import TOOLS_LOGGER
from ..exceptions import (
    ContextError,
    GitCommandError,
    GitHubAPIError,
    GitHubAuthError,
    GitHubRateLimitError,
    NotFoundError,
    StepTimeoutError,
    UnsupportedOperationError,
    ValidationError,
)

RETRYABLE_CATEGORIES = frozenset({"rate_limit", "timeout", "github_api"})


def _summarize_exception(exc: BaseException) -> str:
    if isinstance(exc, jsonschema.ValidationError):
        path = list(exc.path)
        base_message = exc.message or exc.__class__.__name__
        if path:
            path_display = " → ".join(str(p) for p in path)
            return f"{base_message} (at {path_display})"
        return base_message

    return str(exc) or exc.__class__.__name__


def _classify_category(exc: BaseException, message: str) -> str:
    """Best-effort category for client UX and retry logic."""

    if isinstance(exc, ContextError):
        return "no_repository"
    if isinstance(exc, (jsonschema.ValidationError, ValidationError, ValueError, TypeError)):
        return "validation"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, GitHubRateLimitError):
        return "rate_limit"
    if isinstance(exc, GitHubAuthError):
        return "auth"
    if isinstance(exc, GitHubAPIError):
        return "github_api"
    if isinstance(exc, UnsupportedOperationError):
        return "unsupported"
    if isinstance(exc, (StepTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, GitCommandError):
        return "git"

    lowered = (message or "").lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "timeout"
    return "unknown"


def _next_steps(*, category: str) -> list[dict[str, Any]]:
    """Return structured guidance for the assistant."""

    def mk(kind: str, action: str, **kwargs: Any) -> dict[str, Any]:
        base: dict[str, Any] = {"kind": kind, "actor": "assistant", "action": action}
        base.update(kwargs)
        return base

    if category == "validation":
        return [mk("args", "Check the tool parameters against its schema and retry with corrected args.")]
    if category == "no_repository":
        return [
            mk(
                "context",
                "Ask the user which repository to work on, then call selectRepository.",
                tool="selectRepository",
            )
        ]
    if category == "not_found":
        return [mk("lookup", "Verify the ref, hash or path exists (e.g. listBranches, getCommitHistory, listFiles).")]
    if category == "auth":
        return [mk("auth", "Tell the user their GitHub credentials were rejected or lack permission.")]
    if category == "rate_limit":
        return [mk("retry", "GitHub rate limit reached. Wait before retrying or reduce request volume.")]
    if category == "github_api":
        return [mk("retry", "Retry after a short delay. If persistent, reduce request size or rate.")]
    if category == "unsupported":
        return [mk("capability", "This operation is not available for this kind of repository; suggest an alternative.")]
    if category == "git":
        return [mk("git", "Explain the git failure to the user and suggest how to resolve it.")]
    if category == "timeout":
        return [mk("timeout", "Retry with a smaller request or split the work into smaller steps.")]
    return [mk("controller", "Review logs and retry with smaller steps if needed.")]


def _structured_tool_error(
    exc: BaseException, *, context: str, call_id: Optional[str] = None
) -> Dict[str, Any]:
    """Build a serializable payload describing a failed tool call."""

    message = _summarize_exception(exc)
    category = _classify_category(exc, message)

    TOOLS_LOGGER.warning(
        "Tool failure in %s: %s",
        context,
        message,
        extra={
            "tool_name": context,
            "call_id": call_id,
            "error_category": category,
            "tool_exception": exc.__class__.__name__,
        },
    )

    payload: Dict[str, Any] = {
        "error": {
            "error": exc.__class__.__name__,
            "message": message,
            "context": context,
            "category": category,
            "retryable": category in RETRYABLE_CATEGORIES,
            "next_steps": _next_steps(category=category),
        }
    }

    code = getattr(exc, "code", None)
    if code:
        payload["error"]["code"] = code

    field = getattr(exc, "field", None)
    if field:
        payload["error"]["field"] = field

    return payload


def is_error_payload(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("error"), dict)


def denial_payload(tool_name: str) -> Dict[str, Any]:
    return {
        "state": "output-denied",
        "denied": True,
        "message": f"The user denied the {tool_name} operation. Nothing was changed.",
    }


__all__ = [
    "RETRYABLE_CATEGORIES",
    "_structured_tool_error",
    "denial_payload",
    "is_error_payload",
]
