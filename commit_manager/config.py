"""Configuration and logging helpers for the commit manager core."""

from __future__ import annotations

import logging
import os
from collections import deque

# Custom log levels
# ------------------------------------------------------------------------------
#
# CHAT: user-facing progress messages (one line per orchestration step).
# DETAILED: verbose operational logging that is more detailed than INFO but less
# noisy than full DEBUG.

DETAILED_LEVEL = 15
CHAT_LEVEL = 25


def _install_custom_log_levels() -> None:
    if not hasattr(logging, "DETAILED"):
        logging.addLevelName(DETAILED_LEVEL, "DETAILED")
        setattr(logging, "DETAILED", DETAILED_LEVEL)

    if not hasattr(logging, "CHAT"):
        logging.addLevelName(CHAT_LEVEL, "CHAT")
        setattr(logging, "CHAT", CHAT_LEVEL)

    # Logger helpers: logger.chat(...), logger.detailed(...)
    if not hasattr(logging.Logger, "detailed"):
        def detailed(self: logging.Logger, msg, *args, **kwargs):
            if self.isEnabledFor(DETAILED_LEVEL):
                self._log(DETAILED_LEVEL, msg, args, **kwargs)
        logging.Logger.detailed = detailed  # type: ignore[attr-defined]

    if not hasattr(logging.Logger, "chat"):
        def chat(self: logging.Logger, msg, *args, **kwargs):
            if self.isEnabledFor(CHAT_LEVEL):
                self._log(CHAT_LEVEL, msg, args, **kwargs)
        logging.Logger.chat = chat  # type: ignore[attr-defined]


def _resolve_log_level(level_name: str | None) -> int:
    if not level_name:
        return logging.INFO

    name = str(level_name).strip().upper()
    if not name:
        return logging.INFO

    if name.lstrip("-").isdigit():
        return int(name)

    if name == "DETAILED":
        return DETAILED_LEVEL
    if name == "CHAT":
        return CHAT_LEVEL

    return getattr(logging, name, logging.INFO)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


_install_custom_log_levels()

# GitHub
# ------------------------------------------------------------------------------

GITHUB_API_BASE = os.environ.get("GITHUB_API_BASE", "https://api.github.com")

HTTPX_TIMEOUT = _env_float("HTTPX_TIMEOUT", 30.0)
HTTPX_MAX_CONNECTIONS = _env_int("HTTPX_MAX_CONNECTIONS", 100)
HTTPX_MAX_KEEPALIVE = _env_int("HTTPX_MAX_KEEPALIVE", 20)

# Cap on concurrent outbound GitHub requests per event loop.
MAX_CONCURRENCY = _env_int("MAX_CONCURRENCY", 16)

GITHUB_RATE_LIMIT_RETRY_MAX_ATTEMPTS = _env_int("GITHUB_RATE_LIMIT_RETRY_MAX_ATTEMPTS", 2)
GITHUB_RATE_LIMIT_RETRY_BASE_DELAY_SECONDS = _env_float(
    "GITHUB_RATE_LIMIT_RETRY_BASE_DELAY_SECONDS", 1.0
)
GITHUB_RATE_LIMIT_RETRY_MAX_WAIT_SECONDS = _env_float(
    "GITHUB_RATE_LIMIT_RETRY_MAX_WAIT_SECONDS", 10.0
)

# Remote commit search is filtered client-side; bound the number of pages scanned.
REMOTE_SEARCH_MAX_PAGES = _env_int("REMOTE_SEARCH_MAX_PAGES", 5)

# Local git
# ------------------------------------------------------------------------------

GIT_COMMAND_TIMEOUT_SECONDS = _env_int("GIT_COMMAND_TIMEOUT_SECONDS", 60)
GIT_AUTHOR_NAME = os.environ.get("GIT_AUTHOR_NAME", "Git Commit Manager")
GIT_AUTHOR_EMAIL = os.environ.get("GIT_AUTHOR_EMAIL", "commit-manager@example.com")
GIT_COMMITTER_NAME = os.environ.get("GIT_COMMITTER_NAME", GIT_AUTHOR_NAME)
GIT_COMMITTER_EMAIL = os.environ.get("GIT_COMMITTER_EMAIL", GIT_AUTHOR_EMAIL)

# Model-facing payload bounds
# ------------------------------------------------------------------------------
#
# MAX_COMMIT_COUNT is a hard ceiling applied regardless of what the caller asks
# for. MAX_PAYLOAD_CHARS bounds diffs and file contents for both backends.

DEFAULT_COMMIT_COUNT = 20
MAX_COMMIT_COUNT = 50
MAX_PAYLOAD_CHARS = 8000
MAX_LISTED_FILES = 100
MAX_LISTED_TAGS = 50
MAX_LISTED_REPOS = 50
MAX_LISTED_REMOTE_BRANCHES = 30
DEFAULT_CONTRIBUTOR_COUNT = 30
MAX_CONTRIBUTOR_COUNT = 100

# Orchestration
# ------------------------------------------------------------------------------

MAX_STEPS = _env_int("MAX_STEPS", 8)
STEP_TIMEOUT_SECONDS = _env_float("STEP_TIMEOUT_SECONDS", 60.0)

# Parked approval requests nobody answers are dropped after this long.
APPROVAL_TTL_SECONDS = _env_float("APPROVAL_TTL_SECONDS", 3600.0)
MAX_PENDING_APPROVALS = _env_int("MAX_PENDING_APPROVALS", 256)

MODEL_API_BASE = os.environ.get("MODEL_API_BASE", "https://api.openai.com/v1")
MODEL_API_KEY = os.environ.get("MODEL_API_KEY") or os.environ.get("OPENAI_API_KEY")
MODEL_NAME = os.environ.get("MODEL_NAME", "gpt-4o-mini")
MODEL_TIMEOUT = _env_float("MODEL_TIMEOUT", 45.0)

# Logging
# ------------------------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_STYLE = os.environ.get("LOG_STYLE", "color").lower()
LOG_FORMAT = os.environ.get(
    "LOG_FORMAT",
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
LOG_FORMAT_PLAIN = os.environ.get("LOG_FORMAT_PLAIN", LOG_FORMAT)


class _ColorFormatter(logging.Formatter):
    """Level-colored formatter for stdout logs."""

    _C = {
        "DEBUG": "\x1b[36m",
        "DETAILED": "\x1b[36m",
        "INFO": "\x1b[32m",
        "CHAT": "\x1b[34m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[35m",
        "RESET": "\x1b[0m",
    }

    def __init__(self, fmt: str, *, use_color: bool) -> None:
        super().__init__(fmt)
        self._use_color = bool(use_color)

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting
        levelname = record.levelname
        if self._use_color and levelname in self._C:
            record.levelname = f"{self._C[levelname]}{levelname}{self._C['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def configure_logging() -> None:
    """Install the console handler once. Safe to call repeatedly."""

    root = logging.getLogger()
    if getattr(root, "_commit_manager_configured", False):
        return

    use_color = LOG_STYLE in {"color", "ansi", "colored"}

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_ColorFormatter(LOG_FORMAT, use_color=use_color))

    logging.basicConfig(
        level=_resolve_log_level(LOG_LEVEL),
        handlers=[console_handler],
        force=True,
    )

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    setattr(root, "_commit_manager_configured", True)


BASE_LOGGER = logging.getLogger("commit_manager")
GITHUB_LOGGER = logging.getLogger("commit_manager.github_client")
GIT_LOGGER = logging.getLogger("commit_manager.git")
TOOLS_LOGGER = logging.getLogger("commit_manager.tools")
ORCHESTRATOR_LOGGER = logging.getLogger("commit_manager.orchestrator")

ERROR_LOG_CAPACITY = _env_int("ERROR_LOG_CAPACITY", 200)


class _InMemoryErrorLogHandler(logging.Handler):
    """Capture recent error-level records so the HTTP surface can report them."""

    def __init__(self, capacity: int = 200) -> None:
        super().__init__(level=logging.ERROR)
        self._formatter = logging.Formatter(LOG_FORMAT_PLAIN)
        self._records: deque[dict[str, object]] = deque(maxlen=max(1, int(capacity)))

    @property
    def records(self) -> list[dict[str, object]]:
        return list(self._records)

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover
        try:
            message = self._formatter.format(record)
        except Exception:  # noqa: BLE001
            message = record.getMessage()

        self._records.append(
            {
                "logger": record.name,
                "level": record.levelname,
                "message": message,
                "created": record.created,
                "tool_name": getattr(record, "tool_name", None),
                "call_id": getattr(record, "call_id", None),
                "error_category": getattr(record, "error_category", None),
            }
        )


ERROR_LOG_HANDLER = _InMemoryErrorLogHandler(capacity=ERROR_LOG_CAPACITY)
BASE_LOGGER.addHandler(ERROR_LOG_HANDLER)

__all__ = [
    "APPROVAL_TTL_SECONDS",
    "BASE_LOGGER",
    "CHAT_LEVEL",
    "DEFAULT_COMMIT_COUNT",
    "DEFAULT_CONTRIBUTOR_COUNT",
    "DETAILED_LEVEL",
    "ERROR_LOG_HANDLER",
    "GIT_AUTHOR_EMAIL",
    "GIT_AUTHOR_NAME",
    "GIT_COMMAND_TIMEOUT_SECONDS",
    "GIT_COMMITTER_EMAIL",
    "GIT_COMMITTER_NAME",
    "GIT_LOGGER",
    "GITHUB_API_BASE",
    "GITHUB_LOGGER",
    "HTTPX_MAX_CONNECTIONS",
    "HTTPX_MAX_KEEPALIVE",
    "HTTPX_TIMEOUT",
    "MAX_COMMIT_COUNT",
    "MAX_CONCURRENCY",
    "MAX_CONTRIBUTOR_COUNT",
    "MAX_LISTED_FILES",
    "MAX_PAYLOAD_CHARS",
    "MAX_PENDING_APPROVALS",
    "MAX_STEPS",
    "MODEL_API_BASE",
    "MODEL_API_KEY",
    "MODEL_NAME",
    "ORCHESTRATOR_LOGGER",
    "STEP_TIMEOUT_SECONDS",
    "TOOLS_LOGGER",
    "configure_logging",
]
