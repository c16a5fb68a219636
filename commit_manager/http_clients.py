"""Async GitHub REST client with rate-limit retry and request logging."""

from __future__ import annotations

import asyncio
import time
import weakref
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from .config import (
    GITHUB_API_BASE,
    GITHUB_LOGGER,
    GITHUB_RATE_LIMIT_RETRY_BASE_DELAY_SECONDS,
    GITHUB_RATE_LIMIT_RETRY_MAX_ATTEMPTS,
    GITHUB_RATE_LIMIT_RETRY_MAX_WAIT_SECONDS,
    HTTPX_MAX_CONNECTIONS,
    HTTPX_MAX_KEEPALIVE,
    HTTPX_TIMEOUT,
    MAX_CONCURRENCY,
)
from .exceptions import GitHubAPIError, GitHubAuthError, GitHubRateLimitError, NotFoundError

_loop_semaphores: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = (
    weakref.WeakKeyDictionary()
)

DIFF_MEDIA_TYPE = "application/vnd.github.diff"


# ---------------------------------------------------------------------------
# Concurrency helpers
# ---------------------------------------------------------------------------


def _get_concurrency_semaphore() -> asyncio.Semaphore:
    """Return a per-event-loop semaphore to cap concurrent outbound requests.

    Asyncio primitives are bound to the loop that created them, so one is
    created lazily for whichever loop is running. Weak keys let semaphores for
    closed loops be collected.
    """

    loop = asyncio.get_running_loop()
    semaphore = _loop_semaphores.get(loop)
    if semaphore is None:
        semaphore = asyncio.Semaphore(MAX_CONCURRENCY)
        _loop_semaphores[loop] = semaphore
    return semaphore


def _parse_rate_limit_delay_seconds(resp: httpx.Response) -> Optional[float]:
    retry_after = resp.headers.get("Retry-After")
    if retry_after:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            return None

    reset_header = resp.headers.get("X-RateLimit-Reset")
    if reset_header:
        try:
            reset_epoch = float(reset_header)
        except ValueError:
            return None
        return max(0.0, reset_epoch - time.time())
    return None


def _is_rate_limit_response(*, resp: httpx.Response, message_lower: str) -> bool:
    if resp.status_code == 429:
        return True
    if resp.status_code != 403:
        return False
    if resp.headers.get("X-RateLimit-Remaining") == "0":
        return True
    return "rate limit" in message_lower or "abuse detection" in message_lower


def _github_api_url_for_logs(path: str, params: Optional[Dict[str, Any]] = None) -> str:
    base = (GITHUB_API_BASE or "https://api.github.com").rstrip("/")
    normalized = path if path.startswith("/") else f"/{path}"
    url = f"{base}{normalized}"
    if params:
        cleaned = {k: v for k, v in params.items() if v is not None}
        qs = urlencode(cleaned, doseq=True)
        if qs:
            url = f"{url}?{qs}"
    return url


def _record_github_request(
    *,
    method: str,
    url: str,
    status_code: Optional[int],
    duration_ms: int,
    error: bool,
) -> None:
    level = "warning" if error else "detailed"
    log_fn = getattr(GITHUB_LOGGER, level, GITHUB_LOGGER.info)
    log_fn(
        "[github] %s %s -> %s %dms",
        method.upper(),
        url,
        status_code if status_code is not None else "ERR",
        duration_ms,
        extra={"status": status_code, "duration_ms": duration_ms},
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def build_async_client(token: Optional[str], *, base_url: str = GITHUB_API_BASE) -> httpx.AsyncClient:
    """Return an AsyncClient configured for GitHub's API."""

    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=HTTPX_TIMEOUT,
        limits=httpx.Limits(
            max_connections=HTTPX_MAX_CONNECTIONS,
            max_keepalive_connections=HTTPX_MAX_KEEPALIVE,
        ),
        headers=headers,
    )


class GitHubClient:
    """Request-scoped GitHub REST client.

    The access token is an opaque credential handed in by the caller; it is
    never inspected or refreshed here.
    """

    def __init__(
        self,
        token: Optional[str],
        *,
        client_factory: Optional[Callable[[Optional[str]], httpx.AsyncClient]] = None,
    ) -> None:
        self._token = token
        self._client_factory = client_factory or build_async_client
        self._client: Optional[httpx.AsyncClient] = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = self._client_factory(self._token)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        expect_json: bool = True,
        allow_status: tuple[int, ...] = (),
    ) -> Dict[str, Any]:
        """Perform a request, returning ``{status_code, headers, text, json}``.

        404 becomes ``NotFoundError``; 401/403 become ``GitHubAuthError``;
        rate limits are retried while the advertised wait is short, then raise
        ``GitHubRateLimitError``. Status codes listed in ``allow_status`` are
        returned instead of raised.
        """

        if params:
            params = {k: v for k, v in params.items() if v is not None}
        api_url_for_logs = _github_api_url_for_logs(path, params=params)
        attempt = 0
        max_attempts = max(0, GITHUB_RATE_LIMIT_RETRY_MAX_ATTEMPTS)

        while True:
            start = time.time()
            try:
                async with _get_concurrency_semaphore():
                    resp = await self._http().request(
                        method, path, params=params, json=json_body, headers=headers
                    )
            except httpx.HTTPError as exc:
                _record_github_request(
                    method=method,
                    url=api_url_for_logs,
                    status_code=None,
                    duration_ms=int((time.time() - start) * 1000),
                    error=True,
                )
                raise GitHubAPIError(f"GitHub request failed: {exc}") from exc

            error_flag = resp.status_code >= 400 and resp.status_code not in allow_status
            _record_github_request(
                method=method,
                url=api_url_for_logs,
                status_code=resp.status_code,
                duration_ms=int((time.time() - start) * 1000),
                error=error_flag,
            )

            body: Any = None
            if resp.content:
                try:
                    body = resp.json()
                except ValueError:
                    body = None
            message = body.get("message", "") if isinstance(body, dict) else ""
            message = message if isinstance(message, str) else ""

            if error_flag and _is_rate_limit_response(resp=resp, message_lower=message.lower()):
                reset_hint = resp.headers.get("X-RateLimit-Reset") or resp.headers.get("Retry-After")
                retry_delay = _parse_rate_limit_delay_seconds(resp)
                if retry_delay is None:
                    retry_delay = GITHUB_RATE_LIMIT_RETRY_BASE_DELAY_SECONDS * (2**attempt)

                if attempt < max_attempts and retry_delay <= GITHUB_RATE_LIMIT_RETRY_MAX_WAIT_SECONDS:
                    await asyncio.sleep(retry_delay)
                    attempt += 1
                    continue

                raise GitHubRateLimitError(
                    f"GitHub rate limit exceeded; resets after {reset_hint}"
                    if reset_hint
                    else "GitHub rate limit exceeded",
                    status_code=resp.status_code,
                )

            if error_flag:
                detail = message or resp.text[:200]
                if resp.status_code in (401, 403):
                    raise GitHubAuthError(
                        f"GitHub authentication failed: {resp.status_code} {detail or 'Authentication failed'}",
                        status_code=resp.status_code,
                    )
                if resp.status_code == 404:
                    raise NotFoundError(f"GitHub resource not found: {path}")
                raise GitHubAPIError(
                    f"GitHub API error {resp.status_code}: {detail}",
                    status_code=resp.status_code,
                )

            result: Dict[str, Any] = {
                "status_code": resp.status_code,
                "headers": dict(resp.headers),
                "text": resp.text,
            }
            if expect_json:
                result["json"] = body
            return result

    async def get_json(self, path: str, **params: Any) -> Any:
        return (await self.request("GET", path, params=params or None))["json"]

    async def get_text(self, path: str, *, media_type: str = DIFF_MEDIA_TYPE, **params: Any) -> str:
        resp = await self.request(
            "GET",
            path,
            params=params or None,
            headers={"Accept": media_type},
            expect_json=False,
        )
        return resp["text"]


__all__ = [
    "DIFF_MEDIA_TYPE",
    "GitHubClient",
    "build_async_client",
]
