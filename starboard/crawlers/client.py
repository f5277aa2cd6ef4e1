"""Resilient async GitHub client for repository, issue and search endpoints."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from starboard.config.settings import settings
from starboard.crawlers.contracts import (
    FetchResult,
    FetchState,
    GitHubIssuePayload,
    GitHubRepoPayload,
    IssueListContract,
    RepoContract,
    SearchContract,
)
from starboard.utils.helpers import isoformat_z

logger = logging.getLogger(__name__)

_REDACTED_VALUE = "***REDACTED***"
_SENSITIVE_KEYS = (
    "authorization",
    "token",
    "api_key",
    "apikey",
    "secret",
    "password",
    "cookie",
)
_PAYLOAD_KEYS = ("body", "raw", "content", "payload", "response", "prompt")
_TOKEN_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s,;]+"),
    re.compile(r"(?i)(token\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(access_token=)[^&\s]+"),
    re.compile(r"(?i)(api[_-]?key\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(sk-[a-z0-9_-]{8,})"),
)


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Return a recursively sanitized copy of log payloads."""

    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            field = str(raw_key)
            if _contains_keyword(field, _SENSITIVE_KEYS):
                sanitized[field] = _REDACTED_VALUE
                continue
            if _contains_keyword(field, _PAYLOAD_KEYS) and isinstance(raw_value, str):
                sanitized[field] = _redact_payload(raw_value)
                continue
            sanitized[field] = sanitize_for_log(raw_value, key=field)
        return sanitized

    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, key=key) for item in value]

    if isinstance(value, str):
        redacted = _redact_text(value)
        if key and _contains_keyword(key, _PAYLOAD_KEYS):
            return _redact_payload(redacted)
        return redacted

    return value


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Helper for `extra=` payloads in structured logging."""

    return sanitize_for_log(dict(kwargs))


def _contains_keyword(field_name: str, keywords: tuple[str, ...]) -> bool:
    lowered = field_name.lower()
    return any(keyword in lowered for keyword in keywords)


def _redact_payload(raw: str) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return ""
    return f"<redacted payload ({len(raw)} chars)>"


def _redact_text(raw: str) -> str:
    redacted = raw
    for pattern in _TOKEN_PATTERNS:
        if pattern.groups == 1 and pattern.pattern.startswith("(?i)(sk-"):
            redacted = pattern.sub(_REDACTED_VALUE, redacted)
        else:
            redacted = pattern.sub(rf"\1{_REDACTED_VALUE}", redacted)
    return redacted


class _RateLimitRetryableError(Exception):
    """Retryable rate-limit signal for tenacity."""


class GitHubClient:
    """Typed GitHub REST client with rate-limit resilience and payload validation."""

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    ACCEPT_JSON = "application/vnd.github+json"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        rate_limit_buffer_seconds: Optional[int] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._max_retries = max_retries or settings.GITHUB_MAX_RETRIES
        self._backoff_base_seconds = backoff_base_seconds or settings.GITHUB_BACKOFF_BASE_SECONDS
        self._backoff_max_seconds = backoff_max_seconds or settings.GITHUB_BACKOFF_MAX_SECONDS
        self._rate_limit_buffer_seconds = rate_limit_buffer_seconds or settings.GITHUB_RATE_LIMIT_BUFFER_SECONDS
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_repo(self, owner: str, repo: str) -> RepoContract:
        response = await self._request(f"/repos/{owner}/{repo}")
        if response.state != FetchState.OK:
            return response

        try:
            payload = GitHubRepoPayload.model_validate(response.data)
        except ValidationError as exc:
            return self._validation_failure(f"/repos/{owner}/{repo}", exc, response.status_code)
        return FetchResult(state=FetchState.OK, data=payload, status_code=response.status_code)

    async def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        state: str = "open",
        labels: Optional[str] = None,
        since: Optional[datetime] = None,
        per_page: int = 100,
        sort: str = "updated",
        direction: str = "desc",
    ) -> IssueListContract:
        """List issues for a repository; pull requests are included and flagged."""

        path = f"/repos/{owner}/{repo}/issues"
        params: dict[str, Any] = {
            "state": state,
            "per_page": per_page,
            "sort": sort,
            "direction": direction,
        }
        if labels:
            params["labels"] = labels
        if since is not None:
            params["since"] = isoformat_z(since)

        response = await self._request(path, params=params)
        if response.state != FetchState.OK:
            return response

        if not isinstance(response.data, list):
            return FetchResult(
                state=FetchState.FAILED,
                status_code=response.status_code,
                error="Issue listing did not return a JSON array",
            )

        try:
            issues = [GitHubIssuePayload.model_validate(item) for item in response.data]
        except ValidationError as exc:
            return self._validation_failure(path, exc, response.status_code)

        if not issues:
            return FetchResult(state=FetchState.EMPTY, data=[], status_code=response.status_code)
        return FetchResult(state=FetchState.OK, data=issues, status_code=response.status_code)

    async def search_repositories(
        self,
        query: str,
        *,
        page: int = 1,
        per_page: int = 30,
        sort: str = "stars",
        order: str = "desc",
    ) -> SearchContract:
        """Search GitHub repositories using query syntax.

        Returns the validated `items` payload from `/search/repositories`. Items that
        fail validation are dropped individually rather than failing the query.
        """

        response = await self._request(
            "/search/repositories",
            params={
                "q": query,
                "page": page,
                "per_page": per_page,
                "sort": sort,
                "order": order,
            },
        )
        if response.state != FetchState.OK:
            return response

        payload = response.data if isinstance(response.data, dict) else {}
        items = payload.get("items") if isinstance(payload.get("items"), list) else []

        repos: list[GitHubRepoPayload] = []
        for item in items:
            try:
                repos.append(GitHubRepoPayload.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "Dropping invalid search result item",
                    extra=sanitize_log_extra(query=query, error=str(exc)),
                )

        if not repos:
            return FetchResult(state=FetchState.EMPTY, data=[], status_code=response.status_code)
        return FetchResult(state=FetchState.OK, data=repos, status_code=response.status_code)

    async def _request(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> FetchResult[Any]:
        client = await self._ensure_client()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
                retry=retry_if_exception_type(_RateLimitRetryableError),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(path, params=params)

                    if response.status_code == 429 or (
                        response.status_code == 403 and self._is_rate_limited(response.headers)
                    ):
                        wait_seconds = self._compute_rate_limit_wait(response.headers)
                        logger.warning(
                            "GitHub API rate limit encountered",
                            extra=sanitize_log_extra(
                                path=path,
                                params=params,
                                status_code=response.status_code,
                                retry_after_seconds=wait_seconds,
                            ),
                        )
                        if wait_seconds > 0:
                            await asyncio.sleep(min(wait_seconds, self._backoff_max_seconds))
                        raise _RateLimitRetryableError(
                            f"GitHub rate limit encountered ({response.status_code})"
                        )

                    response.raise_for_status()
                    return FetchResult(
                        state=FetchState.OK,
                        data=response.json(),
                        status_code=response.status_code,
                    )
        except _RateLimitRetryableError as exc:
            logger.warning(
                "GitHub request failed after rate-limit retries",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc), status_code=429),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=429)
        except httpx.HTTPError as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc), status_code=status_code),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=status_code)
        except ValueError as exc:
            logger.warning(
                "GitHub response was not valid JSON",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc)),
            )
            return FetchResult(state=FetchState.FAILED, error=f"Invalid JSON: {exc}")

        return FetchResult(state=FetchState.FAILED, error="Unknown GitHub request failure")

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        headers = {
            "Accept": self.ACCEPT_JSON,
            "User-Agent": settings.USER_AGENT,
            "X-GitHub-Api-Version": self.API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client

    @staticmethod
    def _validation_failure(path: str, exc: ValidationError, status_code: Optional[int]) -> FetchResult[Any]:
        logger.warning(
            "GitHub payload failed validation",
            extra=sanitize_log_extra(path=path, error=str(exc)),
        )
        return FetchResult(
            state=FetchState.FAILED,
            status_code=status_code,
            error=f"Invalid payload: {exc.error_count()} validation error(s)",
        )

    @staticmethod
    def _is_rate_limited(headers: httpx.Headers) -> bool:
        return headers.get("x-ratelimit-remaining") == "0" or headers.get("retry-after") is not None

    def _compute_rate_limit_wait(self, headers: httpx.Headers) -> float:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass

        reset_raw = headers.get("x-ratelimit-reset")
        if reset_raw is not None:
            try:
                reset_epoch = int(reset_raw)
                wait_seconds = reset_epoch - int(time.time()) + self._rate_limit_buffer_seconds
                return float(max(wait_seconds, 0))
            except ValueError:
                pass

        return self._backoff_base_seconds
