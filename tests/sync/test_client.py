from __future__ import annotations

import asyncio
from datetime import datetime

import httpx

from starboard.crawlers.client import GitHubClient, sanitize_log_extra
from starboard.crawlers.contracts import FetchState


def _client(handler, **kwargs) -> GitHubClient:
    options = {
        "token": "ghp_secret",
        "max_retries": 3,
        "backoff_base_seconds": 0.001,
        "backoff_max_seconds": 0.001,
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return GitHubClient(**options)


async def _call(client: GitHubClient, method: str, *args, **kwargs):
    async with client:
        return await getattr(client, method)(*args, **kwargs)


def test_get_repo_validates_payload_and_sends_headers(repo_payload) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=repo_payload("acme/widget", stars=1200, topics=["cli"]))

    result = asyncio.run(_call(_client(handler), "get_repo", "acme", "widget"))

    assert result.state == FetchState.OK
    assert result.data.stargazers_count == 1200
    assert result.data.owner.login == "acme"
    request = seen[0]
    assert request.url.path == "/repos/acme/widget"
    assert request.headers["Authorization"] == "Bearer ghp_secret"
    assert request.headers["Accept"] == "application/vnd.github+json"
    assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"


def test_get_repo_invalid_payload_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"full_name": "no-slash", "owner": {"login": "acme"}, "name": "x"})

    result = asyncio.run(_call(_client(handler), "get_repo", "acme", "widget"))

    assert result.state == FetchState.FAILED
    assert result.error.startswith("Invalid payload")


def test_http_error_is_failed_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    result = asyncio.run(_call(_client(handler), "get_repo", "acme", "gone"))

    assert result.state == FetchState.FAILED
    assert result.status_code == 404


def test_list_issues_sends_since_and_distinguishes_empty(issue_payload) -> None:
    seen: list[httpx.Request] = []
    responses = [[issue_payload(1, labels=["bug"]), issue_payload(2, pull_request=True)], []]

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=responses.pop(0))

    client = _client(handler)

    async def scenario():
        async with client:
            first = await client.list_issues("acme", "widget", state="all", since=datetime(2025, 5, 31, 9, 0))
            second = await client.list_issues("acme", "widget")
            return first, second

    first, second = asyncio.run(scenario())

    assert first.state == FetchState.OK
    assert [issue.is_pull_request for issue in first.data] == [False, True]
    assert first.data[0].label_names == ["bug"]
    assert second.state == FetchState.EMPTY
    params = seen[0].url.params
    assert params["since"] == "2025-05-31T09:00:00Z"
    assert params["state"] == "all"
    assert params["sort"] == "updated"
    assert "since" not in seen[1].url.params


def test_list_issues_rejects_non_array_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "unexpected"})

    result = asyncio.run(_call(_client(handler), "list_issues", "acme", "widget"))

    assert result.state == FetchState.FAILED


def test_search_drops_invalid_items(repo_payload) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "stars:>500"
        return httpx.Response(
            200,
            json={"items": [repo_payload("acme/good"), {"full_name": "broken"}, repo_payload("acme/also-good")]},
        )

    result = asyncio.run(_call(_client(handler), "search_repositories", "stars:>500"))

    assert result.state == FetchState.OK
    assert [repo.full_name for repo in result.data] == ["acme/good", "acme/also-good"]


def test_rate_limited_request_is_retried(repo_payload) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(403, headers={"x-ratelimit-remaining": "0", "retry-after": "0"})
        return httpx.Response(200, json=repo_payload("acme/widget"))

    result = asyncio.run(_call(_client(handler), "get_repo", "acme", "widget"))

    assert result.state == FetchState.OK
    assert calls["count"] == 2


def test_rate_limit_retries_exhausted_returns_failed() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(429, headers={"retry-after": "0"})

    result = asyncio.run(_call(_client(handler, max_retries=2), "get_repo", "acme", "widget"))

    assert result.state == FetchState.FAILED
    assert result.status_code == 429
    assert calls["count"] == 2


def test_sanitize_log_extra_redacts_tokens_and_payloads() -> None:
    extra = sanitize_log_extra(
        authorization="Bearer ghp_secret",
        error="request failed: token=abc123",
        body="full issue body",
        repo="acme/widget",
        api_key="plain-value",
        headers={"Authorization": "Bearer ghp_secret", "Accept": "application/json"},
    )

    assert extra["authorization"] == "***REDACTED***"
    assert extra["api_key"] == "***REDACTED***"
    assert extra["headers"] == {"Authorization": "***REDACTED***", "Accept": "application/json"}
    assert "abc123" not in extra["error"]
    assert extra["body"].startswith("<redacted payload")
    assert extra["repo"] == "acme/widget"
