from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from typing import Any, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import starboard.models  # noqa: F401  (registers tables on Base.metadata)
from starboard.config.database import Base
from starboard.crawlers.contracts import FetchResult, FetchState, GitHubIssuePayload, GitHubRepoPayload
from starboard.services.query_cache import QueryCache
from starboard.services.store import StoreGateway


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGitHubClient:
    """In-memory stand-in for `GitHubClient` returning validated contracts."""

    def __init__(self) -> None:
        self.repos: dict[str, dict[str, Any]] = {}
        self.issue_responses: dict[str, list[Optional[list[dict[str, Any]]]]] = {}
        self.search_results: dict[str, Optional[list[dict[str, Any]]]] = {}
        self.repo_calls: list[str] = []
        self.issue_calls: list[tuple[str, dict[str, Any]]] = []
        self.search_calls: list[str] = []

    async def __aenter__(self) -> "FakeGitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def get_repo(self, owner: str, repo: str):
        full_name = f"{owner}/{repo}"
        self.repo_calls.append(full_name)
        payload = self.repos.get(full_name)
        if payload is None:
            return FetchResult(state=FetchState.FAILED, status_code=404, error="Not Found")
        return FetchResult(state=FetchState.OK, data=GitHubRepoPayload.model_validate(payload), status_code=200)

    async def list_issues(self, owner: str, repo: str, **kwargs: Any):
        full_name = f"{owner}/{repo}"
        self.issue_calls.append((full_name, kwargs))
        queue = self.issue_responses.get(full_name)
        if not queue:
            return FetchResult(state=FetchState.EMPTY, data=[], status_code=200)

        items = queue.pop(0) if len(queue) > 1 else queue[0]
        if items is None:
            return FetchResult(state=FetchState.FAILED, status_code=502, error="Bad Gateway")
        issues = [GitHubIssuePayload.model_validate(item) for item in items]
        state = FetchState.OK if issues else FetchState.EMPTY
        return FetchResult(state=state, data=issues, status_code=200)

    async def search_repositories(self, query: str, **kwargs: Any):
        self.search_calls.append(query)
        for marker, items in self.search_results.items():
            if marker in query:
                if items is None:
                    return FetchResult(state=FetchState.FAILED, status_code=422, error="Validation Failed")
                repos = [GitHubRepoPayload.model_validate(item) for item in items]
                return FetchResult(state=FetchState.OK if repos else FetchState.EMPTY, data=repos, status_code=200)
        return FetchResult(state=FetchState.EMPTY, data=[], status_code=200)


def build_repo_payload(
    full_name: str,
    *,
    stars: int = 100,
    forks: int = 10,
    topics: Optional[list[str]] = None,
    language: Optional[str] = "Python",
    description: Optional[str] = None,
    created_at: str = "2025-04-01T00:00:00Z",
) -> dict[str, Any]:
    owner, name = full_name.split("/", 1)
    return {
        "full_name": full_name,
        "owner": {"login": owner},
        "name": name,
        "description": description,
        "language": language,
        "topics": topics or [],
        "homepage": None,
        "stargazers_count": stars,
        "forks_count": forks,
        "open_issues_count": 3,
        "watchers_count": stars,
        "created_at": created_at,
        "pushed_at": "2025-05-30T00:00:00Z",
    }


def build_issue_payload(
    github_id: int,
    *,
    number: Optional[int] = None,
    title: str = "Something is off",
    body: Optional[str] = "Details",
    labels: Optional[list[str]] = None,
    updated_at: str = "2025-05-30T10:00:00Z",
    state: str = "open",
    comments: int = 0,
    pull_request: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": github_id,
        "number": number if number is not None else github_id,
        "title": title,
        "body": body,
        "html_url": f"https://github.com/acme/widget/issues/{number or github_id}",
        "state": state,
        "labels": [{"name": label} for label in (labels or [])],
        "comments": comments,
        "created_at": "2025-05-01T00:00:00Z",
        "updated_at": updated_at,
        "closed_at": "2025-05-31T00:00:00Z" if state == "closed" else None,
    }
    if pull_request:
        payload["pull_request"] = {"url": "https://api.github.com/repos/acme/widget/pulls/1"}
    return payload


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2025, 6, 1, 12, 0, 0))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory, clock) -> StoreGateway:
    return StoreGateway(session_factory=session_factory, cache=QueryCache(ttl_seconds=60), now_provider=clock)


@pytest.fixture
def fake_github() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def repo_payload():
    return build_repo_payload


@pytest.fixture
def issue_payload():
    return build_issue_payload


@pytest.fixture
def no_sleep():
    async def _sleep(_: float) -> None:
        return None

    return _sleep
