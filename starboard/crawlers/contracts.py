"""Typed contracts for GitHub client responses."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from starboard.utils.helpers import parse_timestamp


T = TypeVar("T")


class FetchState(str, Enum):
    """Normalized response state for downstream ingestion stages."""

    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Container that separates payload from fetch semantics."""

    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_empty(self) -> bool:
        return self.state == FetchState.EMPTY

    @property
    def is_failed(self) -> bool:
        return self.state == FetchState.FAILED


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    return parsed


class GitHubOwner(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str


class GitHubRepoPayload(BaseModel):
    """Subset of `/repos/{owner}/{repo}` and search items the sync relies on."""

    model_config = ConfigDict(extra="ignore")

    full_name: str
    owner: GitHubOwner
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    topics: list[str] = Field(default_factory=list)
    homepage: Optional[str] = None
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    watchers_count: int = 0
    created_at: Optional[datetime] = None
    pushed_at: Optional[datetime] = None

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        cleaned = value.strip()
        if "/" not in cleaned:
            raise ValueError("full_name must be owner/name")
        return cleaned

    @field_validator("topics", mode="before")
    @classmethod
    def validate_topics(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(topic).strip() for topic in value if str(topic).strip()]

    @field_validator("created_at", "pushed_at", mode="before")
    @classmethod
    def validate_timestamps(cls, value: Any) -> Optional[datetime]:
        return _timestamp(value)


class GitHubLabel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None


class GitHubIssuePayload(BaseModel):
    """Issue (or pull request) item from `/repos/{owner}/{repo}/issues`."""

    model_config = ConfigDict(extra="ignore")

    id: int
    number: int
    title: str
    body: Optional[str] = None
    html_url: str
    state: str
    labels: list[GitHubLabel] = Field(default_factory=list)
    comments: int = 0
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    pull_request: Optional[dict[str, Any]] = None

    @field_validator("labels", mode="before")
    @classmethod
    def validate_labels(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        # Labels may arrive as bare strings in some API shapes
        return [{"name": item} if isinstance(item, str) else item for item in value]

    @field_validator("created_at", "updated_at", "closed_at", mode="before")
    @classmethod
    def validate_timestamps(cls, value: Any) -> Optional[datetime]:
        return _timestamp(value)

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels if label.name]


RepoContract = FetchResult[GitHubRepoPayload]
IssueListContract = FetchResult[list[GitHubIssuePayload]]
SearchContract = FetchResult[list[GitHubRepoPayload]]
