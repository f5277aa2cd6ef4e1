"""Live per-repository issue listing, fetched from GitHub instead of the store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from starboard.config.settings import settings
from starboard.crawlers.client import GitHubClient, sanitize_log_extra
from starboard.crawlers.contracts import FetchState, GitHubIssuePayload
from starboard.models import RepoCategory
from starboard.services.query_cache import QueryCache, cache_key
from starboard.services.store import StoreGateway
from starboard.utils.helpers import isoformat_z, utcnow

logger = logging.getLogger(__name__)

LIVE_ISSUE_LABELS = ("good first issue", "help wanted")


def split_full_name(full_name: Optional[str]) -> tuple[str, str]:
    """Split `owner/repo`; raises ValueError on anything else."""
    parts = (full_name or "").strip().split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError("invalid repo format, expected owner/repo")
    return parts[0], parts[1]


class LiveIssueService:
    """Beginner-friendly open issues for one repository, cached per repo.

    Issues are listed per label and merged; pull requests and duplicates are
    dropped. Nothing is written to the store and no enrichment is attached.
    """

    def __init__(
        self,
        *,
        store: Optional[StoreGateway] = None,
        github_client_factory: Callable[[], Any] = GitHubClient,
        cache: Optional[QueryCache] = None,
        per_label: Optional[int] = None,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store or StoreGateway(now_provider=now_provider)
        self._github_client_factory = github_client_factory
        self._cache = cache or QueryCache(ttl_seconds=settings.LIVE_ISSUES_CACHE_SECONDS)
        self._per_label = per_label or settings.LIVE_ISSUES_PER_LABEL
        self._now = now_provider

    async def list_issues(self, full_name: str, *, page: int = 1, limit: int = 15) -> dict[str, Any]:
        owner, name = split_full_name(full_name)
        full_name = f"{owner}/{name}"
        page = max(page, 1)
        limit = max(limit, 1)

        key = cache_key("live_issues", full_name)
        issues = self._cache.get(key)
        if issues is None:
            issues = await self._fetch(owner, name, full_name)
            self._cache.set(key, issues)

        start = (page - 1) * limit
        return {
            "issues": issues[start : start + limit],
            "total": len(issues),
            "page": page,
            "limit": limit,
            "live": True,
        }

    async def _fetch(self, owner: str, name: str, full_name: str) -> list[dict[str, Any]]:
        repo = self._store.get_repo_summary(full_name) or {}
        seen: dict[int, dict[str, Any]] = {}

        async with self._github_client_factory() as client:
            for label in LIVE_ISSUE_LABELS:
                result = await client.list_issues(
                    owner,
                    name,
                    state="open",
                    labels=label,
                    per_page=self._per_label,
                )
                if result.state == FetchState.FAILED:
                    # Repos without the label answer with an error or nothing at all
                    logger.warning(
                        "Live issue listing failed for label",
                        extra=sanitize_log_extra(repo=full_name, label=label, error=result.error),
                    )
                    continue

                for issue in result.data or []:
                    if issue.is_pull_request or issue.id in seen:
                        continue
                    seen[issue.id] = self._to_dict(issue, full_name, repo)

        return list(seen.values())

    def _to_dict(self, issue: GitHubIssuePayload, full_name: str, repo: dict[str, Any]) -> dict[str, Any]:
        category = repo.get("category") or RepoCategory.SWE
        return {
            "github_id": issue.id,
            "repo_full_name": full_name,
            "number": issue.number,
            "title": issue.title,
            "body": issue.body,
            "html_url": issue.html_url,
            "state": issue.state,
            "labels": issue.label_names,
            "comments": issue.comments,
            "created_at": isoformat_z(issue.created_at),
            "updated_at": isoformat_z(issue.updated_at),
            "closed_at": isoformat_z(issue.closed_at),
            "last_synced": isoformat_z(self._now()),
            "is_aiml_issue": category == RepoCategory.AIML,
            "repo_stars": int(repo.get("stars") or 0),
            "repo_language": repo.get("language"),
            "repo_category": category,
        }
