"""Watermark-bounded issue sync stage with stale-closure detection."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from starboard.config.settings import settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.crawlers.contracts import GitHubIssuePayload
from starboard.models.issue import IssueState
from starboard.services.issue_classifier import classify_opportunity, compute_content_hash
from starboard.services.store import IssueSyncTarget, IssueUpsert, StoreGateway
from starboard.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class IssueFetchError(RuntimeError):
    """Raised when the issue listing for a repository could not be fetched."""


@dataclass(slots=True)
class RepoIssueSyncOutcome:
    repo: str
    full_fetch: bool
    fetched: int
    upserted: int
    closed: int
    watermark: datetime


def to_issue_upsert(payload: GitHubIssuePayload) -> IssueUpsert:
    labels = payload.label_names
    state = IssueState.CLOSED if payload.state.lower() == IssueState.CLOSED else IssueState.OPEN
    return IssueUpsert(
        github_id=payload.id,
        number=payload.number,
        title=payload.title,
        body=payload.body,
        html_url=payload.html_url,
        state=state,
        labels=labels,
        comments=payload.comments,
        created_at=payload.created_at,
        updated_at=payload.updated_at,
        closed_at=payload.closed_at,
        opportunity_type=classify_opportunity(labels).value,
        content_hash=compute_content_hash(payload.title, payload.body),
    )


class IssueSyncStage:
    """Syncs issues for a prioritized batch of repositories, then runs enrichment."""

    def __init__(
        self,
        client: Any,
        store: StoreGateway,
        *,
        enrichment: Optional[Any] = None,
        batch_size: Optional[int] = None,
        cooldown_hours: Optional[float] = None,
        repo_delay_seconds: Optional[float] = None,
        since_buffer_seconds: Optional[int] = None,
        page_size: Optional[int] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._enrichment = enrichment
        self._batch_size = batch_size or settings.ISSUE_SYNC_BATCH_SIZE
        self._cooldown_hours = settings.ISSUE_SYNC_COOLDOWN_HOURS if cooldown_hours is None else cooldown_hours
        self._repo_delay_seconds = (
            settings.ISSUE_SYNC_REPO_DELAY_SECONDS if repo_delay_seconds is None else repo_delay_seconds
        )
        self._since_buffer = timedelta(
            seconds=settings.ISSUE_SYNC_SINCE_BUFFER_SECONDS if since_buffer_seconds is None else since_buffer_seconds
        )
        self._page_size = page_size or settings.ISSUES_PAGE_SIZE
        self._sleep = sleeper
        self._now = now_provider

    async def run(self) -> dict[str, Any]:
        run_started_at = self._now()
        targets = self._store.select_repos_for_issue_sync(limit=self._batch_size, cooldown_hours=self._cooldown_hours)
        stats: dict[str, Any] = {
            "repos": len(targets),
            "synced_repos": 0,
            "failed_repos": 0,
            "issues_upserted": 0,
            "issues_closed": 0,
        }
        logger.info("Issue sync started", extra=sanitize_log_extra(repos=[target.full_name for target in targets]))

        for index, target in enumerate(targets):
            try:
                outcome = await self.sync_repo(target, run_started_at=run_started_at)
                stats["synced_repos"] += 1
                stats["issues_upserted"] += outcome.upserted
                stats["issues_closed"] += outcome.closed
            except Exception as exc:
                stats["failed_repos"] += 1
                logger.warning(
                    "Issue sync failed for repo",
                    extra=sanitize_log_extra(repo=target.full_name, error=str(exc)),
                )

            if index + 1 < len(targets) and self._repo_delay_seconds > 0:
                await self._sleep(self._repo_delay_seconds)

        if self._enrichment is not None:
            try:
                stats["enrichment"] = await self._enrichment.run_all()
            except Exception as exc:
                logger.exception(
                    "Issue enrichment failed (non-fatal)",
                    extra=sanitize_log_extra(error=str(exc)),
                )
                stats["enrichment"] = {"success": False, "error": str(exc)}

        self._store.invalidate_cache()
        logger.info(
            "Issue sync completed",
            extra=sanitize_log_extra(**{key: value for key, value in stats.items() if key != "enrichment"}),
        )
        return stats

    async def sync_repo(self, target: IssueSyncTarget, *, run_started_at: datetime) -> RepoIssueSyncOutcome:
        """Fetch, upsert and (for complete full fetches) close stale issues for one repo."""

        existing_watermark = target.issues_last_synced_at
        full_fetch = existing_watermark is None
        since = None if full_fetch else existing_watermark - self._since_buffer

        response = await self._client.list_issues(
            target.owner,
            target.name,
            state="open" if full_fetch else "all",
            since=since,
            per_page=self._page_size,
            sort="updated",
            direction="desc",
        )
        if response.is_failed:
            raise IssueFetchError(response.error or f"issue listing failed for {target.full_name}")

        payloads: Sequence[GitHubIssuePayload] = response.data or []
        records = [to_issue_upsert(payload) for payload in payloads if not payload.is_pull_request]

        synced_at = self._now()
        upserted = self._store.upsert_issues(target, records, synced_at=synced_at)

        closed = 0
        # The page-size ceiling stands in for "complete result": a repo with exactly
        # page-size open issues never gets stale closures.
        if full_fetch and len(payloads) < self._page_size:
            closed = self._store.close_stale_issues(
                target.id,
                seen_github_ids=[record.github_id for record in records],
                run_started_at=run_started_at,
                closed_at=synced_at,
            )

        watermark = self._next_watermark(existing_watermark, records, synced_at)
        self._store.update_issue_watermark(target.id, watermark=watermark, synced_at=synced_at)

        logger.info(
            "Repo issues synced",
            extra=sanitize_log_extra(
                repo=target.full_name,
                full_fetch=full_fetch,
                fetched=len(payloads),
                upserted=len(records),
                inserted=upserted["created"],
                closed=closed,
            ),
        )
        return RepoIssueSyncOutcome(
            repo=target.full_name,
            full_fetch=full_fetch,
            fetched=len(payloads),
            upserted=len(records),
            closed=closed,
            watermark=watermark,
        )

    @staticmethod
    def _next_watermark(
        existing: Optional[datetime],
        records: Sequence[IssueUpsert],
        synced_at: datetime,
    ) -> datetime:
        """Max observed `updated_at`; never moves backwards, wall clock only when nothing was ever seen."""

        observed = max((record.updated_at for record in records), default=None)
        if observed is None:
            return existing or synced_at
        if existing is not None and existing > observed:
            return existing
        return observed
