"""Repository metadata sync stage for the static catalog."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from starboard.config.settings import settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.models.repository import RepoSource
from starboard.services.repo_catalog import TrackedRepo, get_tracked_repos
from starboard.services.repo_mapper import map_repo_payload_to_row
from starboard.services.store import StoreGateway
from starboard.utils.helpers import split_full_name, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RepoSyncResult:
    updated: int = 0
    skipped: int = 0
    failed: int = 0


class RepoMetadataStage:
    """Fetches catalog repositories in paced batches and records star history."""

    def __init__(
        self,
        client: Any,
        store: StoreGateway,
        *,
        catalog: Optional[Sequence[TrackedRepo]] = None,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        cooldown_hours: Optional[float] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._catalog = tuple(catalog if catalog is not None else get_tracked_repos())
        self._batch_size = batch_size or settings.REPO_SYNC_BATCH_SIZE
        self._batch_delay_seconds = (
            settings.REPO_SYNC_BATCH_DELAY_SECONDS if batch_delay_seconds is None else batch_delay_seconds
        )
        self._cooldown = timedelta(
            hours=settings.REPO_SYNC_COOLDOWN_HOURS if cooldown_hours is None else cooldown_hours
        )
        self._sleep = sleeper
        self._now = now_provider

    async def run(self) -> RepoSyncResult:
        result = RepoSyncResult()
        last_synced = {name.lower(): ts for name, ts in self._store.get_repo_last_synced_map().items()}
        now = self._now()

        due: list[TrackedRepo] = []
        for repo in self._catalog:
            previous = last_synced.get(repo.full_name.lower())
            if previous is not None and now - previous < self._cooldown:
                result.skipped += 1
                continue
            due.append(repo)

        batches = [due[i : i + self._batch_size] for i in range(0, len(due), self._batch_size)]
        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(*(self._sync_repo(repo) for repo in batch))
            for ok in outcomes:
                if ok:
                    result.updated += 1
                else:
                    result.failed += 1

            if index + 1 < len(batches) and self._batch_delay_seconds > 0:
                await self._sleep(self._batch_delay_seconds)

        self._store.recompute_ranks()
        self._store.invalidate_cache()
        logger.info(
            "Repository metadata sync completed",
            extra=sanitize_log_extra(updated=result.updated, skipped=result.skipped, failed=result.failed),
        )
        return result

    async def _sync_repo(self, repo: TrackedRepo) -> bool:
        try:
            owner, name = split_full_name(repo.full_name)
            response = await self._client.get_repo(owner, name)
            if not response.is_ok or response.data is None:
                logger.warning(
                    "Repository fetch failed",
                    extra=sanitize_log_extra(repo=repo.full_name, error=response.error, status_code=response.status_code),
                )
                return False

            payload = response.data
            row = map_repo_payload_to_row(payload, category=repo.category, source=RepoSource.STATIC)
            repo_id = self._store.upsert_repo(row)
            self._store.insert_star_history_snapshot(repo_id, row["stars"], row["forks"])
            return True
        except Exception as exc:
            logger.warning(
                "Repository sync failed",
                extra=sanitize_log_extra(repo=repo.full_name, error=str(exc)),
            )
            return False
