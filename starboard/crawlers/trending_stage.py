"""Trending repository discovery via GitHub search."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Any, Awaitable, Callable, Optional

from dateutil.relativedelta import relativedelta

from starboard.config.settings import settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.models.repository import RepoSource
from starboard.services.repo_catalog import tracked_full_names
from starboard.services.repo_categorizer import categorize_repo
from starboard.services.repo_mapper import map_repo_payload_to_row
from starboard.services.store import StoreGateway
from starboard.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrendingQuery:
    label: str
    query: str


def build_trending_queries(today: date) -> list[TrendingQuery]:
    """Search queries for fast-growing new repositories and viral recent ones."""

    since_3m = (today - relativedelta(months=3)).isoformat()
    since_6m = (today - relativedelta(months=6)).isoformat()
    return [
        TrendingQuery("new Python", f"created:>{since_3m} stars:>500 language:Python"),
        TrendingQuery("new LLM", f"created:>{since_3m} stars:>300 topic:llm"),
        TrendingQuery("new AI agents", f"created:>{since_3m} stars:>300 topic:ai-agent"),
        TrendingQuery("new GenAI", f"created:>{since_3m} stars:>300 topic:generative-ai"),
        TrendingQuery("new TS", f"created:>{since_3m} stars:>500 language:TypeScript"),
        TrendingQuery("new Rust", f"created:>{since_3m} stars:>500 language:Rust"),
        TrendingQuery("new Go", f"created:>{since_3m} stars:>500 language:Go"),
        TrendingQuery("viral recent", f"pushed:>{since_6m} stars:>5000 created:>{since_6m}"),
    ]


class TrendingDiscoveryStage:
    """Upserts search hits as `discovered` repositories."""

    def __init__(
        self,
        client: Any,
        store: StoreGateway,
        *,
        static_names: Optional[frozenset[str]] = None,
        results_per_query: Optional[int] = None,
        query_delay_seconds: Optional[float] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._static_names = static_names if static_names is not None else tracked_full_names()
        self._results_per_query = results_per_query or settings.TRENDING_RESULTS_PER_QUERY
        self._query_delay_seconds = (
            settings.TRENDING_QUERY_DELAY_SECONDS if query_delay_seconds is None else query_delay_seconds
        )
        self._sleep = sleeper
        self._now = now_provider

    async def run(self) -> dict[str, int]:
        queries = build_trending_queries(self._now().date())
        seen: set[str] = set()
        stats = {"queries": len(queries), "failed_queries": 0, "added": 0, "failed": 0}

        for index, trending_query in enumerate(queries):
            response = await self._client.search_repositories(
                trending_query.query,
                per_page=self._results_per_query,
                sort="stars",
                order="desc",
            )
            if response.is_failed:
                stats["failed_queries"] += 1
                logger.warning(
                    "Trending search failed",
                    extra=sanitize_log_extra(label=trending_query.label, query=trending_query.query, error=response.error),
                )
            else:
                items = response.data or []
                logger.info(
                    "Trending search returned results",
                    extra=sanitize_log_extra(label=trending_query.label, results=len(items)),
                )
                for item in items:
                    key = item.full_name.lower()
                    if key in seen:
                        continue
                    seen.add(key)
                    if key in self._static_names:
                        continue

                    try:
                        category = categorize_repo(item.topics, item.language, item.full_name)
                        row = map_repo_payload_to_row(item, category=category, source=RepoSource.DISCOVERED)
                        repo_id = self._store.upsert_repo(row)
                        self._store.insert_star_history_snapshot(repo_id, row["stars"], row["forks"])
                        stats["added"] += 1
                    except Exception as exc:
                        stats["failed"] += 1
                        logger.warning(
                            "Trending repo upsert failed",
                            extra=sanitize_log_extra(repo=item.full_name, error=str(exc)),
                        )

            if index + 1 < len(queries) and self._query_delay_seconds > 0:
                await self._sleep(self._query_delay_seconds)

        self._store.invalidate_cache()
        logger.info("Trending discovery completed", extra=sanitize_log_extra(stats=stats))
        return stats
