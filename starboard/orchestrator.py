"""Sync orchestrator with stage-isolated execution."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

from starboard.config.settings import settings
from starboard.crawlers.client import GitHubClient, sanitize_for_log, sanitize_log_extra
from starboard.crawlers.issues_stage import IssueSyncStage
from starboard.crawlers.repos_stage import RepoMetadataStage
from starboard.crawlers.trending_stage import TrendingDiscoveryStage
from starboard.services.insights import InsightSynthesizer
from starboard.services.issue_enrichment import IssueEnrichmentService
from starboard.services.llm_client import INSIGHTS_PASS, LLMCall, PassConfig, build_llm_call, resolve_pass_configs
from starboard.services.store import StoreGateway
from starboard.utils.helpers import isoformat_z, utcnow

logger = logging.getLogger(__name__)

MODE_REPOS = "repos"
MODE_ISSUES = "issues"
MODE_ALL = "all"
SYNC_MODES = (MODE_REPOS, MODE_ISSUES, MODE_ALL)

STAGE_METADATA = "metadata"
STAGE_TRENDING = "trending"
STAGE_ISSUES = "issues"
STAGE_INSIGHTS = "insights"
STAGE_MAINTENANCE = "maintenance"


class SyncOrchestrator:
    """Coordinates metadata, trending, issue, enrichment and insight stages."""

    def __init__(
        self,
        *,
        store: Optional[StoreGateway] = None,
        github_client_factory: Callable[[], Any] = GitHubClient,
        pass_configs: Optional[Mapping[str, PassConfig]] = None,
        llm_calls: Optional[Mapping[str, Optional[LLMCall]]] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store or StoreGateway(now_provider=now_provider)
        self._github_client_factory = github_client_factory
        self._sleep = sleeper
        self._now = now_provider

        if llm_calls is None:
            configs = pass_configs if pass_configs is not None else resolve_pass_configs()
            llm_calls = {name: build_llm_call(config) for name, config in configs.items()}
        self._llm_calls = dict(llm_calls)

    @property
    def store(self) -> StoreGateway:
        return self._store

    async def run(self, mode: str = MODE_ALL) -> dict[str, Any]:
        """Run one sync in the given mode and return per-stage results."""

        if mode not in SYNC_MODES:
            raise ValueError(f"Unknown sync mode: {mode}")

        self._store.ensure_schema()
        run_stats: dict[str, Any] = {
            "mode": mode,
            "started_at": isoformat_z(self._now()),
            "stages": {},
            "errors": [],
        }
        logger.info("Sync run started", extra=sanitize_log_extra(mode=mode))

        async with self._github_client_factory() as client:
            if mode in (MODE_REPOS, MODE_ALL):
                metadata_result, trending_result = await asyncio.gather(
                    self._run_stage(STAGE_METADATA, self._run_metadata, client),
                    self._run_stage(STAGE_TRENDING, self._run_trending, client),
                )
                self._record(run_stats, STAGE_METADATA, metadata_result)
                self._record(run_stats, STAGE_TRENDING, trending_result)

            if mode in (MODE_ISSUES, MODE_ALL):
                self._record(run_stats, STAGE_ISSUES, await self._run_stage(STAGE_ISSUES, self._run_issues, client))

        if mode == MODE_ALL:
            self._record(run_stats, STAGE_INSIGHTS, await self._run_stage(STAGE_INSIGHTS, self._run_insights))

        stages = run_stats["stages"]
        run_stats["count"] = int(stages.get(STAGE_METADATA, {}).get("stats", {}).get("updated", 0)) + int(
            stages.get(STAGE_TRENDING, {}).get("stats", {}).get("added", 0)
        )
        run_stats["issue_count"] = int(stages.get(STAGE_ISSUES, {}).get("stats", {}).get("issues_upserted", 0))
        run_stats["completed_at"] = isoformat_z(self._now())
        run_stats["success"] = all(stage.get("success", False) for stage in stages.values())
        logger.info(
            "Sync run completed",
            extra=sanitize_log_extra(
                mode=mode,
                success=run_stats["success"],
                count=run_stats["count"],
                issue_count=run_stats["issue_count"],
                errors=run_stats["errors"],
            ),
        )
        return run_stats

    async def run_maintenance(self) -> dict[str, Any]:
        """Prune star history past the retention window."""

        result = await self._run_stage(STAGE_MAINTENANCE, self._run_prune)
        if result.get("success"):
            self._store.invalidate_cache()
        return result

    async def _run_stage(self, stage_name: str, runner: Callable[..., Awaitable[dict[str, Any]]], *args: Any) -> dict[str, Any]:
        try:
            stats = await runner(*args)
            return {"success": True, "stats": stats}
        except Exception as exc:
            sanitized_error = sanitize_for_log(str(exc), key="error")
            logger.exception(
                "Sync stage raised exception",
                extra=sanitize_log_extra(stage=stage_name, error=sanitized_error),
            )
            return {"success": False, "error": sanitized_error, "stats": {}}

    @staticmethod
    def _record(run_stats: dict[str, Any], stage_name: str, result: dict[str, Any]) -> None:
        run_stats["stages"][stage_name] = result
        if not result.get("success", False):
            run_stats["errors"].append(f"{stage_name}: {result.get('error', 'stage failed')}")

    async def _run_metadata(self, client: Any) -> dict[str, Any]:
        stage = RepoMetadataStage(client, self._store, sleeper=self._sleep, now_provider=self._now)
        result = await stage.run()
        return {"updated": result.updated, "skipped": result.skipped, "failed": result.failed}

    async def _run_trending(self, client: Any) -> dict[str, Any]:
        stage = TrendingDiscoveryStage(client, self._store, sleeper=self._sleep, now_provider=self._now)
        return await stage.run()

    async def _run_issues(self, client: Any) -> dict[str, Any]:
        enrichment = IssueEnrichmentService(
            store=self._store,
            llm_calls=self._llm_calls,
            sleeper=self._sleep,
            now_provider=self._now,
        )
        stage = IssueSyncStage(client, self._store, enrichment=enrichment, sleeper=self._sleep, now_provider=self._now)
        return await stage.run()

    async def _run_insights(self) -> dict[str, Any]:
        synthesizer = InsightSynthesizer(
            store=self._store,
            llm_call=self._llm_calls.get(INSIGHTS_PASS),
            now_provider=self._now,
        )
        return await synthesizer.run()

    async def _run_prune(self) -> dict[str, Any]:
        deleted = self._store.prune_star_history(settings.STAR_HISTORY_RETENTION_DAYS)
        return {"deleted": deleted, "retention_days": settings.STAR_HISTORY_RETENTION_DAYS}
