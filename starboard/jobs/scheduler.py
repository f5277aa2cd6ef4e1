"""Phased sync scheduler driven by a single re-armed APScheduler job."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import logging
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from starboard.config.settings import Settings, settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.orchestrator import MODE_ALL, SyncOrchestrator
from starboard.utils.helpers import isoformat_z, utcnow

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "starboard_sync"

PHASE_EARLY = "phase1"
PHASE_STEADY = "phase2"

PHASE1_MIN_INTERVAL_HOURS = 0.25
PHASE2_MIN_INTERVAL_HOURS = 1.0


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    phase1_interval_hours: float = 2.5
    phase2_interval_hours: float = 12.0
    phase1_duration_hours: float = 48.0
    run_on_startup: bool = True
    startup_delay_seconds: float = 5.0
    maintenance_interval_days: int = 7

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SchedulerConfig":
        return cls(
            phase1_interval_hours=config.SYNC_INTERVAL_PHASE1_HOURS,
            phase2_interval_hours=config.SYNC_INTERVAL_PHASE2_HOURS,
            phase1_duration_hours=config.SYNC_PHASE1_DURATION_HOURS,
            run_on_startup=config.SYNC_ON_STARTUP,
            startup_delay_seconds=config.SYNC_STARTUP_DELAY_SECONDS,
            maintenance_interval_days=config.MAINTENANCE_INTERVAL_DAYS,
        )


def compute_next_run(first_deploy_at: datetime, now: datetime, config: SchedulerConfig) -> tuple[float, str]:
    """Return `(delay_seconds, phase)` until the next sync.

    During the early phase the delay never runs past the phase boundary by more
    than one second, so the first steady-state run starts on time.
    """

    phase1_end = first_deploy_at + timedelta(hours=config.phase1_duration_hours)
    if now < phase1_end:
        interval = max(config.phase1_interval_hours, PHASE1_MIN_INTERVAL_HOURS) * 3600
        remaining = (phase1_end - now).total_seconds()
        return min(interval, remaining + 1), PHASE_EARLY

    return max(config.phase2_interval_hours, PHASE2_MIN_INTERVAL_HOURS) * 3600, PHASE_STEADY


def _job_listener(event: Any) -> None:
    if event.exception:
        logger.error(
            "Scheduled job failed",
            extra=sanitize_log_extra(job_id=event.job_id, error=str(event.exception)),
        )
    else:
        logger.info("Scheduled job completed", extra=sanitize_log_extra(job_id=event.job_id))


class SyncScheduler:
    """`idle -> running -> idle` with one boolean guard; overlapping requests are no-ops."""

    def __init__(
        self,
        *,
        orchestrator_factory: Callable[[], Any] = SyncOrchestrator,
        config: Optional[SchedulerConfig] = None,
        scheduler: Optional[Any] = None,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self._orchestrator: Optional[Any] = None
        self._config = config or SchedulerConfig.from_settings()
        self._scheduler = scheduler or AsyncIOScheduler(
            timezone=timezone.utc,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )
        self._now = now_provider

        self._started = False
        self._running = False
        self._first_deploy_at: Optional[datetime] = None
        self._phase: Optional[str] = None
        self._next_run_at: Optional[datetime] = None
        self._last_run_at: Optional[datetime] = None
        self._last_result: Optional[dict[str, Any]] = None
        self._last_maintenance_at: Optional[datetime] = None

    @property
    def orchestrator(self) -> Any:
        if self._orchestrator is None:
            self._orchestrator = self._orchestrator_factory()
        return self._orchestrator

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Arm the first run. Calling again is a no-op."""

        if self._started:
            return
        self._started = True

        self._scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        if not self._scheduler.running:
            self._scheduler.start()

        self.orchestrator.store.ensure_schema()
        self._first_deploy_at = self.orchestrator.store.get_or_set_first_deploy_at()

        if self._config.run_on_startup:
            _, phase = compute_next_run(self._first_deploy_at, self._now(), self._config)
            self._arm(self._config.startup_delay_seconds, phase)
        else:
            self._arm_next()

        logger.info(
            "Sync scheduler started",
            extra=sanitize_log_extra(
                first_deploy_at=isoformat_z(self._first_deploy_at),
                run_on_startup=self._config.run_on_startup,
                next_run_at=isoformat_z(self._next_run_at),
                phase=self._phase,
            ),
        )

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._started = False

    async def run_sync(self, mode: str = MODE_ALL) -> Optional[dict[str, Any]]:
        """Run one sync unless another is in flight; returns None when skipped."""

        if self._running:
            logger.info("Sync already in progress; skipping request", extra=sanitize_log_extra(mode=mode))
            return None

        self._running = True
        try:
            result = await self.orchestrator.run(mode)
            if mode == MODE_ALL:
                await self._maybe_run_maintenance()
        except Exception as exc:
            logger.exception("Sync run failed", extra=sanitize_log_extra(mode=mode, error=str(exc)))
            result = {"mode": mode, "success": False, "error": str(exc), "count": 0, "issue_count": 0}
        finally:
            self._running = False
            self._last_run_at = self._now()

        self._last_result = result
        return result

    async def _scheduled_run(self) -> None:
        try:
            await self.run_sync(MODE_ALL)
        finally:
            self._arm_next()

    async def _maybe_run_maintenance(self) -> None:
        now = self._now()
        interval = timedelta(days=self._config.maintenance_interval_days)
        if self._last_maintenance_at is not None and now - self._last_maintenance_at < interval:
            return
        result = await self.orchestrator.run_maintenance()
        if result.get("success"):
            self._last_maintenance_at = now

    def _arm_next(self) -> None:
        first_deploy_at = self._first_deploy_at or self._now()
        delay_seconds, phase = compute_next_run(first_deploy_at, self._now(), self._config)
        self._arm(delay_seconds, phase)

    def _arm(self, delay_seconds: float, phase: str) -> None:
        run_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            self._scheduled_run,
            trigger=DateTrigger(run_date=run_at),
            id=SYNC_JOB_ID,
            name="Starboard full sync",
            replace_existing=True,
        )
        self._phase = phase
        self._next_run_at = run_at.replace(tzinfo=None)
        logger.info(
            "Next sync scheduled",
            extra=sanitize_log_extra(phase=phase, delay_seconds=round(delay_seconds, 1), run_at=isoformat_z(self._next_run_at)),
        )

    def status(self) -> dict[str, Any]:
        last_result = self._last_result or {}
        return {
            "started": self._started,
            "running": self._running,
            "phase": self._phase,
            "next_run_at": isoformat_z(self._next_run_at),
            "last_run_at": isoformat_z(self._last_run_at),
            "last_run_success": last_result.get("success"),
            "first_deploy_at": isoformat_z(self._first_deploy_at),
            "last_maintenance_at": isoformat_z(self._last_maintenance_at),
        }


@lru_cache()
def get_sync_scheduler() -> SyncScheduler:
    """Process-wide scheduler instance."""
    return SyncScheduler()
