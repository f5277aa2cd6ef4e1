"""Operator entrypoints: manual sync trigger and sync status."""

from __future__ import annotations

from typing import Any, Optional

from starboard.config.settings import settings
from starboard.jobs.scheduler import SyncScheduler, get_sync_scheduler
from starboard.orchestrator import MODE_ALL, MODE_ISSUES, MODE_REPOS, SYNC_MODES


def normalize_sync_mode(raw: Optional[str]) -> str:
    """Normalize a requested mode; empty input means a full sync."""
    if raw is None or not str(raw).strip():
        return MODE_ALL

    mode = str(raw).strip().lower()
    if mode not in SYNC_MODES:
        raise ValueError(f"Unsupported sync mode '{raw}'. Expected one of: {', '.join(SYNC_MODES)}")
    return mode


def _message_for(mode: str, count: int, issue_count: int) -> str:
    if mode == MODE_REPOS:
        return f"Synced {count} repositories"
    if mode == MODE_ISSUES:
        return f"Synced {issue_count} issues"
    return f"Synced {count} repositories and {issue_count} issues"


async def trigger_sync(
    mode: Optional[str] = None,
    *,
    scheduler: Optional[SyncScheduler] = None,
) -> dict[str, Any]:
    """Run a sync now through the scheduler's single-run guard."""

    selected_mode = normalize_sync_mode(mode)
    sync_scheduler = scheduler or get_sync_scheduler()

    result = await sync_scheduler.run_sync(selected_mode)
    if result is None:
        return {
            "success": True,
            "mode": selected_mode,
            "count": 0,
            "issue_count": 0,
            "skipped": True,
            "message": "A sync is already in progress; request skipped",
        }

    count = int(result.get("count", 0))
    issue_count = int(result.get("issue_count", 0))
    response: dict[str, Any] = {
        "success": bool(result.get("success")),
        "mode": selected_mode,
        "count": count,
        "issue_count": issue_count,
    }
    if response["success"]:
        response["message"] = _message_for(selected_mode, count, issue_count)
    else:
        errors = result.get("errors") or []
        response["error"] = "; ".join(errors) if errors else str(result.get("error", "Sync failed"))
    return response


def get_sync_status(*, scheduler: Optional[SyncScheduler] = None) -> dict[str, Any]:
    """Pending-work counts plus scheduler state."""

    sync_scheduler = scheduler or get_sync_scheduler()
    store = sync_scheduler.orchestrator.store
    status = store.get_sync_status_counts(issue_cooldown_hours=settings.ISSUE_SYNC_COOLDOWN_HOURS)
    status["scheduler"] = sync_scheduler.status()
    return status
