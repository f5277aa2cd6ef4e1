"""FastAPI application entry point"""

from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from starboard import __version__
from starboard.config.settings import settings
from starboard.jobs.scheduler import get_sync_scheduler
from starboard.jobs.sync_jobs import get_sync_status, normalize_sync_mode, trigger_sync
from starboard.orchestrator import MODE_ALL, MODE_REPOS
from starboard.services.live_issues import LiveIssueService

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    scheduler = get_sync_scheduler()
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    description="GitHub repository popularity and issue opportunity sync engine",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _store():
    return get_sync_scheduler().orchestrator.store


_live_issue_service: Optional[LiveIssueService] = None


def _live_issues() -> LiveIssueService:
    global _live_issue_service
    if _live_issue_service is None:
        _live_issue_service = LiveIssueService(store=_store())
    return _live_issue_service


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Cron routes are open when CRON_SECRET is unset."""
    if settings.CRON_SECRET and authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": __version__,
        "status": "running",
        "endpoints": {
            "health": "/api/health",
            "sync": "POST /api/sync?mode=repos|issues|all",
            "sync_status": "/api/sync/status",
            "repos": "/api/repos",
            "issues": "/api/issues",
            "live_issues": "/api/issues/live?repo=owner/repo",
            "cron_sync": "/api/cron/sync",
            "cron_discover": "/api/cron/discover",
            "history": "/api/history/{owner}/{repo}",
        },
    }


@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "starboard-sync",
        "version": __version__,
    }


@app.post("/api/sync")
async def run_sync(mode: Optional[str] = Query(default=None)):
    """Trigger a sync and wait for it to finish"""
    try:
        selected_mode = normalize_sync_mode(mode)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    logger.info(f"Manual sync triggered (mode={selected_mode})")
    return await trigger_sync(selected_mode)


@app.get("/api/sync/status")
async def sync_status():
    return get_sync_status()


@app.get("/api/cron/sync", dependencies=[Depends(require_cron_secret)])
async def cron_sync():
    """Full sync for external cron callers"""
    logger.info("Cron sync triggered")
    return await trigger_sync(MODE_ALL)


@app.get("/api/cron/discover", dependencies=[Depends(require_cron_secret)])
async def cron_discover():
    """Metadata refresh plus trending discovery for external cron callers"""
    logger.info("Cron discovery triggered")
    return await trigger_sync(MODE_REPOS)


@app.get("/api/repos")
async def list_repos(
    category: str = "all",
    sort: str = "stars",
    q: str = "",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
):
    return _store().get_repos(category=category, sort=sort, q=q, page=page, limit=limit)


@app.get("/api/issues")
async def list_issues(
    difficulty: Optional[str] = None,
    label: Optional[str] = None,
    q: str = "",
    sort: str = "solvability",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
    aiml: Optional[bool] = None,
    repo: Optional[str] = None,
):
    return _store().get_issues(
        difficulty=difficulty,
        label=label,
        q=q,
        sort=sort,
        page=page,
        limit=limit,
        aiml=aiml,
        repo=repo,
    )


@app.get("/api/issues/live")
async def live_issues(
    repo: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=15, ge=1, le=100),
):
    try:
        return await _live_issues().list_issues(repo, page=page, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/history/{owner}/{repo}")
async def star_history(owner: str, repo: str):
    result = _store().get_star_history(owner, repo)
    if result["repo"] is None:
        raise HTTPException(status_code=404, detail=f"Repository {owner}/{repo} is not tracked")
    return result


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
