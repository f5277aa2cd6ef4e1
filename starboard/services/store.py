"""Store gateway: upserts, raw queries, cached reads and schema upkeep."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

from sqlalchemy import String, and_, case, cast, func, inspect, nulls_last, or_, select, text

from starboard.config.database import Base, SessionLocal
from starboard.config.settings import settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.models import (
    AppMeta,
    EnrichmentPass,
    Issue,
    IssueState,
    RepoSource,
    Repository,
    StarHistory,
)
from starboard.models.app_meta import FIRST_DEPLOY_AT_KEY
from starboard.services.query_cache import QueryCache, cache_key
from starboard.utils.helpers import isoformat_z, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_DEDUP_WINDOW = timedelta(hours=6)

_REPO_UPSERT_FIELDS = (
    "owner",
    "name",
    "description",
    "category",
    "language",
    "topics",
    "homepage",
    "stars",
    "forks",
    "open_issues",
    "watchers",
    "created_at",
    "pushed_at",
    "source",
)

_PASS_HASH_COLUMNS = {
    EnrichmentPass.SUMMARY: Issue.llm_content_hash,
    EnrichmentPass.AIML: Issue.aiml_content_hash,
    EnrichmentPass.BUILD_PLAN: Issue.neo_content_hash,
}

_PASS_WRITABLE_FIELDS = {
    EnrichmentPass.SUMMARY: frozenset(
        {"llm_summary", "llm_solvability", "llm_difficulty", "llm_analyzed_at", "llm_content_hash"}
    ),
    EnrichmentPass.AIML: frozenset(
        {"is_aiml_issue", "aiml_categories", "aiml_classified_at", "aiml_content_hash"}
    ),
    EnrichmentPass.BUILD_PLAN: frozenset({"neo_approach", "neo_generated_at", "neo_content_hash"}),
}

_REPO_SORTS = ("stars", "forks", "growth24h", "growth7d")
_ISSUE_SORTS = ("solvability", "newest", "updated", "comments")


@dataclass(slots=True)
class IssueSyncTarget:
    """Repository selected for an issue sync run."""

    id: int
    full_name: str
    owner: str
    name: str
    source: str
    issues_last_synced_at: Optional[datetime] = None
    issues_synced_at: Optional[datetime] = None


@dataclass(slots=True)
class IssueUpsert:
    """Normalized issue row ready for persistence."""

    github_id: int
    number: int
    title: str
    body: Optional[str]
    html_url: str
    state: str
    labels: list[str]
    comments: int
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime]
    opportunity_type: str
    content_hash: str


@dataclass(slots=True)
class PendingIssue:
    """Issue selected for an enrichment pass, with the hash seen at selection."""

    id: int
    title: str
    body: Optional[str]
    content_hash: str


@dataclass(slots=True)
class InsightTarget:
    id: int
    full_name: str
    description: Optional[str] = None


@dataclass(slots=True)
class InsightIssue:
    id: int
    number: int
    title: str
    body: Optional[str]
    comments: int
    opportunity_type: Optional[str]
    labels: list[str] = field(default_factory=list)


class StoreGateway:
    """Facade over the relational store used by every sync stage.

    Reads go through the injected `QueryCache`. Stages call `invalidate_cache()`
    once their writes are committed; the cache is cleared in full.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Any] = SessionLocal,
        cache: Optional[QueryCache] = None,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache if cache is not None else QueryCache(ttl_seconds=settings.QUERY_CACHE_TTL_SECONDS)
        self._now = now_provider

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @contextmanager
    def _session(self) -> Iterator[Any]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create missing tables and add columns missing from older databases."""

        db = self._session_factory()
        try:
            connection = db.connection()
            Base.metadata.create_all(bind=connection)

            inspector = inspect(connection)
            added: list[str] = []
            for table in Base.metadata.sorted_tables:
                existing = {column["name"] for column in inspector.get_columns(table.name)}
                for column in table.columns:
                    if column.name in existing:
                        continue
                    column_type = column.type.compile(dialect=connection.dialect)
                    db.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column_type}"))
                    added.append(f"{table.name}.{column.name}")
            db.commit()
            if added:
                logger.info("Added missing columns", extra=sanitize_log_extra(columns=added))
        except Exception as exc:
            db.rollback()
            logger.warning(
                "Runtime schema compatibility check failed",
                extra=sanitize_log_extra(stage="schema", error=str(exc)),
            )
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Core write interface
    # ------------------------------------------------------------------

    def upsert_repo(self, data: Mapping[str, Any]) -> int:
        """Insert or update a repository by `full_name`; returns its id."""

        full_name = str(data["full_name"]).strip()
        now = self._now()
        with self._session() as db:
            repo = db.query(Repository).filter(Repository.full_name == full_name).first()
            if repo is None:
                repo = Repository(full_name=full_name)
                db.add(repo)

            for field_name in _REPO_UPSERT_FIELDS:
                if field_name in data:
                    setattr(repo, field_name, data[field_name])
            repo.last_synced = now
            db.flush()
            return int(repo.id)

    def insert_star_history_snapshot(self, repo_id: int, stars: int, forks: int) -> bool:
        """Append a snapshot unless the latest one is identical and under six hours old."""

        now = self._now()
        with self._session() as db:
            latest = (
                db.query(StarHistory)
                .filter(StarHistory.repo_id == repo_id)
                .order_by(StarHistory.recorded_at.desc(), StarHistory.id.desc())
                .first()
            )
            if (
                latest is not None
                and latest.stars == stars
                and latest.forks == forks
                and now - latest.recorded_at < SNAPSHOT_DEDUP_WINDOW
            ):
                return False

            db.add(StarHistory(repo_id=repo_id, stars=stars, forks=forks, recorded_at=now))
            return True

    def recompute_ranks(self) -> None:
        """rank = 1 + number of repositories with strictly more stars."""

        with self._session() as db:
            db.execute(
                text(
                    "UPDATE repositories SET rank = ("
                    "SELECT COUNT(*) + 1 FROM repositories AS r2 WHERE r2.stars > repositories.stars"
                    ")"
                )
            )

    def execute_query(self, sql: str, args: Optional[Mapping[str, Any]] = None) -> list[dict[str, Any]]:
        with self._session() as db:
            result = db.execute(text(sql), dict(args or {}))
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result]

    def invalidate_cache(self) -> None:
        self._cache.invalidate_all()

    # ------------------------------------------------------------------
    # Metadata helpers
    # ------------------------------------------------------------------

    def get_repo_last_synced_map(self) -> dict[str, datetime]:
        with self._session() as db:
            rows = db.query(Repository.full_name, Repository.last_synced).all()
            return {full_name: last_synced for full_name, last_synced in rows if last_synced is not None}

    def get_last_synced(self) -> Optional[datetime]:
        with self._session() as db:
            return db.query(func.max(Repository.last_synced)).scalar()

    def get_repo_summary(self, full_name: str) -> Optional[dict[str, Any]]:
        """Category and headline stats for one tracked repository, or None."""

        with self._session() as db:
            row = (
                db.query(Repository.category, Repository.stars, Repository.forks, Repository.language)
                .filter(Repository.full_name == full_name)
                .first()
            )
            if row is None:
                return None
            return {"category": row.category, "stars": row.stars, "forks": row.forks, "language": row.language}

    def prune_star_history(self, retention_days: int) -> int:
        cutoff = self._now() - timedelta(days=retention_days)
        with self._session() as db:
            deleted = (
                db.query(StarHistory)
                .filter(StarHistory.recorded_at < cutoff)
                .delete(synchronize_session=False)
            )
        logger.info(
            "Pruned star history",
            extra=sanitize_log_extra(deleted=deleted, retention_days=retention_days),
        )
        return int(deleted or 0)

    def get_or_set_first_deploy_at(self) -> datetime:
        """Return the persisted first-deploy time, recording now on first call."""

        with self._session() as db:
            row = db.get(AppMeta, FIRST_DEPLOY_AT_KEY)
            if row is not None:
                parsed = parse_timestamp(row.value)
                if parsed is not None:
                    return parsed
                logger.warning(
                    "Stored first deploy time is unreadable; resetting",
                    extra=sanitize_log_extra(value=row.value),
                )

            now = self._now()
            if row is None:
                db.add(AppMeta(key=FIRST_DEPLOY_AT_KEY, value=now.isoformat()))
            else:
                row.value = now.isoformat()
            return now

    # ------------------------------------------------------------------
    # Issue sync
    # ------------------------------------------------------------------

    def select_repos_for_issue_sync(self, *, limit: int, cooldown_hours: float) -> list[IssueSyncTarget]:
        """Pick repositories due for issue sync.

        Never-synced first, then discovered before static, then stalest first.
        Repositories synced within the cooldown window are excluded.
        """

        cutoff = self._now() - timedelta(hours=cooldown_hours)
        never_synced_first = case((Repository.issues_synced_at.is_(None), 0), else_=1)
        discovered_first = case((Repository.source == RepoSource.DISCOVERED, 0), else_=1)

        with self._session() as db:
            repos = (
                db.query(Repository)
                .filter(or_(Repository.issues_synced_at.is_(None), Repository.issues_synced_at < cutoff))
                .order_by(
                    never_synced_first,
                    discovered_first,
                    Repository.issues_synced_at.asc(),
                    Repository.stars.desc(),
                    Repository.id.asc(),
                )
                .limit(limit)
                .all()
            )
            return [
                IssueSyncTarget(
                    id=int(repo.id),
                    full_name=repo.full_name,
                    owner=repo.owner,
                    name=repo.name,
                    source=repo.source,
                    issues_last_synced_at=repo.issues_last_synced_at,
                    issues_synced_at=repo.issues_synced_at,
                )
                for repo in repos
            ]

    def upsert_issues(
        self,
        target: IssueSyncTarget,
        issues: Sequence[IssueUpsert],
        *,
        synced_at: datetime,
    ) -> dict[str, int]:
        """Upsert issues by `github_id`. A stored closed issue is never reopened."""

        created = 0
        updated = 0
        with self._session() as db:
            for record in issues:
                issue = db.query(Issue).filter(Issue.github_id == record.github_id).first()
                if issue is None:
                    issue = Issue(github_id=record.github_id)
                    db.add(issue)
                    created += 1
                else:
                    updated += 1

                state = IssueState.CLOSED if record.state == IssueState.CLOSED else IssueState.OPEN
                if issue.state == IssueState.CLOSED:
                    state = IssueState.CLOSED

                issue.repo_id = target.id
                issue.repo_full_name = target.full_name
                issue.number = record.number
                issue.title = record.title
                issue.body = record.body
                issue.html_url = record.html_url
                issue.state = state
                issue.labels = list(record.labels)
                issue.comments = record.comments
                issue.created_at = record.created_at
                issue.updated_at = record.updated_at
                issue.closed_at = record.closed_at or issue.closed_at
                if state == IssueState.CLOSED and issue.closed_at is None:
                    issue.closed_at = synced_at
                issue.last_synced = synced_at
                issue.opportunity_type = record.opportunity_type
                issue.content_hash = record.content_hash
                db.flush()

        return {"created": created, "updated": updated}

    def close_stale_issues(
        self,
        repo_id: int,
        *,
        seen_github_ids: Sequence[int],
        run_started_at: datetime,
        closed_at: datetime,
    ) -> int:
        """Close open issues absent from a complete fetch and untouched by this run."""

        with self._session() as db:
            query = db.query(Issue).filter(
                Issue.repo_id == repo_id,
                Issue.state == IssueState.OPEN,
                Issue.last_synced < run_started_at,
            )
            if seen_github_ids:
                query = query.filter(Issue.github_id.notin_(list(seen_github_ids)))

            closed = 0
            for issue in query.all():
                issue.state = IssueState.CLOSED
                issue.closed_at = closed_at
                closed += 1
            return closed

    def update_issue_watermark(self, repo_id: int, *, watermark: datetime, synced_at: datetime) -> None:
        with self._session() as db:
            repo = db.get(Repository, repo_id)
            if repo is None:
                return
            repo.issues_last_synced_at = watermark
            repo.issues_synced_at = synced_at

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def select_issues_pending_pass(self, pass_name: EnrichmentPass, *, limit: int) -> list[PendingIssue]:
        """Open issues whose content hash differs from the pass hash (or the pass never ran)."""

        pass_hash = _PASS_HASH_COLUMNS[EnrichmentPass(pass_name)]
        with self._session() as db:
            rows = (
                db.query(Issue.id, Issue.title, Issue.body, Issue.content_hash)
                .filter(
                    Issue.state == IssueState.OPEN,
                    Issue.content_hash.isnot(None),
                    or_(pass_hash.is_(None), pass_hash != Issue.content_hash),
                )
                .order_by(Issue.updated_at.desc(), Issue.id.asc())
                .limit(limit)
                .all()
            )
            return [
                PendingIssue(id=int(row.id), title=row.title, body=row.body, content_hash=row.content_hash)
                for row in rows
            ]

    def write_issue_enrichment(
        self,
        pass_name: EnrichmentPass,
        updates: Mapping[int, Mapping[str, Any]],
    ) -> int:
        """Write per-issue pass results keyed by issue id; unknown ids are ignored."""

        allowed = _PASS_WRITABLE_FIELDS[EnrichmentPass(pass_name)]
        written = 0
        with self._session() as db:
            for issue_id, fields in updates.items():
                unknown = set(fields) - allowed
                if unknown:
                    raise ValueError(f"Fields not writable by {pass_name} pass: {sorted(unknown)}")

                issue = db.get(Issue, int(issue_id))
                if issue is None:
                    continue
                for name, value in fields.items():
                    setattr(issue, name, value)
                written += 1
        return written

    def count_issues_pending_pass(self, pass_name: EnrichmentPass) -> int:
        pass_hash = _PASS_HASH_COLUMNS[EnrichmentPass(pass_name)]
        with self._session() as db:
            return int(
                db.query(func.count(Issue.id))
                .filter(
                    Issue.state == IssueState.OPEN,
                    Issue.content_hash.isnot(None),
                    or_(pass_hash.is_(None), pass_hash != Issue.content_hash),
                )
                .scalar()
                or 0
            )

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def select_insight_candidates(
        self,
        *,
        limit: int,
        is_current_shape: Callable[[Any], bool],
    ) -> list[InsightTarget]:
        """Top discovered repositories (by stars) whose insights are missing, stale or malformed."""

        with self._session() as db:
            repos = (
                db.query(Repository)
                .filter(
                    Repository.source == RepoSource.DISCOVERED,
                    Repository.issues_synced_at.isnot(None),
                )
                .order_by(Repository.stars.desc(), Repository.id.asc())
                .all()
            )

            targets: list[InsightTarget] = []
            for repo in repos:
                if len(targets) >= limit:
                    break
                needs_refresh = (
                    repo.insights_generated_at is None
                    or repo.opportunity_insights is None
                    or repo.issues_synced_at > repo.insights_generated_at
                    or not is_current_shape(repo.opportunity_insights)
                )
                if needs_refresh:
                    targets.append(InsightTarget(id=int(repo.id), full_name=repo.full_name, description=repo.description))
            return targets

    def get_open_issues_for_insights(self, repo_id: int, *, limit: int) -> list[InsightIssue]:
        with self._session() as db:
            issues = (
                db.query(Issue)
                .filter(Issue.repo_id == repo_id, Issue.state == IssueState.OPEN)
                .order_by(Issue.comments.desc(), Issue.updated_at.desc())
                .limit(limit)
                .all()
            )
            return [
                InsightIssue(
                    id=int(issue.id),
                    number=int(issue.number),
                    title=issue.title,
                    body=issue.body,
                    comments=int(issue.comments or 0),
                    opportunity_type=issue.opportunity_type,
                    labels=list(issue.labels or []),
                )
                for issue in issues
            ]

    def save_repo_insights(self, repo_id: int, insights: Mapping[str, Any], *, generated_at: datetime) -> None:
        with self._session() as db:
            repo = db.get(Repository, repo_id)
            if repo is None:
                return
            repo.opportunity_insights = dict(insights)
            repo.insights_generated_at = generated_at

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_sync_status_counts(self, *, issue_cooldown_hours: float) -> dict[str, Any]:
        cutoff = self._now() - timedelta(hours=issue_cooldown_hours)
        with self._session() as db:
            repos_pending = (
                db.query(func.count(Repository.id))
                .filter(or_(Repository.issues_synced_at.is_(None), Repository.issues_synced_at < cutoff))
                .scalar()
            )
            total_open = db.query(func.count(Issue.id)).filter(Issue.state == IssueState.OPEN).scalar()
            last_synced = db.query(func.max(Repository.last_synced)).scalar()

        return {
            "repos_pending_issue_sync": int(repos_pending or 0),
            "pending_llm_enrichment": self.count_issues_pending_pass(EnrichmentPass.SUMMARY),
            "pending_aiml_classification": self.count_issues_pending_pass(EnrichmentPass.AIML),
            "pending_build_plans": self.count_issues_pending_pass(EnrichmentPass.BUILD_PLAN),
            "total_open_issues": int(total_open or 0),
            "last_synced": isoformat_z(last_synced),
        }

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    def get_repos(
        self,
        *,
        category: str = "all",
        sort: str = "stars",
        q: str = "",
        page: int = 1,
        limit: int = 25,
    ) -> dict[str, Any]:
        """Leaderboard rows with 24h/7d star growth derived from history."""

        sort = sort if sort in _REPO_SORTS else "stars"
        page = max(page, 1)
        limit = max(min(limit, 100), 1)
        key = cache_key("repos", category, sort, q, page, limit)
        return self._cache.get_or_load(key, lambda: self._load_repos(category, sort, q, page, limit))

    def _load_repos(self, category: str, sort: str, q: str, page: int, limit: int) -> dict[str, Any]:
        now = self._now()
        with self._session() as db:
            latest_ts = (
                select(StarHistory.repo_id, func.max(StarHistory.recorded_at).label("max_ts"))
                .group_by(StarHistory.repo_id)
                .subquery()
            )
            latest = (
                select(StarHistory.repo_id, func.max(StarHistory.stars).label("current_stars"))
                .join(
                    latest_ts,
                    and_(
                        StarHistory.repo_id == latest_ts.c.repo_id,
                        StarHistory.recorded_at == latest_ts.c.max_ts,
                    ),
                )
                .group_by(StarHistory.repo_id)
                .subquery()
            )
            history_24h = self._window_start_subquery(now - timedelta(days=1))
            history_7d = self._window_start_subquery(now - timedelta(days=7))

            growth_24h = (latest.c.current_stars - history_24h.c.stars_at_start).label("growth24h")
            growth_7d = (latest.c.current_stars - history_7d.c.stars_at_start).label("growth7d")

            query = (
                db.query(Repository, growth_24h, growth_7d)
                .outerjoin(latest, latest.c.repo_id == Repository.id)
                .outerjoin(history_24h, history_24h.c.repo_id == Repository.id)
                .outerjoin(history_7d, history_7d.c.repo_id == Repository.id)
            )

            if category == "trending":
                query = query.filter(
                    Repository.source == RepoSource.DISCOVERED,
                    Repository.created_at >= now - timedelta(days=183),
                )
            elif category and category != "all":
                query = query.filter(Repository.category == category)
            if q:
                pattern = f"%{q}%"
                query = query.filter(or_(Repository.full_name.ilike(pattern), Repository.description.ilike(pattern)))

            total = query.count()

            order_by = {
                "stars": Repository.stars.desc(),
                "forks": Repository.forks.desc(),
                "growth24h": nulls_last(growth_24h.desc()),
                "growth7d": nulls_last(growth_7d.desc()),
            }[sort]
            rows = query.order_by(order_by, Repository.id.asc()).offset((page - 1) * limit).limit(limit).all()

            repos = []
            for repo, growth24h, growth7d in rows:
                payload = _repo_to_dict(repo)
                payload["growth24h"] = growth24h
                payload["growth7d"] = growth7d
                repos.append(payload)
            return {"repos": repos, "total": int(total)}

    @staticmethod
    def _window_start_subquery(since: datetime):
        return (
            select(StarHistory.repo_id, func.min(StarHistory.stars).label("stars_at_start"))
            .where(StarHistory.recorded_at >= since)
            .group_by(StarHistory.repo_id)
            .subquery()
        )

    def get_issues(
        self,
        *,
        difficulty: Optional[str] = None,
        label: Optional[str] = None,
        q: str = "",
        sort: str = "solvability",
        page: int = 1,
        limit: int = 25,
        aiml: Optional[bool] = None,
        repo: Optional[str] = None,
    ) -> dict[str, Any]:
        """Open issues with enrichment fields plus aggregate stats."""

        sort = sort if sort in _ISSUE_SORTS else "solvability"
        page = max(page, 1)
        limit = max(min(limit, 100), 1)
        key = cache_key("issues", difficulty, label, q, sort, page, limit, aiml, repo)
        return self._cache.get_or_load(
            key,
            lambda: self._load_issues(difficulty, label, q, sort, page, limit, aiml, repo),
        )

    def _load_issues(
        self,
        difficulty: Optional[str],
        label: Optional[str],
        q: str,
        sort: str,
        page: int,
        limit: int,
        aiml: Optional[bool],
        repo: Optional[str],
    ) -> dict[str, Any]:
        with self._session() as db:
            query = db.query(Issue).filter(Issue.state == IssueState.OPEN)
            if difficulty:
                query = query.filter(Issue.llm_difficulty == difficulty)
            if label:
                query = query.filter(cast(Issue.labels, String).like(f"%{label}%"))
            if q:
                pattern = f"%{q}%"
                query = query.filter(or_(Issue.title.ilike(pattern), Issue.repo_full_name.ilike(pattern)))
            if aiml is not None:
                query = query.filter(Issue.is_aiml_issue.is_(bool(aiml)))
            if repo:
                query = query.filter(Issue.repo_full_name == repo)

            total = query.count()
            order_by = {
                "solvability": nulls_last(Issue.llm_solvability.desc()),
                "newest": Issue.created_at.desc(),
                "updated": Issue.updated_at.desc(),
                "comments": Issue.comments.desc(),
            }[sort]
            issues = query.order_by(order_by, Issue.id.asc()).offset((page - 1) * limit).limit(limit).all()

            by_difficulty = dict(
                db.query(Issue.llm_difficulty, func.count(Issue.id))
                .filter(Issue.state == IssueState.OPEN, Issue.llm_difficulty.isnot(None))
                .group_by(Issue.llm_difficulty)
                .all()
            )
            open_total = db.query(func.count(Issue.id)).filter(Issue.state == IssueState.OPEN).scalar()
            aiml_total = (
                db.query(func.count(Issue.id))
                .filter(Issue.state == IssueState.OPEN, Issue.is_aiml_issue.is_(True))
                .scalar()
            )
            last_synced = db.query(func.max(Repository.last_synced)).scalar()

            return {
                "issues": [_issue_to_dict(issue) for issue in issues],
                "total": int(total),
                "last_synced": isoformat_z(last_synced),
                "stats": {
                    "total": int(open_total or 0),
                    "beginner": int(by_difficulty.get("beginner", 0)),
                    "intermediate": int(by_difficulty.get("intermediate", 0)),
                    "advanced": int(by_difficulty.get("advanced", 0)),
                    "aiml": int(aiml_total or 0),
                },
            }

    def get_star_history(self, owner: str, repo: str, *, limit: int = 90) -> dict[str, Any]:
        full_name = f"{owner}/{repo}"
        key = cache_key("history", full_name, limit)
        return self._cache.get_or_load(key, lambda: self._load_star_history(full_name, limit))

    def _load_star_history(self, full_name: str, limit: int) -> dict[str, Any]:
        with self._session() as db:
            repository = db.query(Repository).filter(Repository.full_name == full_name).first()
            if repository is None:
                return {"repo": None, "history": []}

            rows = (
                db.query(StarHistory)
                .filter(StarHistory.repo_id == repository.id)
                .order_by(StarHistory.recorded_at.desc())
                .limit(limit)
                .all()
            )
            history = [
                {"stars": row.stars, "forks": row.forks, "recorded_at": isoformat_z(row.recorded_at)}
                for row in reversed(rows)
            ]
            return {"repo": _repo_to_dict(repository), "history": history}


def _repo_to_dict(repo: Repository) -> dict[str, Any]:
    return {
        "id": repo.id,
        "full_name": repo.full_name,
        "owner": repo.owner,
        "name": repo.name,
        "description": repo.description,
        "category": repo.category,
        "language": repo.language,
        "topics": list(repo.topics or []),
        "homepage": repo.homepage,
        "stars": repo.stars,
        "forks": repo.forks,
        "open_issues": repo.open_issues,
        "watchers": repo.watchers,
        "rank": repo.rank,
        "created_at": isoformat_z(repo.created_at),
        "pushed_at": isoformat_z(repo.pushed_at),
        "last_synced": isoformat_z(repo.last_synced),
        "source": repo.source,
        "opportunity_insights": repo.opportunity_insights,
        "insights_generated_at": isoformat_z(repo.insights_generated_at),
    }


def _issue_to_dict(issue: Issue) -> dict[str, Any]:
    return {
        "id": issue.id,
        "github_id": issue.github_id,
        "repo_full_name": issue.repo_full_name,
        "number": issue.number,
        "title": issue.title,
        "html_url": issue.html_url,
        "state": issue.state,
        "labels": list(issue.labels or []),
        "comments": issue.comments,
        "created_at": isoformat_z(issue.created_at),
        "updated_at": isoformat_z(issue.updated_at),
        "opportunity_type": issue.opportunity_type,
        "llm_summary": issue.llm_summary,
        "llm_solvability": issue.llm_solvability,
        "llm_difficulty": issue.llm_difficulty,
        "is_aiml_issue": issue.is_aiml_issue,
        "aiml_categories": issue.aiml_categories,
        "neo_approach": issue.neo_approach,
    }
