"""Per-repository opportunity theme synthesis."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable, Literal, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from starboard.config.settings import settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.models.issue import OpportunityType
from starboard.services.llm_client import LLMCall
from starboard.services.llm_parsing import parse_json_object
from starboard.services.store import InsightIssue, InsightTarget, StoreGateway
from starboard.utils.helpers import truncate_string, utcnow

logger = logging.getLogger(__name__)

MAX_THEMES_PER_CATEGORY = 4
INSIGHT_BODY_CHARS = 200

CATEGORY_KEYS: dict[OpportunityType, str] = {
    OpportunityType.BUG: "bugs",
    OpportunityType.FEATURE: "features",
    OpportunityType.IMPROVEMENT: "improvements",
}


class InsightTheme(BaseModel):
    title: str
    description: str
    issue_count: int
    total_comments: int
    urgency: Literal["high", "medium", "low"]
    suggested_approach: str

    @field_validator("title", "description", "suggested_approach")
    @classmethod
    def validate_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("theme text fields are required")
        return cleaned

    @field_validator("issue_count", "total_comments")
    @classmethod
    def validate_counts(cls, value: int) -> int:
        return max(int(value), 0)

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class RepoInsights(BaseModel):
    bugs: Optional[list[InsightTheme]] = None
    features: Optional[list[InsightTheme]] = None
    improvements: Optional[list[InsightTheme]] = None

    @field_validator("bugs", "features", "improvements")
    @classmethod
    def empty_to_null(cls, value: Optional[list[InsightTheme]]) -> Optional[list[InsightTheme]]:
        if not value:
            return None
        return value[:MAX_THEMES_PER_CATEGORY]


def is_current_insights_shape(value: Any) -> bool:
    """True when stored insights carry exactly the three category keys and validate."""

    if not isinstance(value, dict) or set(value) != set(CATEGORY_KEYS.values()):
        return False
    try:
        RepoInsights.model_validate(value)
    except ValidationError:
        return False
    return True


def group_issues_by_type(issues: Sequence[InsightIssue]) -> dict[OpportunityType, list[InsightIssue]]:
    grouped: dict[OpportunityType, list[InsightIssue]] = {kind: [] for kind in CATEGORY_KEYS}
    for issue in issues:
        try:
            kind = OpportunityType(issue.opportunity_type or OpportunityType.IMPROVEMENT.value)
        except ValueError:
            kind = OpportunityType.IMPROVEMENT
        grouped[kind].append(issue)
    return grouped


def build_insights_prompt(target: InsightTarget, grouped: dict[OpportunityType, list[InsightIssue]]) -> str:
    sections = []
    for kind, key in CATEGORY_KEYS.items():
        issues = grouped[kind]
        if not issues:
            sections.append(f"## {key} (0 issues)\n(none)")
            continue
        lines = [
            f"- #{issue.number} [{issue.comments} comments] {issue.title}"
            + (f" :: {truncate_string(issue.body, INSIGHT_BODY_CHARS)}" if issue.body else "")
            for issue in issues
        ]
        sections.append(f"## {key} ({len(issues)} issues)\n" + "\n".join(lines))

    description = target.description or "(no description)"
    return (
        f"Repository: {target.full_name}\n"
        f"Description: {description}\n\n"
        "Cluster the open issues below into 2-4 themes per category. Each theme is an opportunity\n"
        "card for contributors. Only use issues listed under that category; if a category has no\n"
        "issues, set it to null. Never invent themes without supporting issues.\n\n"
        "Return ONLY a JSON object (no other text):\n"
        '{ "bugs": [<theme>] | null, "features": [<theme>] | null, "improvements": [<theme>] | null }\n'
        'where <theme> is { "title": "<short name>", "description": "<1-2 sentences>", '
        '"issue_count": <number>, "total_comments": <number>, "urgency": "<high|medium|low>", '
        '"suggested_approach": "<technical approach>" }\n\n'
        + "\n\n".join(sections)
    )


class InsightSynthesizer:
    """Generates theme cards for top discovered repositories with fresh issue data."""

    def __init__(
        self,
        *,
        store: StoreGateway,
        llm_call: Optional[LLMCall],
        repo_limit: Optional[int] = None,
        issue_limit: Optional[int] = None,
        max_tokens: Optional[int] = None,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._llm_call = llm_call
        self._repo_limit = repo_limit or settings.INSIGHTS_REPO_LIMIT
        self._issue_limit = issue_limit or settings.INSIGHTS_ISSUE_LIMIT
        self._max_tokens = max_tokens or settings.INSIGHTS_MAX_TOKENS
        self._now = now_provider

    async def run(self) -> dict[str, Any]:
        if self._llm_call is None:
            return {"success": True, "skipped": True, "reason": "pass disabled"}

        targets = self._store.select_insight_candidates(
            limit=self._repo_limit,
            is_current_shape=is_current_insights_shape,
        )
        stats = {"candidates": len(targets), "generated": 0, "skipped_no_issues": 0, "failed": 0}

        for target in targets:
            try:
                generated = await self.generate_for_repo(target)
            except Exception as exc:
                stats["failed"] += 1
                logger.warning(
                    "Insight generation failed for repo",
                    extra=sanitize_log_extra(repo=target.full_name, error=str(exc)),
                )
                continue

            if generated:
                stats["generated"] += 1
            else:
                stats["skipped_no_issues"] += 1

        if stats["generated"] or stats["skipped_no_issues"]:
            self._store.invalidate_cache()

        logger.info("Insight synthesis completed", extra=sanitize_log_extra(stats=stats))
        return {"success": True, "stats": stats}

    async def generate_for_repo(self, target: InsightTarget) -> bool:
        """Generate and store insights; False when the repo has no open issues.

        A repo without open issues gets an all-null payload so it stops
        being selected until its next issue sync.
        """

        issues = self._store.get_open_issues_for_insights(target.id, limit=self._issue_limit)
        if not issues:
            empty = {key: None for key in CATEGORY_KEYS.values()}
            self._store.save_repo_insights(target.id, empty, generated_at=self._now())
            return False

        grouped = group_issues_by_type(issues)
        raw = await self._llm_call(build_insights_prompt(target, grouped), self._max_tokens)
        parsed = parse_json_object(raw, RepoInsights)

        payload: dict[str, Any] = {}
        for kind, key in CATEGORY_KEYS.items():
            themes = getattr(parsed, key)
            if not grouped[kind] or not themes:
                payload[key] = None
                continue
            payload[key] = [theme.model_dump() for theme in themes]

        self._store.save_repo_insights(target.id, payload, generated_at=self._now())
        return True
