"""Content-hash gated LLM enrichment passes over synced issues."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import enum
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from pydantic import BaseModel, field_validator, model_validator

from starboard.config.settings import settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.models.issue import EnrichmentPass, IssueDifficulty
from starboard.services.llm_client import LLMCall
from starboard.services.llm_parsing import parse_json_array
from starboard.services.store import PendingIssue, StoreGateway
from starboard.utils.helpers import truncate_string, utcnow

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 120


class AimlCategory(str, enum.Enum):
    AGENT_BUILDING = "agent_building"
    MEMORY_CONTEXT = "memory_context"
    MODEL_INTEGRATION = "model_integration"
    TRAINING = "training"
    INFERENCE = "inference"
    EMBEDDINGS = "embeddings"
    EVALUATION = "evaluation"
    TOOLS_PLUGINS = "tools_plugins"


class BuildEffort(str, enum.Enum):
    UNDER_HOUR = "< 1 hour"
    FEW_HOURS = "1-4 hours"
    UNDER_DAY = "< 1 day"
    FEW_DAYS = "1-3 days"
    OVER_THREE_DAYS = "> 3 days"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SummaryResult(BaseModel):
    id: int
    summary: str
    solvability: float
    difficulty: IssueDifficulty

    @field_validator("summary")
    @classmethod
    def validate_summary(cls, value: str) -> str:
        cleaned = " ".join(value.split())
        if not cleaned:
            raise ValueError("summary is required")
        return cleaned[:SUMMARY_MAX_CHARS]

    @field_validator("solvability")
    @classmethod
    def validate_solvability(cls, value: float) -> float:
        return _clamp(float(value), 0.0, 10.0)

    @field_validator("difficulty", mode="before")
    @classmethod
    def normalize_difficulty(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class AimlResult(BaseModel):
    id: int
    is_aiml: bool
    categories: list[AimlCategory] = []

    @field_validator("categories", mode="before")
    @classmethod
    def drop_unknown_categories(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        known = {category.value for category in AimlCategory}
        cleaned: list[str] = []
        for item in value:
            name = str(item).strip().lower()
            if name in known and name not in cleaned:
                cleaned.append(name)
        return cleaned

    @model_validator(mode="after")
    def clear_categories_when_not_aiml(self) -> "AimlResult":
        if not self.is_aiml:
            self.categories = []
        return self


class BuildPlanResult(BaseModel):
    id: int
    summary: str
    steps: list[str]
    effort: BuildEffort
    confidence: int

    @field_validator("summary")
    @classmethod
    def validate_summary(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("summary is required")
        return cleaned

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, value: list[str]) -> list[str]:
        cleaned = [step.strip() for step in value if isinstance(step, str) and step.strip()]
        if len(cleaned) < 2:
            raise ValueError("build plan needs at least two steps")
        return cleaned[:4]

    @field_validator("confidence", mode="before")
    @classmethod
    def validate_confidence(cls, value: Any) -> int:
        return int(_clamp(round(float(value)), 1, 10))


@dataclass(frozen=True, slots=True)
class PassSpec:
    """Selection, batching and output mapping for one enrichment pass."""

    name: EnrichmentPass
    limit: int
    batch_size: int
    body_chars: int
    max_tokens: int
    result_model: type[BaseModel]
    prompt_builder: Callable[[str], str]
    to_fields: Callable[[Any, PendingIssue, datetime], dict[str, Any]]


def format_issues_for_prompt(issues: Sequence[PendingIssue], body_chars: int) -> str:
    blocks = []
    for index, issue in enumerate(issues, start=1):
        body = truncate_string(issue.body, body_chars)
        blocks.append(f"Issue {index} (id={issue.id}):\nTitle: {issue.title}\nBody: {body}")
    return "\n\n---\n\n".join(blocks)


def build_summary_prompt(issues_text: str) -> str:
    return (
        "For each GitHub issue below, return a JSON array (no other text) with objects:\n"
        '{ "id": <number>, "summary": "<1 sentence max 120 chars>", "solvability": <0-10>, '
        '"difficulty": "<beginner|intermediate|advanced>" }\n\n'
        "Scoring guide:\n"
        "- beginner (solvability 7-10): docs, small bugs, tests, typos\n"
        "- intermediate (solvability 4-6): moderate features, refactors, bug fixes needing context\n"
        "- advanced (solvability 0-3): architectural changes, vague requirements, deep domain knowledge\n\n"
        f"Issues:\n{issues_text}\n\n"
        "Return ONLY the JSON array."
    )


def build_aiml_prompt(issues_text: str) -> str:
    categories = ", ".join(f'"{category.value}"' for category in AimlCategory)
    return (
        "Classify each GitHub issue as AI/ML related or not.\n"
        "An issue is AI/ML related if it involves: LLM/AI agents, memory systems, context windows, RAG,\n"
        "model integration/APIs, training/fine-tuning, inference/deployment, vector embeddings, evaluation,\n"
        "tool use/function calling, or any ML framework work.\n\n"
        f"Categories (only include matching ones, or empty array if not AI/ML):\n{categories}\n\n"
        "Return ONLY a JSON array (no other text):\n"
        '[{ "id": <number>, "is_aiml": <boolean>, "categories": [<strings>] }]\n\n'
        f"Issues:\n{issues_text}\n\n"
        "Return ONLY the JSON array."
    )


def build_plan_prompt(issues_text: str) -> str:
    efforts = ", ".join(f'"{effort.value}"' for effort in BuildEffort)
    return (
        "You are planning work for an autonomous coding agent. For each GitHub issue below, describe how\n"
        "the agent would resolve it. Return a JSON array (no other text) with objects:\n"
        '{ "id": <number>, "summary": "<one sentence approach>", "steps": ["<step>", ...], '
        '"effort": "<effort>", "confidence": <1-10> }\n\n'
        "Rules:\n"
        "- steps: 2 to 4 short, ordered, concrete actions\n"
        f"- effort: one of {efforts}\n"
        "- confidence: how likely the agent is to succeed without human help (1 = unlikely, 10 = certain)\n\n"
        f"Issues:\n{issues_text}\n\n"
        "Return ONLY the JSON array."
    )


def _summary_fields(result: SummaryResult, issue: PendingIssue, now: datetime) -> dict[str, Any]:
    return {
        "llm_summary": result.summary,
        "llm_solvability": result.solvability,
        "llm_difficulty": result.difficulty.value,
        "llm_analyzed_at": now,
        "llm_content_hash": issue.content_hash,
    }


def _aiml_fields(result: AimlResult, issue: PendingIssue, now: datetime) -> dict[str, Any]:
    return {
        "is_aiml_issue": result.is_aiml,
        "aiml_categories": [category.value for category in result.categories],
        "aiml_classified_at": now,
        "aiml_content_hash": issue.content_hash,
    }


def _build_plan_fields(result: BuildPlanResult, issue: PendingIssue, now: datetime) -> dict[str, Any]:
    return {
        "neo_approach": {
            "summary": result.summary,
            "steps": list(result.steps),
            "effort": result.effort.value,
            "confidence": result.confidence,
        },
        "neo_generated_at": now,
        "neo_content_hash": issue.content_hash,
    }


def default_pass_specs() -> dict[EnrichmentPass, PassSpec]:
    return {
        EnrichmentPass.SUMMARY: PassSpec(
            name=EnrichmentPass.SUMMARY,
            limit=settings.SUMMARY_PASS_LIMIT,
            batch_size=settings.SUMMARY_PASS_BATCH_SIZE,
            body_chars=500,
            max_tokens=1024,
            result_model=SummaryResult,
            prompt_builder=build_summary_prompt,
            to_fields=_summary_fields,
        ),
        EnrichmentPass.AIML: PassSpec(
            name=EnrichmentPass.AIML,
            limit=settings.AIML_PASS_LIMIT,
            batch_size=settings.AIML_PASS_BATCH_SIZE,
            body_chars=300,
            max_tokens=1024,
            result_model=AimlResult,
            prompt_builder=build_aiml_prompt,
            to_fields=_aiml_fields,
        ),
        EnrichmentPass.BUILD_PLAN: PassSpec(
            name=EnrichmentPass.BUILD_PLAN,
            limit=settings.BUILD_PLAN_PASS_LIMIT,
            batch_size=settings.BUILD_PLAN_PASS_BATCH_SIZE,
            body_chars=600,
            max_tokens=2048,
            result_model=BuildPlanResult,
            prompt_builder=build_plan_prompt,
            to_fields=_build_plan_fields,
        ),
    }


class IssueEnrichmentService:
    """Runs the three enrichment passes; a pass without an `llm_call` is skipped."""

    def __init__(
        self,
        *,
        store: StoreGateway,
        llm_calls: Mapping[str, Optional[LLMCall]],
        specs: Optional[Mapping[EnrichmentPass, PassSpec]] = None,
        batch_delay_seconds: Optional[float] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_provider: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._llm_calls = dict(llm_calls)
        self._specs = dict(specs or default_pass_specs())
        self._batch_delay_seconds = (
            settings.ENRICHMENT_BATCH_DELAY_SECONDS if batch_delay_seconds is None else batch_delay_seconds
        )
        self._sleep = sleeper
        self._now = now_provider

    async def run_all(self) -> dict[str, Any]:
        """Run every pass; one pass failing never stops the others."""

        results: dict[str, Any] = {}
        for pass_name in (EnrichmentPass.SUMMARY, EnrichmentPass.AIML, EnrichmentPass.BUILD_PLAN):
            try:
                results[pass_name.value] = await self.run_pass(pass_name)
            except Exception as exc:
                logger.exception(
                    "Enrichment pass failed",
                    extra=sanitize_log_extra(enrichment_pass=pass_name.value, error=str(exc)),
                )
                results[pass_name.value] = {"success": False, "error": str(exc)}
        return results

    async def run_pass(self, pass_name: EnrichmentPass) -> dict[str, Any]:
        pass_name = EnrichmentPass(pass_name)
        llm_call = self._llm_calls.get(pass_name.value)
        if llm_call is None:
            return {"success": True, "skipped": True, "reason": "pass disabled"}

        pass_spec = self._specs[pass_name]
        pending = self._store.select_issues_pending_pass(pass_name, limit=pass_spec.limit)
        stats = {"selected": len(pending), "batches": 0, "failed_batches": 0, "written": 0}
        if not pending:
            return {"success": True, "stats": stats}

        logger.info(
            "Enrichment pass started",
            extra=sanitize_log_extra(enrichment_pass=pass_name.value, selected=len(pending)),
        )

        batches = [pending[i : i + pass_spec.batch_size] for i in range(0, len(pending), pass_spec.batch_size)]
        for index, batch in enumerate(batches):
            stats["batches"] += 1
            try:
                stats["written"] += await self._run_batch(pass_spec, llm_call, batch)
            except Exception as exc:
                stats["failed_batches"] += 1
                logger.warning(
                    "Enrichment batch failed",
                    extra=sanitize_log_extra(
                        enrichment_pass=pass_name.value,
                        issue_ids=[issue.id for issue in batch],
                        error=str(exc),
                    ),
                )

            if index + 1 < len(batches) and self._batch_delay_seconds > 0:
                await self._sleep(self._batch_delay_seconds)

        logger.info(
            "Enrichment pass completed",
            extra=sanitize_log_extra(enrichment_pass=pass_name.value, stats=stats),
        )
        return {"success": True, "stats": stats}

    async def _run_batch(self, pass_spec: PassSpec, llm_call: LLMCall, batch: Sequence[PendingIssue]) -> int:
        prompt = pass_spec.prompt_builder(format_issues_for_prompt(batch, pass_spec.body_chars))
        raw = await llm_call(prompt, pass_spec.max_tokens)
        results = parse_json_array(raw, pass_spec.result_model)

        by_id = {issue.id: issue for issue in batch}
        now = self._now()
        updates: dict[int, dict[str, Any]] = {}
        for result in results:
            issue = by_id.get(result.id)
            if issue is None:
                continue
            updates[issue.id] = pass_spec.to_fields(result, issue, now)

        if not updates:
            return 0
        return self._store.write_issue_enrichment(pass_spec.name, updates)
