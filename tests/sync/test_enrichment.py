from __future__ import annotations

import asyncio
import dataclasses
from datetime import timedelta
import json
import re

import pytest
from pydantic import ValidationError

from starboard.models import EnrichmentPass, Issue
from starboard.services.issue_classifier import compute_content_hash
from starboard.services.issue_enrichment import (
    AimlResult,
    BuildPlanResult,
    IssueEnrichmentService,
    SummaryResult,
    default_pass_specs,
)
from starboard.services.store import IssueSyncTarget, IssueUpsert

_ID_PATTERN = re.compile(r"\(id=(\d+)\)")


def _widget_target(store) -> IssueSyncTarget:
    repo_id = store.upsert_repo({"full_name": "acme/widget", "owner": "acme", "name": "widget", "stars": 10})
    return IssueSyncTarget(id=repo_id, full_name="acme/widget", owner="acme", name="widget", source="static")


def _seed_issues(store, clock, titles: list[str]) -> list[int]:
    records = [_record(index, title, clock) for index, title in enumerate(titles, start=1)]
    store.upsert_issues(_widget_target(store), records, synced_at=clock.now)
    return [_issue_id(store, github_id) for github_id in range(1, len(titles) + 1)]


def _record(github_id: int, title: str, clock, body: str = "Body text") -> IssueUpsert:
    return IssueUpsert(
        github_id=github_id,
        number=github_id,
        title=title,
        body=body,
        html_url=f"https://github.com/acme/widget/issues/{github_id}",
        state="open",
        labels=[],
        comments=0,
        created_at=clock.now - timedelta(days=10),
        updated_at=clock.now - timedelta(hours=github_id),
        closed_at=None,
        opportunity_type="improvement",
        content_hash=compute_content_hash(title, body),
    )


def _issue_id(store, github_id: int) -> int:
    rows = store.execute_query("SELECT id FROM issues WHERE github_id = :gid", {"gid": github_id})
    return int(rows[0]["id"])


def _load(session_factory, issue_id: int) -> Issue:
    db = session_factory()
    try:
        return db.get(Issue, issue_id)
    finally:
        db.close()


class ScriptedLLM:
    """Answers each prompt with one summary object per issue id found in it."""

    def __init__(self, *, extra_ids=(), fail_calls=(), on_call=None) -> None:
        self.prompts: list[str] = []
        self._extra_ids = list(extra_ids)
        self._fail_calls = set(fail_calls)
        self._on_call = on_call

    async def __call__(self, prompt: str, max_tokens: int) -> str:
        self.prompts.append(prompt)
        call_number = len(self.prompts)
        if self._on_call is not None:
            self._on_call()
        if call_number in self._fail_calls:
            raise RuntimeError("upstream timeout")

        ids = [int(value) for value in _ID_PATTERN.findall(prompt)] + self._extra_ids
        items = [
            {"id": issue_id, "summary": f"Fix issue {issue_id}", "solvability": 8, "difficulty": "Beginner"}
            for issue_id in ids
        ]
        return "```json\n" + json.dumps(items) + "\n```"


def _service(store, clock, llm, **spec_overrides) -> IssueEnrichmentService:
    specs = default_pass_specs()
    if spec_overrides:
        specs[EnrichmentPass.SUMMARY] = dataclasses.replace(specs[EnrichmentPass.SUMMARY], **spec_overrides)
    return IssueEnrichmentService(
        store=store,
        llm_calls={"summary": llm, "aiml": None, "build_plan": None},
        specs=specs,
        batch_delay_seconds=0,
        now_provider=clock,
    )


def test_summary_pass_writes_results_and_gates_on_hash(store, session_factory, clock) -> None:
    (issue_id,) = _seed_issues(store, clock, ["Docs typo"])
    llm = ScriptedLLM()
    service = _service(store, clock, llm)

    first = asyncio.run(service.run_pass(EnrichmentPass.SUMMARY))
    second = asyncio.run(service.run_pass(EnrichmentPass.SUMMARY))

    issue = _load(session_factory, issue_id)
    assert first["stats"]["written"] == 1
    assert second["stats"]["selected"] == 0
    assert len(llm.prompts) == 1
    assert issue.llm_summary == f"Fix issue {issue_id}"
    assert issue.llm_difficulty == "beginner"
    assert issue.llm_solvability == 8
    assert issue.llm_analyzed_at == clock.now
    assert issue.llm_content_hash == issue.content_hash


def test_title_change_reselects_issue(store, clock) -> None:
    (issue_id,) = _seed_issues(store, clock, ["Docs typo"])
    service = _service(store, clock, ScriptedLLM())
    asyncio.run(service.run_pass(EnrichmentPass.SUMMARY))
    assert store.count_issues_pending_pass(EnrichmentPass.SUMMARY) == 0

    store.upsert_issues(_widget_target(store), [_record(1, "Docs typo in README", clock)], synced_at=clock.now)

    pending = store.select_issues_pending_pass(EnrichmentPass.SUMMARY, limit=10)
    assert [issue.id for issue in pending] == [issue_id]


def test_hash_is_captured_at_selection(store, session_factory, clock) -> None:
    (issue_id,) = _seed_issues(store, clock, ["Original title"])
    original_hash = compute_content_hash("Original title", "Body text")
    target = _widget_target(store)

    def edit_during_call() -> None:
        store.upsert_issues(target, [_record(1, "Edited title", clock)], synced_at=clock.now)

    service = _service(store, clock, ScriptedLLM(on_call=edit_during_call))
    asyncio.run(service.run_pass(EnrichmentPass.SUMMARY))

    issue = _load(session_factory, issue_id)
    assert issue.llm_content_hash == original_hash
    assert issue.content_hash != original_hash
    assert store.count_issues_pending_pass(EnrichmentPass.SUMMARY) == 1


def test_failed_batch_does_not_stop_later_batches(store, session_factory, clock) -> None:
    first_id, second_id = _seed_issues(store, clock, ["First", "Second"])
    service = _service(store, clock, ScriptedLLM(fail_calls={1}), batch_size=1)

    result = asyncio.run(service.run_pass(EnrichmentPass.SUMMARY))

    assert result["stats"] == {"selected": 2, "batches": 2, "failed_batches": 1, "written": 1}
    assert _load(session_factory, first_id).llm_summary is None
    assert _load(session_factory, second_id).llm_summary is not None


def test_ids_outside_the_batch_are_ignored(store, session_factory, clock) -> None:
    first_id, second_id = _seed_issues(store, clock, ["First", "Second"])
    llm = ScriptedLLM(extra_ids=[second_id, 999])
    service = _service(store, clock, llm, limit=1)

    result = asyncio.run(service.run_pass(EnrichmentPass.SUMMARY))

    assert result["stats"]["written"] == 1
    assert _load(session_factory, first_id).llm_summary is not None
    assert _load(session_factory, second_id).llm_summary is None


def test_disabled_passes_are_skipped(store, clock) -> None:
    _seed_issues(store, clock, ["First"])
    service = IssueEnrichmentService(
        store=store,
        llm_calls={"summary": None, "aiml": None, "build_plan": None},
        batch_delay_seconds=0,
        now_provider=clock,
    )

    results = asyncio.run(service.run_all())

    assert set(results) == {"summary", "aiml", "build_plan"}
    assert all(result["skipped"] for result in results.values())
    assert store.count_issues_pending_pass(EnrichmentPass.SUMMARY) == 1


def test_aiml_and_build_plan_passes_write_their_own_columns(store, session_factory, clock) -> None:
    (issue_id,) = _seed_issues(store, clock, ["Add embeddings cache"])

    async def aiml_call(prompt: str, max_tokens: int) -> str:
        ids = _ID_PATTERN.findall(prompt)
        return json.dumps(
            [{"id": int(value), "is_aiml": True, "categories": ["embeddings", "quantum"]} for value in ids]
        )

    async def plan_call(prompt: str, max_tokens: int) -> str:
        ids = _ID_PATTERN.findall(prompt)
        return json.dumps(
            [
                {
                    "id": int(value),
                    "summary": "Add an LRU cache around the embedder",
                    "steps": ["Locate embedder", "Wrap with cache", "Add tests", "Update docs", "Release"],
                    "effort": "1-4 hours",
                    "confidence": 14,
                }
                for value in ids
            ]
        )

    service = IssueEnrichmentService(
        store=store,
        llm_calls={"summary": None, "aiml": aiml_call, "build_plan": plan_call},
        batch_delay_seconds=0,
        now_provider=clock,
    )
    results = asyncio.run(service.run_all())

    issue = _load(session_factory, issue_id)
    assert results["summary"]["skipped"] is True
    assert issue.is_aiml_issue is True
    assert issue.aiml_categories == ["embeddings"]
    assert issue.neo_approach["steps"] == ["Locate embedder", "Wrap with cache", "Add tests", "Update docs"]
    assert issue.neo_approach["confidence"] == 10
    assert issue.neo_content_hash == issue.content_hash
    assert issue.llm_summary is None


def test_result_models_normalize_provider_output() -> None:
    summary = SummaryResult.model_validate(
        {"id": 1, "summary": "  " + "x" * 200, "solvability": 14, "difficulty": " Advanced "}
    )
    assert len(summary.summary) == 120
    assert summary.solvability == 10
    assert summary.difficulty.value == "advanced"

    aiml = AimlResult.model_validate({"id": 1, "is_aiml": False, "categories": ["training"]})
    assert aiml.categories == []

    with pytest.raises(ValidationError):
        BuildPlanResult.model_validate(
            {"id": 1, "summary": "Do it", "steps": ["only one"], "effort": "< 1 day", "confidence": 5}
        )


def test_write_rejects_fields_owned_by_another_pass(store, clock) -> None:
    (issue_id,) = _seed_issues(store, clock, ["First"])

    with pytest.raises(ValueError, match="llm_summary"):
        store.write_issue_enrichment(EnrichmentPass.AIML, {issue_id: {"llm_summary": "nope"}})
