from __future__ import annotations

import asyncio
from datetime import date

from starboard.crawlers.trending_stage import TrendingDiscoveryStage, build_trending_queries
from starboard.models import RepoCategory, RepoSource
from starboard.services.repo_categorizer import categorize_repo


def test_build_trending_queries_uses_calendar_month_windows() -> None:
    queries = build_trending_queries(date(2025, 5, 31))

    assert len(queries) == 8
    assert queries[0].query == "created:>2025-02-28 stars:>500 language:Python"
    assert queries[-1].query == "pushed:>2024-11-30 stars:>5000 created:>2024-11-30"
    assert {query.label for query in queries} >= {"new LLM", "viral recent"}


def test_categorize_repo_prefers_topics_then_name_heuristic() -> None:
    assert categorize_repo(["LLM", "cli"], "Go", "acme/tool") == RepoCategory.AIML
    assert categorize_repo(["cli"], "Python", "acme/llm-router") == RepoCategory.AIML
    assert categorize_repo([], "Python", "acme/llm-router") == RepoCategory.SWE
    assert categorize_repo(["cli"], "Rust", "acme/llm-router") == RepoCategory.SWE


def test_discovery_dedups_and_skips_static_repos(fake_github, store, clock, no_sleep, repo_payload) -> None:
    fake_github.search_results = {
        "language:Python": [
            repo_payload("acme/agent-kit", stars=900, topics=["ai-agent"]),
            repo_payload("Pytorch/PyTorch", stars=90000),
        ],
        "topic:llm": [repo_payload("acme/agent-kit", stars=900, topics=["ai-agent"])],
        "language:Rust": [repo_payload("acme/fast-db", stars=700, language="Rust")],
    }
    stage = TrendingDiscoveryStage(
        fake_github,
        store,
        static_names=frozenset({"pytorch/pytorch"}),
        query_delay_seconds=0,
        sleeper=no_sleep,
        now_provider=clock,
    )

    stats = asyncio.run(stage.run())

    assert stats == {"queries": 8, "failed_queries": 0, "added": 2, "failed": 0}
    repos = {repo["full_name"]: repo for repo in store.get_repos()["repos"]}
    assert set(repos) == {"acme/agent-kit", "acme/fast-db"}
    assert repos["acme/agent-kit"]["category"] == RepoCategory.AIML
    assert repos["acme/fast-db"]["category"] == RepoCategory.SWE
    assert all(repo["source"] == RepoSource.DISCOVERED for repo in repos.values())
    assert len(store.get_star_history("acme", "fast-db")["history"]) == 1


def test_failed_query_does_not_stop_discovery(fake_github, store, clock, repo_payload) -> None:
    fake_github.search_results = {
        "topic:llm": None,
        "language:Go": [repo_payload("acme/gateway", stars=800, language="Go")],
    }
    sleeps: list[float] = []

    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    stage = TrendingDiscoveryStage(
        fake_github,
        store,
        static_names=frozenset(),
        query_delay_seconds=0.3,
        sleeper=record_sleep,
        now_provider=clock,
    )
    stats = asyncio.run(stage.run())

    assert stats["failed_queries"] == 1
    assert stats["added"] == 1
    assert len(fake_github.search_calls) == 8
    assert sleeps == [0.3] * 7
