"""Mapping helpers from validated GitHub payloads to store rows."""

from __future__ import annotations

from typing import Any

from starboard.crawlers.contracts import GitHubRepoPayload


def map_repo_payload_to_row(
    payload: GitHubRepoPayload,
    *,
    category: str,
    source: str,
) -> dict[str, Any]:
    """Map a repository payload into the `repositories` upsert contract."""

    return {
        "full_name": payload.full_name,
        "owner": payload.owner.login,
        "name": payload.name,
        "description": payload.description,
        "category": category,
        "language": payload.language,
        "topics": list(payload.topics),
        "homepage": payload.homepage or None,
        "stars": int(payload.stargazers_count),
        "forks": int(payload.forks_count),
        "open_issues": int(payload.open_issues_count),
        "watchers": int(payload.watchers_count),
        "created_at": payload.created_at,
        "pushed_at": payload.pushed_at,
        "source": source,
    }
