"""Label-based opportunity classification and content hashing for issues."""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, Optional

from starboard.models.issue import OpportunityType


_BUG_KEYWORDS = frozenset(
    {
        "bug",
        "bugs",
        "crash",
        "crashes",
        "defect",
        "regression",
        "broken",
        "error",
    }
)
_FEATURE_KEYWORDS = frozenset(
    {
        "feature",
        "features",
        "enhancement",
        "enhancements",
        "proposal",
        "rfc",
    }
)
_LABEL_SEPARATORS = re.compile(r"[\s:/_-]+")


def _label_tokens(label: str) -> set[str]:
    return {token for token in _LABEL_SEPARATORS.split(label) if token}


def _contains_any(label: str, keywords: frozenset[str]) -> bool:
    return not keywords.isdisjoint(_label_tokens(label))


def classify_opportunity(labels: Iterable[Optional[str]]) -> OpportunityType:
    """Map issue labels to an opportunity type.

    Bug keywords are checked before feature keywords; anything unmatched is an
    improvement.
    """

    normalized = [label.strip().lower() for label in labels if label and label.strip()]

    if any(_contains_any(label, _BUG_KEYWORDS) for label in normalized):
        return OpportunityType.BUG
    if any(_contains_any(label, _FEATURE_KEYWORDS) for label in normalized):
        return OpportunityType.FEATURE
    return OpportunityType.IMPROVEMENT


def compute_content_hash(title: Optional[str], body: Optional[str]) -> str:
    """SHA-1 digest over title and body separated by a NUL byte."""

    payload = f"{title or ''}\0{body or ''}"
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
