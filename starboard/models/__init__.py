"""Database models"""

from starboard.models.app_meta import AppMeta
from starboard.models.issue import EnrichmentPass, Issue, IssueDifficulty, IssueState, OpportunityType
from starboard.models.repository import RepoCategory, RepoSource, Repository
from starboard.models.star_history import StarHistory

__all__ = [
    "AppMeta",
    "EnrichmentPass",
    "Issue",
    "IssueDifficulty",
    "IssueState",
    "OpportunityType",
    "RepoCategory",
    "RepoSource",
    "Repository",
    "StarHistory",
]
