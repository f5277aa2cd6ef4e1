"""Tracked GitHub issue model with per-pass enrichment columns."""

import enum

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from starboard.config.database import Base, BigIntId


class IssueState:
    OPEN = "open"
    CLOSED = "closed"


class OpportunityType(str, enum.Enum):
    BUG = "bug"
    FEATURE = "feature"
    IMPROVEMENT = "improvement"


class IssueDifficulty(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class EnrichmentPass(str, enum.Enum):
    SUMMARY = "summary"
    AIML = "aiml"
    BUILD_PLAN = "build_plan"


class Issue(Base):
    """Issue entity mapped to `issues` table."""

    __tablename__ = "issues"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    github_id = Column(BigInteger, unique=True, nullable=False)
    repo_id = Column(BigIntId, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    repo_full_name = Column(String(200), nullable=False)
    number = Column(Integer, nullable=False)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=True)
    html_url = Column(String(500), nullable=False)
    state = Column(String(10), nullable=False, default=IssueState.OPEN)
    labels = Column(JSON, nullable=False, default=list)
    comments = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    closed_at = Column(DateTime, nullable=True)
    last_synced = Column(DateTime, nullable=False)

    opportunity_type = Column(String(20), nullable=True)
    content_hash = Column(String(64), nullable=True)

    # Summary / solvability / difficulty pass
    llm_summary = Column(Text, nullable=True)
    llm_solvability = Column(Float, nullable=True)
    llm_difficulty = Column(String(20), nullable=True)
    llm_analyzed_at = Column(DateTime, nullable=True)
    llm_content_hash = Column(String(64), nullable=True)

    # AI/ML classification pass
    is_aiml_issue = Column(Boolean, nullable=True)
    aiml_categories = Column(JSON, nullable=True)
    aiml_classified_at = Column(DateTime, nullable=True)
    aiml_content_hash = Column(String(64), nullable=True)

    # Agent build-plan pass
    neo_approach = Column(JSON, nullable=True)
    neo_generated_at = Column(DateTime, nullable=True)
    neo_content_hash = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_issues_repo_id", "repo_id"),
        Index("idx_issues_solvability", "llm_solvability"),
        Index("idx_issues_updated_at", "updated_at"),
        Index("idx_issues_state", "state"),
    )

    def __repr__(self):
        return f"<Issue {self.repo_full_name}#{self.number}>"
