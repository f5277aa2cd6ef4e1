"""Tracked GitHub repository model."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from starboard.config.database import Base, BigIntId


class RepoSource:
    STATIC = "static"
    DISCOVERED = "discovered"


class RepoCategory:
    AIML = "AI/ML"
    SWE = "SWE"


class Repository(Base):
    """Repository entity mapped to `repositories` table."""

    __tablename__ = "repositories"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    full_name = Column(String(200), unique=True, nullable=False)
    owner = Column(String(100), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(10), nullable=False, default=RepoCategory.SWE)
    language = Column(String(50), nullable=True)
    topics = Column(JSON, nullable=True)
    homepage = Column(String(500), nullable=True)

    stars = Column(Integer, nullable=False, default=0)
    forks = Column(Integer, nullable=False, default=0)
    open_issues = Column(Integer, nullable=False, default=0)
    watchers = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=True)
    pushed_at = Column(DateTime, nullable=True)
    last_synced = Column(DateTime, nullable=True)
    source = Column(String(20), nullable=False, default=RepoSource.STATIC)

    # Max issue `updated_at` seen by the last fetch; drives the next `since`.
    issues_last_synced_at = Column(DateTime, nullable=True)
    issues_synced_at = Column(DateTime, nullable=True)

    opportunity_insights = Column(JSON, nullable=True)
    insights_generated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_repositories_stars", "stars"),
        Index("idx_repositories_category", "category"),
    )

    def __repr__(self):
        return f"<Repository {self.full_name}>"
