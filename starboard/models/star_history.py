"""Star/fork snapshot model."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer

from starboard.config.database import Base, BigIntId


class StarHistory(Base):
    """Point-in-time stars/forks observation mapped to `star_history` table."""

    __tablename__ = "star_history"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    repo_id = Column(BigIntId, ForeignKey("repositories.id"), nullable=False)
    stars = Column(Integer, nullable=False)
    forks = Column(Integer, nullable=False)
    recorded_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_star_history_repo", "repo_id"),
        Index("idx_star_history_recorded_at", "recorded_at"),
    )

    def __repr__(self):
        return f"<StarHistory repo={self.repo_id} stars={self.stars}>"
