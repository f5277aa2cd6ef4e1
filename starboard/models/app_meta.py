"""Key/value metadata persisted across restarts."""

from sqlalchemy import Column, String, Text

from starboard.config.database import Base


FIRST_DEPLOY_AT_KEY = "first_deploy_at"


class AppMeta(Base):
    __tablename__ = "app_meta"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)

    def __repr__(self):
        return f"<AppMeta {self.key}>"
