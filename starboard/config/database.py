"""Database engine and session factory"""

from pathlib import Path

from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from starboard.config.settings import settings


def _build_engine(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True, pool_size=5, max_overflow=10)


engine = _build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


# BIGINT keys everywhere except SQLite, where only INTEGER primary keys autoincrement.
BigIntId = BigInteger().with_variant(Integer, "sqlite")
