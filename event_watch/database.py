"""
Database engine + session factory for the event store.

SQLite for local runs and tests, Postgres in production. The followings
thread and the detection job write concurrently, so SQLite connections may
cross threads and wait on locks instead of failing fast.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from event_watch.config import DATABASE_URL

SQLITE_BUSY_TIMEOUT = 30  # seconds


class Base(DeclarativeBase):
    pass


def normalize_url(raw: str) -> str:
    # Hosted Postgres URLs use postgres:// but SQLAlchemy 2.x requires postgresql://
    return raw.replace('postgres://', 'postgresql://', 1)


def build_engine(db_url: str) -> Engine:
    if not db_url.startswith('sqlite'):
        return create_engine(db_url, pool_pre_ping=True, pool_size=5, max_overflow=10)

    connect_args = {'check_same_thread': False, 'timeout': SQLITE_BUSY_TIMEOUT}
    if db_url in ('sqlite://', 'sqlite:///:memory:'):
        # One shared connection, otherwise every session sees its own empty database
        return create_engine(db_url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(db_url, connect_args=connect_args)


url = normalize_url(DATABASE_URL)
engine = build_engine(url)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()
