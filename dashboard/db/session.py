"""Engine/session helpers for the SQL backend."""
from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from dashboard.core.config import get_settings

Base = declarative_base()


def build_engine(url: str | None):
    url = (url or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL (or POSTGRES_URL) must be configured to use the SQL backend.")
    return create_engine(url, future=True, pool_pre_ping=True)


@lru_cache
def get_engine():
    return build_engine(get_settings().database_url)


def make_sessionmaker(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@lru_cache
def _get_sessionmaker():
    return make_sessionmaker(get_engine())


@contextmanager
def get_session() -> Session:
    session: Session = _get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()
