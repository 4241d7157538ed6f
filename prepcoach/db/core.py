"""Engine and session factory helpers.

Engines are built from a URL rather than at import time so the app factory
and the tests can each point at their own database.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") in {"sqlite:", "sqlite://"})


def make_engine(url: str) -> Engine:
    """Create a sync engine with pooling appropriate for the backend."""
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}, "future": True}
        if _is_sqlite_memory(url):
            # one shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
    else:
        engine = create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=1800,
            future=True,
        )
    logger.info(
        "Database engine created",
        extra={"meta": {"dialect": engine.dialect.name, "pool": type(engine.pool).__name__}},
    )
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, future=True, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create missing tables. Idempotent."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a session that is rolled back on error and always closed."""
    with factory() as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise


__all__ = ["init_db", "make_engine", "make_session_factory", "session_scope"]
