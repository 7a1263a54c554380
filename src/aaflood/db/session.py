"""
Database handles.

A ``Database`` owns one engine and its session factory. Build it once at
process start and pass it to whatever needs sessions; nothing here is cached
at module level, so two URLs always give two independent handles.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def database_url(override: Optional[str] = None) -> str:
    """
    Resolve the database URL with fallbacks:
      1) explicit override (argument)
      2) env: DATABASE_URL
      3) env: POSTGRES_DSN
      4) in-memory SQLite
    """
    return (
        override
        or os.getenv("DATABASE_URL")
        or os.getenv("POSTGRES_DSN")
        or "sqlite+pysqlite:///:memory:"
    )


def make_engine(url: Optional[str] = None) -> Engine:
    db_url = database_url(url)
    kwargs = {"pool_pre_ping": True, "future": True}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(db_url, **kwargs)


class Database:
    """An engine plus the session factory bound to it."""

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine if engine is not None else make_engine(url)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    @property
    def url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    def create_all(self) -> None:
        """Create all tables defined in :mod:`aaflood.db.models`."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Usage:
            with db.session_scope() as s:
                s.execute(...)
        """
        session: Session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = [
    "Database",
    "database_url",
    "make_engine",
    "Base",
]
