"""Engine and session wiring for the local task store.

The store is usually a SQLite file next to the app. An in-memory URL
(``sqlite://``) is pinned to a single shared connection so the API worker
thread, the CLI and the tests all see the same tables.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tasksync.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for the ``tasks`` and ``outbox`` tables."""


# Models must be registered on Base.metadata before create_all runs.
import tasksync.models  # noqa: E402,F401


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections may be used from more than one thread, and an
    in-memory database keeps one connection for its whole lifetime.
    """
    url = make_url(database_url)
    options: dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True

    return create_engine(url, **options)


engine = build_engine(settings.database_url, echo=settings.sql_debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session; uncommitted work is rolled back."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_tables() -> None:
    """Create the ``tasks`` and ``outbox`` tables if they are missing."""
    Base.metadata.create_all(bind=engine)


def drop_tables() -> None:
    """Drop every table owned by the task store."""
    Base.metadata.drop_all(bind=engine)
