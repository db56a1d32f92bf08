"""SQLAlchemy engine/session helpers shared by the workspace.

Engines are cached per database URL so a process (or a test session) can talk
to more than one database without rebuilding connection pools.

Usage
-----
from db.client import session_scope

with session_scope(database_url=url) as s:
    s.add(...)
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINES: dict[str, Engine] = {}
_SESSION_MAKERS: dict[str, sessionmaker[Session]] = {}
_LOCK = threading.Lock()


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the engine for ``database_url`` (or ``DATABASE_URL``), creating it once."""

    url = _database_url(database_url)
    with _LOCK:
        engine = _ENGINES.get(url)
        if engine is None:
            engine = create_engine(url, pool_pre_ping=True)
            _ENGINES[url] = engine
            _SESSION_MAKERS[url] = sessionmaker(
                bind=engine, expire_on_commit=False, class_=Session
            )
        return engine


def get_sessionmaker(*, database_url: str | None = None) -> sessionmaker[Session]:
    """Return the session factory bound to the engine for ``database_url``."""

    url = _database_url(database_url)
    get_engine(database_url=url)
    return _SESSION_MAKERS[url]


def get_session(*, database_url: str | None = None) -> Session:
    """Return a new session bound to the shared engine."""

    return get_sessionmaker(database_url=database_url)()


@contextmanager
def session_scope(
    *,
    database_url: str | None = None,
    factory: sessionmaker[Session] | None = None,
) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    ``factory`` takes precedence over ``database_url`` when both are given.
    """

    session = factory() if factory is not None else get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engines() -> None:
    """Dispose and forget every cached engine."""

    with _LOCK:
        for engine in _ENGINES.values():
            engine.dispose()
        _ENGINES.clear()
        _SESSION_MAKERS.clear()


__all__ = [
    "dispose_engines",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "session_scope",
]
