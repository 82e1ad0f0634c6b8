"""Engine/session helpers shared by the workspace.

Usage
-----
from db.client import session_scope

with session_scope() as s:
    s.execute(...)

Engines are cached per database URL, so a process can talk to more than one
database (tests create a fresh SQLite file per case). SQLite connections get
``PRAGMA foreign_keys=ON`` so ``ON DELETE`` rules behave as on Postgres.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_LOCK = threading.Lock()
_ENGINES: dict[str, Engine] = {}
_SESSION_MAKERS: dict[str, sessionmaker[Session]] = {}


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def _enable_sqlite_fks(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the shared engine for ``database_url`` (or ``DATABASE_URL``)."""

    url = _database_url(database_url)
    with _LOCK:
        engine = _ENGINES.get(url)
        if engine is None:
            engine = create_engine(url, pool_pre_ping=True)
            if engine.dialect.name == "sqlite":
                event.listen(engine, "connect", _enable_sqlite_fks)
            _ENGINES[url] = engine
            _SESSION_MAKERS[url] = sessionmaker(
                bind=engine, expire_on_commit=False, class_=Session
            )
        return engine


def get_session(*, database_url: str | None = None) -> Session:
    """Return a new session bound to the shared engine for the URL."""

    url = _database_url(database_url)
    get_engine(database_url=url)
    return _SESSION_MAKERS[url]()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = get_session(database_url=database_url)
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
    "get_engine",
    "get_session",
    "session_scope",
    "dispose_engines",
]
