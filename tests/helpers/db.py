"""DB helpers for tests: bootstrap a temporary SQLite DB and seed categories."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from db import metadata
from db.client import get_engine, session_scope
from db.models.ledger import LedgerCategory


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    metadata.create_all(bind=engine)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_categories(*, database_url: str, user_id: str, names: Iterable[str]) -> dict[str, str]:
    """Insert categories for ``user_id`` and return ``{name: id}``."""

    out: dict[str, str] = {}
    with session_scope(database_url=database_url) as session:
        for name in names:
            row = LedgerCategory(user_id=user_id, name=name)
            session.add(row)
            session.flush()
            out[name] = row.id
    return out
