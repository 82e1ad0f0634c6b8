"""Environment-driven settings.

Entry points (the CLI, tests) call :func:`load_settings` once and pass the
resulting :class:`Settings` down explicitly. ``.env`` loading is the entry
point's job (``python-dotenv`` in :mod:`spendlens.cli`); this module only
reads ``os.environ``.

Recognized variables:

- ``DATABASE_URL``: SQLAlchemy URL of the persistent store.
- ``SPENDLENS_LOG_LEVEL``: read by :mod:`spendlens.logging_setup`.
- ``SPENDLENS_PARSE_CHUNK_SIZE``: rows per cooperative parse chunk.
- ``SPENDLENS_BUDGET_CONCURRENCY``: concurrent budget lookups (capped at 32).
- ``SPENDLENS_DUPLICATE_LOOKBACK_DAYS``: extra history days for duplicate
  checks; empty means the batch's own date range.
- ``SPENDLENS_PROFILES_FILE``: JSON file replacing the built-in bank profiles.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .ingest.csv_parser import DEFAULT_CHUNK_SIZE
from .ingest.profiles import BankProfile, default_profiles, load_profiles
from .logging_setup import get_logger
from .pmap import MAX_CONCURRENCY

_log = get_logger("spendlens.config")

DEFAULT_BUDGET_CONCURRENCY = 4


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str | None = None
    parse_chunk_size: int = DEFAULT_CHUNK_SIZE
    budget_concurrency: int = DEFAULT_BUDGET_CONCURRENCY
    duplicate_lookback_days: int | None = None
    profiles_file: Path | None = None

    def bank_profiles(self) -> tuple[BankProfile, ...]:
        if self.profiles_file is None:
            return default_profiles()
        return load_profiles(self.profiles_file)


def _positive_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError
    except ValueError:
        _log.warning("config:invalid name=%s value=%r using=%r", name, raw, default)
        return default
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (``os.environ`` by default)."""

    env = os.environ if environ is None else environ
    chunk = _positive_int(env, "SPENDLENS_PARSE_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
    workers = _positive_int(env, "SPENDLENS_BUDGET_CONCURRENCY", DEFAULT_BUDGET_CONCURRENCY)
    profiles_raw = (env.get("SPENDLENS_PROFILES_FILE") or "").strip()
    return Settings(
        database_url=(env.get("DATABASE_URL") or "").strip() or None,
        parse_chunk_size=chunk or DEFAULT_CHUNK_SIZE,
        budget_concurrency=min(workers or DEFAULT_BUDGET_CONCURRENCY, MAX_CONCURRENCY),
        duplicate_lookback_days=_positive_int(env, "SPENDLENS_DUPLICATE_LOOKBACK_DAYS", None),
        profiles_file=Path(profiles_raw) if profiles_raw else None,
    )


__all__ = ["DEFAULT_BUDGET_CONCURRENCY", "Settings", "load_settings"]
