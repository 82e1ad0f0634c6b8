"""Pytest configuration for test isolation.

Settings are read from the environment (and the CLI loads a local ``.env``),
so a developer's ``DATABASE_URL`` or ``SPENDLENS_*`` overrides could leak
into tests. An autouse fixture clears them for every test, and cached
engines are disposed afterwards so per-test SQLite files are released.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

_ENV_PREFIXES = ("SPENDLENS_",)
_ENV_NAMES = ("DATABASE_URL",)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name in _ENV_NAMES or name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    yield

    from db.client import dispose_engines

    dispose_engines()
