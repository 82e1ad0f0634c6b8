"""Centralized logging configuration for the ``spendlens`` package.

Two public helpers:

- ``configure_logging(...)``: attach a single ``StreamHandler`` to the package
  root logger (``"spendlens"``). Entrypoints (the CLI, a host web app) call it
  once at process startup.
- ``get_logger(name)``: acquire a logger by name, making sure the package root
  logger carries at least a ``NullHandler`` so library use stays silent until
  an application configures output.

Library modules never attach handlers of their own; they call
``get_logger("spendlens.<module>")`` and leave configuration to the host.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "spendlens"
_LEVEL_ENV = "SPENDLENS_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelNamesMapping().get(name)
        if numeric is not None:
            return numeric
        return logging.INFO
    env_val = os.getenv(_LEVEL_ENV)
    if env_val and env_val.strip():
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package root logger exactly once.

    Parameters
    ----------
    level:
        Logging level as ``int`` or level name (``"DEBUG"``). When ``None`` the
        ``SPENDLENS_LOG_LEVEL`` environment variable is consulted, falling back
        to ``logging.INFO``.
    fmt:
        Optional format string; defaults to
        ``"%(asctime)s %(name)s %(levelname)s %(message)s"``.
    stream:
        Destination of the single ``StreamHandler`` (``sys.stderr`` by default).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name with a silent default for library contexts."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
