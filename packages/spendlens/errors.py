"""Exception taxonomy for the ingestion/categorization/budget core.

Fatal conditions are raised to the caller (``UnrecognizedFormatError``). Row
level problems are raised internally as ``RowParseError`` and converted into
``ParseError`` records by the parser. Degraded lookups (``LookupDegraded`` and
subclasses) are never raised out of the core: instances chained to their
cause are attached to result objects so callers can log them and still use
the partial result.
"""

from __future__ import annotations

from collections.abc import Sequence


class SpendlensError(Exception):
    """Base class for all errors defined by this package."""


class UnrecognizedFormatError(SpendlensError, ValueError):
    """No bank profile (not even ``generic``) can map the CSV header."""

    def __init__(self, message: str, *, header: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.header: tuple[str, ...] = tuple(header)


class RowParseError(SpendlensError, ValueError):
    """A single cell could not be normalized; local to one row."""

    def __init__(self, message: str, *, column: str | None = None) -> None:
        super().__init__(message)
        self.column = column


class StoreError(SpendlensError, RuntimeError):
    """Raised by store implementations when a read or write fails."""


class NotFoundError(SpendlensError, LookupError):
    """A stored record referenced by id does not exist for the user."""


class LookupDegraded(SpendlensError, RuntimeError):
    """A non-fatal lookup failure; the operation continued with less data."""

    kind: str = "lookup"

    @classmethod
    def from_exception(cls, exc: BaseException, *, detail: str | None = None) -> LookupDegraded:
        msg = detail or f"{exc.__class__.__name__}: {exc}"
        degraded = cls(msg)
        degraded.__cause__ = exc
        return degraded


class DuplicateLookupDegraded(LookupDegraded):
    """History keys unavailable; duplicates were checked within the batch only."""

    kind = "duplicate_lookup"


class RuleFetchDegraded(LookupDegraded):
    """Rules unavailable; categorization ran with an empty rule set."""

    kind = "rule_fetch"


class SpendLookupDegraded(LookupDegraded):
    """A budget's transactions could not be fetched; its spend reports as 0."""

    kind = "spend_lookup"


__all__ = [
    "SpendlensError",
    "UnrecognizedFormatError",
    "RowParseError",
    "StoreError",
    "NotFoundError",
    "LookupDegraded",
    "DuplicateLookupDegraded",
    "RuleFetchDegraded",
    "SpendLookupDegraded",
]
