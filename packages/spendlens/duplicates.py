"""Duplicate detection by exact canonical key.

The key is ``"{date}|{amount_cents}|{normalized merchant}"``. Matching is
exact on that key only: near-duplicates whose merchant text differs after
normalization are *not* flagged. Flagging an extra row would hide a real
transaction from the user, so recall is traded for precision here.

A transaction is flagged when its key is already in the user's stored
history (the match records the existing transaction id) or when an earlier
row of the same batch produced the same key. The first occurrence in a batch
stays unflagged unless it also collides with history.

If the history lookup fails, detection continues against the batch alone and
the report carries a :class:`~spendlens.errors.DuplicateLookupDegraded`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Protocol

from .errors import DuplicateLookupDegraded
from .logging_setup import get_logger
from .models import ParsedTransaction
from .normalizers import normalize_merchant
from .stores import DuplicateKeyStore

_log = get_logger("spendlens.duplicates")


class _Keyed(Protocol):
    @property
    def date(self) -> str: ...

    @property
    def amount_cents(self) -> int: ...

    @property
    def merchant(self) -> str: ...


def duplicate_key(tx: _Keyed) -> str:
    """Canonical key for ``tx`` (a parsed, new or stored transaction)."""

    return f"{tx.date}|{tx.amount_cents}|{normalize_merchant(tx.merchant)}"


@dataclass(frozen=True, slots=True)
class DuplicateScope:
    """Inclusive date window for the history lookup."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"scope start {self.start} is after end {self.end}")

    @classmethod
    def for_batch(
        cls, batch: Iterable[_Keyed], lookback_days: int | None = None
    ) -> DuplicateScope | None:
        """Window spanning the batch's dates, widened back by ``lookback_days``.

        Returns ``None`` for an empty batch.
        """

        dates = [date.fromisoformat(tx.date) for tx in batch]
        if not dates:
            return None
        start = min(dates)
        if lookback_days:
            start -= timedelta(days=lookback_days)
        return cls(start=start, end=max(dates))


@dataclass(frozen=True, slots=True)
class DuplicateMatch:
    """A flagged transaction; ``existing_transaction_id`` is set for history hits."""

    transaction: ParsedTransaction
    duplicate_hash: str
    existing_transaction_id: str | None = None
    position: int = 0


@dataclass(frozen=True, slots=True)
class DuplicateReport:
    duplicates: tuple[DuplicateMatch, ...]
    duplicate_hashes: frozenset[str]
    degraded: DuplicateLookupDegraded | None = None

    @property
    def flagged_positions(self) -> frozenset[int]:
        return frozenset(m.position for m in self.duplicates)

    def is_duplicate(self, position: int) -> bool:
        return position in self.flagged_positions


def find_duplicates(
    batch: Sequence[ParsedTransaction],
    *,
    user_id: str,
    store: DuplicateKeyStore | None = None,
    scope: DuplicateScope | None = None,
) -> DuplicateReport:
    """Flag repeats in ``batch`` against stored history and within the batch.

    Pure with respect to ``batch``: running it twice against the same
    history yields the same report.
    """

    existing: dict[str, str] = {}
    degraded: DuplicateLookupDegraded | None = None
    if store is not None and batch:
        try:
            existing = dict(store.fetch_existing_duplicate_keys(user_id, scope))
        except Exception as exc:  # noqa: BLE001
            degraded = DuplicateLookupDegraded.from_exception(exc)
            _log.debug("duplicates:history_unavailable user=%s error=%s", user_id, exc)

    seen: set[str] = set()
    matches: list[DuplicateMatch] = []
    hashes: set[str] = set()
    for pos, tx in enumerate(batch):
        key = duplicate_key(tx)
        existing_id = existing.get(key)
        if existing_id is not None or key in seen:
            matches.append(
                DuplicateMatch(
                    transaction=tx,
                    duplicate_hash=key,
                    existing_transaction_id=existing_id,
                    position=pos,
                )
            )
            hashes.add(key)
        seen.add(key)

    _log.debug(
        "duplicates:done user=%s batch=%d history=%d flagged=%d",
        user_id,
        len(batch),
        len(existing),
        len(matches),
    )
    return DuplicateReport(
        duplicates=tuple(matches),
        duplicate_hashes=frozenset(hashes),
        degraded=degraded,
    )


__all__ = [
    "duplicate_key",
    "DuplicateScope",
    "DuplicateMatch",
    "DuplicateReport",
    "find_duplicates",
]
