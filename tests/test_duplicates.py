from __future__ import annotations

from collections.abc import Mapping
from datetime import date

import pytest

from spendlens.duplicates import DuplicateScope, duplicate_key, find_duplicates
from spendlens.errors import DuplicateLookupDegraded
from spendlens.models import NewTransaction, ParsedTransaction
from spendlens.stores import InMemoryStore

USER = "user-1"


def _tx(day: str, cents: int, merchant: str) -> ParsedTransaction:
    return ParsedTransaction(
        date=day,
        amount_cents=cents,
        merchant=merchant,
        description=None,
        transaction_type="expense" if cents < 0 else "income",
    )


def _store_with(*txs: ParsedTransaction, user_id: str = USER) -> InMemoryStore:
    store = InMemoryStore()
    store.insert_transactions(
        [
            NewTransaction(
                user_id=user_id,
                date=t.date,
                amount_cents=t.amount_cents,
                merchant=t.merchant,
                description=t.description,
                transaction_type=t.transaction_type,
                duplicate_key=duplicate_key(t),
            )
            for t in txs
        ]
    )
    return store


class _BrokenStore:
    def fetch_existing_duplicate_keys(self, user_id, scope) -> Mapping[str, str]:
        raise ConnectionError("database unavailable")


# ---- Keys --------------------------------------------------------------------


def test_key_uses_normalized_merchant():
    a = _tx("2024-01-05", -450, "STARBUCKS #123")
    b = _tx("2024-01-05", -450, "  starbucks 123 ")
    assert duplicate_key(a) == duplicate_key(b) == "2024-01-05|-450|starbucks 123"


def test_near_duplicates_are_not_flagged():
    batch = [
        _tx("2024-01-05", -450, "STARBUCKS #123"),
        _tx("2024-01-05", -450, "STARBUCKS #124"),
        _tx("2024-01-05", -451, "STARBUCKS #123"),
        _tx("2024-01-06", -450, "STARBUCKS #123"),
    ]
    report = find_duplicates(batch, user_id=USER)
    assert report.duplicates == ()


# ---- Detection ---------------------------------------------------------------


def test_in_batch_repeat_flags_later_rows_only():
    batch = [
        _tx("2024-01-05", -450, "Coffee"),
        _tx("2024-01-06", -900, "Lunch"),
        _tx("2024-01-05", -450, "COFFEE"),
        _tx("2024-01-05", -450, "coffee"),
    ]
    report = find_duplicates(batch, user_id=USER)

    assert report.flagged_positions == frozenset({2, 3})
    assert not report.is_duplicate(0)
    assert all(m.existing_transaction_id is None for m in report.duplicates)
    assert report.duplicate_hashes == frozenset({"2024-01-05|-450|coffee"})


def test_history_hit_records_existing_id():
    old = _tx("2024-01-05", -450, "Coffee")
    store = _store_with(old)
    (existing_id,) = store.transactions

    batch = [_tx("2024-01-05", -450, "Coffee"), _tx("2024-01-07", -100, "Bus")]
    report = find_duplicates(batch, user_id=USER, store=store)

    (match,) = report.duplicates
    assert match.position == 0
    assert match.existing_transaction_id == existing_id
    assert match.transaction == batch[0]
    assert report.degraded is None


def test_detection_is_idempotent():
    store = _store_with(_tx("2024-01-05", -450, "Coffee"))
    batch = [_tx("2024-01-05", -450, "Coffee"), _tx("2024-01-05", -450, "Coffee")]

    first = find_duplicates(batch, user_id=USER, store=store)
    second = find_duplicates(batch, user_id=USER, store=store)

    assert first == second
    assert first.flagged_positions == frozenset({0, 1})


def test_other_users_history_is_ignored():
    store = _store_with(_tx("2024-01-05", -450, "Coffee"), user_id="someone-else")
    report = find_duplicates([_tx("2024-01-05", -450, "Coffee")], user_id=USER, store=store)
    assert report.duplicates == ()


def test_scope_limits_history_window():
    store = _store_with(_tx("2024-01-01", -450, "Coffee"))
    batch = [_tx("2024-01-01", -450, "Coffee"), _tx("2024-01-10", -100, "Bus")]

    narrow = DuplicateScope(start=date(2024, 1, 2), end=date(2024, 1, 10))
    assert find_duplicates(batch, user_id=USER, store=store, scope=narrow).duplicates == ()

    wide = DuplicateScope.for_batch(batch)
    assert len(find_duplicates(batch, user_id=USER, store=store, scope=wide).duplicates) == 1


def test_history_failure_degrades_to_batch_only():
    batch = [_tx("2024-01-05", -450, "Coffee"), _tx("2024-01-05", -450, "Coffee")]
    report = find_duplicates(batch, user_id=USER, store=_BrokenStore())

    assert report.flagged_positions == frozenset({1})
    assert isinstance(report.degraded, DuplicateLookupDegraded)
    assert isinstance(report.degraded.__cause__, ConnectionError)
    assert report.degraded.kind == "duplicate_lookup"


def test_empty_batch_skips_history_lookup():
    report = find_duplicates([], user_id=USER, store=_BrokenStore())
    assert report.duplicates == ()
    assert report.degraded is None


# ---- Scope -------------------------------------------------------------------


def test_scope_for_batch_with_lookback():
    batch = [_tx("2024-01-10", -1, "a"), _tx("2024-01-03", -1, "b")]
    scope = DuplicateScope.for_batch(batch, lookback_days=7)
    assert scope == DuplicateScope(start=date(2023, 12, 27), end=date(2024, 1, 10))
    assert DuplicateScope.for_batch([]) is None


def test_scope_rejects_inverted_range():
    with pytest.raises(ValueError):
        DuplicateScope(start=date(2024, 2, 1), end=date(2024, 1, 1))
