"""End-to-end flows through ``spendlens.api`` against the in-memory store."""

from __future__ import annotations

import textwrap

import pytest

from spendlens.api import (
    MANUAL_CONFIDENCE,
    budget_status,
    bulk_update_category,
    categorization_statistics,
    import_transactions,
    recategorize_transaction,
    set_budget,
    spending_summary,
)
from spendlens.errors import (
    DuplicateLookupDegraded,
    NotFoundError,
    RuleFetchDegraded,
    StoreError,
    UnrecognizedFormatError,
)
from spendlens.ingest.csv_parser import CsvParser
from spendlens.stores import InMemoryStore

USER = "user-1"


def _csv(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


JANUARY_CSV = _csv(
    """
    Date,Description,Amount
    01/05/2024,STARBUCKS #1234,-4.50
    01/06/2024,ACME PAYROLL,2000.00
    01/07/2024,Grocery,abc
    01/08/2024,SHELL OIL 5744,-30.00
    01/09/2024,BOOK STORE,-12.00
    """
)

MARCH_CSV = _csv(
    """
    Date,Description,Amount
    03/05/2024,WHOLE FOODS MARKET,-40.00
    03/06/2024,WHOLE FOODS REFUND,50.00
    """
)


class _FlakyLookups(InMemoryStore):
    def fetch_existing_duplicate_keys(self, user_id, scope):
        raise ConnectionError("replica down")

    def fetch_user_rules(self, user_id):
        raise ConnectionError("replica down")


class _NoRuleWrites(InMemoryStore):
    def upsert_rule(self, user_id, pattern, category_id, confidence):
        raise StoreError("upsert rule failed: read-only")


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


# ---- Import ------------------------------------------------------------------


def test_import_persists_parsed_rows_and_reports_errors(store: InMemoryStore):
    cats = store.seed_categories(USER, ["Transportation"])
    store.upsert_rule(USER, "shell", cats["Transportation"].id, 100)

    summary = import_transactions(JANUARY_CSV, user_id=USER, store=store)

    assert summary.detected_format == "generic"
    assert summary.parse.total_rows == 5
    assert summary.parse.error_count == 1
    assert summary.imported_count == 4
    assert summary.duplicate_count == 0
    assert summary.categorized_count == 1
    assert summary.degraded == ()

    shell = next(t for t in summary.imported if t.merchant.startswith("SHELL"))
    assert shell.category_id == cats["Transportation"].id
    assert shell.confidence == 100.0
    assert shell.category_source == "rule"
    assert len(store.list_transactions(USER)) == 4


def test_reimport_flags_every_row_as_duplicate(store: InMemoryStore):
    first = import_transactions(JANUARY_CSV, user_id=USER, store=store)
    again = import_transactions(JANUARY_CSV, user_id=USER, store=store)

    assert again.duplicate_count == 4
    assert all(t.is_duplicate for t in again.imported)
    existing_ids = {m.existing_transaction_id for m in again.duplicates.duplicates}
    assert existing_ids == {t.id for t in first.imported}


def test_skip_duplicates_leaves_store_unchanged(store: InMemoryStore):
    import_transactions(JANUARY_CSV, user_id=USER, store=store)
    again = import_transactions(JANUARY_CSV, user_id=USER, store=store, skip_duplicates=True)

    assert again.imported_count == 0
    assert again.skipped_duplicates == 4
    assert len(store.transactions) == 4


def test_import_accepts_decoded_rows_and_custom_parser(store: InMemoryStore):
    rows = [["Date", "Payee", "Amount"], ["01/02/2024", "Cafe", "-1.00"]]
    summary = import_transactions(rows, user_id=USER, store=store, parser=CsvParser(chunk_size=1))
    assert summary.imported_count == 1


def test_import_degrades_when_lookups_fail():
    store = _FlakyLookups()
    summary = import_transactions(JANUARY_CSV, user_id=USER, store=store)

    assert summary.imported_count == 4
    assert {type(d) for d in summary.degraded} == {DuplicateLookupDegraded, RuleFetchDegraded}
    assert summary.categorized_count == 0


def test_unrecognized_file_imports_nothing(store: InMemoryStore):
    with pytest.raises(UnrecognizedFormatError):
        import_transactions("Foo,Bar\n1,2\n", user_id=USER, store=store)
    assert store.transactions == {}


# ---- Manual categorization ---------------------------------------------------


def test_manual_category_is_learned_for_future_imports(store: InMemoryStore):
    dining = store.create_category(USER, "Dining")
    first = import_transactions(JANUARY_CSV, user_id=USER, store=store)
    starbucks = next(t for t in first.imported if t.merchant.startswith("STARBUCKS"))

    update = recategorize_transaction(USER, starbucks.id, dining.id, store=store)

    (tx,) = update.transactions
    assert (tx.category_id, tx.confidence, tx.category_source) == (
        dining.id,
        MANUAL_CONFIDENCE,
        "manual",
    )
    (outcome,) = update.learned
    assert outcome.created and outcome.pattern == "starbucks"

    later = import_transactions(
        "Date,Description,Amount\n02/01/2024,STARBUCKS #99,-3.25\n", user_id=USER, store=store
    )
    (new_tx,) = later.imported
    assert (new_tx.category_id, new_tx.confidence, new_tx.category_source) == (
        dining.id,
        70.0,
        "rule",
    )


def test_bulk_update_learns_once_per_pattern_and_reports_missing(store: InMemoryStore):
    coffee = store.create_category(USER, "Coffee")
    csv_text = _csv(
        """
        Date,Description,Amount
        01/05/2024,STARBUCKS #1,-4.50
        01/06/2024,STARBUCKS #2,-5.50
        """
    )
    ids = [t.id for t in import_transactions(csv_text, user_id=USER, store=store).imported]

    update = bulk_update_category(USER, [*ids, "missing-id"], coffee.id, store=store)

    assert len(update.transactions) == 2
    assert update.missing_ids == ("missing-id",)
    assert len(update.learned) == 1
    (rule,) = store.fetch_user_rules(USER)
    assert rule.confidence == 70.0


def test_clearing_category_learns_nothing(store: InMemoryStore):
    cat = store.create_category(USER, "Dining")
    (tx,) = import_transactions(
        "Date,Description,Amount\n01/05/2024,CAFE,-4.50\n", user_id=USER, store=store
    ).imported
    bulk_update_category(USER, [tx.id], cat.id, store=store)

    update = bulk_update_category(USER, [tx.id], None, store=store)

    (cleared,) = update.transactions
    assert cleared.category_id is None
    assert cleared.confidence is None
    assert cleared.category_source == "none"
    assert update.learned == ()


def test_unknown_category_or_transaction_raises(store: InMemoryStore):
    (tx,) = import_transactions(
        "Date,Description,Amount\n01/05/2024,CAFE,-4.50\n", user_id=USER, store=store
    ).imported
    with pytest.raises(NotFoundError):
        bulk_update_category(USER, [tx.id], "no-such-category", store=store)
    cat = store.create_category(USER, "Dining")
    with pytest.raises(NotFoundError):
        recategorize_transaction(USER, "no-such-tx", cat.id, store=store)
    with pytest.raises(NotFoundError):
        recategorize_transaction("other-user", tx.id, cat.id, store=store)


def test_learning_failure_does_not_undo_the_update():
    store = _NoRuleWrites()
    cat = store.create_category(USER, "Dining")
    (tx,) = import_transactions(
        "Date,Description,Amount\n01/05/2024,CAFE,-4.50\n", user_id=USER, store=store
    ).imported

    update = bulk_update_category(USER, [tx.id], cat.id, store=store)

    assert update.transactions[0].category_id == cat.id
    assert update.learned == ()
    assert len(update.learning_errors) == 1
    assert store.get_transaction(USER, tx.id).category_id == cat.id


# ---- Budgets and reports -----------------------------------------------------


def _march_groceries(store: InMemoryStore) -> str:
    groceries = store.create_category(USER, "Groceries")
    store.upsert_rule(USER, "whole foods", groceries.id, 100)
    import_transactions(MARCH_CSV, user_id=USER, store=store)
    return groceries.id


def test_budget_status_counts_expenses_only(store: InMemoryStore):
    groceries_id = _march_groceries(store)
    set_budget(USER, groceries_id, "2024-03", 10000, store=store)

    (status,) = budget_status(USER, "2024-03", store=store)

    assert status.spent_cents == 4000
    assert status.remaining_cents == 6000
    assert status.percentage_used == 40.0
    assert budget_status(USER, "2024-04", store=store) == []


def test_set_budget_replaces_existing(store: InMemoryStore):
    groceries_id = _march_groceries(store)
    first = set_budget(USER, groceries_id, "2024-03", 10000, store=store)
    second = set_budget(USER, groceries_id, "2024-03", 0, store=store)

    assert first.id == second.id
    (status,) = budget_status(USER, "2024-03", store=store)
    assert status.amount_cents == 0
    assert status.percentage_used == 0.0


def test_set_budget_validation(store: InMemoryStore):
    cat = store.create_category(USER, "Groceries")
    with pytest.raises(ValueError):
        set_budget(USER, cat.id, "2024-03", -1, store=store)
    with pytest.raises(TypeError):
        set_budget(USER, cat.id, "2024-03", 12.5, store=store)  # type: ignore[arg-type]
    with pytest.raises(NotFoundError):
        set_budget(USER, "nope", "2024-03", 100, store=store)
    with pytest.raises(ValueError, match="YYYY-MM"):
        set_budget(USER, cat.id, "March", 100, store=store)


def test_spending_summary(store: InMemoryStore):
    _march_groceries(store)
    import_transactions(
        "Date,Description,Amount\n03/09/2024,MYSTERY SHOP,-7.00\n", user_id=USER, store=store
    )

    summary = spending_summary(USER, "2024-03", store=store)

    assert summary.month == "2024-03"
    assert summary.total_spending_cents == 4700
    assert summary.total_income_cents == 5000
    assert summary.net_cents == 300
    assert [(c.category_name, c.amount_cents) for c in summary.categories] == [
        ("Groceries", 4000),
        ("Uncategorized", 700),
    ]


def test_categorization_statistics(store: InMemoryStore):
    _march_groceries(store)
    import_transactions(
        "Date,Description,Amount\n03/09/2024,MYSTERY SHOP,-7.00\n", user_id=USER, store=store
    )

    stats = categorization_statistics(USER, store=store)

    assert (stats.total, stats.categorized, stats.uncategorized) == (3, 2, 1)
    assert stats.average_confidence == 100.0
    assert [(c.category_name, c.count) for c in stats.distribution] == [("Groceries", 2)]
