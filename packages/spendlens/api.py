"""Public API and orchestration for the ``spendlens`` package.

Each function here wires the pure core (parser, duplicate detector,
categorizer, learner, aggregator) to an explicitly passed store. Nothing in
this module holds state between calls; the CLI and tests pass a
:class:`~spendlens.persistence.SqlStore` or
:class:`~spendlens.stores.InMemoryStore`.

Degraded lookups are logged here at WARNING and returned on the result
objects; fatal errors (``UnrecognizedFormatError``, ``NotFoundError``,
``StoreError`` from writes) propagate.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from .budgets import aggregate_budgets, month_bounds
from .categorization import categorize_transactions
from .duplicates import DuplicateReport, DuplicateScope, duplicate_key, find_duplicates
from .errors import LookupDegraded, NotFoundError, SpendlensError
from .ingest.csv_parser import CsvParser
from .ingest.utils import read_csv_rows
from .learning import (
    DEFAULT_POLICY,
    LearningOutcome,
    LearningPolicy,
    derive_pattern,
    learn_from_correction,
)
from .logging_setup import get_logger
from .models import (
    Budget,
    BudgetStatus,
    Degradations,
    NewTransaction,
    ParseResult,
    Transaction,
)
from .stores import LedgerStore
from .summary import (
    CategorizationStats,
    SpendingSummary,
    categorization_stats,
    summarize_spending,
)

_log = get_logger("spendlens.api")

MANUAL_CONFIDENCE = 100.0


def _log_degraded(operation: str, user_id: str, degraded: Sequence[LookupDegraded]) -> None:
    for d in degraded:
        _log.warning(
            "%s:degraded user=%s kind=%s detail=%s", operation, user_id, d.kind, d
        )


def _category_names(store: LedgerStore, user_id: str) -> dict[str, str]:
    return {c.id: c.name for c in store.list_categories(user_id)}


def _require_category(store: LedgerStore, user_id: str, category_id: str) -> None:
    if category_id not in _category_names(store, user_id):
        raise NotFoundError(f"category not found: {category_id}")


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportSummary:
    parse: ParseResult
    imported: tuple[Transaction, ...]
    duplicates: DuplicateReport
    categorized_count: int
    skipped_duplicates: int
    degraded: Degradations = ()

    @property
    def detected_format(self) -> str:
        return self.parse.detected_format

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates.duplicates)


def import_transactions(
    source: str | Sequence[Sequence[str]],
    *,
    user_id: str,
    store: LedgerStore,
    parser: CsvParser | None = None,
    skip_duplicates: bool = False,
    lookback_days: int | None = None,
) -> ImportSummary:
    """Parse, deduplicate, categorize and persist one CSV export.

    Input
    -----
    source:
        Raw CSV text or already-decoded rows (header included).
    skip_duplicates:
        When true, flagged rows are not persisted; otherwise they are stored
        with ``is_duplicate=True``.
    lookback_days:
        Extra days of history before the batch's earliest date to check for
        duplicates (see :meth:`DuplicateScope.for_batch`).

    Notes
    -----
    Two overlapping imports for the same user running at once can both miss
    each other's rows; callers should serialize imports per user.
    """

    rows = read_csv_rows(source) if isinstance(source, str) else source
    parse = (parser or CsvParser()).parse_rows(rows)
    batch = parse.transactions

    report = find_duplicates(
        batch,
        user_id=user_id,
        store=store,
        scope=DuplicateScope.for_batch(batch, lookback_days),
    )
    categories = categorize_transactions(
        [tx.merchant for tx in batch], user_id=user_id, rule_store=store
    )
    flagged = report.flagged_positions

    items: list[NewTransaction] = []
    skipped = 0
    for pos, tx in enumerate(batch):
        is_dup = pos in flagged
        if is_dup and skip_duplicates:
            skipped += 1
            continue
        assignment = categories.assignments[pos]
        items.append(
            NewTransaction(
                user_id=user_id,
                date=tx.date,
                amount_cents=tx.amount_cents,
                merchant=tx.merchant,
                description=tx.description,
                transaction_type=tx.transaction_type,
                duplicate_key=duplicate_key(tx),
                category_id=assignment.category_id,
                confidence=assignment.confidence,
                category_source="rule" if assignment.is_categorized else "none",
                is_duplicate=is_dup,
            )
        )

    imported = tuple(store.insert_transactions(items)) if items else ()
    categorized = sum(1 for t in imported if t.category_id is not None)
    degraded = tuple(d for d in (report.degraded, categories.degraded) if d is not None)
    _log_degraded("import", user_id, degraded)
    _log.info(
        "import:done user=%s profile=%s rows=%d parsed=%d errors=%d imported=%d "
        "duplicates=%d skipped=%d categorized=%d",
        user_id,
        parse.detected_format,
        parse.total_rows,
        parse.success_count,
        parse.error_count,
        len(imported),
        len(report.duplicates),
        skipped,
        categorized,
    )
    return ImportSummary(
        parse=parse,
        imported=imported,
        duplicates=report,
        categorized_count=categorized,
        skipped_duplicates=skipped,
        degraded=degraded,
    )


# ---------------------------------------------------------------------------
# Manual categorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryUpdate:
    """Updated transactions plus what the learner did with the correction.

    ``learning_errors`` holds learner failures; the category change itself
    was still applied.
    """

    transactions: tuple[Transaction, ...]
    learned: tuple[LearningOutcome, ...] = ()
    missing_ids: tuple[str, ...] = ()
    learning_errors: tuple[SpendlensError, ...] = ()


def _learn_all(
    user_id: str,
    merchants: Sequence[str],
    category_id: str,
    *,
    store: LedgerStore,
    policy: LearningPolicy,
) -> tuple[tuple[LearningOutcome, ...], tuple[SpendlensError, ...]]:
    # One learning step per distinct pattern.
    by_pattern: dict[str, str] = {}
    for m in merchants:
        by_pattern.setdefault(derive_pattern(m), m)
    by_pattern.pop("", None)

    outcomes: list[LearningOutcome] = []
    errors: list[SpendlensError] = []
    for merchant in by_pattern.values():
        try:
            outcomes.append(
                learn_from_correction(
                    user_id, merchant, category_id, rule_store=store, policy=policy
                )
            )
        except SpendlensError as exc:
            _log.warning(
                "learn:failed user=%s merchant=%r category=%s error=%s",
                user_id,
                merchant,
                category_id,
                exc,
            )
            errors.append(exc)
    return tuple(outcomes), tuple(errors)


def bulk_update_category(
    user_id: str,
    transaction_ids: Sequence[str],
    category_id: str | None,
    *,
    store: LedgerStore,
    policy: LearningPolicy = DEFAULT_POLICY,
) -> CategoryUpdate:
    """Set ``category_id`` on the listed transactions and learn from it.

    A manual assignment records confidence 100 and source ``manual``.
    Passing ``None`` clears the category and learns nothing. Ids that do not
    exist for the user are reported in ``missing_ids``.
    """

    ids = list(dict.fromkeys(transaction_ids))
    if category_id is not None:
        _require_category(store, user_id, category_id)

    updated = store.update_transaction_categories(
        user_id,
        ids,
        category_id=category_id,
        confidence=MANUAL_CONFIDENCE if category_id is not None else None,
        source="manual" if category_id is not None else "none",
    )
    found = {t.id for t in updated}
    missing = tuple(i for i in ids if i not in found)

    learned: tuple[LearningOutcome, ...] = ()
    errors: tuple[SpendlensError, ...] = ()
    if category_id is not None and updated:
        learned, errors = _learn_all(
            user_id, [t.merchant for t in updated], category_id, store=store, policy=policy
        )

    _log.info(
        "recategorize:done user=%s category=%s updated=%d missing=%d learned=%d",
        user_id,
        category_id,
        len(updated),
        len(missing),
        len(learned),
    )
    return CategoryUpdate(
        transactions=tuple(updated),
        learned=learned,
        missing_ids=missing,
        learning_errors=errors,
    )


def recategorize_transaction(
    user_id: str,
    transaction_id: str,
    category_id: str | None,
    *,
    store: LedgerStore,
    policy: LearningPolicy = DEFAULT_POLICY,
) -> CategoryUpdate:
    """Single-transaction form of :func:`bulk_update_category`.

    Raises ``NotFoundError`` when the transaction does not exist for the user.
    """

    if store.get_transaction(user_id, transaction_id) is None:
        raise NotFoundError(f"transaction not found: {transaction_id}")
    return bulk_update_category(
        user_id, [transaction_id], category_id, store=store, policy=policy
    )


# ---------------------------------------------------------------------------
# Budgets and reports
# ---------------------------------------------------------------------------


def set_budget(
    user_id: str,
    category_id: str,
    month: str | date,
    amount_cents: int,
    *,
    store: LedgerStore,
) -> Budget:
    """Create or replace the budget for ``(user, category, month)``."""

    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise TypeError("amount_cents must be an int")
    if amount_cents < 0:
        raise ValueError("budget amount must be >= 0")
    _require_category(store, user_id, category_id)
    first, _ = month_bounds(month)
    budget = store.upsert_budget(user_id, category_id, first, amount_cents)
    _log.info(
        "budget:set user=%s category=%s month=%s amount_cents=%d",
        user_id,
        category_id,
        first.isoformat(),
        amount_cents,
    )
    return budget


def budget_status(
    user_id: str,
    month: str | date,
    *,
    store: LedgerStore,
    concurrency: int | None = None,
) -> list[BudgetStatus]:
    """Status of every budget the user has for ``month``."""

    first, _ = month_bounds(month)
    statuses = aggregate_budgets(
        store.list_budgets(user_id, first), spend_store=store, concurrency=concurrency
    )
    _log_degraded("budget_status", user_id, [s.degraded for s in statuses if s.degraded])
    return statuses


def spending_summary(user_id: str, month: str, *, store: LedgerStore) -> SpendingSummary:
    start, end = month_bounds(month)
    return summarize_spending(
        store.list_transactions(user_id, start, end),
        month=f"{start.year:04d}-{start.month:02d}",
        category_names=_category_names(store, user_id),
    )


def categorization_statistics(
    user_id: str,
    *,
    store: LedgerStore,
    start: date | None = None,
    end: date | None = None,
) -> CategorizationStats:
    return categorization_stats(
        store.list_transactions(user_id, start, end),
        category_names=_category_names(store, user_id),
    )


__all__ = [
    "MANUAL_CONFIDENCE",
    "ImportSummary",
    "import_transactions",
    "CategoryUpdate",
    "bulk_update_category",
    "recategorize_transaction",
    "set_budget",
    "budget_status",
    "spending_summary",
    "categorization_statistics",
]
