"""Budget aggregation: spend per category and month against its budget.

Only ``expense`` transactions count toward spend; ``income`` and
``transfer`` are excluded. Records without a type are treated as expenses.
Spend is the sum of absolute amounts, so a budget's status is:

- ``spent_cents = Σ abs(amount_cents)`` over qualifying records;
- ``remaining_cents = amount_cents - spent_cents`` (negative when over);
- ``percentage_used = max(0, spent / amount * 100)`` for a positive budget,
  ``0`` for a zero budget.

Each budget's lookup is independent. They run through :func:`p_map` and a
failed lookup only zeroes that budget's spend (flagged with
:class:`~spendlens.errors.SpendLookupDegraded`).
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime

from .errors import SpendLookupDegraded
from .logging_setup import get_logger
from .models import Budget, BudgetStatus, SpendRecord
from .pmap import p_map, resolve_concurrency
from .stores import SpendStore

_log = get_logger("spendlens.budgets")


def month_bounds(month: str | date) -> tuple[date, date]:
    """Inclusive first and last day of ``month`` (``"YYYY-MM"`` or any date in it)."""

    if isinstance(month, str):
        try:
            year_s, month_s = month.strip().split("-")
            first = date(int(year_s), int(month_s), 1)
        except ValueError as exc:
            raise ValueError(f"month must be formatted as YYYY-MM, got {month!r}") from exc
    else:
        first = month.replace(day=1)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return first, first.replace(day=last_day)


def current_month(today: date | None = None) -> str:
    """``"YYYY-MM"`` for ``today`` (UTC now when omitted)."""

    d = today or datetime.now(UTC).date()
    return f"{d.year:04d}-{d.month:02d}"


def spent_cents(records: Iterable[SpendRecord]) -> int:
    return sum(
        abs(r.amount_cents)
        for r in records
        if r.transaction_type is None or r.transaction_type == "expense"
    )


def percentage_used(spent: int, amount_cents: int) -> float:
    if amount_cents <= 0:
        return 0.0
    return max(0.0, spent / amount_cents * 100)


def compute_budget_status(
    budget: Budget,
    records: Iterable[SpendRecord],
    *,
    degraded: SpendLookupDegraded | None = None,
) -> BudgetStatus:
    spent = spent_cents(records)
    return BudgetStatus(
        budget=budget,
        spent_cents=spent,
        remaining_cents=budget.amount_cents - spent,
        percentage_used=percentage_used(spent, budget.amount_cents),
        degraded=degraded,
    )


def aggregate_budgets(
    budgets: Sequence[Budget],
    *,
    spend_store: SpendStore,
    concurrency: int | None = None,
) -> list[BudgetStatus]:
    """Compute a status for each budget, in input order."""

    def _status(budget: Budget) -> BudgetStatus:
        start, end = month_bounds(budget.month)
        try:
            records = spend_store.fetch_category_transactions(
                budget.user_id, budget.category_id, start, end
            )
        except Exception as exc:  # noqa: BLE001
            _log.debug(
                "budgets:spend_unavailable budget=%s category=%s error=%s",
                budget.id,
                budget.category_id,
                exc,
            )
            return compute_budget_status(
                budget, (), degraded=SpendLookupDegraded.from_exception(exc)
            )
        return compute_budget_status(budget, records)

    if not budgets:
        return []
    workers = min(resolve_concurrency(concurrency), len(budgets))
    statuses = p_map(budgets, _status, concurrency=workers)
    _log.debug(
        "budgets:done count=%d degraded=%d",
        len(statuses),
        sum(1 for s in statuses if s.degraded is not None),
    )
    return statuses


__all__ = [
    "month_bounds",
    "current_month",
    "spent_cents",
    "percentage_used",
    "compute_budget_status",
    "aggregate_budgets",
]
