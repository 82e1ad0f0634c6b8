"""Reporting views over stored transactions.

- :func:`summarize_spending`: a month's expense total per category, total
  income and net. Transfers are left out of both sides; records without a
  type count as expenses.
- :func:`categorization_stats`: how much of a date range is categorized,
  the mean rule confidence and the per-category counts.

Both are pure functions over already-fetched transactions; the caller picks
the date window.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .models import Transaction

UNCATEGORIZED_NAME = "Uncategorized"
UNKNOWN_CATEGORY_NAME = "Unknown"


@dataclass(frozen=True, slots=True)
class CategorySpend:
    category_id: str | None
    category_name: str
    amount_cents: int


@dataclass(frozen=True, slots=True)
class SpendingSummary:
    month: str
    total_spending_cents: int
    total_income_cents: int
    categories: tuple[CategorySpend, ...]

    @property
    def net_cents(self) -> int:
        return self.total_income_cents - self.total_spending_cents


def _name_for(category_id: str | None, names: Mapping[str, str]) -> str:
    if category_id is None:
        return UNCATEGORIZED_NAME
    return names.get(category_id, UNKNOWN_CATEGORY_NAME)


def summarize_spending(
    transactions: Iterable[Transaction],
    *,
    month: str,
    category_names: Mapping[str, str],
) -> SpendingSummary:
    spending: dict[str | None, int] = defaultdict(int)
    income = 0
    for tx in transactions:
        if tx.transaction_type == "transfer":
            continue
        if tx.transaction_type == "income":
            income += abs(tx.amount_cents)
        else:
            spending[tx.category_id] += abs(tx.amount_cents)

    rows = [
        CategorySpend(cid, _name_for(cid, category_names), cents) for cid, cents in spending.items()
    ]
    rows.sort(key=lambda r: (-r.amount_cents, r.category_name.casefold()))
    return SpendingSummary(
        month=month,
        total_spending_cents=sum(spending.values()),
        total_income_cents=income,
        categories=tuple(rows),
    )


@dataclass(frozen=True, slots=True)
class CategoryCount:
    category_id: str
    category_name: str
    count: int


@dataclass(frozen=True, slots=True)
class CategorizationStats:
    total: int
    categorized: int
    average_confidence: float
    distribution: tuple[CategoryCount, ...]

    @property
    def uncategorized(self) -> int:
        return self.total - self.categorized


def categorization_stats(
    transactions: Iterable[Transaction],
    *,
    category_names: Mapping[str, str],
) -> CategorizationStats:
    """Counts and average confidence (2 dp) over categorized transactions."""

    total = 0
    counts: Counter[str] = Counter()
    confidences: list[Decimal] = []
    for tx in transactions:
        total += 1
        if tx.category_id is None:
            continue
        counts[tx.category_id] += 1
        if tx.confidence is not None:
            confidences.append(Decimal(str(tx.confidence)))

    average = 0.0
    if confidences:
        mean = sum(confidences, Decimal(0)) / len(confidences)
        average = float(mean.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    distribution = sorted(
        (CategoryCount(cid, _name_for(cid, category_names), n) for cid, n in counts.items()),
        key=lambda c: (-c.count, c.category_name.casefold()),
    )
    return CategorizationStats(
        total=total,
        categorized=sum(counts.values()),
        average_confidence=average,
        distribution=tuple(distribution),
    )


__all__ = [
    "UNCATEGORIZED_NAME",
    "CategorySpend",
    "SpendingSummary",
    "summarize_spending",
    "CategoryCount",
    "CategorizationStats",
    "categorization_stats",
]
