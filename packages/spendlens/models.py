"""Data models for the ``spendlens`` pipeline.

Records are frozen ``dataclass`` instances with explicit field order. Money is
always a signed ``int`` count of cents; no floating point currency values
appear in any record. Dates travel as ISO ``YYYY-MM-DD`` strings on parsed
and persisted transactions, and as ``datetime.date`` where a calendar value is
needed (budget months).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal, NamedTuple

from .errors import LookupDegraded, SpendLookupDegraded

# ---------------------------------------------------------------------------
# Transaction classification
# ---------------------------------------------------------------------------

type TransactionType = Literal["expense", "income", "transfer"]
"""Only ``expense`` counts toward budget spend."""

TRANSACTION_TYPES: tuple[str, ...] = ("expense", "income", "transfer")

type CategorySource = Literal["rule", "manual", "none"]


def _require_cents(name: str, value: object) -> None:
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int number of cents, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParsedTransaction:
    """A normalized row produced by the CSV parser."""

    date: str
    amount_cents: int
    merchant: str
    description: str | None
    transaction_type: TransactionType

    def __post_init__(self) -> None:
        _require_cents("amount_cents", self.amount_cents)
        if self.transaction_type not in TRANSACTION_TYPES:
            raise ValueError(f"unknown transaction_type: {self.transaction_type!r}")


@dataclass(frozen=True, slots=True)
class ParseError:
    """A row-level problem. ``row`` is 1-indexed with the header as row 1."""

    row: int
    message: str
    column: str | None = None
    raw: Mapping[str, str] | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Outcome of parsing one file; errors never abort the batch."""

    transactions: tuple[ParsedTransaction, ...]
    errors: tuple[ParseError, ...]
    total_rows: int
    detected_format: str

    @property
    def success_count(self) -> int:
        return len(self.transactions)

    @property
    def error_count(self) -> int:
        return len(self.errors)


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    user_id: str
    name: str


@dataclass(frozen=True, slots=True)
class CategorizationRule:
    """A learned merchant pattern → category association owned by one user.

    ``merchant_pattern`` is matched case-insensitively as a substring of the
    normalized merchant. ``confidence`` is within ``[0, 100]``.
    """

    id: str
    user_id: str
    merchant_pattern: str
    category_id: str
    confidence: float
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.confidence) <= 100.0:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence!r}")


@dataclass(frozen=True, slots=True)
class CategoryAssignment:
    """Result of matching one merchant against a rule set.

    ``category_id`` and ``confidence`` are both ``None`` when nothing matched
    (uncategorized is a valid terminal state).
    """

    category_id: str | None
    confidence: float | None
    rule_id: str | None = None
    merchant_pattern: str | None = None

    @property
    def is_categorized(self) -> bool:
        return self.category_id is not None


UNCATEGORIZED = CategoryAssignment(category_id=None, confidence=None)


# ---------------------------------------------------------------------------
# Persisted transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A stored transaction as seen by the core (store-agnostic)."""

    id: str
    user_id: str
    date: str
    amount_cents: int
    merchant: str
    description: str | None
    transaction_type: TransactionType
    category_id: str | None = None
    confidence: float | None = None
    category_source: CategorySource = "none"
    is_duplicate: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        _require_cents("amount_cents", self.amount_cents)


@dataclass(frozen=True, slots=True)
class NewTransaction:
    """Insert payload handed to a transaction store by the import flow."""

    user_id: str
    date: str
    amount_cents: int
    merchant: str
    description: str | None
    transaction_type: TransactionType
    duplicate_key: str
    category_id: str | None = None
    confidence: float | None = None
    category_source: CategorySource = "none"
    is_duplicate: bool = False


class SpendRecord(NamedTuple):
    """Minimal projection used by budget aggregation."""

    amount_cents: int
    transaction_type: TransactionType | None


# ---------------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Budget:
    """A monthly budget; one per ``(user, category, month)``."""

    id: str
    user_id: str
    category_id: str
    month: date
    amount_cents: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        _require_cents("amount_cents", self.amount_cents)
        if self.month.day != 1:
            raise ValueError(f"budget month must be the first day of a month, got {self.month}")


@dataclass(frozen=True, slots=True)
class BudgetStatus:
    """Derived view of a budget against its month's spend (never persisted).

    ``remaining_cents`` may be negative (over budget). ``percentage_used`` is
    ``>= 0`` and uncapped above 100.
    """

    budget: Budget
    spent_cents: int
    remaining_cents: int
    percentage_used: float
    degraded: SpendLookupDegraded | None = None

    @property
    def category_id(self) -> str:
        return self.budget.category_id

    @property
    def month(self) -> date:
        return self.budget.month

    @property
    def amount_cents(self) -> int:
        return self.budget.amount_cents

    @property
    def is_over_budget(self) -> bool:
        return self.remaining_cents < 0


# ---------------------------------------------------------------------------
# Degradation carrier shared by result types
# ---------------------------------------------------------------------------

type Degradations = tuple[LookupDegraded, ...]


__all__ = [
    "TransactionType",
    "TRANSACTION_TYPES",
    "CategorySource",
    "ParsedTransaction",
    "ParseError",
    "ParseResult",
    "Category",
    "CategorizationRule",
    "CategoryAssignment",
    "UNCATEGORIZED",
    "Transaction",
    "NewTransaction",
    "SpendRecord",
    "Budget",
    "BudgetStatus",
    "Degradations",
]
