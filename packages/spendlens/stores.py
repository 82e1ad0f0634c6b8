"""Store interfaces consumed by the core, plus an in-memory implementation.

The core never reaches for a global connection: every operation takes the
store it needs as an explicit argument. Interfaces are structural
(:class:`typing.Protocol`), so any object with the right methods works.
:class:`InMemoryStore` satisfies all of them and backs tests and dry runs;
:class:`spendlens.persistence.SqlStore` is the database-backed counterpart.

Store methods raise :class:`~spendlens.errors.StoreError` (or let their
driver's exception escape); the core decides which failures degrade and
which propagate.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Protocol

from .models import (
    Budget,
    CategorizationRule,
    Category,
    CategorySource,
    NewTransaction,
    SpendRecord,
    Transaction,
)

if TYPE_CHECKING:
    from .duplicates import DuplicateScope


class DuplicateKeyStore(Protocol):
    def fetch_existing_duplicate_keys(
        self, user_id: str, scope: DuplicateScope | None
    ) -> Mapping[str, str]:
        """Return ``{duplicate_key: existing_transaction_id}`` within ``scope``.

        ``scope=None`` means the user's full history.
        """
        ...


class RuleStore(Protocol):
    def fetch_user_rules(self, user_id: str) -> Sequence[CategorizationRule]: ...

    def upsert_rule(
        self, user_id: str, pattern: str, category_id: str, confidence: float
    ) -> CategorizationRule:
        """Create or update the rule keyed by ``(user_id, pattern, category_id)``."""
        ...

    def delete_rule(self, rule_id: str) -> None: ...


class SpendStore(Protocol):
    def fetch_category_transactions(
        self, user_id: str, category_id: str, month_start: date, month_end: date
    ) -> Sequence[SpendRecord]:
        """Transactions in ``category_id`` dated within the inclusive bounds."""
        ...


class CategoryStore(Protocol):
    def list_categories(self, user_id: str) -> Sequence[Category]: ...

    def create_category(self, user_id: str, name: str) -> Category: ...


class TransactionStore(Protocol):
    def insert_transactions(self, items: Sequence[NewTransaction]) -> list[Transaction]: ...

    def get_transaction(self, user_id: str, transaction_id: str) -> Transaction | None: ...

    def update_transaction_categories(
        self,
        user_id: str,
        transaction_ids: Sequence[str],
        *,
        category_id: str | None,
        confidence: float | None,
        source: CategorySource,
    ) -> list[Transaction]:
        """Set the category on each listed transaction; unknown ids are skipped."""
        ...

    def list_transactions(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> Sequence[Transaction]: ...


class BudgetStore(Protocol):
    def upsert_budget(
        self, user_id: str, category_id: str, month: date, amount_cents: int
    ) -> Budget: ...

    def list_budgets(self, user_id: str, month: date) -> Sequence[Budget]: ...


class LedgerStore(
    DuplicateKeyStore,
    RuleStore,
    SpendStore,
    CategoryStore,
    TransactionStore,
    BudgetStore,
    Protocol,
):
    """Everything the orchestration layer needs from one backing store."""


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


def _in_range(iso: str, start: date | None, end: date | None) -> bool:
    if start is not None and iso < start.isoformat():
        return False
    return not (end is not None and iso > end.isoformat())


class InMemoryStore:
    """Dict-backed store implementing every interface above.

    Uniqueness mirrors the database constraints: one rule per
    ``(user, pattern, category)`` and one budget per ``(user, category, month)``.
    """

    def __init__(self) -> None:
        self.categories: dict[str, Category] = {}
        self.transactions: dict[str, Transaction] = {}
        self.duplicate_keys: dict[str, str] = {}  # transaction id -> key
        self.rules: dict[str, CategorizationRule] = {}
        self.budgets: dict[str, Budget] = {}

    # -- categories ----------------------------------------------------------

    def list_categories(self, user_id: str) -> list[Category]:
        return sorted(
            (c for c in self.categories.values() if c.user_id == user_id),
            key=lambda c: c.name.casefold(),
        )

    def create_category(self, user_id: str, name: str) -> Category:
        for c in self.categories.values():
            if c.user_id == user_id and c.name.casefold() == name.strip().casefold():
                return c
        cat = Category(id=_new_id(), user_id=user_id, name=name.strip())
        self.categories[cat.id] = cat
        return cat

    # -- transactions --------------------------------------------------------

    def insert_transactions(self, items: Sequence[NewTransaction]) -> list[Transaction]:
        out: list[Transaction] = []
        now = _now()
        for item in items:
            tx = Transaction(
                id=_new_id(),
                user_id=item.user_id,
                date=item.date,
                amount_cents=item.amount_cents,
                merchant=item.merchant,
                description=item.description,
                transaction_type=item.transaction_type,
                category_id=item.category_id,
                confidence=item.confidence,
                category_source=item.category_source,
                is_duplicate=item.is_duplicate,
                created_at=now,
                updated_at=now,
            )
            self.transactions[tx.id] = tx
            self.duplicate_keys[tx.id] = item.duplicate_key
            out.append(tx)
        return out

    def get_transaction(self, user_id: str, transaction_id: str) -> Transaction | None:
        tx = self.transactions.get(transaction_id)
        if tx is None or tx.user_id != user_id:
            return None
        return tx

    def update_transaction_categories(
        self,
        user_id: str,
        transaction_ids: Sequence[str],
        *,
        category_id: str | None,
        confidence: float | None,
        source: CategorySource,
    ) -> list[Transaction]:
        updated: list[Transaction] = []
        now = _now()
        for tx_id in transaction_ids:
            tx = self.get_transaction(user_id, tx_id)
            if tx is None:
                continue
            tx = replace(
                tx,
                category_id=category_id,
                confidence=confidence,
                category_source=source,
                updated_at=now,
            )
            self.transactions[tx.id] = tx
            updated.append(tx)
        return updated

    def list_transactions(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[Transaction]:
        return [
            tx
            for tx in self.transactions.values()
            if tx.user_id == user_id and _in_range(tx.date, start, end)
        ]

    def fetch_existing_duplicate_keys(
        self, user_id: str, scope: DuplicateScope | None
    ) -> dict[str, str]:
        start = scope.start if scope is not None else None
        end = scope.end if scope is not None else None
        keys: dict[str, str] = {}
        for tx in self.list_transactions(user_id, start, end):
            keys.setdefault(self.duplicate_keys[tx.id], tx.id)
        return keys

    # -- rules ---------------------------------------------------------------

    def fetch_user_rules(self, user_id: str) -> list[CategorizationRule]:
        return [r for r in self.rules.values() if r.user_id == user_id]

    def upsert_rule(
        self, user_id: str, pattern: str, category_id: str, confidence: float
    ) -> CategorizationRule:
        now = _now()
        for rule in self.rules.values():
            if (
                rule.user_id == user_id
                and rule.merchant_pattern == pattern
                and rule.category_id == category_id
            ):
                rule = replace(rule, confidence=confidence, updated_at=now)
                self.rules[rule.id] = rule
                return rule
        rule = CategorizationRule(
            id=_new_id(),
            user_id=user_id,
            merchant_pattern=pattern,
            category_id=category_id,
            confidence=confidence,
            created_at=now,
            updated_at=now,
        )
        self.rules[rule.id] = rule
        return rule

    def delete_rule(self, rule_id: str) -> None:
        self.rules.pop(rule_id, None)

    # -- budgets -------------------------------------------------------------

    def upsert_budget(
        self, user_id: str, category_id: str, month: date, amount_cents: int
    ) -> Budget:
        now = _now()
        for budget in self.budgets.values():
            if (
                budget.user_id == user_id
                and budget.category_id == category_id
                and budget.month == month
            ):
                budget = replace(budget, amount_cents=amount_cents, updated_at=now)
                self.budgets[budget.id] = budget
                return budget
        budget = Budget(
            id=_new_id(),
            user_id=user_id,
            category_id=category_id,
            month=month,
            amount_cents=amount_cents,
            created_at=now,
            updated_at=now,
        )
        self.budgets[budget.id] = budget
        return budget

    def list_budgets(self, user_id: str, month: date) -> list[Budget]:
        return [b for b in self.budgets.values() if b.user_id == user_id and b.month == month]

    def fetch_category_transactions(
        self, user_id: str, category_id: str, month_start: date, month_end: date
    ) -> list[SpendRecord]:
        return [
            SpendRecord(tx.amount_cents, tx.transaction_type)
            for tx in self.list_transactions(user_id, month_start, month_end)
            if tx.category_id == category_id
        ]

    # -- helpers -------------------------------------------------------------

    def seed_categories(self, user_id: str, names: Iterable[str]) -> dict[str, Category]:
        return {name: self.create_category(user_id, name) for name in names}


__all__ = [
    "DuplicateKeyStore",
    "RuleStore",
    "SpendStore",
    "CategoryStore",
    "TransactionStore",
    "BudgetStore",
    "LedgerStore",
    "InMemoryStore",
]
