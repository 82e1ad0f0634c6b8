# ruff: noqa: I001
"""Database-backed store over the shared ``db`` library.

:class:`SqlStore` implements every store interface in
:mod:`spendlens.stores` against the ORM models in ``db.models.ledger``,
using a session provided by ``db.client``. It flushes but never commits;
the caller owns the transaction (``session_scope`` commits on success).

Upserts are select-then-update keyed by the table's unique constraint, which
keeps the code portable between Postgres and SQLite. Concurrent imports for
the same user should be serialized by the caller.

Driver failures surface as :class:`~spendlens.errors.StoreError` chained to
the original ``SQLAlchemyError``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.ledger import LedgerBudget, LedgerCategory, LedgerRule, LedgerTransaction
from .errors import StoreError
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


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StoreError(f"{operation} failed: {exc}") from exc


def _now() -> datetime:
    return datetime.now(UTC)


def _confidence(value: Decimal | None) -> float | None:
    return None if value is None else float(value)


def _decimal(value: float | None) -> Decimal | None:
    return None if value is None else Decimal(str(round(float(value), 2)))


def _to_transaction(row: LedgerTransaction) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        date=row.date.isoformat(),
        amount_cents=int(row.amount_cents),
        merchant=row.merchant,
        description=row.description,
        transaction_type=row.transaction_type,  # type: ignore[arg-type]
        category_id=row.category_id,
        confidence=_confidence(row.confidence),
        category_source=row.category_source,  # type: ignore[arg-type]
        is_duplicate=bool(row.is_duplicate),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_rule(row: LedgerRule) -> CategorizationRule:
    return CategorizationRule(
        id=row.id,
        user_id=row.user_id,
        merchant_pattern=row.merchant_pattern,
        category_id=row.category_id,
        confidence=float(row.confidence),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_budget(row: LedgerBudget) -> Budget:
    return Budget(
        id=row.id,
        user_id=row.user_id,
        category_id=row.category_id,
        month=row.month,
        amount_cents=int(row.amount_cents),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlStore:
    """SQLAlchemy implementation of the category/transaction/rule/budget stores."""

    def __init__(self, session: Session) -> None:
        self.session = session
        # Budget aggregation calls fetch_category_transactions from worker
        # threads; a Session must not be used by two threads at once.
        self._lock = threading.Lock()

    # -- categories ----------------------------------------------------------

    def list_categories(self, user_id: str) -> list[Category]:
        with _store_errors("list categories"):
            rows = self.session.scalars(
                select(LedgerCategory)
                .where(LedgerCategory.user_id == user_id)
                .order_by(LedgerCategory.name)
            ).all()
        return [Category(id=r.id, user_id=r.user_id, name=r.name) for r in rows]

    def create_category(self, user_id: str, name: str) -> Category:
        clean = name.strip()
        with _store_errors("create category"):
            row = self.session.scalars(
                select(LedgerCategory).where(
                    LedgerCategory.user_id == user_id, LedgerCategory.name == clean
                )
            ).one_or_none()
            if row is None:
                row = LedgerCategory(user_id=user_id, name=clean)
                self.session.add(row)
                self.session.flush()
        return Category(id=row.id, user_id=row.user_id, name=row.name)

    # -- transactions --------------------------------------------------------

    def insert_transactions(self, items: Sequence[NewTransaction]) -> list[Transaction]:
        now = _now()
        rows = [
            LedgerTransaction(
                user_id=item.user_id,
                date=date.fromisoformat(item.date),
                amount_cents=item.amount_cents,
                merchant=item.merchant,
                description=item.description,
                transaction_type=item.transaction_type,
                category_id=item.category_id,
                confidence=_decimal(item.confidence),
                category_source=item.category_source,
                is_duplicate=item.is_duplicate,
                duplicate_key=item.duplicate_key,
                created_at=now,
                updated_at=now,
            )
            for item in items
        ]
        with _store_errors("insert transactions"):
            self.session.add_all(rows)
            self.session.flush()
        return [_to_transaction(r) for r in rows]

    def get_transaction(self, user_id: str, transaction_id: str) -> Transaction | None:
        with _store_errors("get transaction"):
            row = self.session.get(LedgerTransaction, transaction_id)
        if row is None or row.user_id != user_id:
            return None
        return _to_transaction(row)

    def update_transaction_categories(
        self,
        user_id: str,
        transaction_ids: Sequence[str],
        *,
        category_id: str | None,
        confidence: float | None,
        source: CategorySource,
    ) -> list[Transaction]:
        if not transaction_ids:
            return []
        now = _now()
        with _store_errors("update transaction categories"):
            rows = self.session.scalars(
                select(LedgerTransaction).where(
                    LedgerTransaction.user_id == user_id,
                    LedgerTransaction.id.in_(list(transaction_ids)),
                )
            ).all()
            for row in rows:
                row.category_id = category_id
                row.confidence = _decimal(confidence)
                row.category_source = source
                row.updated_at = now
            self.session.flush()
        by_id = {r.id: r for r in rows}
        # Preserve the caller's order; unknown ids are skipped.
        return [_to_transaction(by_id[i]) for i in dict.fromkeys(transaction_ids) if i in by_id]

    def list_transactions(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[Transaction]:
        stmt = select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)
        if start is not None:
            stmt = stmt.where(LedgerTransaction.date >= start)
        if end is not None:
            stmt = stmt.where(LedgerTransaction.date <= end)
        stmt = stmt.order_by(LedgerTransaction.date, LedgerTransaction.created_at)
        with _store_errors("list transactions"):
            rows = self.session.scalars(stmt).all()
        return [_to_transaction(r) for r in rows]

    def fetch_existing_duplicate_keys(
        self, user_id: str, scope: DuplicateScope | None
    ) -> Mapping[str, str]:
        stmt = select(LedgerTransaction.duplicate_key, LedgerTransaction.id).where(
            LedgerTransaction.user_id == user_id
        )
        if scope is not None:
            stmt = stmt.where(
                LedgerTransaction.date >= scope.start, LedgerTransaction.date <= scope.end
            )
        stmt = stmt.order_by(LedgerTransaction.created_at, LedgerTransaction.id)
        keys: dict[str, str] = {}
        with _store_errors("fetch duplicate keys"):
            for key, tx_id in self.session.execute(stmt):
                keys.setdefault(key, tx_id)
        return keys

    # -- rules ---------------------------------------------------------------

    def fetch_user_rules(self, user_id: str) -> list[CategorizationRule]:
        with _store_errors("fetch rules"):
            rows = self.session.scalars(
                select(LedgerRule).where(LedgerRule.user_id == user_id)
            ).all()
        return [_to_rule(r) for r in rows]

    def upsert_rule(
        self, user_id: str, pattern: str, category_id: str, confidence: float
    ) -> CategorizationRule:
        now = _now()
        with _store_errors("upsert rule"):
            row = self.session.scalars(
                select(LedgerRule).where(
                    LedgerRule.user_id == user_id,
                    LedgerRule.merchant_pattern == pattern,
                    LedgerRule.category_id == category_id,
                )
            ).one_or_none()
            if row is None:
                row = LedgerRule(
                    user_id=user_id,
                    merchant_pattern=pattern,
                    category_id=category_id,
                    confidence=_decimal(confidence),
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(row)
            else:
                row.confidence = _decimal(confidence)
                row.updated_at = now
            self.session.flush()
        return _to_rule(row)

    def delete_rule(self, rule_id: str) -> None:
        with _store_errors("delete rule"):
            row = self.session.get(LedgerRule, rule_id)
            if row is not None:
                self.session.delete(row)
                self.session.flush()

    # -- budgets -------------------------------------------------------------

    def upsert_budget(
        self, user_id: str, category_id: str, month: date, amount_cents: int
    ) -> Budget:
        now = _now()
        with _store_errors("upsert budget"):
            row = self.session.scalars(
                select(LedgerBudget).where(
                    LedgerBudget.user_id == user_id,
                    LedgerBudget.category_id == category_id,
                    LedgerBudget.month == month,
                )
            ).one_or_none()
            if row is None:
                row = LedgerBudget(
                    user_id=user_id,
                    category_id=category_id,
                    month=month,
                    amount_cents=amount_cents,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(row)
            else:
                row.amount_cents = amount_cents
                row.updated_at = now
            self.session.flush()
        return _to_budget(row)

    def list_budgets(self, user_id: str, month: date) -> list[Budget]:
        with _store_errors("list budgets"):
            rows = self.session.scalars(
                select(LedgerBudget)
                .where(LedgerBudget.user_id == user_id, LedgerBudget.month == month)
                .order_by(LedgerBudget.created_at, LedgerBudget.id)
            ).all()
        return [_to_budget(r) for r in rows]

    def fetch_category_transactions(
        self, user_id: str, category_id: str, month_start: date, month_end: date
    ) -> list[SpendRecord]:
        stmt = select(LedgerTransaction.amount_cents, LedgerTransaction.transaction_type).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.category_id == category_id,
            LedgerTransaction.date >= month_start,
            LedgerTransaction.date <= month_end,
        )
        # A savepoint per lookup: a failed query must not abort the enclosing
        # transaction for the budgets that follow it.
        with self._lock, _store_errors("fetch category transactions"):
            with self.session.begin_nested():
                rows = self.session.execute(stmt).all()
        return [SpendRecord(int(amount), tx_type) for amount, tx_type in rows]


__all__ = ["SqlStore"]
