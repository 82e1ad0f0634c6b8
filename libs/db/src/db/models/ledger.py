from __future__ import annotations

import uuid
import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


class _Timestamps:
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# categories
# ---------------------------


class LedgerCategory(_Timestamps, Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_categories_user_name"),)


# ---------------------------
# transactions
# ---------------------------


class LedgerTransaction(_Timestamps, Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    # Signed integer cents; negative for money leaving the account.
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    confidence: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    category_source: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=sa_expr.text("'none'")
    )
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    # "{date}|{amount_cents}|{normalized merchant}" computed in Python at import.
    duplicate_key: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "transaction_type in ('expense','income','transfer')",
            name="ck_transactions_type",
        ),
        CheckConstraint(
            "category_source in ('rule','manual','none')",
            name="ck_transactions_category_source",
        ),
        CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 100)",
            name="ck_transactions_confidence",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_dupkey", "user_id", "duplicate_key"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
    )


# ---------------------------
# categorization_rules
# ---------------------------


class LedgerRule(_Timestamps, Base):
    __tablename__ = "categorization_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    merchant_pattern: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    confidence: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "merchant_pattern", "category_id", name="uq_rules_user_pattern_category"
        ),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_rules_confidence"
        ),
        Index("ix_rules_user", "user_id"),
    )


# ---------------------------
# budgets
# ---------------------------


class LedgerBudget(_Timestamps, Base):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    # Always the first day of the month.
    month: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "category_id", "month", name="uq_budgets_user_category_month"),
        CheckConstraint("amount_cents >= 0", name="ck_budgets_amount_non_negative"),
    )


__all__ = [
    "Base",
    "LedgerCategory",
    "LedgerTransaction",
    "LedgerRule",
    "LedgerBudget",
]
