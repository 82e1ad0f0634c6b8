# ruff: noqa: I001
"""Ledger core tables: categories, transactions, categorization rules, budgets.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_categories_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("confidence", sa.Numeric(5, 2), nullable=True),
        sa.Column(
            "category_source",
            sa.String(16),
            nullable=False,
            server_default=sa.text("'none'"),
        ),
        sa.Column("is_duplicate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("duplicate_key", sa.Text(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "transaction_type in ('expense','income','transfer')",
            name="ck_transactions_type",
        ),
        sa.CheckConstraint(
            "category_source in ('rule','manual','none')",
            name="ck_transactions_category_source",
        ),
        sa.CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 100)",
            name="ck_transactions_confidence",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index("ix_transactions_user_dupkey", "transactions", ["user_id", "duplicate_key"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )

    op.create_table(
        "categorization_rules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("merchant_pattern", sa.Text(), nullable=False),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("confidence", sa.Numeric(5, 2), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "merchant_pattern",
            "category_id",
            name="uq_rules_user_pattern_category",
        ),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_rules_confidence"),
    )
    op.create_index("ix_rules_user", "categorization_rules", ["user_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category_id", "month", name="uq_budgets_user_category_month"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budgets_amount_non_negative"),
    )


def downgrade() -> None:
    op.drop_table("budgets")
    op.drop_index("ix_rules_user", table_name="categorization_rules")
    op.drop_table("categorization_rules")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_dupkey", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
