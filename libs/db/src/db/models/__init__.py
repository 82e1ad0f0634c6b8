"""Shared SQLAlchemy models registry for the workspace database.

Ledger tables used by ``spendlens``: categories, transactions,
categorization rules and monthly budgets.
"""

from .ledger import Base, LedgerBudget, LedgerCategory, LedgerRule, LedgerTransaction

__all__ = [
    "Base",
    "LedgerCategory",
    "LedgerTransaction",
    "LedgerRule",
    "LedgerBudget",
]
