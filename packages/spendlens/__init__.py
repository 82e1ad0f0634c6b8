"""spendlens: bank CSV import, duplicate flagging, learned categorization and budgets.

The public entry points live in :mod:`spendlens.api`; the console is
:mod:`spendlens.cli`.
"""

__version__ = "0.1.0"
