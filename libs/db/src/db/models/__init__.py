"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the budgeting and import-staging models used by
``bank_import``.
"""

from .finance import (
    Account,
    Base,
    Budget,
    Category,
    ImportSessionRecord,
    LedgerTransaction,
    StagedTransactionRecord,
)

__all__ = [
    "Account",
    "Base",
    "Budget",
    "Category",
    "ImportSessionRecord",
    "LedgerTransaction",
    "StagedTransactionRecord",
]
