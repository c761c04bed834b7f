"""db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` for schema bootstrap
- ORM models in ``db.models.finance`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.finance import (
    Account,
    Base,
    Budget,
    Category,
    ImportSessionRecord,
    LedgerTransaction,
    StagedTransactionRecord,
)

metadata = Base.metadata

__all__ = [
    "Account",
    "Base",
    "Budget",
    "Category",
    "ImportSessionRecord",
    "LedgerTransaction",
    "StagedTransactionRecord",
    "metadata",
]
