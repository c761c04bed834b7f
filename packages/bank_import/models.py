"""Data models and type aliases for ``bank_import``.

Raw rows stay opaque (label → raw string) until the mapper turns them into a
:class:`CanonicalTransaction`. Amounts are ``Decimal`` and always
non-negative; the direction of money lives in :class:`TransactionKind`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType

# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------

type RawRow = Mapping[str, str]
"""One extracted row: column label → raw cell text, in column order."""

type DateRange = tuple[date | None, date | None]
"""Inclusive ``(start, end)`` bounds; either side may be open."""


def freeze_row(row: Mapping[str, object]) -> RawRow:
    """Return a read-only copy of ``row`` with ``None`` cells as ``""``."""

    return MappingProxyType(
        {str(k): ("" if v is None else str(v)) for k, v in row.items() if k is not None}
    )


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Format(StrEnum):
    NUBANK_BR = "NUBANK_BR"
    NUBANK_INTL = "NUBANK_INTL"
    NUBANK_GENERIC = "NUBANK_GENERIC"
    BRADESCO = "BRADESCO"
    BANCO_BRASIL = "BANCO_BRASIL"
    C6 = "C6"
    INTER = "INTER"
    XP = "XP"
    CLEAR = "CLEAR"
    ITAU = "ITAU"
    GENERIC = "GENERIC"


class TransactionKind(StrEnum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class FileType(StrEnum):
    CSV = "CSV"
    PDF = "PDF"
    EXCEL = "EXCEL"


class SessionStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    CLASSIFIED = "CLASSIFIED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.CANCELLED})


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    """A bank row normalized to the internal representation.

    ``source_row`` is the untouched raw row, kept for audit/debugging.
    """

    description: str
    amount: Decimal
    kind: TransactionKind
    date: date
    source_row: RawRow

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("CanonicalTransaction.amount must be non-negative")


@dataclass(slots=True)
class StagedTransaction:
    """A canonical transaction awaiting review inside one import session."""

    id: str
    session_id: str
    description: str
    amount: Decimal
    kind: TransactionKind
    date: date
    source_row: RawRow
    category_id: str | None = None
    is_classified: bool = False
    is_duplicate: bool = False
    duplicate_of: str | None = None
    duplicate_reason: str | None = None

    @classmethod
    def from_canonical(
        cls, tx: CanonicalTransaction, *, staged_id: str, session_id: str
    ) -> StagedTransaction:
        return cls(
            id=staged_id,
            session_id=session_id,
            description=tx.description,
            amount=tx.amount,
            kind=tx.kind,
            date=tx.date,
            source_row=tx.source_row,
        )

    def to_canonical(self) -> CanonicalTransaction:
        return CanonicalTransaction(
            description=self.description,
            amount=self.amount,
            kind=self.kind,
            date=self.date,
            source_row=self.source_row,
        )


@dataclass(frozen=True, slots=True)
class ExistingTransaction:
    """Committed transaction as seen by the duplicate detector."""

    id: str
    description: str
    amount: Decimal
    kind: TransactionKind
    date: date


@dataclass(frozen=True, slots=True)
class CommitItem:
    """One approved staged transaction handed to the persistence boundary."""

    transaction: CanonicalTransaction
    category_id: str | None


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RowIssue:
    """A row-level error description.

    ``row`` is the 1-based data row number; 0 marks a session-level message.
    """

    row: int
    message: str

    def __str__(self) -> str:
        if self.row == 0:
            return self.message
        return f"row {self.row}: {self.message}"


@dataclass(slots=True)
class ParseOutcome:
    """Result of folding the rows of one file.

    Every processed row lands in exactly one bucket:
    ``len(transactions) + len(errors) + skipped_rows == total_rows_processed``.
    """

    transactions: list[StagedTransaction] = field(default_factory=list)
    errors: list[RowIssue] = field(default_factory=list)
    total_rows_processed: int = 0
    skipped_rows: int = 0


@dataclass(frozen=True, slots=True)
class SessionSummary:
    total: int
    classified: int
    duplicates: int
    pending: int


@dataclass(frozen=True, slots=True)
class CommitResult:
    imported_count: int
    transaction_ids: tuple[str, ...]


__all__ = [
    "CanonicalTransaction",
    "CommitItem",
    "CommitResult",
    "DateRange",
    "ExistingTransaction",
    "FileType",
    "Format",
    "ParseOutcome",
    "RawRow",
    "RowIssue",
    "SessionStatus",
    "SessionSummary",
    "StagedTransaction",
    "TransactionKind",
    "freeze_row",
]
