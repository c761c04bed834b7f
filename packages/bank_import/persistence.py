"""Ledger persistence and units of work.

The ledger is where committed transactions live. :class:`Ledger` is the
boundary the import session commits through; it must insert a whole batch
or nothing.

``SqlLedger`` writes ``transactions`` rows owned by ``libs/db`` through a
caller-provided SQLAlchemy session. The batch insert runs inside a SAVEPOINT
(``Session.begin_nested``): a failing batch is rolled back on its own, so the
caller can still record the session's ERROR state in the enclosing
transaction.

A *unit of work* bundles a session store and a ledger that share one
database transaction. :func:`sql_unit_of_work` and :func:`memory_unit_of_work`
return factories; each call opens a fresh scope::

    uow = sql_unit_of_work(database_url)
    with uow() as work:
        session = work.sessions.get(session_id)
        session.commit(work.ledger)
        work.sessions.save(session)
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.finance import Account, Category, LedgerTransaction

from .errors import PersistenceError
from .logging_setup import get_logger
from .models import CommitItem, DateRange, ExistingTransaction, TransactionKind
from .store import InMemorySessionStore, SessionStore, SqlSessionStore

logger = get_logger("bank_import.persistence")

_CENT = Decimal("0.01")


class Ledger(Protocol):
    def commit_batch(
        self,
        budget_id: str,
        account_id: str,
        items: Sequence[CommitItem],
        *,
        import_session_id: str | None = None,
    ) -> list[str]: ...

    def find_existing(
        self, account_id: str, date_range: DateRange, amounts: set[Decimal]
    ) -> list[ExistingTransaction]: ...

    def account_in_budget(self, account_id: str, budget_id: str) -> bool: ...

    def category_in_budget(self, category_id: str, budget_id: str) -> bool: ...


def _in_window(when: date, date_range: DateRange) -> bool:
    start, end = date_range
    return (start is None or when >= start) and (end is None or when <= end)


def _amount_matches(amount: Decimal, amounts: set[Decimal]) -> bool:
    return not amounts or abs(amount).quantize(_CENT) in amounts


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    id: str
    budget_id: str
    account_id: str
    category_id: str | None
    description: str
    amount: Decimal
    kind: TransactionKind
    date: date
    import_session_id: str | None = None


@dataclass(slots=True)
class InMemoryLedger:
    """Dict-backed ledger with the same atomicity contract as ``SqlLedger``.

    ``fail_next_commit`` makes the next ``commit_batch`` raise
    :class:`PersistenceError` without writing anything.
    """

    accounts: dict[str, str] = field(default_factory=dict)
    categories: dict[str, tuple[str, bool]] = field(default_factory=dict)
    entries: list[LedgerEntry] = field(default_factory=list)
    fail_next_commit: bool = False

    def add_account(self, account_id: str, budget_id: str) -> None:
        self.accounts[account_id] = budget_id

    def add_category(self, category_id: str, budget_id: str, *, active: bool = True) -> None:
        self.categories[category_id] = (budget_id, active)

    def add_existing(self, entry: LedgerEntry) -> None:
        self.entries.append(entry)

    def account_in_budget(self, account_id: str, budget_id: str) -> bool:
        return self.accounts.get(account_id) == budget_id

    def category_in_budget(self, category_id: str, budget_id: str) -> bool:
        owner = self.categories.get(category_id)
        return owner is not None and owner[0] == budget_id and owner[1]

    def find_existing(
        self, account_id: str, date_range: DateRange, amounts: set[Decimal]
    ) -> list[ExistingTransaction]:
        return [
            ExistingTransaction(e.id, e.description, e.amount, e.kind, e.date)
            for e in self.entries
            if e.account_id == account_id
            and _in_window(e.date, date_range)
            and _amount_matches(e.amount, amounts)
        ]

    def commit_batch(
        self,
        budget_id: str,
        account_id: str,
        items: Sequence[CommitItem],
        *,
        import_session_id: str | None = None,
    ) -> list[str]:
        if self.fail_next_commit:
            self.fail_next_commit = False
            raise PersistenceError("ledger write failed")
        if account_id not in self.accounts:
            raise PersistenceError(f"unknown account {account_id}")

        batch: list[LedgerEntry] = []
        for item in items:
            if item.category_id is not None and item.category_id not in self.categories:
                raise PersistenceError(f"unknown category {item.category_id}")
            tx = item.transaction
            batch.append(
                LedgerEntry(
                    id=uuid.uuid4().hex,
                    budget_id=budget_id,
                    account_id=account_id,
                    category_id=item.category_id,
                    description=tx.description,
                    amount=tx.amount,
                    kind=tx.kind,
                    date=tx.date,
                    import_session_id=import_session_id,
                )
            )
        # Nothing is visible until every item validated
        self.entries.extend(batch)
        return [e.id for e in batch]


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------


class SqlLedger:
    def __init__(self, db: Session) -> None:
        self._db = db

    def account_in_budget(self, account_id: str, budget_id: str) -> bool:
        found = self._db.scalar(
            select(Account.id).where(Account.id == account_id, Account.budget_id == budget_id)
        )
        return found is not None

    def category_in_budget(self, category_id: str, budget_id: str) -> bool:
        found = self._db.scalar(
            select(Category.id).where(
                Category.id == category_id,
                Category.budget_id == budget_id,
                Category.inactive.is_(False),
            )
        )
        return found is not None

    def find_existing(
        self, account_id: str, date_range: DateRange, amounts: set[Decimal]
    ) -> list[ExistingTransaction]:
        """Committed transactions of ``account_id`` that can match ``amounts``.

        The date window is applied in SQL; the amount filter runs in Python
        because SQLite stores ``Numeric`` as floating point.
        """

        start, end = date_range
        stmt = select(LedgerTransaction).where(LedgerTransaction.account_id == account_id)
        if start is not None:
            stmt = stmt.where(LedgerTransaction.date >= start)
        if end is not None:
            stmt = stmt.where(LedgerTransaction.date <= end)
        return [
            ExistingTransaction(
                id=row.id,
                description=row.description,
                amount=Decimal(row.amount),
                kind=TransactionKind(row.kind),
                date=row.date,
            )
            for row in self._db.scalars(stmt)
            if _amount_matches(Decimal(row.amount), amounts)
        ]

    def commit_batch(
        self,
        budget_id: str,
        account_id: str,
        items: Sequence[CommitItem],
        *,
        import_session_id: str | None = None,
    ) -> list[str]:
        rows = [
            LedgerTransaction(
                id=uuid.uuid4().hex,
                budget_id=budget_id,
                account_id=account_id,
                category_id=item.category_id,
                description=item.transaction.description,
                amount=item.transaction.amount,
                kind=str(item.transaction.kind),
                date=item.transaction.date,
                import_session_id=import_session_id,
            )
            for item in items
        ]
        try:
            with self._db.begin_nested():
                self._db.add_all(rows)
        except SQLAlchemyError as exc:
            logger.error("batch insert of %d transactions rolled back: %s", len(rows), exc)
            raise PersistenceError(f"could not write transactions: {exc.__class__.__name__}") from exc
        return [r.id for r in rows]


# ---------------------------------------------------------------------------
# Units of work
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UnitOfWork:
    sessions: SessionStore
    ledger: Ledger


type UnitOfWorkFactory = Callable[[], AbstractContextManager[UnitOfWork]]


def memory_unit_of_work(
    sessions: InMemorySessionStore | None = None,
    ledger: InMemoryLedger | None = None,
) -> UnitOfWorkFactory:
    """Factory over one shared in-memory store and ledger.

    Each scope holds a lock for its whole body, so concurrent scopes run one
    at a time like database transactions on the same session row.
    """

    work = UnitOfWork(sessions or InMemorySessionStore(), ledger or InMemoryLedger())
    lock = threading.Lock()

    @contextmanager
    def _scope() -> Iterator[UnitOfWork]:
        with lock:
            yield work

    return _scope


def sql_unit_of_work(database_url: str | None = None) -> UnitOfWorkFactory:
    """Factory opening one ``session_scope`` (one DB transaction) per call."""

    @contextmanager
    def _scope() -> Iterator[UnitOfWork]:
        with session_scope(database_url=database_url) as db:
            yield UnitOfWork(SqlSessionStore(db), SqlLedger(db))

    return _scope


__all__ = [
    "InMemoryLedger",
    "Ledger",
    "LedgerEntry",
    "SqlLedger",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "memory_unit_of_work",
    "sql_unit_of_work",
]
