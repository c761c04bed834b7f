"""Session stores: where import sessions and their staged rows live.

Two implementations share the :class:`SessionStore` protocol:

- :class:`InMemorySessionStore` keeps the live :class:`ImportSession`
  objects (tests, single-process use);
- :class:`SqlSessionStore` maps sessions to ``import_sessions`` and
  ``staged_transactions`` through a caller-owned SQLAlchemy ``Session``. The
  caller (normally :func:`bank_import.persistence.sql_unit_of_work`) owns the
  transaction; nothing here commits.

``save`` is guarded by an optimistic ``version``: the row is only updated
when its stored version equals the one the session was loaded with. A stale
writer gets :class:`ConflictError`, so two processes racing to commit the
same session cannot both succeed.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from sqlalchemy import delete, insert, select, update
from sqlalchemy.orm import Session, selectinload

from db.models.finance import ImportSessionRecord, StagedTransactionRecord

from .errors import ConflictError, NotFoundError
from .logging_setup import get_logger
from .models import (
    FileType,
    RowIssue,
    SessionStatus,
    StagedTransaction,
    TransactionKind,
    freeze_row,
)
from .session import ImportSession

logger = get_logger("bank_import.store")


class SessionStore(Protocol):
    def add(self, session: ImportSession) -> None: ...

    def get(self, session_id: str) -> ImportSession: ...

    def save(self, session: ImportSession) -> None: ...

    def list_for_budget(self, budget_id: str, limit: int) -> list[ImportSession]: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, ImportSession] = {}

    def add(self, session: ImportSession) -> None:
        if session.id in self._sessions:
            raise ConflictError(f"session {session.id} already exists")
        self._sessions[session.id] = session

    def get(self, session_id: str) -> ImportSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise NotFoundError(f"import session {session_id} not found") from None

    def save(self, session: ImportSession) -> None:
        current = self._sessions.get(session.id)
        if current is None:
            raise NotFoundError(f"import session {session.id} not found")
        if current is not session and current.version != session.version:
            raise ConflictError(f"import session {session.id} was modified concurrently")
        session.version += 1
        self._sessions[session.id] = session

    def list_for_budget(self, budget_id: str, limit: int) -> list[ImportSession]:
        matching = [s for s in self._sessions.values() if s.budget_id == budget_id]
        matching.sort(key=lambda s: s.created_at, reverse=True)
        return matching[:limit]


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------


def _errors_to_json(errors: Sequence[RowIssue]) -> list[dict[str, Any]]:
    return [{"row": e.row, "message": e.message} for e in errors]


def _errors_from_json(raw: Sequence[dict[str, Any]] | None) -> list[RowIssue]:
    return [RowIssue(int(e.get("row", 0)), str(e.get("message", ""))) for e in raw or []]


def _session_values(session: ImportSession) -> dict[str, Any]:
    return {
        "status": str(session.status),
        "detected_format": str(session.detected_format) if session.detected_format else None,
        "errors": _errors_to_json(session.errors),
        "total_rows_processed": session.total_rows_processed,
        "skipped_rows": session.skipped_rows,
        "processed_at": session.processed_at,
        "completed_at": session.completed_at,
    }


def _staged_values(item: StagedTransaction, position: int) -> dict[str, Any]:
    return {
        "id": item.id,
        "session_id": item.session_id,
        "position": position,
        "description": item.description,
        "amount": item.amount,
        "kind": str(item.kind),
        "date": item.date,
        "source_row": dict(item.source_row),
        "category_id": item.category_id,
        "is_classified": item.is_classified,
        "is_duplicate": item.is_duplicate,
        "duplicate_of": item.duplicate_of,
        "duplicate_reason": item.duplicate_reason,
    }


def _staged_from_record(rec: StagedTransactionRecord) -> StagedTransaction:
    return StagedTransaction(
        id=rec.id,
        session_id=rec.session_id,
        description=rec.description,
        amount=rec.amount,
        kind=TransactionKind(rec.kind),
        date=rec.date,
        source_row=freeze_row(rec.source_row or {}),
        category_id=rec.category_id,
        is_classified=rec.is_classified,
        is_duplicate=rec.is_duplicate,
        duplicate_of=rec.duplicate_of,
        duplicate_reason=rec.duplicate_reason,
    )


def _session_from_record(rec: ImportSessionRecord) -> ImportSession:
    session = ImportSession(
        id=rec.id,
        account_id=rec.account_id,
        budget_id=rec.budget_id,
        filename=rec.filename,
        file_type=FileType(rec.file_type),
        status=SessionStatus(rec.status),
        created_at=rec.created_at,
        processed_at=rec.processed_at,
        completed_at=rec.completed_at,
        detected_format=rec.detected_format,
        total_rows_processed=rec.total_rows_processed,
        skipped_rows=rec.skipped_rows,
        errors=_errors_from_json(rec.errors),
        version=rec.version,
    )
    session.load_staged(_staged_from_record(r) for r in rec.staged)
    return session


class SqlSessionStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    def _insert_staged(self, session: ImportSession) -> None:
        values = [
            _staged_values(item, position)
            for position, item in enumerate(session.staged_transactions())
        ]
        if values:
            self._db.execute(insert(StagedTransactionRecord), values)

    def add(self, session: ImportSession) -> None:
        self._db.execute(
            insert(ImportSessionRecord).values(
                id=session.id,
                account_id=session.account_id,
                budget_id=session.budget_id,
                filename=session.filename,
                file_type=str(session.file_type),
                version=session.version,
                created_at=session.created_at,
                **_session_values(session),
            )
        )
        self._insert_staged(session)

    def get(self, session_id: str) -> ImportSession:
        stmt = (
            select(ImportSessionRecord)
            .where(ImportSessionRecord.id == session_id)
            .options(selectinload(ImportSessionRecord.staged))
            .execution_options(populate_existing=True)
        )
        rec = self._db.scalars(stmt).one_or_none()
        if rec is None:
            raise NotFoundError(f"import session {session_id} not found")
        return _session_from_record(rec)

    def save(self, session: ImportSession) -> None:
        result = self._db.execute(
            update(ImportSessionRecord)
            .where(
                ImportSessionRecord.id == session.id,
                ImportSessionRecord.version == session.version,
            )
            .values(version=session.version + 1, **_session_values(session))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            exists = self._db.scalar(
                select(ImportSessionRecord.id).where(ImportSessionRecord.id == session.id)
            )
            if exists is None:
                raise NotFoundError(f"import session {session.id} not found")
            logger.warning("stale write rejected for session %s", session.id)
            raise ConflictError(f"import session {session.id} was modified concurrently")

        self._db.execute(
            delete(StagedTransactionRecord)
            .where(StagedTransactionRecord.session_id == session.id)
            .execution_options(synchronize_session=False)
        )
        self._insert_staged(session)
        session.version += 1
        # ORM copies loaded by ``get`` are stale after the core writes above
        self._db.expire_all()

    def list_for_budget(self, budget_id: str, limit: int) -> list[ImportSession]:
        stmt = (
            select(ImportSessionRecord)
            .where(ImportSessionRecord.budget_id == budget_id)
            .order_by(ImportSessionRecord.created_at.desc(), ImportSessionRecord.id)
            .limit(limit)
            .options(selectinload(ImportSessionRecord.staged))
        )
        return [_session_from_record(rec) for rec in self._db.scalars(stmt)]


__all__ = ["InMemorySessionStore", "SessionStore", "SqlSessionStore"]
