"""Import service: the operations a caller (CLI, HTTP handler) performs.

Each public method opens one unit of work, loads the session, applies a
single transition and saves it. Session-fatal failures are persisted before
the exception reaches the caller: the session is saved in ERROR and the
raised :class:`SessionFatalError` carries its ``session_id``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from .config import ImportSettings, load_settings
from .errors import (
    ExtractionError,
    InvalidCategoryError,
    NotFoundError,
    NoTransactionsError,
    PersistenceError,
)
from .extraction import coerce_file_type, extract_rows
from .logging_setup import get_logger
from .models import (
    CommitResult,
    DateRange,
    FileType,
    RawRow,
    RowIssue,
    SessionSummary,
    StagedTransaction,
)
from .persistence import UnitOfWorkFactory
from .session import ImportSession

logger = get_logger("bank_import.service")

type Extractor = Callable[[bytes, FileType], list[RawRow]]


@dataclass(frozen=True, slots=True)
class SessionDetails:
    session: ImportSession
    staged_transactions: list[StagedTransaction]
    summary: SessionSummary
    errors: list[RowIssue]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ImportService:
    def __init__(
        self,
        unit_of_work: UnitOfWorkFactory,
        *,
        extractor: Extractor = extract_rows,
        settings: ImportSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._uow = unit_of_work
        self._extract = extractor
        self._settings = settings or load_settings()
        self._clock = clock or _utcnow

    @property
    def settings(self) -> ImportSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Upload and parse
    # ------------------------------------------------------------------

    def create_session(
        self,
        file_bytes: bytes,
        file_type: FileType | str,
        account_id: str,
        budget_id: str,
        *,
        filename: str = "upload",
        date_range: DateRange | None = None,
    ) -> str:
        """Create a session for an upload, parse it and return the session id.

        Raises
        ------
        NotFoundError
            ``account_id`` does not belong to ``budget_id``. No session is
            created.
        UnsupportedFileTypeError
            ``file_type`` names no known reader. No session is created.
        ExtractionError
            The file is too large or unreadable. The session is saved in
            ERROR.
        NoTransactionsError
            No row could be staged. The session is saved in ERROR with the
            row errors recorded.
        """

        kind = coerce_file_type(file_type)
        now = self._clock()
        today = now.date() if self._settings.reject_future_dates else None

        with self._uow() as work:
            if not work.ledger.account_in_budget(account_id, budget_id):
                raise NotFoundError(f"account {account_id} not found in budget {budget_id}")

            session = ImportSession.create(
                account_id=account_id,
                budget_id=budget_id,
                filename=filename,
                file_type=kind,
                now=now,
            )
            work.sessions.add(session)
            logger.info(
                "session %s created for %s (%s, %d bytes)",
                session.id,
                filename,
                kind,
                len(file_bytes),
            )

            fatal: ExtractionError | None = None
            try:
                if len(file_bytes) > self._settings.max_file_bytes:
                    raise ExtractionError(
                        f"file is {len(file_bytes)} bytes; the limit is "
                        f"{self._settings.max_file_bytes}"
                    )
                rows = self._extract(file_bytes, kind)
            except ExtractionError as exc:
                exc.session_id = session.id
                session.fail(str(exc))
                work.sessions.save(session)
                fatal = exc
            else:
                session.parse(
                    rows,
                    existing_lookup=work.ledger.find_existing,
                    date_range=date_range,
                    today=today,
                    now=now,
                )
                work.sessions.save(session)

        # Raised after the scope exits so the ERROR state is committed
        if fatal is not None:
            raise fatal
        if not session.staged_transactions():
            raise NoTransactionsError(
                f"no transactions could be staged from {filename} "
                f"({len(session.errors)} row error(s))",
                session_id=session.id,
            )
        return session.id

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def get_session_details(self, session_id: str) -> SessionDetails:
        with self._uow() as work:
            session = work.sessions.get(session_id)
        return SessionDetails(
            session=session,
            staged_transactions=session.staged_transactions(),
            summary=session.summary(),
            errors=list(session.errors),
        )

    def classify_transaction(
        self, session_id: str, staged_id: str, category_id: str
    ) -> StagedTransaction:
        with self._uow() as work:
            session = work.sessions.get(session_id)
            if not work.ledger.category_in_budget(category_id, session.budget_id):
                raise InvalidCategoryError(
                    f"category {category_id} is not an active category of budget "
                    f"{session.budget_id}"
                )
            item = session.classify(staged_id, category_id)
            work.sessions.save(session)
        return item

    def list_sessions(self, budget_id: str, limit: int | None = None) -> list[ImportSession]:
        with self._uow() as work:
            return work.sessions.list_for_budget(
                budget_id, limit or self._settings.recent_sessions_limit
            )

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def confirm_import(self, session_id: str, import_duplicates: bool = False) -> CommitResult:
        """Commit the session's approved rows exactly once.

        On :class:`PersistenceError` the batch is rolled back, the session is
        saved in ERROR and the error is re-raised.
        """

        failure: PersistenceError | None = None
        with self._uow() as work:
            session = work.sessions.get(session_id)
            try:
                result = session.commit(
                    work.ledger, import_duplicates=import_duplicates, now=self._clock()
                )
            except PersistenceError as exc:
                failure = exc
            work.sessions.save(session)

        if failure is not None:
            raise failure
        return result

    def cancel_session(self, session_id: str) -> None:
        with self._uow() as work:
            session = work.sessions.get(session_id)
            session.cancel()
            work.sessions.save(session)


__all__ = ["Extractor", "ImportService", "SessionDetails"]
