"""Import session: the unit of work for one uploaded file.

Lifecycle::

    PENDING → PROCESSING → CLASSIFIED → COMPLETED
        └──────────┴────────────┴──→ ERROR | CANCELLED

Only PENDING, PROCESSING and CLASSIFIED sessions accept changes. The session
owns its staged transactions as an arena keyed by staged id (insertion order
is file order); staged rows never point back at the session object.

Commit is exactly-once: the first successful ``commit`` moves the session to
COMPLETED and every later call fails with :class:`ConflictError`.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from . import duplicates
from .errors import ConflictError, NotFoundError, NothingToImportError, PersistenceError
from .formats import FormatRegistry, default_registry
from .logging_setup import get_logger
from .mapper import fold_rows
from .models import (
    CommitItem,
    CommitResult,
    DateRange,
    ExistingTransaction,
    FileType,
    Format,
    ParseOutcome,
    RawRow,
    RowIssue,
    SessionStatus,
    SessionSummary,
    StagedTransaction,
)

if TYPE_CHECKING:
    from .persistence import Ledger

logger = get_logger("bank_import.session")

type ExistingLookup = Callable[[str, DateRange, set[Decimal]], Sequence[ExistingTransaction]]
"""``(account_id, date_range, amounts) -> committed transactions``."""

_CLASSIFIABLE = frozenset({SessionStatus.PROCESSING, SessionStatus.CLASSIFIED})


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, eq=False)
class ImportSession:
    id: str
    account_id: str
    budget_id: str
    filename: str
    file_type: FileType
    status: SessionStatus = SessionStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    detected_format: Format | str | None = None
    total_rows_processed: int = 0
    skipped_rows: int = 0
    errors: list[RowIssue] = field(default_factory=list)
    version: int = 0
    _staged: dict[str, StagedTransaction] = field(default_factory=dict, repr=False)

    # ------------------------------------------------------------------
    # Construction and views
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        *,
        account_id: str,
        budget_id: str,
        filename: str,
        file_type: FileType,
        now: datetime | None = None,
    ) -> ImportSession:
        return cls(
            id=uuid.uuid4().hex,
            account_id=account_id,
            budget_id=budget_id,
            filename=filename,
            file_type=file_type,
            created_at=now or _utcnow(),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def staged_transactions(self) -> list[StagedTransaction]:
        return list(self._staged.values())

    def get_staged(self, staged_id: str) -> StagedTransaction:
        try:
            return self._staged[staged_id]
        except KeyError:
            raise NotFoundError(
                f"staged transaction {staged_id} does not belong to session {self.id}"
            ) from None

    def load_staged(self, items: Iterable[StagedTransaction]) -> None:
        """Restore staged rows (used by stores rebuilding a session)."""

        for item in items:
            if item.session_id != self.id:
                raise ValueError(f"staged transaction {item.id} belongs to another session")
            self._staged[item.id] = item

    def summary(self) -> SessionSummary:
        items = self._staged.values()
        return SessionSummary(
            total=len(self._staged),
            classified=sum(1 for s in items if s.is_classified),
            duplicates=sum(1 for s in items if s.is_duplicate),
            pending=sum(1 for s in items if not s.is_classified and not s.is_duplicate),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require(self, allowed: frozenset[SessionStatus], action: str) -> None:
        if self.status not in allowed:
            raise ConflictError(f"cannot {action} session {self.id} in status {self.status}")

    def parse(
        self,
        rows: Sequence[RawRow],
        *,
        existing_lookup: ExistingLookup,
        registry: FormatRegistry = default_registry,
        date_range: DateRange | None = None,
        today: date | None = None,
        now: datetime | None = None,
    ) -> ParseOutcome:
        """Stage ``rows`` and annotate duplicates.

        Ends in CLASSIFIED when at least one transaction was staged, else in
        ERROR. Row failures are recorded in ``errors`` and never abort.
        """

        self._require(frozenset({SessionStatus.PENDING}), "parse")
        self.status = SessionStatus.PROCESSING

        header = list(rows[0].keys()) if rows else []
        fmt = registry.detect(header)
        self.detected_format = fmt

        outcome = fold_rows(
            rows,
            fmt,
            session_id=self.id,
            registry=registry,
            date_range=date_range,
            today=today,
        )
        self._staged = {s.id: s for s in outcome.transactions}
        self.errors = list(outcome.errors)
        self.total_rows_processed = outcome.total_rows_processed
        self.skipped_rows = outcome.skipped_rows

        if outcome.transactions:
            window, amounts = duplicates.lookup_window(outcome.transactions)
            existing = existing_lookup(self.account_id, window, amounts)
            duplicates.annotate(outcome.transactions, existing)
            self.status = SessionStatus.CLASSIFIED
        else:
            self.status = SessionStatus.ERROR
        self.processed_at = now or _utcnow()

        logger.info(
            "session %s parsed %s as %s: staged=%d errors=%d skipped=%d status=%s",
            self.id,
            self.filename,
            fmt,
            len(outcome.transactions),
            len(outcome.errors),
            outcome.skipped_rows,
            self.status,
        )
        return outcome

    def classify(self, staged_id: str, category_id: str) -> StagedTransaction:
        self._require(_CLASSIFIABLE, "classify")
        item = self.get_staged(staged_id)
        item.category_id = category_id
        item.is_classified = True
        return item

    def selected_for_commit(self, *, import_duplicates: bool) -> list[StagedTransaction]:
        return [
            s
            for s in self._staged.values()
            if s.is_classified and (import_duplicates or not s.is_duplicate)
        ]

    def commit(
        self,
        ledger: Ledger,
        *,
        import_duplicates: bool = False,
        now: datetime | None = None,
    ) -> CommitResult:
        """Promote approved staged rows through ``ledger`` as one atomic batch.

        Raises
        ------
        ConflictError
            The session is not CLASSIFIED (already committed, cancelled,
            failed or not parsed yet). State is unchanged.
        NothingToImportError
            No staged row is classified (and non-duplicate unless
            ``import_duplicates``). State is unchanged.
        PersistenceError
            The batch was rolled back; the session is now ERROR.
        """

        self._require(frozenset({SessionStatus.CLASSIFIED}), "commit")
        selected = self.selected_for_commit(import_duplicates=import_duplicates)
        if not selected:
            raise NothingToImportError(f"session {self.id} has no classified transactions to import")

        items = [CommitItem(s.to_canonical(), s.category_id) for s in selected]
        try:
            ids = ledger.commit_batch(
                self.budget_id, self.account_id, items, import_session_id=self.id
            )
        except PersistenceError as exc:
            exc.session_id = self.id
            self.fail(f"commit failed: {exc}")
            raise

        self.status = SessionStatus.COMPLETED
        self.completed_at = now or _utcnow()
        self._staged.clear()
        logger.info("session %s committed %d transactions", self.id, len(ids))
        return CommitResult(imported_count=len(ids), transaction_ids=tuple(ids))

    def cancel(self) -> None:
        if self.is_terminal:
            raise ConflictError(f"session {self.id} is already {self.status}")
        self.status = SessionStatus.CANCELLED
        self._staged.clear()
        logger.info("session %s cancelled", self.id)

    def fail(self, message: str) -> None:
        """Move a non-terminal session to ERROR, recording ``message``."""

        if self.is_terminal:
            raise ConflictError(f"session {self.id} is already {self.status}")
        self.status = SessionStatus.ERROR
        self.errors.append(RowIssue(0, message))
        self._staged.clear()
        logger.warning("session %s failed: %s", self.id, message)


__all__ = ["ExistingLookup", "ImportSession"]
