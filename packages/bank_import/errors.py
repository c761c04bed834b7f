"""Exception taxonomy for the import pipeline.

Two families matter to callers:

- row-scoped errors (:class:`RowError`) are recorded in the parse outcome and
  never abort a session;
- session-fatal errors (:class:`SessionFatalError`) leave the session in the
  terminal ``ERROR`` state and carry its ``session_id`` so the caller can show
  details or start over.

Everything else (:class:`ConflictError`, :class:`NotFoundError`, ...) is
surfaced to the caller without changing any state.
"""

from __future__ import annotations


class BankImportError(Exception):
    """Base class for every error raised by ``bank_import``."""

    is_session_fatal = False


# ---------------------------------------------------------------------------
# Row-level (recoverable)
# ---------------------------------------------------------------------------


class RowError(BankImportError):
    """A single row could not be turned into a transaction."""


class NormalizationError(RowError, ValueError):
    """A raw field value could not be normalized."""

    def __init__(self, raw: str | None, message: str) -> None:
        super().__init__(message)
        self.raw = raw


class DateFormatError(NormalizationError):
    pass


class AmountFormatError(NormalizationError):
    pass


class MappingError(RowError):
    """Row-scoped failure while mapping a raw row to a canonical transaction."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


# ---------------------------------------------------------------------------
# Session-fatal
# ---------------------------------------------------------------------------


class SessionFatalError(BankImportError):
    is_session_fatal = True

    def __init__(self, message: str, *, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class ExtractionError(SessionFatalError):
    """The uploaded file could not be read into rows."""


class UnsupportedFileTypeError(ExtractionError):
    pass


class NoTransactionsError(SessionFatalError):
    """Parsing finished without staging a single transaction."""


class PersistenceError(SessionFatalError):
    """The atomic commit batch failed and was rolled back."""


# ---------------------------------------------------------------------------
# Caller errors (no state change)
# ---------------------------------------------------------------------------


class ConflictError(BankImportError):
    """The requested transition is not allowed from the session's state."""


class NotFoundError(BankImportError, LookupError):
    pass


class InvalidCategoryError(BankImportError):
    """Category is unknown, inactive, or belongs to another budget."""


class NothingToImportError(BankImportError):
    """Commit selected no staged transactions."""


__all__ = [
    "AmountFormatError",
    "BankImportError",
    "ConflictError",
    "DateFormatError",
    "ExtractionError",
    "InvalidCategoryError",
    "MappingError",
    "NoTransactionsError",
    "NormalizationError",
    "NotFoundError",
    "NothingToImportError",
    "PersistenceError",
    "RowError",
    "SessionFatalError",
    "UnsupportedFileTypeError",
]
