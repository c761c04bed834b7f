"""Public interface for the ``bank_import`` package.

This module exposes the import service, the session state machine and the
public models/errors as the stable import surface. There is no runtime logic
here, only symbol re-exports.
"""

from .config import ImportSettings, load_settings
from .duplicates import annotate
from .errors import (
    AmountFormatError,
    BankImportError,
    ConflictError,
    DateFormatError,
    ExtractionError,
    InvalidCategoryError,
    MappingError,
    NormalizationError,
    NotFoundError,
    NothingToImportError,
    NoTransactionsError,
    PersistenceError,
    RowError,
    SessionFatalError,
    UnsupportedFileTypeError,
)
from .extraction import detect_file_type, extract_rows
from .formats import FormatRegistry, FormatRule, default_registry, detect_format
from .mapper import fold_rows, map_row
from .models import (
    CanonicalTransaction,
    CommitResult,
    ExistingTransaction,
    FileType,
    Format,
    ParseOutcome,
    RowIssue,
    SessionStatus,
    SessionSummary,
    StagedTransaction,
    TransactionKind,
)
from .normalizers import normalize_label, parse_amount, parse_date
from .persistence import InMemoryLedger, SqlLedger, memory_unit_of_work, sql_unit_of_work
from .service import ImportService, SessionDetails
from .session import ImportSession
from .store import InMemorySessionStore, SessionStore, SqlSessionStore

__all__ = [
    # Service
    "ImportService",
    "SessionDetails",
    "ImportSession",
    "ImportSettings",
    "load_settings",
    # Pipeline
    "annotate",
    "detect_file_type",
    "detect_format",
    "extract_rows",
    "fold_rows",
    "map_row",
    "normalize_label",
    "parse_amount",
    "parse_date",
    "FormatRegistry",
    "FormatRule",
    "default_registry",
    # Storage
    "InMemoryLedger",
    "InMemorySessionStore",
    "SessionStore",
    "SqlLedger",
    "SqlSessionStore",
    "memory_unit_of_work",
    "sql_unit_of_work",
    # Models
    "CanonicalTransaction",
    "CommitResult",
    "ExistingTransaction",
    "FileType",
    "Format",
    "ParseOutcome",
    "RowIssue",
    "SessionStatus",
    "SessionSummary",
    "StagedTransaction",
    "TransactionKind",
    # Errors
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
