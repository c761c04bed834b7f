"""Raw row → canonical transaction mapping, and the per-row parse fold.

``map_row`` handles one row and raises :class:`MappingError` on any problem;
``fold_rows`` runs it across a whole file, turning each failure into a
:class:`RowIssue` so one bad line never aborts the import.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal

from .errors import DateFormatError, MappingError, NormalizationError
from .formats import ColumnRule, FormatRegistry, SignConvention, default_registry
from .logging_setup import get_logger
from .models import (
    CanonicalTransaction,
    DateRange,
    Format,
    ParseOutcome,
    RawRow,
    RowIssue,
    StagedTransaction,
    TransactionKind,
    freeze_row,
)
from .normalizers import normalize_label, parse_amount, parse_date

logger = get_logger("bank_import.mapper")

_CENT = Decimal("0.01")


def _index_row(row: RawRow) -> dict[str, str]:
    # First occurrence wins when two labels normalize to the same key
    index: dict[str, str] = {}
    for label, value in row.items():
        index.setdefault(normalize_label(label), value)
    return index


def _first_present(index: Mapping[str, str], candidates: Sequence[str]) -> str | None:
    """Exact label match first, then the first label containing a candidate.

    The substring pass mirrors how formats are detected, so a header such as
    ``Valor (R$)`` still resolves through the ``valor`` candidate.
    """

    for label in candidates:
        value = index.get(label)
        if value is not None and value.strip():
            return value.strip()
    for label in candidates:
        for key, value in index.items():
            if label in key and value.strip():
                return value.strip()
    return None


def _require(index: Mapping[str, str], candidates: tuple[str, ...], field: str) -> str:
    value = _first_present(index, candidates)
    if value is None:
        raise MappingError(f"missing {field}", field=field)
    return value


def _signed_amount(index: Mapping[str, str], rule: ColumnRule, description: str) -> Decimal:
    if rule.sign == SignConvention.CREDIT_DEBIT:
        credit_raw = _first_present(index, rule.credit)
        debit_raw = _first_present(index, rule.debit)
        if credit_raw is None and debit_raw is None:
            raise MappingError("missing amount", field="amount")
        credit = parse_amount(credit_raw) if credit_raw is not None else Decimal(0)
        debit = parse_amount(debit_raw) if debit_raw is not None else Decimal(0)
        # Some banks print debits already negative
        return abs(credit) - abs(debit)

    value = parse_amount(_require(index, rule.amount, "amount"))
    if rule.sign == SignConvention.CARD_STATEMENT:
        lowered = normalize_label(description)
        if any(marker in lowered for marker in rule.income_markers):
            return abs(value)
        return -value
    return value


def map_row(
    row: RawRow,
    fmt: Format | str,
    *,
    registry: FormatRegistry = default_registry,
) -> CanonicalTransaction:
    """Map one raw row to a :class:`CanonicalTransaction`.

    The format's column rule picks the description/date/amount cells (for
    GENERIC, the first synonym present wins). ``kind`` comes from the signed
    amount after the format's sign convention is applied; the stored amount
    is its absolute value with exactly two decimal places. Amounts are never
    rounded: ``"1.234"`` is rejected rather than stored as ``1.23``.

    Raises
    ------
    MappingError
        A required field is missing, a normalizer rejected a value, or the
        amount carries fractions of a cent. Normalizer errors are chained as
        ``__cause__``.
    """

    rule = registry.rule_for(fmt)
    index = _index_row(row)
    try:
        description = " ".join(_require(index, rule.description, "description").split())
        when = parse_date(_require(index, rule.date, "date"))
        signed = _signed_amount(index, rule, description)
    except NormalizationError as exc:
        field = "date" if isinstance(exc, DateFormatError) else "amount"
        raise MappingError(str(exc), field=field) from exc

    if signed != signed.quantize(_CENT):
        raise MappingError(
            f"amount has more than two decimal places: {signed}", field="amount"
        )

    kind = TransactionKind.EXPENSE if signed < 0 else TransactionKind.INCOME
    amount = abs(signed).quantize(_CENT)
    return CanonicalTransaction(
        description=description,
        amount=amount,
        kind=kind,
        date=when,
        source_row=freeze_row(row),
    )


def _is_blank(row: RawRow) -> bool:
    return all(not (v or "").strip() for v in row.values())


def _in_range(when: date, date_range: DateRange | None) -> bool:
    if date_range is None:
        return True
    start, end = date_range
    if start is not None and when < start:
        return False
    return not (end is not None and when > end)


def fold_rows(
    rows: Iterable[RawRow],
    fmt: Format | str,
    *,
    session_id: str,
    registry: FormatRegistry = default_registry,
    date_range: DateRange | None = None,
    today: date | None = None,
) -> ParseOutcome:
    """Map every row, collecting staged transactions and row issues.

    Each row ends up in exactly one bucket: staged, error, or skipped (blank
    rows and rows outside ``date_range``). When ``today`` is given, rows dated
    after it are errors.
    """

    outcome = ParseOutcome()
    for number, row in enumerate(rows, start=1):
        outcome.total_rows_processed += 1
        if _is_blank(row):
            outcome.skipped_rows += 1
            continue
        try:
            tx = map_row(row, fmt, registry=registry)
        except MappingError as exc:
            outcome.errors.append(RowIssue(number, str(exc)))
            continue
        if today is not None and tx.date > today:
            outcome.errors.append(RowIssue(number, f"date is in the future: {tx.date}"))
            continue
        if not _in_range(tx.date, date_range):
            outcome.skipped_rows += 1
            continue
        outcome.transactions.append(
            StagedTransaction.from_canonical(
                tx, staged_id=uuid.uuid4().hex, session_id=session_id
            )
        )

    logger.debug(
        "folded %d rows as %s: staged=%d errors=%d skipped=%d",
        outcome.total_rows_processed,
        fmt,
        len(outcome.transactions),
        len(outcome.errors),
        outcome.skipped_rows,
    )
    return outcome


__all__ = ["fold_rows", "map_row"]
