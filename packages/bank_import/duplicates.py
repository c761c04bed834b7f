"""Duplicate annotation for staged transactions.

A staged row is a probable duplicate when the account already holds a
committed transaction with the same date, the same absolute amount and the
same kind. Detection only annotates: nothing is removed or blocked, and the
decision to import anyway is taken at commit time.

Public surface:
- ``DuplicateKey``: the matching key ``(date, amount, kind)``.
- ``index_existing``: build the lookup from committed transactions.
- ``annotate``: flag staged rows in place; idempotent.
- ``lookup_window``: the ``(date_range, amounts)`` query hint for fetching
  only the committed rows that can possibly match.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from .logging_setup import get_logger
from .models import DateRange, ExistingTransaction, StagedTransaction, TransactionKind

logger = get_logger("bank_import.duplicates")

_CENT = Decimal("0.01")


class DuplicateKey(NamedTuple):
    date: date
    amount: Decimal
    kind: TransactionKind


def _key(when: date, amount: Decimal, kind: TransactionKind) -> DuplicateKey:
    # Quantize so 350 and 350.00 compare equal
    return DuplicateKey(when, abs(amount).quantize(_CENT), TransactionKind(kind))


def index_existing(
    existing: Iterable[ExistingTransaction],
) -> dict[DuplicateKey, ExistingTransaction]:
    """Index committed transactions by matching key.

    When several committed rows share a key, the one with the smallest id is
    kept so repeated runs always point at the same transaction.
    """

    index: dict[DuplicateKey, ExistingTransaction] = {}
    for tx in existing:
        k = _key(tx.date, tx.amount, tx.kind)
        current = index.get(k)
        if current is None or tx.id < current.id:
            index[k] = tx
    return index


def describe_match(tx: ExistingTransaction) -> str:
    return (
        f"matches transaction {tx.id}: {tx.date.isoformat()} {tx.kind} "
        f"{tx.amount.quantize(_CENT):.2f} {tx.description!r}"
    )


def annotate(
    staged: Sequence[StagedTransaction],
    existing: Iterable[ExistingTransaction] | Mapping[DuplicateKey, ExistingTransaction],
) -> int:
    """Flag staged rows that match a committed transaction; return the count.

    Previous annotations are cleared first, so running it again on the same
    inputs yields identical ``is_duplicate``/``duplicate_of``/
    ``duplicate_reason`` values.
    """

    index = existing if isinstance(existing, Mapping) else index_existing(existing)
    flagged = 0
    for item in staged:
        match = index.get(_key(item.date, item.amount, item.kind))
        if match is None:
            item.is_duplicate = False
            item.duplicate_of = None
            item.duplicate_reason = None
            continue
        item.is_duplicate = True
        item.duplicate_of = match.id
        item.duplicate_reason = describe_match(match)
        flagged += 1

    if flagged:
        logger.info("flagged %d of %d staged transactions as duplicates", flagged, len(staged))
    return flagged


def lookup_window(staged: Sequence[StagedTransaction]) -> tuple[DateRange, set[Decimal]]:
    """Return the date bounds and amounts to query committed transactions with."""

    if not staged:
        return (None, None), set()
    dates = [s.date for s in staged]
    return (min(dates), max(dates)), {abs(s.amount).quantize(_CENT) for s in staged}


__all__ = [
    "DuplicateKey",
    "annotate",
    "describe_match",
    "index_existing",
    "lookup_window",
]
