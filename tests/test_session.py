from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from bank_import.errors import ConflictError, NotFoundError, NothingToImportError, PersistenceError
from bank_import.models import FileType, Format, SessionStatus, TransactionKind
from bank_import.persistence import InMemoryLedger, LedgerEntry
from bank_import.session import ImportSession

BUDGET = "budget-1"
ACCOUNT = "account-1"


def _rows(*entries: tuple[str, str, str]) -> list[dict[str, str]]:
    return [
        {"Data": when, "Valor": amount, "Identificador": f"id-{i}", "Descrição": desc}
        for i, (when, amount, desc) in enumerate(entries)
    ]


@pytest.fixture
def ledger() -> InMemoryLedger:
    led = InMemoryLedger()
    led.add_account(ACCOUNT, BUDGET)
    led.add_category("cat-food", BUDGET)
    led.add_category("cat-salary", BUDGET)
    return led


def _session() -> ImportSession:
    return ImportSession.create(
        account_id=ACCOUNT, budget_id=BUDGET, filename="extrato.csv", file_type=FileType.CSV
    )


def _parsed(ledger: InMemoryLedger, rows=None) -> ImportSession:
    session = _session()
    session.parse(
        rows
        or _rows(
            ("05/10/2025", "-350,00", "Mercado"),
            ("06/10/2025", "800,00", "Salario"),
            ("07/10/2025", "-12,00", "Padaria"),
        ),
        existing_lookup=ledger.find_existing,
    )
    return session


def test_new_session_is_pending_and_empty():
    session = _session()
    assert session.status == SessionStatus.PENDING
    assert session.staged_transactions() == []
    assert session.summary().total == 0


def test_parse_stages_rows_and_classifies_session(ledger):
    session = _parsed(ledger)

    assert session.status == SessionStatus.CLASSIFIED
    assert session.detected_format == Format.NUBANK_BR
    assert session.processed_at is not None
    staged = session.staged_transactions()
    assert [s.description for s in staged] == ["Mercado", "Salario", "Padaria"]
    assert [s.kind for s in staged] == [
        TransactionKind.EXPENSE,
        TransactionKind.INCOME,
        TransactionKind.EXPENSE,
    ]
    assert session.summary().pending == 3


def test_ten_rows_with_two_bad_dates(ledger):
    entries = [(f"{d:02d}/10/2025", "-1,00", f"row {d}") for d in range(1, 11)]
    entries[4] = ("2025-13-01", "-1,00", "bad")
    entries[9] = ("", "-1,00", "bad")
    session = _parsed(ledger, _rows(*entries))

    assert len(session.staged_transactions()) == 8
    assert len(session.errors) == 2
    assert session.status == SessionStatus.CLASSIFIED


def test_parse_with_no_valid_rows_ends_in_error(ledger):
    session = _parsed(ledger, _rows(("nope", "1,00", "x")))
    assert session.status == SessionStatus.ERROR
    assert session.staged_transactions() == []
    assert len(session.errors) == 1


def test_parse_only_from_pending(ledger):
    session = _parsed(ledger)
    with pytest.raises(ConflictError):
        session.parse(_rows(("05/10/2025", "1,00", "again")), existing_lookup=ledger.find_existing)
    assert len(session.staged_transactions()) == 3


def test_parse_flags_duplicates_of_committed_rows(ledger):
    ledger.add_existing(
        LedgerEntry(
            id="t-1",
            budget_id=BUDGET,
            account_id=ACCOUNT,
            category_id="cat-food",
            description="MERCADO",
            amount=Decimal("350.00"),
            kind=TransactionKind.EXPENSE,
            date=date(2025, 10, 5),
        )
    )
    session = _parsed(ledger)

    dup = session.staged_transactions()[0]
    assert dup.is_duplicate and dup.duplicate_of == "t-1"
    summary = session.summary()
    assert (summary.duplicates, summary.pending) == (1, 2)


def test_classify_marks_row_and_rejects_unknown_ids(ledger):
    session = _parsed(ledger)
    first = session.staged_transactions()[0]

    session.classify(first.id, "cat-food")

    assert first.is_classified and first.category_id == "cat-food"
    assert session.summary().classified == 1
    with pytest.raises(NotFoundError):
        session.classify("missing", "cat-food")


def test_classify_before_parse_is_a_conflict():
    with pytest.raises(ConflictError):
        _session().classify("x", "cat-food")


def test_commit_promotes_only_classified_non_duplicates(ledger):
    session = _parsed(ledger)
    mercado, salario, _padaria = session.staged_transactions()
    session.classify(mercado.id, "cat-food")
    session.classify(salario.id, "cat-salary")

    result = session.commit(ledger)

    assert result.imported_count == 2
    assert len(result.transaction_ids) == 2
    assert session.status == SessionStatus.COMPLETED
    assert session.completed_at is not None
    assert session.staged_transactions() == []
    assert {e.description for e in ledger.entries} == {"Mercado", "Salario"}
    assert all(e.import_session_id == session.id for e in ledger.entries)


def test_second_commit_is_a_conflict_and_writes_nothing(ledger):
    session = _parsed(ledger)
    session.classify(session.staged_transactions()[0].id, "cat-food")
    session.commit(ledger)
    before = list(ledger.entries)

    with pytest.raises(ConflictError):
        session.commit(ledger)

    assert ledger.entries == before
    assert session.status == SessionStatus.COMPLETED


def test_duplicates_need_explicit_opt_in(ledger):
    ledger.add_existing(
        LedgerEntry(
            id="t-1",
            budget_id=BUDGET,
            account_id=ACCOUNT,
            category_id=None,
            description="Mercado",
            amount=Decimal("350.00"),
            kind=TransactionKind.EXPENSE,
            date=date(2025, 10, 5),
        )
    )
    session = _parsed(ledger)
    session.classify(session.staged_transactions()[0].id, "cat-food")

    with pytest.raises(NothingToImportError):
        session.commit(ledger)
    assert session.status == SessionStatus.CLASSIFIED

    result = session.commit(ledger, import_duplicates=True)
    assert result.imported_count == 1


def test_commit_with_nothing_classified(ledger):
    session = _parsed(ledger)
    with pytest.raises(NothingToImportError):
        session.commit(ledger)
    assert session.status == SessionStatus.CLASSIFIED
    assert ledger.entries == []


def test_persistence_failure_moves_to_error_and_writes_nothing(ledger):
    session = _parsed(ledger)
    for item in session.staged_transactions():
        session.classify(item.id, "cat-food")
    ledger.fail_next_commit = True

    with pytest.raises(PersistenceError) as excinfo:
        session.commit(ledger)

    assert excinfo.value.session_id == session.id
    assert excinfo.value.is_session_fatal
    assert session.status == SessionStatus.ERROR
    assert session.staged_transactions() == []
    assert ledger.entries == []
    with pytest.raises(ConflictError):
        session.commit(ledger)


def test_cancel_discards_staging_and_blocks_commit(ledger):
    session = _parsed(ledger)
    session.classify(session.staged_transactions()[0].id, "cat-food")

    session.cancel()

    assert session.status == SessionStatus.CANCELLED
    assert session.staged_transactions() == []
    with pytest.raises(ConflictError):
        session.commit(ledger)
    with pytest.raises(ConflictError):
        session.cancel()
    assert ledger.entries == []


def test_cancel_after_completion_is_rejected(ledger):
    session = _parsed(ledger)
    session.classify(session.staged_transactions()[0].id, "cat-food")
    session.commit(ledger)
    with pytest.raises(ConflictError):
        session.cancel()
    assert session.status == SessionStatus.COMPLETED


def test_fail_records_message():
    session = _session()
    session.fail("could not read file")
    assert session.status == SessionStatus.ERROR
    assert [str(e) for e in session.errors] == ["could not read file"]
    with pytest.raises(ConflictError):
        session.fail("again")
