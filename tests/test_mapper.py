from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from bank_import.errors import AmountFormatError, DateFormatError, MappingError
from bank_import.formats import detect_format
from bank_import.mapper import fold_rows, map_row
from bank_import.models import Format, TransactionKind


def _nubank_br(when: str, amount: str, description: str) -> dict[str, str]:
    return {"Data": when, "Valor": amount, "Identificador": "abc-123", "Descrição": description}


def test_negative_signed_amount_is_expense():
    tx = map_row(_nubank_br("05/10/2025", "-350.00", "Mercado Extra"), Format.NUBANK_BR)
    assert tx.kind == TransactionKind.EXPENSE
    assert tx.amount == Decimal("350.00")
    assert tx.date == date(2025, 10, 5)
    assert tx.description == "Mercado Extra"


def test_positive_signed_amount_is_income():
    tx = map_row(_nubank_br("2025-10-01", "800.00", "Salario"), Format.NUBANK_BR)
    assert tx.kind == TransactionKind.INCOME
    assert tx.amount == Decimal("800.00")


def test_source_row_is_kept_read_only():
    row = _nubank_br("05/10/2025", "-1,00", "Cafe")
    tx = map_row(row, Format.NUBANK_BR)
    assert dict(tx.source_row) == row
    with pytest.raises(TypeError):
        tx.source_row["Valor"] = "0"  # type: ignore[index]


def test_card_statement_purchases_are_expenses():
    tx = map_row({"date": "2025-10-03", "title": "Uber", "amount": "23.90"}, Format.NUBANK_INTL)
    assert tx.kind == TransactionKind.EXPENSE
    assert tx.amount == Decimal("23.90")


def test_card_statement_payment_received_is_income():
    row = {"date": "2025-10-03", "title": "Pagamento recebido", "amount": "-500.00"}
    tx = map_row(row, Format.NUBANK_INTL)
    assert tx.kind == TransactionKind.INCOME
    assert tx.amount == Decimal("500.00")


def test_card_statement_negative_without_marker_is_income():
    # A negative charge on the card is a refund, so money comes back in
    row = {"date": "2025-10-04", "title": "Estorno Uber", "amount": "-23.90"}
    tx = map_row(row, Format.NUBANK_INTL)
    assert tx.kind == TransactionKind.INCOME
    assert tx.amount == Decimal("23.90")


def test_credit_debit_columns():
    header = ("Data", "Histórico", "Crédito (R$)", "Débito (R$)")
    debit = dict(zip(header, ("05/10/2025", "Tarifa", "", "12,50"), strict=True))
    credit = dict(zip(header, ("06/10/2025", "TED recebida", "1.000,00", ""), strict=True))

    tx_debit = map_row(debit, Format.BRADESCO)
    tx_credit = map_row(credit, Format.BRADESCO)

    assert (tx_debit.kind, tx_debit.amount) == (TransactionKind.EXPENSE, Decimal("12.50"))
    assert (tx_credit.kind, tx_credit.amount) == (TransactionKind.INCOME, Decimal("1000.00"))


def test_generic_uses_first_synonym_present():
    row = {"Transaction_Date": "2025-10-02", "Memo": "Padaria", "Value": "-7.5"}
    tx = map_row(row, Format.GENERIC)
    assert tx.description == "Padaria"
    assert tx.amount == Decimal("7.50")
    assert tx.kind == TransactionKind.EXPENSE


def test_missing_field_names_the_field():
    with pytest.raises(MappingError) as excinfo:
        map_row({"Data": "05/10/2025", "Valor": "1,00"}, Format.NUBANK_BR)
    assert excinfo.value.field == "description"


def test_normalizer_failure_is_chained():
    with pytest.raises(MappingError) as excinfo:
        map_row(_nubank_br("31/02/2025", "1,00", "x"), Format.NUBANK_BR)
    assert excinfo.value.field == "date"
    assert isinstance(excinfo.value.__cause__, DateFormatError)

    with pytest.raises(MappingError) as excinfo:
        map_row(_nubank_br("05/10/2025", "dez reais", "x"), Format.NUBANK_BR)
    assert excinfo.value.field == "amount"
    assert isinstance(excinfo.value.__cause__, AmountFormatError)


def test_fold_keeps_going_after_bad_rows():
    rows = [_nubank_br(f"{day:02d}/10/2025", "-10,00", f"compra {day}") for day in range(1, 11)]
    rows[2] = _nubank_br("32/10/2025", "-10,00", "bad")
    rows[7] = _nubank_br("ontem", "-10,00", "bad")

    outcome = fold_rows(rows, Format.NUBANK_BR, session_id="s1")

    assert len(outcome.transactions) == 8
    assert [e.row for e in outcome.errors] == [3, 8]
    assert outcome.total_rows_processed == 10
    assert all(s.session_id == "s1" for s in outcome.transactions)
    assert len({s.id for s in outcome.transactions}) == 8
    # File order is preserved
    assert [s.description for s in outcome.transactions][:2] == ["compra 1", "compra 2"]


def test_fold_buckets_add_up():
    rows = [
        _nubank_br("01/10/2025", "-1,00", "in range"),
        {"Data": "", "Valor": "", "Identificador": "", "Descrição": ""},
        _nubank_br("15/09/2025", "-1,00", "too early"),
        _nubank_br("20/10/2025", "-1,00", "future"),
        _nubank_br("xx", "-1,00", "bad date"),
    ]
    outcome = fold_rows(
        rows,
        Format.NUBANK_BR,
        session_id="s1",
        date_range=(date(2025, 10, 1), None),
        today=date(2025, 10, 16),
    )

    assert [s.description for s in outcome.transactions] == ["in range"]
    assert outcome.skipped_rows == 2
    assert [str(e) for e in outcome.errors] == [
        "row 4: date is in the future: 2025-10-20",
        "row 5: unrecognized date format: 'xx'",
    ]
    assert (
        len(outcome.transactions) + len(outcome.errors) + outcome.skipped_rows
        == outcome.total_rows_processed
    )


@pytest.mark.parametrize(
    ("row", "fmt", "expected"),
    [
        (
            {
                "Data Lançamento": "05/10/2025",
                "Data Contábil": "05/10/2025",
                "Título": "Pix enviado",
                "Descrição": "Padaria",
                "Entrada(R$)": "",
                "Saída(R$)": "12,50",
                "Saldo do Dia(R$)": "100,00",
            },
            Format.C6,
            ("Padaria", TransactionKind.EXPENSE, Decimal("12.50")),
        ),
        (
            {
                "Data Lançamento": "05/10/2025",
                "Data Contábil": "05/10/2025",
                "Título": "Pix recebido",
                "Descrição": "Maria",
                "Entrada(R$)": "1.000,00",
                "Saída(R$)": "",
                "Saldo do Dia(R$)": "1.100,00",
            },
            Format.C6,
            ("Maria", TransactionKind.INCOME, Decimal("1000.00")),
        ),
        (
            {
                "Data Lançamento": "05/10/2025",
                "Histórico": "Pix enviado",
                "Descrição": "Joao",
                "Valor": "-30,00",
                "Saldo": "70,00",
            },
            Format.INTER,
            ("Joao", TransactionKind.EXPENSE, Decimal("30.00")),
        ),
        (
            {
                "Data": "05/10/25 às 10:15:00",
                "Descricao": "Resgate CDB",
                "Valor": "R$ 500,00",
                "Saldo": "R$ 900,00",
            },
            Format.XP,
            ("Resgate CDB", TransactionKind.INCOME, Decimal("500.00")),
        ),
        (
            {
                "Movimentação": "05/10/2025",
                "Liquidação": "07/10/2025",
                "Lançamento": "Compra PETR4",
                "Ativo": "PETR4",
                "Valor": "-1.234,56",
                "Saldo": "0,00",
            },
            Format.CLEAR,
            ("Compra PETR4", TransactionKind.EXPENSE, Decimal("1234.56")),
        ),
        (
            {
                "Data": "05/10/2025",
                "Lançamento": "SISPAG SALARIO",
                "Ag./Origem": "",
                "Valor": "3.500,00",
                "Saldo": "4.000,00",
            },
            Format.ITAU,
            ("SISPAG SALARIO", TransactionKind.INCOME, Decimal("3500.00")),
        ),
    ],
)
def test_bank_layouts_detect_and_map(row, fmt, expected):
    assert detect_format(row) == fmt
    tx = map_row(row, fmt)
    assert (tx.description, tx.kind, tx.amount) == expected
    assert tx.date == date(2025, 10, 5)


@pytest.mark.parametrize("amount_label", ["Valor (R$)", "Valor em R$"])
def test_detected_rule_finds_columns_with_currency_suffix(amount_label: str):
    row = {"Data": "05/10/2025", "Histórico": "Pix enviado", amount_label: "-45,90"}
    fmt = detect_format(row)
    assert fmt == Format.BANCO_BRASIL

    outcome = fold_rows([row], fmt, session_id="s1")

    assert outcome.errors == []
    (staged,) = outcome.transactions
    assert (staged.kind, staged.amount) == (TransactionKind.EXPENSE, Decimal("45.90"))


def test_exact_label_beats_substring_match():
    row = {"Valor Original": "-99,00", "Valor": "-10,00", "Data": "05/10/2025", "Histórico": "x"}
    assert map_row(row, Format.BANCO_BRASIL).amount == Decimal("10.00")


@pytest.mark.parametrize("amount", ["1.234", "-0.005"])
def test_fractions_of_a_cent_are_rejected(amount: str):
    with pytest.raises(MappingError) as excinfo:
        map_row(_nubank_br("05/10/2025", amount, "Cafe"), Format.NUBANK_BR)
    assert excinfo.value.field == "amount"


def test_trailing_zeros_are_not_fractions_of_a_cent():
    tx = map_row(_nubank_br("05/10/2025", "-350.000", "Cafe"), Format.NUBANK_BR)
    assert tx.amount == Decimal("350.00")
