from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from bank_import.errors import AmountFormatError, DateFormatError, NormalizationError
from bank_import.normalizers import normalize_label, parse_amount, parse_date


def test_brazilian_and_plain_amounts_agree():
    assert parse_amount("1.234,56") == parse_amount("1234.56") == Decimal("1234.56")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("R$ 1.234,56", Decimal("1234.56")),
        ("-350,00", Decimal("-350.00")),
        ("(42,10)", Decimal("-42.10")),
        ("US$ 12.50", Decimal("12.50")),
        ("1.234.567,89", Decimal("1234567.89")),
        ("  800  ", Decimal("800")),
        ("-11.18", Decimal("-11.18")),
    ],
)
def test_parse_amount_accepted_forms(raw: str, expected: Decimal):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "R$", "abc", "1,234", "NaN", None])
def test_parse_amount_rejects(raw):
    with pytest.raises(AmountFormatError) as excinfo:
        parse_amount(raw)
    # Row-level errors double as ValueError for callers that only know builtins
    assert isinstance(excinfo.value, ValueError)
    assert not excinfo.value.is_session_fatal


def test_dates_in_both_layouts_agree():
    assert parse_date("05/10/2025") == parse_date("2025-10-05") == date(2025, 10, 5)


def test_short_year_timestamp_layout():
    assert parse_date("05/10/25 às 14:32:10") == date(2025, 10, 5)


@pytest.mark.parametrize("raw", ["", "31/02/2025", "2025/10/05", "yesterday", "10-2025"])
def test_parse_date_rejects(raw: str):
    with pytest.raises(DateFormatError) as excinfo:
        parse_date(raw)
    assert isinstance(excinfo.value, NormalizationError)
    assert excinfo.value.raw == raw


def test_normalize_label_strips_accents_and_whitespace():
    assert normalize_label("  Descrição ") == "descricao"
    assert normalize_label("Data  Lançamento") == "data lancamento"
    assert normalize_label("\ufeffData") == "data"
    assert normalize_label(None) == ""
