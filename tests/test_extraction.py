from __future__ import annotations

import io
from datetime import datetime

import pytest
from openpyxl import Workbook

import bank_import.extraction as extraction
from bank_import.errors import ExtractionError, UnsupportedFileTypeError
from bank_import.extraction import coerce_file_type, detect_file_type, extract_rows
from bank_import.models import FileType


def test_csv_utf8_with_bom():
    data = "\ufeffData,Valor,Identificador,Descrição\n05/10/2025,-350.00,x1,Mercado\n"
    rows = extract_rows(data.encode("utf-8"), FileType.CSV)
    assert [dict(r) for r in rows] == [
        {"Data": "05/10/2025", "Valor": "-350.00", "Identificador": "x1", "Descrição": "Mercado"}
    ]


def test_csv_semicolon_latin1():
    data = "Data;Histórico;Valor\n05/10/2025;Pão de açúcar;-12,50\n"
    rows = extract_rows(data.encode("cp1252"), "csv")
    assert [dict(r) for r in rows] == [
        {"Data": "05/10/2025", "Histórico": "Pão de açúcar", "Valor": "-12,50"}
    ]


def test_csv_skips_preamble_and_keeps_interior_blank_lines():
    data = (
        "Extrato de conta corrente\n"
        "Agencia 0001 Conta 12345-6\n"
        "Data\tDescrição\tValor\n"
        "05/10/2025\tPadaria\t-7,00\n"
        "\n"
        "06/10/2025\tSalario\t800,00\n"
    )
    rows = extract_rows(data.encode("utf-8"), FileType.CSV)
    assert [r["Descrição"] for r in rows] == ["Padaria", "", "Salario"]


def test_csv_short_rows_are_padded_and_repeated_labels_keep_first():
    data = "Data,Valor,Valor,Descrição\n05/10/2025,1.00,2.00\n"
    (row,) = extract_rows(data.encode("utf-8"), FileType.CSV)
    assert row["Valor"] == "1.00"
    assert row["Descrição"] == ""


def test_empty_upload_is_fatal():
    with pytest.raises(ExtractionError) as excinfo:
        extract_rows(b"", FileType.CSV)
    assert excinfo.value.is_session_fatal
    with pytest.raises(ExtractionError):
        extract_rows(b"\n\n  \n", FileType.CSV)


def test_excel_first_non_empty_row_is_header():
    wb = Workbook()
    ws = wb.active
    ws.append([None, None, None])
    ws.append(["Data", "Descrição", "Valor"])
    ws.append([datetime(2025, 10, 5), "Mercado", -350.5])
    ws.append([None, None, None])
    ws.append(["06/10/2025", "Salario", 800])
    ws.append([None, None, None])
    buf = io.BytesIO()
    wb.save(buf)

    rows = extract_rows(buf.getvalue(), FileType.EXCEL)

    assert [dict(r) for r in rows] == [
        {"Data": "2025-10-05", "Descrição": "Mercado", "Valor": "-350.5"},
        {"Data": "", "Descrição": "", "Valor": ""},
        {"Data": "06/10/2025", "Descrição": "Salario", "Valor": "800"},
    ]


def test_excel_garbage_is_fatal():
    with pytest.raises(ExtractionError):
        extract_rows(b"not a workbook", FileType.EXCEL)


class _FakePage:
    def __init__(self, tables):
        self._tables = tables

    def extract_tables(self):
        return self._tables


class _FakePdf:
    def __init__(self, pages):
        self.pages = pages

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_pdf_tables_across_pages(monkeypatch: pytest.MonkeyPatch):
    header = ["Data", "Descrição", "Valor"]
    pages = [
        _FakePage([[header, ["05/10/2025", "Mercado", "-350,00"]]]),
        _FakePage([[header, ["06/10/2025", "Salario", "800,00"], [None, None, None]]]),
    ]
    monkeypatch.setattr(extraction.pdfplumber, "open", lambda _buf: _FakePdf(pages))

    rows = extract_rows(b"%PDF-1.4 fake", FileType.PDF)

    assert [r["Descrição"] for r in rows] == ["Mercado", "Salario"]


def test_pdf_without_tables_is_fatal(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(extraction.pdfplumber, "open", lambda _buf: _FakePdf([_FakePage([])]))
    with pytest.raises(ExtractionError, match="no tables"):
        extract_rows(b"%PDF-1.4 fake", FileType.PDF)


def test_unreadable_pdf_is_fatal():
    with pytest.raises(ExtractionError):
        extract_rows(b"definitely not a pdf", FileType.PDF)


@pytest.mark.parametrize(
    ("filename", "mimetype", "expected"),
    [
        ("extrato.csv", None, FileType.CSV),
        ("EXTRATO.TXT", None, FileType.CSV),
        ("fatura.pdf", None, FileType.PDF),
        ("planilha.xlsx", None, FileType.EXCEL),
        ("planilha.xls", None, FileType.EXCEL),
        ("upload", "application/pdf", FileType.PDF),
        ("upload", "text/csv; charset=utf-8", FileType.CSV),
        ("upload.bin", None, FileType.CSV),
    ],
)
def test_detect_file_type(filename, mimetype, expected):
    assert detect_file_type(filename, mimetype) == expected


def test_coerce_file_type():
    assert coerce_file_type("excel") == FileType.EXCEL
    assert coerce_file_type("pdf") == FileType.PDF
    assert coerce_file_type("statement.xlsx") == FileType.EXCEL
    assert coerce_file_type(".csv") == FileType.CSV
    with pytest.raises(UnsupportedFileTypeError):
        coerce_file_type("docx")
