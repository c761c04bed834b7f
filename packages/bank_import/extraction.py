"""File extraction: uploaded bytes → raw rows.

Every reader returns ``list[RawRow]``: one mapping per data row, keyed by the
header labels exactly as they appear in the file (normalization happens
later, in the mapper). When a label repeats, its first column wins. Blank
records between data rows are kept, so row numbers follow the file.

- CSV/TXT: decoded as UTF-8 (BOM tolerated), falling back to cp1252 and then
  latin-1. The delimiter (``,``, ``;`` or tab) and the header line are
  detected from the first lines, so exports with a short preamble above the
  real header still work.
- Excel (``.xlsx``): first worksheet via ``openpyxl``; the first non-empty
  row is the header.
- PDF: tables via ``pdfplumber``; the first row of the first table is the
  header and repeated header rows on later pages are dropped.

Any failure to read the file raises :class:`ExtractionError`.
"""

from __future__ import annotations

import csv
import io
import zipfile
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal
from pathlib import PurePath

import pdfplumber
from openpyxl import load_workbook

from .errors import ExtractionError, UnsupportedFileTypeError
from .logging_setup import get_logger
from .models import FileType, RawRow, freeze_row
from .normalizers import normalize_label

logger = get_logger("bank_import.extraction")

_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")
_DELIMITERS = (",", ";", "\t")
# Lines scanned when looking for the real header row
_HEADER_SCAN_LINES = 10

_DATE_TOKENS = ("data", "date", "movimentacao")
_DESCRIPTION_TOKENS = ("descricao", "historico", "description", "title", "lancamento", "memo")
_AMOUNT_TOKENS = ("valor", "amount", "credito", "debito", "value", "entrada", "saida")

_EXTENSIONS: dict[str, FileType] = {
    ".csv": FileType.CSV,
    ".txt": FileType.CSV,
    ".pdf": FileType.PDF,
    ".xls": FileType.EXCEL,
    ".xlsx": FileType.EXCEL,
}
_MIMETYPES: dict[str, FileType] = {
    "text/csv": FileType.CSV,
    "text/plain": FileType.CSV,
    "application/csv": FileType.CSV,
    "application/pdf": FileType.PDF,
    "application/vnd.ms-excel": FileType.EXCEL,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileType.EXCEL,
}


# ---------------------------------------------------------------------------
# File type
# ---------------------------------------------------------------------------


def detect_file_type(filename: str | None, mimetype: str | None = None) -> FileType:
    """Pick the reader for an upload from its extension, then its mimetype.

    Anything unrecognized is read as CSV.
    """

    suffix = PurePath(filename or "").suffix.lower()
    if suffix in _EXTENSIONS:
        return _EXTENSIONS[suffix]
    if mimetype:
        found = _MIMETYPES.get(mimetype.split(";")[0].strip().lower())
        if found is not None:
            return found
    return FileType.CSV


def coerce_file_type(value: FileType | str) -> FileType:
    """Accept a :class:`FileType`, its name (``"csv"``) or a filename."""

    if isinstance(value, FileType):
        return value
    name = value.strip()
    try:
        return FileType(name.upper())
    except ValueError:
        pass
    suffix = PurePath(name).suffix.lower() or f".{name.lower().lstrip('.')}"
    found = _EXTENSIONS.get(suffix)
    if found is None:
        raise UnsupportedFileTypeError(f"unsupported file type: {value!r}")
    return found


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        # repr-based conversion avoids binary noise like 0.30000000000000004
        return str(Decimal(repr(value)))
    return str(value).strip()


def _build_rows(header: Sequence[str], records: Iterable[Sequence[object]]) -> list[RawRow]:
    labels = [_cell_text(h) for h in header]
    table = [[_cell_text(v) for v in record] for record in records]
    # Interior blank records stay so row numbers follow the file; the mapper
    # counts them as skipped. Trailing ones are only padding.
    while table and not any(table[-1]):
        table.pop()

    rows: list[RawRow] = []
    for cells in table:
        row: dict[str, str] = {}
        for i, label in enumerate(labels):
            if not label:
                continue
            row.setdefault(label, cells[i] if i < len(cells) else "")
        rows.append(freeze_row(row))
    return rows


def _looks_like_header(cells: Sequence[str]) -> bool:
    labels = [normalize_label(c) for c in cells]
    if len([lab for lab in labels if lab]) < 3:
        return False

    def has(tokens: tuple[str, ...]) -> bool:
        return any(tok in lab for lab in labels for tok in tokens)

    return has(_DATE_TOKENS) and has(_DESCRIPTION_TOKENS) and has(_AMOUNT_TOKENS)


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def decode_text(file_bytes: bytes) -> str:
    for encoding in _ENCODINGS:
        try:
            text = file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
        logger.debug("decoded upload as %s", encoding)
        return text
    # latin-1 maps every byte, so this is unreachable in practice
    raise ExtractionError("could not decode file as text")


def _split(line: str, delimiter: str) -> list[str]:
    return next(csv.reader([line], delimiter=delimiter), [])


def _locate_header(lines: Sequence[str]) -> tuple[int, str]:
    """Return ``(line_index, delimiter)`` of the header row."""

    head = lines[:_HEADER_SCAN_LINES]
    for idx, line in enumerate(head):
        for delimiter in _DELIMITERS:
            if _looks_like_header(_split(line, delimiter)):
                return idx, delimiter

    # Fallback: first non-blank line, with whichever delimiter splits it most
    for idx, line in enumerate(head):
        if line.strip():
            delimiter = max(_DELIMITERS, key=lambda d: len(_split(line, d)))
            return idx, delimiter
    raise ExtractionError("file has no header row")


def read_csv(file_bytes: bytes) -> list[RawRow]:
    text = decode_text(file_bytes)
    lines = text.splitlines()
    if not any(line.strip() for line in lines):
        raise ExtractionError("file is empty")

    start, delimiter = _locate_header(lines)
    if start:
        logger.info("skipping %d preamble line(s) above the header", start)
    # Keep quoted newlines intact by re-reading from the header onward
    remainder = "\n".join(lines[start:])
    try:
        records = list(csv.reader(io.StringIO(remainder), delimiter=delimiter))
    except csv.Error as exc:
        raise ExtractionError(f"malformed CSV: {exc}") from exc
    header, body = records[0], records[1:]
    return _build_rows(header, body)


# ---------------------------------------------------------------------------
# Excel
# ---------------------------------------------------------------------------


def read_excel(file_bytes: bytes) -> list[RawRow]:
    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        # Legacy .xls (BIFF) files also land here: openpyxl reads only OOXML
        raise ExtractionError(f"could not open spreadsheet: {exc}") from exc

    try:
        ws = wb.worksheets[0]
        header: list[object] | None = None
        body: list[Sequence[object]] = []
        for values in ws.iter_rows(values_only=True):
            if header is None:
                if any(v is not None and str(v).strip() for v in values):
                    header = list(values)
                continue
            body.append(values)
    finally:
        wb.close()

    if header is None:
        raise ExtractionError("spreadsheet has no header row")
    return _build_rows([_cell_text(h) for h in header], body)


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


def read_pdf(file_bytes: bytes) -> list[RawRow]:
    header: list[str] | None = None
    body: list[list[str]] = []
    try:
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            for page_no, page in enumerate(pdf.pages, start=1):
                for table in page.extract_tables() or []:
                    for raw in table:
                        cells = [_cell_text(c) for c in raw]
                        if header is None:
                            header = cells
                        elif [normalize_label(c) for c in cells] == [
                            normalize_label(h) for h in header
                        ]:
                            logger.debug("dropping repeated header on page %d", page_no)
                        else:
                            body.append(cells)
    except Exception as exc:
        raise ExtractionError(f"could not read PDF: {exc}") from exc

    if header is None:
        raise ExtractionError("no tables found in PDF")
    return _build_rows(header, body)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

_READERS = {
    FileType.CSV: read_csv,
    FileType.EXCEL: read_excel,
    FileType.PDF: read_pdf,
}


def extract_rows(file_bytes: bytes, file_type: FileType | str) -> list[RawRow]:
    """Read ``file_bytes`` into raw rows using the reader for ``file_type``."""

    kind = coerce_file_type(file_type)
    if not file_bytes:
        raise ExtractionError("file is empty")
    rows = _READERS[kind](file_bytes)
    logger.debug("extracted %d row(s) from %s upload", len(rows), kind)
    return rows


__all__ = [
    "coerce_file_type",
    "decode_text",
    "detect_file_type",
    "extract_rows",
    "read_csv",
    "read_excel",
    "read_pdf",
]
