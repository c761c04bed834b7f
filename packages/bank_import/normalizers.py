"""Field normalizers: header labels, dates and amounts.

Pure functions, independent of any bank format. Sign handling is *not* done
here: :func:`parse_amount` returns the signed value as written and the mapper
decides what the sign means for a given format.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable
from datetime import date
from decimal import Decimal, InvalidOperation

from .errors import AmountFormatError, DateFormatError

# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------


def normalize_label(label: str | None) -> str:
    """Lowercase, trim, strip accents and collapse whitespace.

    ``"  Descrição "`` → ``"descricao"``; ``"Data  Lançamento"`` →
    ``"data lancamento"``.
    """

    if label is None:
        return ""
    decomposed = unicodedata.normalize("NFKD", label)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    # Excel/CSV exports sometimes carry a BOM on the first header cell
    stripped = stripped.replace("\ufeff", "")
    return " ".join(stripped.strip().lower().split())


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

type DateBuilder = Callable[[re.Match[str]], date]

# Ordered registry of (pattern, builder). First full match wins.
_DATE_PATTERNS: list[tuple[re.Pattern[str], DateBuilder]] = []


def register_date_pattern(pattern: str | re.Pattern[str], builder: DateBuilder) -> None:
    """Append a supported date layout; ``builder`` turns the match into a date."""

    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
    _DATE_PATTERNS.append((compiled, builder))


def _dmy(m: re.Match[str]) -> date:
    return date(int(m["y"]), int(m["m"]), int(m["d"]))


def _dmy_short_year(m: re.Match[str]) -> date:
    # Two-digit years in bank exports are always 20xx
    return date(2000 + int(m["y"]), int(m["m"]), int(m["d"]))


register_date_pattern(r"^(?P<d>\d{1,2})/(?P<m>\d{1,2})/(?P<y>\d{4})$", _dmy)
register_date_pattern(r"^(?P<y>\d{4})-(?P<m>\d{1,2})-(?P<d>\d{1,2})$", _dmy)
register_date_pattern(r"^(?P<d>\d{1,2})-(?P<m>\d{1,2})-(?P<y>\d{4})$", _dmy)
# XP-style timestamps: "05/10/25 às 14:32:10"
register_date_pattern(
    r"^(?P<d>\d{1,2})/(?P<m>\d{1,2})/(?P<y>\d{2})\s+(?:às|as)\s+\d{2}:\d{2}:\d{2}$",
    _dmy_short_year,
)


def parse_date(raw: str | None) -> date:
    """Parse a calendar date from a raw cell.

    Accepts ``DD/MM/YYYY`` and ``YYYY-MM-DD`` (plus the other registered
    layouts). No timezone is involved: the result is a plain ``date``.

    Raises
    ------
    DateFormatError
        When the text matches no registered layout or names an impossible
        day (e.g. ``31/02/2025``).
    """

    s = (raw or "").strip()
    if not s:
        raise DateFormatError(raw, "date is empty")
    for pattern, builder in _DATE_PATTERNS:
        m = pattern.match(s)
        if m is None:
            continue
        try:
            return builder(m)
        except ValueError as exc:
            raise DateFormatError(raw, f"invalid calendar date: {raw!r}") from exc
    raise DateFormatError(raw, f"unrecognized date format: {raw!r}")


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_RE = re.compile(r"(?:R\$|US\$|\$|€|BRL|USD)", re.IGNORECASE)
# Brazilian grouping: 1.234.567,89 (also matches the tail of "1234,56").
_BR_AMOUNT_RE = re.compile(r"\d{1,3}(?:\.\d{3})*,\d{2}$")


def parse_amount(raw: str | None) -> Decimal:
    """Parse a signed monetary amount.

    Steps: strip currency symbols and whitespace; treat surrounding
    parentheses as a negative sign; when the text ends in the Brazilian
    ``1.234,56`` form, drop the ``.`` group separators and turn the ``,`` into
    a decimal point; otherwise parse the text as a plain ``.`` decimal.

    ``"1,234"`` is deliberately *not* read as Brazilian (it lacks the trailing
    two-digit decimal) and therefore fails.

    Raises
    ------
    AmountFormatError
        When the cleaned text is empty or not a finite number.
    """

    if raw is None:
        raise AmountFormatError(raw, "amount is empty")
    s = _CURRENCY_RE.sub("", str(raw))
    s = "".join(s.split())
    if not s:
        raise AmountFormatError(raw, "amount is empty")

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    # "-(1,00)" and "(-1,00)" both show up in the wild
    if s.startswith("-(") and s.endswith(")"):
        negative = True
        s = s[2:-1]

    if _BR_AMOUNT_RE.search(s):
        s = s.replace(".", "").replace(",", ".")

    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise AmountFormatError(raw, f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise AmountFormatError(raw, f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


__all__ = [
    "normalize_label",
    "parse_amount",
    "parse_date",
    "register_date_pattern",
]
