"""Bank format registry.

A format is recognized from the header row alone. Each known layout is a
:class:`FormatRule`: the header tokens it requires plus the
:class:`ColumnRule` telling the mapper where description, amount and date
live and which :class:`SignConvention` the bank uses.

Rules are evaluated in registration order and the first match wins. Order is
part of the contract because rules overlap: Nubank's Brazilian export
(``Data, Valor, Identificador, Descrição``) must be tried before anything that
only asks for ``data`` + ``valor``. Adding a bank means registering one more
rule; nothing downstream branches on format names.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from .logging_setup import get_logger
from .models import Format
from .normalizers import normalize_label

logger = get_logger("bank_import.formats")


class SignConvention(StrEnum):
    # Negative values are money out, positive values money in.
    SIGNED = "SIGNED"
    # Card statements list purchases as positive values.
    CARD_STATEMENT = "CARD_STATEMENT"
    # Separate credit and debit columns; signed value is credit - debit.
    CREDIT_DEBIT = "CREDIT_DEBIT"


# Descriptions that mark incoming money on card statements regardless of sign.
CARD_INCOME_MARKERS: tuple[str, ...] = (
    "pagamento recebido",
    "transferencia recebida",
    "pix recebido",
)


@dataclass(frozen=True, slots=True)
class ColumnRule:
    """Where a format keeps each field.

    Candidate labels are normalized (see
    :func:`~bank_import.normalizers.normalize_label`) and tried in order; the
    first one present with a non-empty value wins.
    """

    description: tuple[str, ...]
    amount: tuple[str, ...] = ()
    date: tuple[str, ...] = ()
    credit: tuple[str, ...] = ()
    debit: tuple[str, ...] = ()
    sign: SignConvention = SignConvention.SIGNED
    income_markers: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FormatRule:
    format: Format | str
    required_tokens: tuple[str, ...]
    columns: ColumnRule

    def matches(self, labels: Sequence[str]) -> bool:
        """True when every required token is a substring of some label."""

        return all(any(tok in label for label in labels) for tok in self.required_tokens)


# Heuristic synonyms for exports we do not recognize.
GENERIC_COLUMNS = ColumnRule(
    description=(
        "descricao",
        "description",
        "historico",
        "memo",
        "details",
        "title",
        "lancamento",
    ),
    amount=("valor", "amount", "value", "quantia", "valor (r$)"),
    date=("data", "date", "transaction_date", "dt_transacao", "data lancamento"),
)


DEFAULT_RULES: tuple[FormatRule, ...] = (
    FormatRule(
        Format.NUBANK_BR,
        ("data", "valor", "identificador", "descricao"),
        ColumnRule(description=("descricao",), amount=("valor",), date=("data",)),
    ),
    # C6: Data Lançamento, Data Contábil, Título, Descrição, Entrada(R$), Saída(R$), ...
    FormatRule(
        Format.C6,
        ("data lancamento", "entrada", "saida"),
        ColumnRule(
            description=("descricao", "titulo"),
            date=("data lancamento", "data contabil"),
            credit=("entrada(r$)", "entrada"),
            debit=("saida(r$)", "saida"),
            sign=SignConvention.CREDIT_DEBIT,
        ),
    ),
    # Inter: Data Lançamento; Histórico; Descrição; Valor; Saldo
    FormatRule(
        Format.INTER,
        ("data lancamento", "historico", "descricao", "valor"),
        ColumnRule(
            description=("descricao", "historico"),
            amount=("valor",),
            date=("data lancamento",),
        ),
    ),
    # XP: Data; Descricao; Valor; Saldo. Inter also carries these, so it goes first.
    FormatRule(
        Format.XP,
        ("data", "descricao", "valor", "saldo"),
        ColumnRule(description=("descricao", "historico"), amount=("valor",), date=("data",)),
    ),
    FormatRule(
        Format.BRADESCO,
        ("data", "historico", "credito", "debito"),
        ColumnRule(
            description=("historico", "descricao"),
            date=("data",),
            credit=("credito", "credito (r$)"),
            debit=("debito", "debito (r$)"),
            sign=SignConvention.CREDIT_DEBIT,
        ),
    ),
    # Clear investment statements: Movimentação, Liquidação, Lançamento, ..., Valor, Saldo
    FormatRule(
        Format.CLEAR,
        ("movimentacao", "liquidacao", "lancamento"),
        ColumnRule(
            description=("lancamento",),
            amount=("valor",),
            date=("movimentacao", "liquidacao"),
        ),
    ),
    FormatRule(
        Format.BANCO_BRASIL,
        ("data", "historico", "valor"),
        ColumnRule(
            description=("historico", "descricao"),
            amount=("valor", "valor (r$)", "valor r$"),
            date=("data",),
        ),
    ),
    # Itaú: Data, Lançamento, Ag./Origem, Valor, Saldo
    FormatRule(
        Format.ITAU,
        ("data", "lancamento", "valor"),
        ColumnRule(description=("lancamento",), amount=("valor",), date=("data",)),
    ),
    FormatRule(
        Format.NUBANK_INTL,
        ("date", "title", "amount"),
        ColumnRule(
            description=("title",),
            amount=("amount",),
            date=("date",),
            sign=SignConvention.CARD_STATEMENT,
            income_markers=CARD_INCOME_MARKERS,
        ),
    ),
    FormatRule(
        Format.NUBANK_GENERIC,
        ("date", "description", "amount"),
        ColumnRule(description=("description",), amount=("amount",), date=("date",)),
    ),
)


@dataclass(slots=True)
class FormatRegistry:
    """Ordered rule table; GENERIC is the implicit fallback."""

    rules: list[FormatRule] = field(default_factory=lambda: list(DEFAULT_RULES))
    generic: ColumnRule = GENERIC_COLUMNS

    def register(self, rule: FormatRule, *, before: Format | str | None = None) -> None:
        """Add ``rule`` at the end, or just ahead of the rule for ``before``."""

        if any(r.format == rule.format for r in self.rules):
            raise ValueError(f"format already registered: {rule.format}")
        if before is None:
            self.rules.append(rule)
            return
        for i, existing in enumerate(self.rules):
            if existing.format == before:
                self.rules.insert(i, rule)
                return
        raise ValueError(f"cannot insert before unknown format: {before}")

    def detect(self, header_labels: Iterable[str]) -> Format | str:
        labels = [normalize_label(h) for h in header_labels]
        for rule in self.rules:
            if rule.matches(labels):
                logger.debug("header %r matched format %s", labels, rule.format)
                return rule.format
        logger.debug("header %r matched no rule; using GENERIC", labels)
        return Format.GENERIC

    def rule_for(self, fmt: Format | str) -> ColumnRule:
        if fmt == Format.GENERIC:
            return self.generic
        for rule in self.rules:
            if rule.format == fmt:
                return rule.columns
        raise KeyError(f"no column rule registered for {fmt}")


default_registry = FormatRegistry()


def detect_format(header_labels: Iterable[str]) -> Format | str:
    """Detect the bank format of ``header_labels`` using the default registry."""

    return default_registry.detect(header_labels)


__all__ = [
    "CARD_INCOME_MARKERS",
    "ColumnRule",
    "DEFAULT_RULES",
    "FormatRegistry",
    "FormatRule",
    "GENERIC_COLUMNS",
    "SignConvention",
    "default_registry",
    "detect_format",
]
