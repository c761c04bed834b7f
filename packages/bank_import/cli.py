# ruff: noqa: I001
"""CLI for the ``bank_import`` package.

Command handlers (``cmd_*``) are plain functions returning a process exit
code; the Typer commands below only parse options and delegate. ``.env`` in
the working directory is loaded with ``python-dotenv`` (without overriding
already-set variables) before any command runs, so ``DATABASE_URL`` and the
``BANK_IMPORT_*`` settings can live there.

Typical flow::

    bank-import init-db --budget-name Casa --account-name Nubank --category Mercado
    bank-import import-file extrato.csv --account-id A --budget-id B
    bank-import show SESSION
    bank-import classify SESSION STAGED CATEGORY
    bank-import confirm SESSION
"""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import ArgumentInfo

from .config import ImportSettings, load_settings
from .errors import BankImportError, NormalizationError
from .logging_setup import configure_logging
from .models import DateRange
from .normalizers import parse_date


# ---- Small module-level helpers used by CLI commands -------------------------


def _settings(database_url: str | None) -> ImportSettings | None:
    settings = load_settings()
    if database_url:
        settings = settings.model_copy(update={"database_url": database_url})
    if not settings.database_url:
        print(
            "Error: no database configured; pass --database-url or set DATABASE_URL.",
            file=sys.stderr,
        )
        return None
    return settings


def _service(settings: ImportSettings):
    # Deferred import keeps `--help` fast and free of SQLAlchemy setup
    from .persistence import sql_unit_of_work
    from .service import ImportService

    return ImportService(sql_unit_of_work(settings.database_url), settings=settings)


def _report(exc: BankImportError) -> int:
    session_id = getattr(exc, "session_id", None)
    suffix = f" (session {session_id})" if session_id else ""
    print(f"Error: {exc}{suffix}", file=sys.stderr)
    return 1


def _date_option(raw: str | None) -> date | None:
    return parse_date(raw) if raw else None


# ---- Command handlers --------------------------------------------------------


def cmd_init_db(
    *,
    database_url: str | None = None,
    budget_name: str | None = None,
    account_name: str | None = None,
    categories: list[str] | None = None,
) -> int:
    """Create the schema and optionally seed one budget, account and categories.

    Seeded ids are printed as ``<kind>\\t<id>\\t<name>`` lines.
    """

    settings = _settings(database_url)
    if settings is None:
        return 1

    from db import Account, Base, Budget, Category
    from db.client import get_engine, session_scope

    Base.metadata.create_all(bind=get_engine(database_url=settings.database_url))
    print("schema ready")

    if budget_name is None:
        if account_name or categories:
            print("Error: --account-name/--category require --budget-name.", file=sys.stderr)
            return 2
        return 0

    with session_scope(database_url=settings.database_url) as db:
        budget = Budget(name=budget_name)
        db.add(budget)
        db.flush()
        print(f"budget\t{budget.id}\t{budget.name}")
        if account_name:
            account = Account(budget_id=budget.id, name=account_name)
            db.add(account)
            db.flush()
            print(f"account\t{account.id}\t{account.name}")
        for name in categories or []:
            category = Category(budget_id=budget.id, name=name)
            db.add(category)
            db.flush()
            print(f"category\t{category.id}\t{category.name}")
    return 0


def cmd_import_file(
    path: str,
    *,
    account_id: str,
    budget_id: str,
    database_url: str | None = None,
    start: str | None = None,
    end: str | None = None,
) -> int:
    """Upload a statement file and print the new session's id and summary."""

    settings = _settings(database_url)
    if settings is None:
        return 1

    from .extraction import detect_file_type

    file_path = Path(path)
    try:
        payload = file_path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1

    try:
        date_range: DateRange | None = (
            (_date_option(start), _date_option(end)) if start or end else None
        )
    except NormalizationError as exc:
        print(f"Error: invalid date filter: {exc}", file=sys.stderr)
        return 2

    service = _service(settings)
    try:
        session_id = service.create_session(
            payload,
            detect_file_type(file_path.name),
            account_id,
            budget_id,
            filename=file_path.name,
            date_range=date_range,
        )
    except BankImportError as exc:
        return _report(exc)

    details = service.get_session_details(session_id)
    s = details.summary
    print(f"session\t{session_id}")
    print(f"format\t{details.session.detected_format}")
    print(
        f"total={s.total}\tclassified={s.classified}\tduplicates={s.duplicates}"
        f"\tpending={s.pending}\terrors={len(details.errors)}"
    )
    return 0


def cmd_show(session_id: str, *, database_url: str | None = None) -> int:
    settings = _settings(database_url)
    if settings is None:
        return 1
    try:
        details = _service(settings).get_session_details(session_id)
    except BankImportError as exc:
        return _report(exc)

    session = details.session
    s = details.summary
    print(f"session\t{session.id}\t{session.status}\t{session.filename}")
    print(
        f"total={s.total}\tclassified={s.classified}\tduplicates={s.duplicates}"
        f"\tpending={s.pending}"
    )
    for item in details.staged_transactions:
        flag = "DUP" if item.is_duplicate else ""
        print(
            f"{item.id}\t{item.date.isoformat()}\t{item.kind}\t{item.amount:.2f}"
            f"\t{item.description}\t{item.category_id or ''}\t{flag}"
        )
    for issue in details.errors:
        print(f"error\t{issue}")
    return 0


def cmd_classify(
    session_id: str, staged_id: str, category_id: str, *, database_url: str | None = None
) -> int:
    settings = _settings(database_url)
    if settings is None:
        return 1
    try:
        item = _service(settings).classify_transaction(session_id, staged_id, category_id)
    except BankImportError as exc:
        return _report(exc)
    print(f"{item.id}\t{item.category_id}")
    return 0


def cmd_confirm(
    session_id: str, *, import_duplicates: bool = False, database_url: str | None = None
) -> int:
    settings = _settings(database_url)
    if settings is None:
        return 1
    try:
        result = _service(settings).confirm_import(session_id, import_duplicates=import_duplicates)
    except BankImportError as exc:
        return _report(exc)
    print(f"imported\t{result.imported_count}")
    for tx_id in result.transaction_ids:
        print(tx_id)
    return 0


def cmd_cancel(session_id: str, *, database_url: str | None = None) -> int:
    settings = _settings(database_url)
    if settings is None:
        return 1
    try:
        _service(settings).cancel_session(session_id)
    except BankImportError as exc:
        return _report(exc)
    print(f"cancelled\t{session_id}")
    return 0


def cmd_sessions(
    budget_id: str, *, limit: int | None = None, database_url: str | None = None
) -> int:
    settings = _settings(database_url)
    if settings is None:
        return 1
    for session in _service(settings).list_sessions(budget_id, limit):
        print(
            f"{session.id}\t{session.status}\t{session.created_at.isoformat()}"
            f"\t{session.filename}"
        )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import bank statements (CSV, Excel, PDF) into a budget through reviewable sessions.",
)

DatabaseUrl = Annotated[
    str | None, typer.Option(help="Override DATABASE_URL (falls back to env var).")
]

# Module-level argument objects to satisfy ruff B008 (no calls in defaults).
SESSION_ID_ARG: ArgumentInfo = typer.Argument(help="Import session id.")


@app.callback()
def main() -> None:
    """Load ``.env`` and configure logging before any subcommand."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


@app.command("init-db")
def init_db_cmd(
    database_url: DatabaseUrl = None,
    budget_name: str | None = typer.Option(None, help="Seed a budget with this name."),
    account_name: str | None = typer.Option(None, help="Seed an account in the budget."),
    category: list[str] | None = typer.Option(None, help="Seed a category (repeatable)."),
) -> None:
    """Create the database schema (and optional seed rows)."""

    raise typer.Exit(
        cmd_init_db(
            database_url=database_url,
            budget_name=budget_name,
            account_name=account_name,
            categories=category,
        )
    )


@app.command("import-file")
def import_file_cmd(
    path: Annotated[Path, typer.Argument(dir_okay=False, help="Statement file to import.")],
    account_id: Annotated[str, typer.Option(help="Account receiving the transactions.")],
    budget_id: Annotated[str, typer.Option(help="Budget owning the account.")],
    database_url: DatabaseUrl = None,
    start: str | None = typer.Option(None, help="Skip rows dated before this day."),
    end: str | None = typer.Option(None, help="Skip rows dated after this day."),
) -> None:
    """Parse a statement into a new import session."""

    raise typer.Exit(
        cmd_import_file(
            str(path),
            account_id=account_id,
            budget_id=budget_id,
            database_url=database_url,
            start=start,
            end=end,
        )
    )


@app.command("show")
def show_cmd(
    session_id: Annotated[str, SESSION_ID_ARG], database_url: DatabaseUrl = None
) -> None:
    """Show a session's staged transactions, summary and row errors."""

    raise typer.Exit(cmd_show(session_id, database_url=database_url))


@app.command("classify")
def classify_cmd(
    session_id: Annotated[str, SESSION_ID_ARG],
    staged_id: Annotated[str, typer.Argument(help="Staged transaction id.")],
    category_id: Annotated[str, typer.Argument(help="Category to assign.")],
    database_url: DatabaseUrl = None,
) -> None:
    """Assign a category to one staged transaction."""

    raise typer.Exit(
        cmd_classify(session_id, staged_id, category_id, database_url=database_url)
    )


@app.command("confirm")
def confirm_cmd(
    session_id: Annotated[str, SESSION_ID_ARG],
    import_duplicates: bool = typer.Option(
        False, help="Also import rows flagged as probable duplicates."
    ),
    database_url: DatabaseUrl = None,
) -> None:
    """Commit the session's classified transactions to the ledger."""

    raise typer.Exit(
        cmd_confirm(session_id, import_duplicates=import_duplicates, database_url=database_url)
    )


@app.command("cancel")
def cancel_cmd(
    session_id: Annotated[str, SESSION_ID_ARG], database_url: DatabaseUrl = None
) -> None:
    """Abandon a session without importing anything."""

    raise typer.Exit(cmd_cancel(session_id, database_url=database_url))


@app.command("sessions")
def sessions_cmd(
    budget_id: Annotated[str, typer.Argument(help="Budget to list sessions for.")],
    limit: int | None = typer.Option(None, help="Maximum sessions to list."),
    database_url: DatabaseUrl = None,
) -> None:
    """List a budget's most recent import sessions."""

    raise typer.Exit(cmd_sessions(budget_id, limit=limit, database_url=database_url))


if __name__ == "__main__":  # pragma: no cover
    app()
