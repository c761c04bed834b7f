from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------
# Reference: budgets, accounts, categories
# ---------------------------


class Budget(Base):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    budget_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="CHECKING")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    budget_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False, default="EXPENSE")
    # Inactive categories stay referenced by history but cannot be assigned.
    inactive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("kind in ('INCOME','EXPENSE')", name="ck_categories_kind"),
    )


# ---------------------------
# Core: committed transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    budget_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("budgets.id"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("accounts.id"), nullable=False
    )
    category_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("categories.id"), nullable=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Always non-negative; direction lives in ``kind``.
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # Audit link back to the import that created the row (NULL for manual entries).
    import_session_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("kind in ('INCOME','EXPENSE')", name="ck_transactions_kind"),
        Index("ix_transactions_account_date", "account_id", "date"),
    )


# ---------------------------
# Staging: import sessions and their staged rows
# ---------------------------


class ImportSessionRecord(Base):
    __tablename__ = "import_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("accounts.id"), nullable=False
    )
    budget_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("budgets.id"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String, nullable=False)
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    detected_format: Mapped[str | None] = mapped_column(String, nullable=True)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    total_rows_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Optimistic concurrency token; bumped on every save.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    staged: Mapped[list[StagedTransactionRecord]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="StagedTransactionRecord.position",
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('PENDING','PROCESSING','CLASSIFIED','COMPLETED','ERROR','CANCELLED')",
            name="ck_import_sessions_status",
        ),
    )


class StagedTransactionRecord(Base):
    __tablename__ = "staged_transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    source_row: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    category_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_classified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duplicate_of: Mapped[str | None] = mapped_column(String(32), nullable=True)
    duplicate_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    session: Mapped[ImportSessionRecord] = relationship(back_populates="staged")

    __table_args__ = (Index("ix_staged_transactions_session", "session_id", "position"),)


__all__ = [
    "Account",
    "Base",
    "Budget",
    "Category",
    "ImportSessionRecord",
    "LedgerTransaction",
    "StagedTransactionRecord",
]
