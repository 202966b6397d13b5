"""SQLAlchemy ORM models for the expense database.

SQLAlchemy 2.x declarative models for the tables the engine reads and
writes: the category taxonomy (global categories plus per-workspace
mappings), payment methods and expenses.  All tables use UUID primary
keys, TIMESTAMPTZ timestamps, and DECIMAL for monetary values.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Shared declarative base for all models."""


# ── Taxonomy tables ───────────────────────────────────────────────────────────


class Category(Base):
    """A category shared by all workspaces."""

    __tablename__ = "global_categories"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())


class WorkspaceCategoryMapping(Base):
    """Enables a global category for one workspace."""

    __tablename__ = "workspace_category_mappings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    global_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("global_categories.id", ondelete="CASCADE"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "global_category_id",
            name="uq_workspace_category",
        ),
    )

    # relationship
    category: Mapped["Category"] = relationship()


class PaymentMethod(Base):
    """A workspace's payment method (card, cash, ...)."""

    __tablename__ = "payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(Text, nullable=False, server_default="card")
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "name",
            name="uq_payment_method_name",
        ),
    )


# ── Expenses ──────────────────────────────────────────────────────────────────


class Expense(Base):
    """A saved expense."""

    __tablename__ = "expenses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, server_default="manual")
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="unreviewed")
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False, server_default="USD")
    description: Mapped[str] = mapped_column(Text, nullable=False)
    global_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("global_categories.id"), nullable=False
    )
    category_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    category_source: Mapped[str] = mapped_column(Text, nullable=False, server_default="manual")
    payment_method_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_reimbursable: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "source IN ('manual', 'upload', 'camera', 'voice', 'chat')",
            name="ck_expenses_source",
        ),
        CheckConstraint(
            "status IN ('unreviewed', 'reviewed', 'flagged')",
            name="ck_expenses_status",
        ),
        CheckConstraint(
            "category_confidence >= 0 AND category_confidence <= 1",
            name="ck_expenses_category_confidence",
        ),
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )

    # relationships
    category: Mapped["Category"] = relationship()
    payment_method: Mapped["PaymentMethod | None"] = relationship()
