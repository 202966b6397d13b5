"""Database repository for expenses and the workspace taxonomy.

Module-level async functions take an :class:`AsyncSession` and leave the
commit to the caller.  Two adapters bind them to the collaborator
interfaces used by the session orchestrator:

- :class:`SqlAlchemyExpenseStore`: ``ExpenseStore`` over the ``expenses``
  table.
- :class:`SqlAlchemyTaxonomyProvider`: ``TaxonomyProvider`` over
  ``workspace_category_mappings`` / ``global_categories`` and
  ``payment_methods``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensechat.agent.orchestrator import InsertOutcome
from expensechat.agent.state import ExpenseRecord, TaxonomyEntry
from expensechat.ledger.models import Category, Expense, PaymentMethod, WorkspaceCategoryMapping

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _as_uuid(value: str | uuid.UUID, column: str) -> uuid.UUID:
    """Parse *value* as a UUID, naming *column* in the error."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValueError(f"{column}: invalid id {value!r}") from exc


# ── Expense persistence ───────────────────────────────────────────────────────


async def save_expense(
    session: AsyncSession,
    record: ExpenseRecord,
    *,
    workspace_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Expense:
    """Insert a finalized expense into the ``expenses`` table.

    Args:
        session: Active async database session (caller manages commit).
        record: The finalized record.
        workspace_id: Owning workspace.
        user_id: User who entered the expense.

    Returns:
        The newly created :class:`Expense` instance (with ``id`` populated
        after flush).

    Raises:
        ValueError: If a taxonomy reference is not a valid id.
        sqlalchemy.exc.IntegrityError: If a constraint is violated.
    """
    confidence = record.category_confidence
    expense = Expense(
        workspace_id=workspace_id,
        user_id=user_id,
        source=str(record.source),
        txn_date=record.date,
        merchant=record.merchant,
        amount=record.amount,
        currency=record.currency,
        description=record.description,
        global_category_id=_as_uuid(record.category_ref, "global_category_id"),
        category_confidence=(
            Decimal(str(round(confidence, 2))) if confidence is not None else None
        ),
        category_source="ai" if confidence is not None else "manual",
        payment_method_id=(
            _as_uuid(record.payment_method_ref, "payment_method_id")
            if record.payment_method_ref
            else None
        ),
        notes=record.notes,
        is_reimbursable=record.is_reimbursable,
    )
    session.add(expense)
    await session.flush()
    return expense


# ── Taxonomy queries ──────────────────────────────────────────────────────────


def _category_entry(category: Category) -> TaxonomyEntry:
    return TaxonomyEntry(
        id=str(category.id),
        name=category.name,
        description=category.description,
        color=category.color,
        icon=category.icon,
    )


async def get_workspace_categories(
    session: AsyncSession,
    workspace_id: uuid.UUID,
) -> list[Category]:
    """Return the active global categories mapped to *workspace_id*, by name."""
    stmt = (
        select(Category)
        .join(WorkspaceCategoryMapping, WorkspaceCategoryMapping.global_category_id == Category.id)
        .where(
            WorkspaceCategoryMapping.workspace_id == workspace_id,
            WorkspaceCategoryMapping.is_active.is_(True),
        )
        .order_by(Category.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_global_categories(session: AsyncSession) -> list[Category]:
    """Return every global category, by name."""
    result = await session.execute(select(Category).order_by(Category.name))
    return list(result.scalars().all())


async def get_payment_methods(
    session: AsyncSession,
    workspace_id: uuid.UUID,
) -> list[PaymentMethod]:
    """Return the payment methods of *workspace_id*, by name."""
    stmt = (
        select(PaymentMethod)
        .where(PaymentMethod.workspace_id == workspace_id)
        .order_by(PaymentMethod.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── Collaborator adapters ─────────────────────────────────────────────────────


class SqlAlchemyExpenseStore:
    """``ExpenseStore`` writing to the ``expenses`` table.

    Every insert runs in its own session and transaction.  Failures never
    raise: they come back as ``InsertOutcome(success=False)`` whose
    ``reason`` carries the database message (which names the offending
    column or constraint).

    Args:
        session_factory: Callable returning a new :class:`AsyncSession`
            (e.g. ``expensechat.db.session.async_session_factory``).
        workspace_id: Workspace the expenses belong to.
        user_id: User entering the expenses.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        workspace_id: str | uuid.UUID,
        user_id: str | uuid.UUID,
    ) -> None:
        self._session_factory = session_factory
        self._workspace_id = _as_uuid(workspace_id, "workspace_id")
        self._user_id = _as_uuid(user_id, "user_id")

    async def insert_expense(self, record: ExpenseRecord) -> InsertOutcome:
        async with self._session_factory() as session:
            try:
                expense = await save_expense(
                    session,
                    record,
                    workspace_id=self._workspace_id,
                    user_id=self._user_id,
                )
                await session.commit()
            except ValueError as exc:
                await session.rollback()
                logger.warning("Rejected expense before insert: %s", exc)
                return InsertOutcome(success=False, reason=str(exc))
            except IntegrityError as exc:
                await session.rollback()
                reason = str(exc.orig) if exc.orig is not None else str(exc)
                logger.warning("Expense insert violated a constraint: %s", reason)
                return InsertOutcome(success=False, reason=reason)
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Expense insert failed")
                return InsertOutcome(success=False, reason=type(exc).__name__)

        logger.info("Inserted expense %s for workspace %s", expense.id, self._workspace_id)
        return InsertOutcome(success=True, expense_id=str(expense.id))


class SqlAlchemyTaxonomyProvider:
    """``TaxonomyProvider`` reading the workspace taxonomy.

    Categories come from the workspace's active mappings; a workspace with
    no mappings sees every global category.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_categories(self, workspace_id: str) -> list[TaxonomyEntry]:
        workspace = _as_uuid(workspace_id, "workspace_id")
        async with self._session_factory() as session:
            categories = await get_workspace_categories(session, workspace)
            if not categories:
                logger.info(
                    "Workspace %s has no category mappings; using global categories",
                    workspace,
                )
                categories = await get_global_categories(session)
        return [_category_entry(c) for c in categories]

    async def get_payment_methods(self, workspace_id: str) -> list[TaxonomyEntry]:
        workspace = _as_uuid(workspace_id, "workspace_id")
        async with self._session_factory() as session:
            methods = await get_payment_methods(session, workspace)
        return [
            TaxonomyEntry(id=str(m.id), name=m.name, description=m.description, type=m.type)
            for m in methods
        ]
