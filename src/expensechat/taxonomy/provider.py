"""Taxonomy collaborator interface and an in-memory implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from expensechat.agent.state import Taxonomy, TaxonomyEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class TaxonomyProvider(Protocol):
    """Source of the categories and payment methods of a workspace."""

    async def get_categories(self, workspace_id: str) -> Sequence[TaxonomyEntry]:
        """Return the ordered category entries for *workspace_id*."""
        ...

    async def get_payment_methods(self, workspace_id: str) -> Sequence[TaxonomyEntry]:
        """Return the ordered payment-method entries for *workspace_id*."""
        ...


class StaticTaxonomyProvider:
    """Serves the same taxonomy to every workspace.

    Used when no database is configured, and in tests.
    """

    def __init__(self, taxonomy: Taxonomy) -> None:
        self._taxonomy = taxonomy

    @classmethod
    def from_names(
        cls,
        categories: list[str],
        payment_methods: list[str] | None = None,
    ) -> StaticTaxonomyProvider:
        return cls(Taxonomy.from_names(categories, payment_methods))

    async def get_categories(self, workspace_id: str) -> Sequence[TaxonomyEntry]:
        return self._taxonomy.categories

    async def get_payment_methods(self, workspace_id: str) -> Sequence[TaxonomyEntry]:
        return self._taxonomy.payment_methods


async def load_taxonomy(provider: TaxonomyProvider, workspace_id: str) -> Taxonomy:
    """Fetch both halves of a workspace taxonomy and freeze them into a snapshot.

    Args:
        provider: The taxonomy collaborator.
        workspace_id: Workspace whose taxonomy to load.

    Returns:
        A read-only :class:`Taxonomy` for one conversation.
    """
    categories, payment_methods = await asyncio.gather(
        provider.get_categories(workspace_id),
        provider.get_payment_methods(workspace_id),
    )
    logger.debug(
        "Loaded taxonomy for workspace %s: %d categories, %d payment methods",
        workspace_id,
        len(categories),
        len(payment_methods),
    )
    return Taxonomy(categories=tuple(categories), payment_methods=tuple(payment_methods))
