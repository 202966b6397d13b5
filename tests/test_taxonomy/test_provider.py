"""Tests for taxonomy providers and snapshot loading."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from expensechat.agent.state import Taxonomy, TaxonomyEntry
from expensechat.taxonomy.provider import StaticTaxonomyProvider, TaxonomyProvider, load_taxonomy


@pytest.mark.asyncio
async def test_static_provider_serves_every_workspace() -> None:
    provider = StaticTaxonomyProvider.from_names(["Travel", "Other"], ["Cash"])

    assert isinstance(provider, TaxonomyProvider)
    for workspace in ("ws-1", "ws-2"):
        categories = await provider.get_categories(workspace)
        assert [c.name for c in categories] == ["Travel", "Other"]
    assert [p.name for p in await provider.get_payment_methods("ws-1")] == ["Cash"]


@pytest.mark.asyncio
async def test_load_taxonomy_builds_snapshot() -> None:
    provider = AsyncMock()
    provider.get_categories = AsyncMock(
        return_value=[TaxonomyEntry(id="c1", name="Travel"), TaxonomyEntry(id="c2", name="Other")]
    )
    provider.get_payment_methods = AsyncMock(return_value=[TaxonomyEntry(id="p1", name="Cash")])

    taxonomy = await load_taxonomy(provider, "ws-1")

    assert isinstance(taxonomy, Taxonomy)
    assert taxonomy.category_names() == ["Travel", "Other"]
    assert taxonomy.payment_method_by_id("p1").name == "Cash"
    provider.get_categories.assert_awaited_once_with("ws-1")
    provider.get_payment_methods.assert_awaited_once_with("ws-1")


@pytest.mark.asyncio
async def test_load_taxonomy_propagates_provider_errors() -> None:
    provider = AsyncMock()
    provider.get_categories = AsyncMock(side_effect=ConnectionError("db down"))
    provider.get_payment_methods = AsyncMock(return_value=[])

    with pytest.raises(ConnectionError):
        await load_taxonomy(provider, "ws-1")
