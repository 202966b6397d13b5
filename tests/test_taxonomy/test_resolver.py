"""Tests for the three-tier category resolver."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from expensechat.agent.state import Taxonomy
from expensechat.config import _DEFAULT_CATEGORIES, _DEFAULT_PAYMENT_METHODS
from expensechat.taxonomy.resolver import CategoryResolver

TAXONOMY = Taxonomy.from_names(_DEFAULT_CATEGORIES, _DEFAULT_PAYMENT_METHODS)


@pytest.fixture()
def resolver() -> CategoryResolver:
    return CategoryResolver()


# ── Categories ────────────────────────────────────────────────────────────────


class TestResolve:
    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            ("food & dining", "Food & Dining"),
            ("  TRAVEL ", "Travel"),
            ("food", "Food & Dining"),
            ("Healthcare expenses", "Healthcare"),
            ("groceries", "Food & Dining"),
            ("uber ride", "Transportation"),
            ("office stuff", "Office Supplies"),
            ("water bill", "Utilities"),
        ],
    )
    def test_default_taxonomy(self, resolver: CategoryResolver, label: str, expected: str) -> None:
        entry = resolver.resolve(label, TAXONOMY)
        assert entry is not None
        assert entry.name == expected

    def test_unknown_label(self, resolver: CategoryResolver) -> None:
        assert resolver.resolve("xyzzy", TAXONOMY) is None

    def test_blank_label_or_empty_taxonomy(self, resolver: CategoryResolver) -> None:
        assert resolver.resolve(None, TAXONOMY) is None
        assert resolver.resolve("   ", TAXONOMY) is None
        assert resolver.resolve("food", Taxonomy()) is None

    def test_exact_match_beats_substring(self, resolver: CategoryResolver) -> None:
        taxonomy = Taxonomy.from_names(["Business Travel", "Travel"])
        assert resolver.resolve("travel", taxonomy).name == "Travel"

    def test_substring_beats_variation_table(self, resolver: CategoryResolver) -> None:
        taxonomy = Taxonomy.from_names(["Food & Dining", "Coffee Shops"])
        assert resolver.resolve("coffee", taxonomy).name == "Coffee Shops"

    def test_exact_match_skips_later_tiers(self, resolver: CategoryResolver) -> None:
        with (
            patch.object(CategoryResolver, "_match_substring") as substring,
            patch.object(CategoryResolver, "_match_variation") as variation,
        ):
            assert resolver.resolve("Taxes", TAXONOMY).name == "Taxes"
        substring.assert_not_called()
        variation.assert_not_called()

    def test_variation_maps_onto_custom_names(self, resolver: CategoryResolver) -> None:
        taxonomy = Taxonomy.from_names(["Meals", "Cabs", "Misc"])
        assert resolver.resolve("lunch", taxonomy).name == "Meals"

    def test_variation_without_matching_entry(self, resolver: CategoryResolver) -> None:
        taxonomy = Taxonomy.from_names(["Meals", "Cabs", "Misc"])
        assert resolver.resolve("taxi", taxonomy) is None

    def test_custom_variation_table(self) -> None:
        resolver = CategoryResolver({"Travel": ("airbnb",)})
        assert resolver.resolve("airbnb stay", TAXONOMY).name == "Travel"
        assert resolver.resolve("groceries", TAXONOMY) is None

    def test_never_creates_entries(self, resolver: CategoryResolver) -> None:
        before = TAXONOMY.model_copy(deep=True)
        resolver.resolve("brand new category", TAXONOMY)
        assert TAXONOMY == before


# ── Payment methods / catch-all ───────────────────────────────────────────────


class TestPaymentMethods:
    def test_exact(self, resolver: CategoryResolver) -> None:
        assert resolver.resolve_payment_method("cash", TAXONOMY).name == "Cash"

    def test_substring(self, resolver: CategoryResolver) -> None:
        assert resolver.resolve_payment_method("credit", TAXONOMY).name == "Credit Card"

    def test_unknown(self, resolver: CategoryResolver) -> None:
        assert resolver.resolve_payment_method("visa", TAXONOMY) is None
        assert resolver.resolve_payment_method("", TAXONOMY) is None


class TestOtherCategory:
    def test_present(self, resolver: CategoryResolver) -> None:
        assert resolver.other_category(TAXONOMY).name == "Other"

    def test_absent(self, resolver: CategoryResolver) -> None:
        assert resolver.other_category(Taxonomy.from_names(["Travel"])) is None

    def test_custom_name(self, resolver: CategoryResolver) -> None:
        taxonomy = Taxonomy.from_names(["Travel", "Misc"])
        assert resolver.other_category(taxonomy, "misc").name == "Misc"
