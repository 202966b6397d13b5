"""Fuzzy mapping of free-text category and payment-method labels.

The resolver maps a label ("groceries", "Uber ride", "office stuff") onto an
entry of the conversation's taxonomy snapshot.  Three tiers are evaluated in
order and the first success wins:

1. exact case-insensitive name match;
2. substring match in either direction;
3. the :data:`CATEGORY_VARIATIONS` table of canonical names and keywords.

The resolver never creates entries; a miss is reported as ``None`` and the
caller decides the fallback.
"""

from __future__ import annotations

import logging
import re

from expensechat.agent.state import Taxonomy, TaxonomyEntry

logger = logging.getLogger(__name__)

# Canonical category name -> keywords that imply it (label side and taxonomy
# side).  Includes merchant-brand hints.
CATEGORY_VARIATIONS: dict[str, tuple[str, ...]] = {
    "Office Supplies": (
        "office supplies", "office", "supplies", "stationary", "stationery",
        "printer", "desk", "chair", "mugs", "software",
    ),
    "Food & Dining": (
        "food & dining", "food", "dining", "meals", "restaurant", "lunch",
        "dinner", "breakfast", "coffee", "cafe", "starbucks", "groceries",
        "grocery",
    ),
    "Transportation": (
        "transportation", "transport", "commute", "uber", "lyft", "taxi",
        "gas", "fuel", "parking",
    ),
    "Utilities": (
        "utilities", "utility", "bills", "services", "water", "electric",
        "internet", "water bill",
    ),
    "Entertainment": ("entertainment", "entertain", "leisure", "recreation"),
    "Healthcare": ("healthcare", "health", "medical", "doctor", "pharmacy"),
    "Travel": ("travel", "trip", "vacation", "business travel", "hotel", "flight"),
    "Shopping": ("shopping", "retail", "purchase", "buy", "amazon", "walmart", "target"),
    "Education": ("education", "learning", "training", "course"),
    "Insurance": ("insurance", "insure", "coverage", "policy"),
    "Taxes": ("taxes", "tax", "taxation", "irs"),
    "Other": ("other", "miscellaneous", "misc", "general", "paid ads"),
}


def _normalize(label: str) -> str:
    return " ".join(label.lower().split())


def contains_word(haystack: str, needle: str) -> bool:
    """``True`` if *needle* occurs in *haystack* as a whole word or phrase."""
    return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack) is not None


class CategoryResolver:
    """Resolve free-text labels against a :class:`Taxonomy` snapshot."""

    def __init__(self, variations: dict[str, tuple[str, ...]] | None = None) -> None:
        self._variations = variations if variations is not None else CATEGORY_VARIATIONS

    def resolve(self, label: str | None, taxonomy: Taxonomy) -> TaxonomyEntry | None:
        """Map *label* onto one of ``taxonomy.categories``.

        Args:
            label: Free-text category label.
            taxonomy: The conversation's taxonomy snapshot.

        Returns:
            The matching entry, or ``None`` when no tier matches.
        """
        if not label or not label.strip() or not taxonomy.categories:
            return None
        normalized = _normalize(label)
        entries = taxonomy.categories

        match = self._match_exact(normalized, entries)
        if match is not None:
            logger.debug("Category %r resolved by exact match -> %s", label, match.name)
            return match

        match = self._match_substring(normalized, entries)
        if match is not None:
            logger.debug("Category %r resolved by substring match -> %s", label, match.name)
            return match

        match = self._match_variation(normalized, entries)
        if match is not None:
            logger.debug("Category %r resolved by variation table -> %s", label, match.name)
            return match

        logger.debug("Category %r did not resolve", label)
        return None

    def resolve_payment_method(
        self, label: str | None, taxonomy: Taxonomy
    ) -> TaxonomyEntry | None:
        """Map *label* onto one of ``taxonomy.payment_methods`` (exact, then substring)."""
        if not label or not label.strip() or not taxonomy.payment_methods:
            return None
        normalized = _normalize(label)
        entries = taxonomy.payment_methods

        match = self._match_exact(normalized, entries)
        if match is None:
            match = self._match_substring(normalized, entries)
        if match is not None:
            logger.debug("Payment method %r resolved -> %s", label, match.name)
        return match

    def other_category(self, taxonomy: Taxonomy, name: str = "Other") -> TaxonomyEntry | None:
        """Return the catch-all category of *taxonomy*, if it has one."""
        return self._match_exact(_normalize(name), taxonomy.categories)

    # ── Tiers ─────────────────────────────────────────────────────────

    def _match_exact(
        self, normalized: str, entries: tuple[TaxonomyEntry, ...]
    ) -> TaxonomyEntry | None:
        return next((e for e in entries if _normalize(e.name) == normalized), None)

    def _match_substring(
        self, normalized: str, entries: tuple[TaxonomyEntry, ...]
    ) -> TaxonomyEntry | None:
        for entry in entries:
            name = _normalize(entry.name)
            if name and (name in normalized or normalized in name):
                return entry
        return None

    def _match_variation(
        self, normalized: str, entries: tuple[TaxonomyEntry, ...]
    ) -> TaxonomyEntry | None:
        for canonical, keywords in self._variations.items():
            terms = (canonical.lower(), *keywords)
            if not any(contains_word(normalized, term) for term in terms):
                continue
            entry = self._lookup_canonical(canonical, keywords, entries)
            if entry is not None:
                return entry
        return None

    def _lookup_canonical(
        self,
        canonical: str,
        keywords: tuple[str, ...],
        entries: tuple[TaxonomyEntry, ...],
    ) -> TaxonomyEntry | None:
        normalized = _normalize(canonical)
        entry = self._match_exact(normalized, entries)
        if entry is None:
            entry = self._match_substring(normalized, entries)
        if entry is None:
            entry = next(
                (
                    e for e in entries
                    if any(contains_word(_normalize(e.name), k) for k in keywords)
                ),
                None,
            )
        return entry
