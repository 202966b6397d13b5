"""Category and payment-method taxonomy: provider interface and resolver."""

from expensechat.taxonomy.provider import StaticTaxonomyProvider, TaxonomyProvider, load_taxonomy
from expensechat.taxonomy.resolver import CATEGORY_VARIATIONS, CategoryResolver

__all__ = [
    "CATEGORY_VARIATIONS",
    "CategoryResolver",
    "StaticTaxonomyProvider",
    "TaxonomyProvider",
    "load_taxonomy",
]
