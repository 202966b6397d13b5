"""Conversational expense extraction engine.

Typical use::

    from expensechat import SessionOrchestrator, configure_logging

    configure_logging()
    orchestrator = SessionOrchestrator(store)
    ctx = orchestrator.start(taxonomy)
    result = await orchestrator.submit(ctx, "I spent $25 at McDonald's yesterday for lunch")
"""

import logging

from expensechat.agent.orchestrator import (
    ExpenseStore,
    InsertOutcome,
    SessionOrchestrator,
    SubmitResult,
)
from expensechat.agent.state import (
    ConversationContext,
    ConversationPhase,
    ExpenseDraft,
    ExpenseRecord,
    ExpenseSource,
    Taxonomy,
    TaxonomyEntry,
)
from expensechat.config import settings
from expensechat.taxonomy import CategoryResolver, StaticTaxonomyProvider, TaxonomyProvider


def configure_logging(level: int | None = None) -> None:
    """Set up root logging (DEBUG when ``settings.debug``, else INFO)."""
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


__all__ = [
    "CategoryResolver",
    "ConversationContext",
    "ConversationPhase",
    "ExpenseDraft",
    "ExpenseRecord",
    "ExpenseSource",
    "ExpenseStore",
    "InsertOutcome",
    "SessionOrchestrator",
    "StaticTaxonomyProvider",
    "SubmitResult",
    "Taxonomy",
    "TaxonomyEntry",
    "TaxonomyProvider",
    "configure_logging",
    "settings",
]
