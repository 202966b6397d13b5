"""Classification collaborator: suggests a category for a draft expense.

Three implementations of the :class:`ExpenseClassifier` protocol:

- :class:`LLMExpenseClassifier`: forces a ``categorize_expense`` tool call;
  falls back to the rule-based classifier when the LLM fails.
- :class:`RuleBasedClassifier`: merchant keyword rules, always available.
- :class:`UnavailableClassifier`: never answers; the state machine then
  asks the user to pick a category.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from expensechat.agent.llm_client import ChatMessage, ChatOptions, LLMClient
from expensechat.agent.prompts import build_categorization_prompt
from expensechat.agent.state import CalendarDate
from expensechat.config import settings
from expensechat.taxonomy.resolver import contains_word
from expensechat.tools import default_registry
from expensechat.tools.classification import CategorySuggestion
from expensechat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SAMPLING = ChatOptions(temperature=0.1, max_tokens=200)

CATEGORIZE_TOOL = "categorize_expense"


# ── Data models ───────────────────────────────────────────────────────────────


class ClassificationRequest(BaseModel):
    """What the classifier knows about the expense."""

    merchant: str | None = None
    amount: Decimal | None = None
    description: str | None = None
    date: CalendarDate | None = None
    currency: str = "USD"
    notes: str | None = None
    categories: list[str] = Field(default_factory=list)
    payment_methods: list[str] = Field(default_factory=list)


class ClassificationResult(BaseModel):
    """A category suggestion; the label still has to be resolved."""

    category: str
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    reasoning: str = ""
    suggested_payment_method: str | None = None


# ── Protocol ──────────────────────────────────────────────────────────────────


@runtime_checkable
class ExpenseClassifier(Protocol):
    """Suggests a category (and possibly a payment method) for an expense."""

    def is_available(self) -> bool:
        ...

    async def categorize(self, request: ClassificationRequest) -> ClassificationResult | None:
        """Return a suggestion, or ``None`` when no suggestion can be made."""
        ...


# ── Rule-based implementation ─────────────────────────────────────────────────

# (category, confidence, keywords, reasoning), evaluated in order.
MERCHANT_RULES: tuple[tuple[str, float, tuple[str, ...], str], ...] = (
    (
        "Food & Dining",
        0.9,
        (
            "restaurant", "cafe", "food", "pizza", "burger", "coffee",
            "starbucks", "mcdonalds", "mcdonald's", "kfc", "subway",
        ),
        "Merchant name indicates food service",
    ),
    (
        "Transportation",
        0.9,
        ("uber", "lyft", "taxi", "gas", "fuel", "petrol", "metro", "bus"),
        "Merchant name indicates transportation service",
    ),
    (
        "Office Supplies",
        0.8,
        ("staples", "office", "amazon", "walmart", "target"),
        "Merchant name indicates retail/general store",
    ),
    (
        "Utilities",
        0.9,
        ("electric", "water", "internet", "phone", "mobile"),
        "Merchant name indicates utility service",
    ),
)

PAYMENT_METHOD_PATTERNS: dict[str, tuple[str, ...]] = {
    "Food & Dining": ("Credit Card", "Cash", "Digital Wallet"),
    "Transportation": ("Credit Card", "Digital Wallet", "Cash"),
    "Office Supplies": ("Credit Card", "Bank Transfer"),
    "Utilities": ("Bank Transfer", "Credit Card"),
    "Entertainment": ("Credit Card", "Digital Wallet", "Cash"),
    "Healthcare": ("Credit Card", "Cash", "Insurance"),
    "Travel": ("Credit Card", "Bank Transfer"),
    "Shopping": ("Credit Card", "Digital Wallet", "Cash"),
    "Education": ("Bank Transfer", "Credit Card"),
    "Insurance": ("Bank Transfer", "Credit Card"),
    "Taxes": ("Bank Transfer", "Credit Card"),
    "Other": ("Credit Card", "Cash", "Bank Transfer"),
}


class RuleBasedClassifier:
    """Keyword rules over the merchant name and description."""

    def is_available(self) -> bool:
        return True

    async def categorize(self, request: ClassificationRequest) -> ClassificationResult | None:
        haystack = " ".join(
            part.lower() for part in (request.merchant, request.description) if part
        )
        category, confidence, reasoning = (
            "Other",
            0.7,
            "Fallback categorization based on merchant name patterns",
        )
        for name, rule_confidence, keywords, rule_reasoning in MERCHANT_RULES:
            if any(contains_word(haystack, keyword) for keyword in keywords):
                category, confidence, reasoning = name, rule_confidence, rule_reasoning
                break

        suggestions = PAYMENT_METHOD_PATTERNS.get(category, ())
        return ClassificationResult(
            category=category,
            confidence=confidence,
            reasoning=reasoning,
            suggested_payment_method=suggestions[0] if suggestions else "Credit Card",
        )


# ── LLM implementation ────────────────────────────────────────────────────────


class LLMExpenseClassifier:
    """Classifier backed by an LLM ``categorize_expense`` tool call.

    Args:
        llm_client: Client used for the chat completion.
        registry: Tool registry holding ``categorize_expense``.
        fallback: Classifier used when the LLM call fails or returns no
            tool call (rule-based by default).
    """

    def __init__(
        self,
        llm_client: LLMClient,
        registry: ToolRegistry | None = None,
        fallback: ExpenseClassifier | None = None,
    ) -> None:
        self._llm = llm_client
        self._registry = registry or default_registry
        self._fallback = fallback or RuleBasedClassifier()

    def is_available(self) -> bool:
        return True

    async def categorize(self, request: ClassificationRequest) -> ClassificationResult | None:
        prompt = build_categorization_prompt(
            merchant=request.merchant,
            amount=request.amount,
            currency=request.currency,
            description=request.description,
            expense_date=request.date,
            notes=request.notes,
            categories=request.categories or settings.default_categories,
            payment_methods=request.payment_methods or settings.default_payment_methods,
        )
        messages = [
            ChatMessage(role="system", content=prompt),
            ChatMessage(role="user", content="Categorize this expense."),
        ]
        tools = self._registry.get_tools_for_llm(names=[CATEGORIZE_TOOL])

        try:
            response = await self._llm.chat(
                messages=messages, tools=tools, tool_choice=CATEGORIZE_TOOL, options=SAMPLING,
            )
            suggestion: CategorySuggestion = await self._registry.invoke(
                response.tool_calls, CATEGORIZE_TOOL,
            )
        except Exception:
            logger.exception(
                "LLM categorization failed for merchant=%r; using rule-based fallback",
                request.merchant,
            )
            return await self._fallback.categorize(request)

        logger.info(
            "LLM categorized %r as %s (confidence %.2f)",
            request.merchant,
            suggestion.category,
            suggestion.confidence,
        )
        return ClassificationResult(
            category=suggestion.category,
            confidence=suggestion.confidence,
            reasoning=suggestion.reasoning,
            suggested_payment_method=suggestion.suggested_payment_method,
        )


# ── Unavailable implementation ────────────────────────────────────────────────


class UnavailableClassifier:
    """Classifier used when classification is switched off."""

    def is_available(self) -> bool:
        return False

    async def categorize(self, request: ClassificationRequest) -> ClassificationResult | None:
        return None


def create_classifier(llm_client: LLMClient | None) -> ExpenseClassifier:
    """Pick the classifier for the configured backends.

    An LLM client yields :class:`LLMExpenseClassifier`; without one the
    rule-based classifier is used while AI is enabled, and
    :class:`UnavailableClassifier` when it is switched off.
    """
    if llm_client is not None:
        return LLMExpenseClassifier(llm_client)
    if settings.ai_enabled:
        return RuleBasedClassifier()
    return UnavailableClassifier()
