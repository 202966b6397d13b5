"""Expense categorization tool for the LLM agent.

Provides the ``categorize_expense`` tool.  Like
``process_expense_conversation`` it is a pass-through: the LLM chooses the
category and the handler validates the arguments into a :class:`CategorySuggestion`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from expensechat.tools.registry import default_registry


class CategorySuggestion(BaseModel):
    """Validated arguments of a ``categorize_expense`` call."""

    category: str = Field(..., min_length=1, description="Category name from the given list.")
    confidence: float = Field(default=0.7, description="Confidence between 0 and 1.")
    reasoning: str = Field(default="", description="Why this category was chosen.")
    suggested_payment_method: str | None = Field(
        default=None,
        description="Likely payment method, if one can be inferred.",
    )


CATEGORIZE_EXPENSE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "category": {
            "type": "string",
            "description": "Exact category name from the provided list.",
        },
        "confidence": {
            "type": "number",
            "description": "Confidence between 0.7 and 1.0.",
        },
        "reasoning": {
            "type": "string",
            "description": "Brief explanation of why this category was chosen.",
        },
        "suggestedPaymentMethod": {
            "type": "string",
            "description": (
                "One of: Credit Card, Debit Card, Cash, Bank Transfer, Digital Wallet."
            ),
        },
    },
    "required": ["category", "confidence", "reasoning"],
}


@default_registry.tool(
    name="categorize_expense",
    description=(
        "Categorize an expense into one of the available categories and "
        "suggest the payment method most likely used."
    ),
    parameters_schema=CATEGORIZE_EXPENSE_SCHEMA,
)
async def categorize_expense(
    category: str,
    confidence: float = 0.7,
    reasoning: str = "",
    suggestedPaymentMethod: str | None = None,
    **_ignored: Any,
) -> CategorySuggestion:
    """Validate the LLM's categorization.

    Confidence is clamped to ``[0, 1]``.

    Raises:
        pydantic.ValidationError: If ``category`` is empty.
    """
    return CategorySuggestion(
        category=category.strip(),
        confidence=max(0.0, min(1.0, float(confidence))),
        reasoning=reasoning,
        suggested_payment_method=suggestedPaymentMethod or None,
    )
