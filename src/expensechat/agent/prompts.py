"""System prompts and templates for the LLM-backed collaborators.

Two prompts are defined:

- :data:`CONVERSATION_PROMPT` drives the ``process_expense_conversation``
  tool call made once per user utterance while collecting.
- :data:`CATEGORIZATION_PROMPT` drives the ``categorize_expense`` tool call
  made when a draft needs a category.

Both are plain ``str.format`` templates; fill them with the ``build_*``
helpers below.
"""

from __future__ import annotations

import json
from datetime import date, timedelta
from typing import Any

# ── Conversation prompt ───────────────────────────────────────────────────────

CONVERSATION_PROMPT = """\
You are an AI assistant specialized in helping users add expense entries \
through natural conversation.

CURRENT CONTEXT:
- Conversation Step: {phase}
- Current Expense Data: {current_expense}
- Available Categories: {categories}
- Today's date is {current_date} (YYYY-MM-DD).

YOUR ROLE:
1. Extract expense information from user messages
2. Guide users through the expense entry process
3. Handle corrections and updates naturally
4. Provide clear, helpful responses

EXTRACTION GUIDELINES:
- Amount: Extract numbers, handle "USD 1000", "$50", "fifty dollars", etc.
- Merchant: Business names, stores, service providers
- Description: What was purchased or the purpose of the expense
- Date: Parse "yesterday", "last week", "29th Sep 2025" and other relative dates; \
return YYYY-MM-DD
- Category: Match to available categories based on context
- Notes: Additional context or details

CONVERSATION FLOW:
1. INITIAL: Welcome and ask for expense details
2. COLLECTING: Extract info and ask for missing details
3. CONFIRMING: Show summary and ask for confirmation
4. EDITING: Handle corrections and updates
5. COMPLETE: Ready to save

EXAMPLE:
User: "I bought lunch at McDonald's for $12 yesterday"
→ Extract: amount="12", merchant="McDonald's", description="lunch", date="{yesterday}"
→ Response: "Great! I found $12 at McDonald's for lunch yesterday. I'd suggest \
'Food & Dining' category. Should I save this expense?"

IMPORTANT:
- Always merge new data with existing expense data; only return fields the \
user actually mentioned
- Be helpful but don't overwhelm with too many questions at once
- Always answer by calling the process_expense_conversation tool\
"""

CONVERSATION_HISTORY_TEMPLATE = """\
Conversation so far:
{history}

Latest user message: {user_message}\
"""


def build_conversation_prompt(
    phase: str,
    current_expense: dict[str, Any],
    categories: list[str],
    today: date,
) -> str:
    """Fill :data:`CONVERSATION_PROMPT` for one turn."""
    return CONVERSATION_PROMPT.format(
        phase=phase,
        current_expense=json.dumps(current_expense, indent=2, default=str),
        categories=", ".join(categories) or "(none)",
        current_date=today.isoformat(),
        yesterday=(today - timedelta(days=1)).isoformat(),
    )


def build_history_message(history: list[tuple[str, str]], user_message: str) -> str:
    """Render previous turns plus the new message as a single user message.

    Args:
        history: ``(speaker, text)`` pairs, oldest first.
        user_message: The utterance being processed.
    """
    lines = [f"{speaker}: {text}" for speaker, text in history] or ["(no previous messages)"]
    return CONVERSATION_HISTORY_TEMPLATE.format(
        history="\n".join(lines),
        user_message=user_message,
    )


# ── Categorization prompt ─────────────────────────────────────────────────────

CATEGORIZATION_PROMPT = """\
You are an expense categorization expert. Analyze the following expense and \
categorize it into one of these categories: {categories}

Expense Details:
- Merchant: {merchant}
- Amount: {currency} {amount}
- Description: {description}
- Date: {date}
- Notes: {notes}

Rules:
1. Choose the most specific and appropriate category from the list
2. Confidence should be between 0.7 and 1.0
3. Reasoning should be clear and concise
4. Suggested payment method should be one of: {payment_methods}
5. If the expense doesn't clearly fit any category, use "Other" with lower confidence
6. Use the description field as the primary source for categorization when available

Answer by calling the categorize_expense tool.\
"""


def build_categorization_prompt(
    *,
    merchant: str | None,
    amount: Any,
    currency: str,
    description: str | None,
    expense_date: date | None,
    notes: str | None,
    categories: list[str],
    payment_methods: list[str],
) -> str:
    """Fill :data:`CATEGORIZATION_PROMPT` for one expense."""
    return CATEGORIZATION_PROMPT.format(
        categories=", ".join(categories),
        merchant=merchant or "Not provided",
        currency=currency,
        amount=amount if amount is not None else "Not provided",
        description=description or "Not provided",
        date=expense_date.isoformat() if expense_date else "Not specified",
        notes=notes or "None",
        payment_methods=", ".join(payment_methods),
    )
