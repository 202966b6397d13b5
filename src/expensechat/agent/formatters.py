"""User-facing text for the expense conversation.

Summaries, targeted re-prompts for missing fields, edit confirmations and
the fixed messages used by the orchestrator live here so that the state
machine only decides *what* to say.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from expensechat.agent.state import ExpenseDraft, Taxonomy

# ── Fixed messages ────────────────────────────────────────────────────────────

WELCOME_AI = (
    "Hi! I'm your AI expense assistant. Just tell me about your expense in natural "
    "language - like 'I bought lunch at McDonald's for $12 yesterday' or "
    "'Paid USD 1000 for office supplies last week'."
)
WELCOME_BASIC = (
    "Hi! I'll help you add an expense. Just tell me what you spent money on - like "
    "'I bought lunch at McDonald's for $12' or 'Paid $50 for office supplies'."
)
SAVED = "✅ Expense saved successfully! You can add another expense or close this chat."
READY_FOR_NEXT = "Ready for your next expense! What did you spend money on?"
PROCESSING_ERROR = "Sorry, I had trouble processing that. Could you try again?"
NOTHING_FOUND = (
    "I'm having trouble understanding. Could you please tell me the amount, merchant, "
    "and what you bought? For example: 'I spent $12 at McDonald's for lunch'"
)
CONFIRM_QUESTION = "Should I save this expense now?"
ASK_WHICH_FIELD = (
    "What would you like to change? You can say things like 'change the amount to $15' "
    "or 'date: yesterday'."
)
CONFIRM_REPROMPT = (
    "Please reply 'yes' to save this expense, or tell me what to change "
    "(for example 'change the merchant to Starbucks')."
)
EDIT_ABANDONED = "No problem, nothing was changed."
UNKNOWN_EDIT_FIELD = "I'm not sure which field you want to edit. Please be more specific."
ANYTHING_ELSE = "Is there anything else you'd like to add before I show you the summary?"

#: Re-prompt per missing field, in the order fields are checked.
MISSING_FIELD_PROMPTS: dict[str, str] = {
    "merchant": "Where did you spend the money?",
    "amount": "How much did you spend?",
    "description": "What did you buy?",
    "category": "Which category does this expense belong to?",
}

#: Message per field when an edit value could not be understood.
EDIT_FORMAT_HINTS: dict[str, str] = {
    "date": (
        "I couldn't understand the date. Please try formats like 'yesterday', "
        "'29th Sep 2025', or '29/09/2025'."
    ),
    "amount": "I couldn't find an amount. Please specify like '$50' or 'USD 100'.",
    "merchant": "I couldn't find a merchant name. Please specify where you spent the money.",
    "description": "I couldn't find a description. Please tell me what you bought.",
    "notes": "What note would you like to add?",
}

#: Persistence failure reason fragment -> user message.
PERSISTENCE_ERRORS: tuple[tuple[str, str], ...] = (
    ("category", "Please select a valid category."),
    ("workspace", "Invalid workspace. Please refresh and try again."),
    ("user", "Authentication error. Please log in again."),
    ("payment_method", "Invalid payment method selected."),
)
PERSISTENCE_GENERIC = "Sorry, there was an error saving your expense. Please try again."


# ── Helpers ───────────────────────────────────────────────────────────────────


def format_amount(amount: Decimal, currency: str = "USD") -> str:
    symbol = {"USD": "$", "EUR": "€", "GBP": "£", "INR": "₹", "ILS": "₪", "JPY": "¥"}.get(
        currency.upper()
    )
    text = f"{amount:,.2f}" if amount != amount.to_integral_value() else f"{amount:,.0f}"
    return f"{symbol}{text}" if symbol else f"{currency} {text}"


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def format_draft_summary(draft: ExpenseDraft, taxonomy: Taxonomy) -> str:
    """Render the set fields of *draft*, one per line.

    Example::

        💰 Amount: $12
        🏪 Merchant: McDonald's
        📝 Description: lunch
        📂 Category: Food & Dining
        📅 Date: 05/10/2025
    """
    lines: list[str] = []
    if draft.amount is not None:
        lines.append(f"💰 Amount: {format_amount(draft.amount, draft.currency)}")
    if draft.merchant:
        lines.append(f"🏪 Merchant: {draft.merchant}")
    if draft.description:
        lines.append(f"📝 Description: {draft.description}")
    category = taxonomy.category_by_id(draft.category_ref)
    if category is not None:
        lines.append(f"📂 Category: {category.name}")
    payment_method = taxonomy.payment_method_by_id(draft.payment_method_ref)
    if payment_method is not None:
        lines.append(f"💳 Payment method: {payment_method.name}")
    if draft.notes:
        lines.append(f"🗒 Notes: {draft.notes}")
    lines.append(f"📅 Date: {format_date(draft.date)}")
    return "\n".join(lines)


def format_confirmation(draft: ExpenseDraft, taxonomy: Taxonomy, lead: str = "") -> str:
    """Summary plus the save question, optionally preceded by *lead*."""
    head = f"{lead}\n\n" if lead else ""
    return f"{head}{format_draft_summary(draft, taxonomy)}\n\n{CONFIRM_QUESTION}"


def format_missing_prompt(missing: list[str], lead: str = "") -> str:
    """Ask for exactly the fields in *missing*.

    Example: ``"I still need a few details: How much did you spend? What did you
    buy?"``; with *lead* the questions follow it on a new paragraph.
    """
    questions = " ".join(MISSING_FIELD_PROMPTS[f] for f in missing if f in MISSING_FIELD_PROMPTS)
    if lead:
        return f"{lead}\n\n{questions}"
    if len(missing) == 1:
        return questions
    return f"I still need a few details: {questions}"


def format_category_options(taxonomy: Taxonomy, lead: str = "") -> str:
    """Ask the user to pick one of the taxonomy's categories."""
    names = ", ".join(taxonomy.category_names()) or "(no categories configured)"
    head = lead or "Which category does this expense belong to?"
    return f"{head}\nAvailable categories: {names}"


def format_payment_options(taxonomy: Taxonomy, label: str) -> str:
    names = ", ".join(p.name for p in taxonomy.payment_methods) or "(none configured)"
    return f"I couldn't find a payment method called '{label}'. Available methods: {names}"


def format_persistence_error(reason: str | None) -> str:
    """Map a persistence failure reason onto a user message."""
    lowered = (reason or "").lower()
    for fragment, message in PERSISTENCE_ERRORS:
        if fragment in lowered:
            return message
    return PERSISTENCE_GENERIC
