"""Conversation-understanding tool for the LLM agent.

Provides the ``process_expense_conversation`` tool.  The LLM is forced to
call it on every turn, so its arguments are the structured understanding of
the user's message: a natural reply, the expense fields it found and the
conversation phase it proposes next.

The :class:`ConversationTurn` Pydantic model validates those arguments.  The
state machine merges the extracted fields and follows ``next_step`` as long
as the draft supports it (confirming only once nothing is missing).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from expensechat.tools.registry import default_registry

NextStep = Literal["initial", "collecting", "confirming", "editing", "complete"]


class ExtractedFields(BaseModel):
    """Expense fields extracted by the LLM, all as raw strings.

    Values are parsed by the state machine with the same rules used for
    locally extracted text, so ``amount="$12"`` and ``date="yesterday"`` are
    both accepted.
    """

    amount: str | None = Field(default=None, description="Expense amount (numbers only).")
    merchant: str | None = Field(default=None, description="Merchant or business name.")
    description: str | None = Field(default=None, description="What was purchased.")
    date: str | None = Field(default=None, description="Date in YYYY-MM-DD format.")
    category: str | None = Field(default=None, description="Expense category label.")
    payment_method: str | None = Field(default=None, description="Payment method label.")
    notes: str | None = Field(default=None, description="Additional notes.")

    def non_empty(self) -> dict[str, str]:
        """Return only the fields with a non-blank value."""
        return {
            name: value.strip()
            for name, value in self.model_dump().items()
            if isinstance(value, str) and value.strip()
        }


class ConversationTurn(BaseModel):
    """Validated arguments of a ``process_expense_conversation`` call."""

    message: str = Field(default="", description="Natural response to the user.")
    extracted: ExtractedFields = Field(default_factory=ExtractedFields)
    next_step: NextStep = "collecting"
    is_complete: bool = False
    needs_user_input: bool = True
    suggested_actions: list[str] = Field(default_factory=list)


# ── JSON Schema for LLM tool calling ─────────────────────────────────────────

PROCESS_EXPENSE_CONVERSATION_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "message": {
            "type": "string",
            "description": "Natural response to the user.",
        },
        "extractedData": {
            "type": "object",
            "properties": {
                "amount": {"type": "string", "description": "Expense amount (numbers only)"},
                "merchant": {"type": "string", "description": "Merchant or business name"},
                "description": {"type": "string", "description": "What was purchased"},
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                "category": {"type": "string", "description": "Expense category"},
                "paymentMethod": {"type": "string", "description": "Payment method, if stated"},
                "notes": {"type": "string", "description": "Additional notes"},
            },
        },
        "nextStep": {
            "type": "string",
            "enum": ["initial", "collecting", "confirming", "editing", "complete"],
            "description": "Next conversation step.",
        },
        "isComplete": {
            "type": "boolean",
            "description": "Whether all required expense information is present.",
        },
        "needsUserInput": {
            "type": "boolean",
            "description": "Whether the assistant is waiting for the user.",
        },
        "suggestedActions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Suggested actions for the user.",
        },
    },
    "required": ["message", "extractedData", "nextStep", "isComplete", "needsUserInput"],
}


@default_registry.tool(
    name="process_expense_conversation",
    description="Process the user's message and extract expense information.",
    parameters_schema=PROCESS_EXPENSE_CONVERSATION_SCHEMA,
)
async def process_expense_conversation(
    message: str = "",
    extractedData: dict[str, Any] | None = None,
    nextStep: str = "collecting",
    isComplete: bool = False,
    needsUserInput: bool = True,
    suggestedActions: list[str] | None = None,
    **_ignored: Any,
) -> ConversationTurn:
    """Validate the LLM's structured reading of one user message.

    This is a **pass-through** tool: the LLM performs the extraction and the
    handler only validates the call's arguments.  Unknown argument names are
    ignored.

    Raises:
        pydantic.ValidationError: If the arguments have the wrong shape
            (e.g. an unknown ``nextStep``).
    """
    data = dict(extractedData or {})
    if "paymentMethod" in data:
        data["payment_method"] = data.pop("paymentMethod")
    extracted = {
        key: None if value is None else str(value)
        for key, value in data.items()
        if key in ExtractedFields.model_fields
    }
    return ConversationTurn(
        message=message,
        extracted=ExtractedFields(**extracted),
        next_step=nextStep,
        is_complete=isComplete,
        needs_user_input=needsUserInput,
        suggested_actions=list(suggestedActions or []),
    )
