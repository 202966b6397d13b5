"""Conversational-understanding collaborator.

While collecting, each utterance may be handed to an understanding
collaborator that reads it together with the running transcript and the
current draft, and returns every field it can find in one pass plus a
suggested next phase.

:class:`LLMUnderstanding` implements this with a forced
``process_expense_conversation`` tool call.  Any failure is reported as
:class:`UnderstandingUnavailable`, which makes the state machine fall back
to the rule-based extractors for that turn.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from expensechat.agent.llm_client import ChatMessage, ChatOptions, LLMClient
from expensechat.agent.prompts import build_conversation_prompt, build_history_message
from expensechat.config import settings
from expensechat.tools import default_registry
from expensechat.tools.conversation import ConversationTurn, ExtractedFields
from expensechat.tools.registry import ToolCallError, ToolRegistry

if TYPE_CHECKING:
    from expensechat.agent.state import ConversationContext

logger = logging.getLogger(__name__)

#: Sampling for conversational turns.
SAMPLING = ChatOptions(temperature=0.3, max_tokens=800)

CONVERSATION_TOOL = "process_expense_conversation"

#: Structured reading of one utterance.
UnderstandingResult = ConversationTurn

__all__ = [
    "ConversationUnderstanding",
    "ExtractedFields",
    "LLMUnderstanding",
    "UnavailableUnderstanding",
    "UnderstandingResult",
    "UnderstandingUnavailable",
    "create_understanding",
]


class UnderstandingUnavailable(RuntimeError):
    """Raised when the understanding collaborator cannot answer this turn."""


@runtime_checkable
class ConversationUnderstanding(Protocol):
    """Reads an utterance in the context of the conversation so far."""

    def is_available(self) -> bool:
        ...

    async def process_message(
        self, text: str, ctx: ConversationContext
    ) -> UnderstandingResult:
        """Return the structured reading of *text*.

        Raises:
            UnderstandingUnavailable: If no reading can be produced.
        """
        ...


def _draft_view(ctx: ConversationContext) -> dict[str, Any]:
    """The draft as the model should see it (names instead of ids)."""
    draft = ctx.draft
    category = ctx.taxonomy.category_by_id(draft.category_ref)
    payment_method = ctx.taxonomy.payment_method_by_id(draft.payment_method_ref)
    return {
        "amount": str(draft.amount) if draft.amount is not None else None,
        "merchant": draft.merchant,
        "description": draft.description,
        "date": draft.date.isoformat(),
        "category": category.name if category else ctx.category_label,
        "paymentMethod": payment_method.name if payment_method else None,
        "notes": draft.notes,
    }


class LLMUnderstanding:
    """Understanding collaborator backed by an LLM tool call.

    Args:
        llm_client: Client used for the chat completion.
        registry: Tool registry holding ``process_expense_conversation``.
        history_turns: Number of previous transcript entries sent along
            (defaults to ``settings.understanding_history_turns``).
        today: Callable returning the reference date for relative dates.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        registry: ToolRegistry | None = None,
        history_turns: int | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._llm = llm_client
        self._registry = registry or default_registry
        self._history_turns = (
            history_turns if history_turns is not None else settings.understanding_history_turns
        )
        self._today = today

    def is_available(self) -> bool:
        return True

    async def process_message(
        self, text: str, ctx: ConversationContext
    ) -> UnderstandingResult:
        system_prompt = build_conversation_prompt(
            phase=ctx.phase.value,
            current_expense=_draft_view(ctx),
            categories=ctx.taxonomy.category_names(),
            today=self._today(),
        )
        history = [(entry.speaker.value, entry.text) for entry in ctx.history(self._history_turns)]
        messages = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=build_history_message(history, text)),
        ]
        tools = self._registry.get_tools_for_llm(names=[CONVERSATION_TOOL])

        try:
            response = await self._llm.chat(
                messages=messages, tools=tools, tool_choice=CONVERSATION_TOOL, options=SAMPLING,
            )
        except Exception as exc:
            logger.warning("Understanding call failed for session %s: %s", ctx.session_id, exc)
            raise UnderstandingUnavailable(str(exc)) from exc

        try:
            result: UnderstandingResult = await self._registry.invoke(
                response.tool_calls, CONVERSATION_TOOL,
            )
        except ToolCallError as exc:
            logger.warning("Unusable understanding reply (%s; content=%r)", exc, response.content[:200])
            raise UnderstandingUnavailable(str(exc)) from exc

        logger.debug(
            "Understanding: next_step=%s extracted=%s",
            result.next_step,
            result.extracted.non_empty(),
        )
        return result


class UnavailableUnderstanding:
    """Used when no LLM is configured; every turn uses local extraction."""

    def is_available(self) -> bool:
        return False

    async def process_message(
        self, text: str, ctx: ConversationContext
    ) -> UnderstandingResult:
        raise UnderstandingUnavailable("conversational understanding is not configured")


def create_understanding(llm_client: LLMClient | None) -> ConversationUnderstanding:
    """Pick the understanding implementation for the configured backends."""
    if llm_client is None:
        return UnavailableUnderstanding()
    return LLMUnderstanding(llm_client)
