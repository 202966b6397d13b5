"""Tests for the conversation state machine.

Extraction, resolution and rule-based classification run for real; LLM-backed
collaborators are replaced by mocks.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from expensechat.agent import formatters
from expensechat.agent.classification import (
    ClassificationResult,
    RuleBasedClassifier,
    UnavailableClassifier,
)
from expensechat.agent.machine import ConversationStateMachine
from expensechat.agent.state import (
    ConversationContext,
    ConversationPhase,
    ExpenseDraft,
    Taxonomy,
)
from expensechat.agent.understanding import UnavailableUnderstanding, UnderstandingUnavailable
from expensechat.config import settings
from expensechat.taxonomy import CategoryResolver
from expensechat.tools.conversation import ConversationTurn, ExtractedFields

TODAY = date(2025, 3, 15)
TAXONOMY = Taxonomy.from_names(settings.default_categories, settings.default_payment_methods)


def _machine(classifier=None, understanding=None) -> ConversationStateMachine:
    return ConversationStateMachine(
        CategoryResolver(),
        classifier or RuleBasedClassifier(),
        understanding or UnavailableUnderstanding(),
        today=lambda: TODAY,
    )


def _ctx(taxonomy: Taxonomy = TAXONOMY, **overrides) -> ConversationContext:
    overrides.setdefault("draft", ExpenseDraft(date=TODAY))
    return ConversationContext(taxonomy=taxonomy, **overrides)


def _confirming_ctx(**draft_overrides) -> ConversationContext:
    values = {
        "date": date(2025, 3, 14),
        "merchant": "McDonald's",
        "amount": Decimal("25"),
        "description": "lunch",
        "category_ref": "food-dining",
    }
    values.update(draft_overrides)
    return _ctx(phase=ConversationPhase.CONFIRMING, draft=ExpenseDraft(**values))


def _classifier_returning(result: ClassificationResult | None = None, **kwargs) -> MagicMock:
    classifier = MagicMock()
    classifier.is_available.return_value = True
    classifier.categorize = AsyncMock(return_value=result, **kwargs)
    return classifier


def _understanding_returning(turn: ConversationTurn | None = None, **kwargs) -> MagicMock:
    understanding = MagicMock()
    understanding.is_available.return_value = True
    understanding.process_message = AsyncMock(return_value=turn, **kwargs)
    return understanding


# ── Collecting ────────────────────────────────────────────────────────────────


class TestCollecting:
    @pytest.mark.asyncio
    async def test_complete_utterance_goes_to_confirming(self) -> None:
        ctx = _ctx()
        step = await _machine().handle(ctx, "I spent $25 at McDonald's yesterday for lunch")

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.record is None
        assert step.reply.startswith("Great! Here's what I found:")
        assert "💰 Amount: $25" in step.reply
        assert "🏪 Merchant: McDonald's" in step.reply
        assert "📂 Category: Food & Dining" in step.reply
        assert "📅 Date: 14/03/2025" in step.reply
        assert step.reply.endswith(formatters.CONFIRM_QUESTION)

        draft = ctx.draft
        assert draft.date == date(2025, 3, 14)
        assert draft.description == "lunch"
        assert draft.category_ref == "food-dining"
        assert draft.category_confidence == 0.9
        assert draft.payment_method_ref == "credit-card"

    @pytest.mark.asyncio
    async def test_partial_utterance_asks_for_missing_fields(self) -> None:
        ctx = _ctx()
        machine = _machine()

        step = await machine.handle(ctx, "bought coffee at Starbucks")

        assert step.phase == ConversationPhase.COLLECTING
        assert step.reply == (
            "I still need a few details: How much did you spend? "
            "Which category does this expense belong to?"
        )
        assert ctx.draft.merchant == "Starbucks"
        assert ctx.draft.description == "coffee"

        step = await machine.handle(ctx, "$4.50")

        assert step.phase == ConversationPhase.CONFIRMING
        assert ctx.draft.amount == Decimal("4.50")
        assert ctx.draft.merchant == "Starbucks"
        assert "📂 Category: Food & Dining" in step.reply

    @pytest.mark.asyncio
    async def test_nothing_found(self) -> None:
        ctx = _ctx()
        step = await _machine().handle(ctx, "hello there")
        assert step.reply == formatters.NOTHING_FOUND
        assert step.phase == ConversationPhase.COLLECTING

    @pytest.mark.asyncio
    async def test_unmatched_category_falls_back_to_other(self) -> None:
        classifier = _classifier_returning(ClassificationResult(category="Snacks", confidence=0.6))
        ctx = _ctx()

        step = await _machine(classifier).handle(ctx, "bought chips at Kiosk for $3")

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith("I couldn't match 'Snacks' to one of your categories")
        assert ctx.draft.category_ref == "other"
        assert ctx.draft.category_confidence is None
        assert ctx.draft.notes == "Category: Snacks"

    @pytest.mark.asyncio
    async def test_manual_selection_without_other_category(self) -> None:
        taxonomy = Taxonomy.from_names(["Travel", "Utilities"], ["Cash"])
        classifier = _classifier_returning(ClassificationResult(category="Snacks"))
        machine = _machine(classifier)
        ctx = _ctx(taxonomy)

        step = await machine.handle(ctx, "bought chips at Kiosk for $3")

        assert step.phase == ConversationPhase.COLLECTING
        assert "Available categories: Travel, Utilities" in step.reply
        assert ctx.clarification_field == "category"

        step = await machine.handle(ctx, "Travel")

        assert step.phase == ConversationPhase.CONFIRMING
        assert ctx.draft.category_ref == "travel"
        assert classifier.categorize.await_count == 1

    @pytest.mark.asyncio
    async def test_classifier_failure_asks_for_category(self) -> None:
        classifier = _classifier_returning(side_effect=RuntimeError("boom"))
        ctx = _ctx()

        step = await _machine(classifier).handle(ctx, "bought chips at Kiosk for $3")

        assert step.phase == ConversationPhase.COLLECTING
        assert "Available categories:" in step.reply
        assert ctx.draft.category_ref is None

    @pytest.mark.asyncio
    async def test_next_utterance_after_complete_starts_fresh_draft(self) -> None:
        ctx = _confirming_ctx()
        ctx.phase = ConversationPhase.COMPLETE

        step = await _machine().handle(ctx, "hello there")

        assert step.phase == ConversationPhase.COLLECTING
        assert ctx.draft.merchant is None
        assert ctx.draft.date == TODAY


# ── Understanding ─────────────────────────────────────────────────────────────


class TestUnderstanding:
    @pytest.mark.asyncio
    async def test_structured_reading_is_merged(self) -> None:
        turn = ConversationTurn(
            message="Got it!",
            next_step="confirming",
            extracted=ExtractedFields(
                amount="12",
                merchant="Subway",
                description="sandwich",
                date="2025-03-10",
                category="Food & Dining",
                payment_method="Cash",
            ),
        )
        understanding = _understanding_returning(turn)
        classifier = _classifier_returning()
        ctx = _ctx(understanding_available=True)

        step = await _machine(classifier).handle(ctx, "subway sandwich 12", understanding=understanding)

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith("Got it!\n\n")
        assert ctx.draft.amount == Decimal("12")
        assert ctx.draft.date == date(2025, 3, 10)
        assert ctx.draft.category_ref == "food-dining"
        assert ctx.draft.payment_method_ref == "cash"
        understanding.process_message.assert_awaited_once_with("subway sandwich 12", ctx)
        classifier.categorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_collecting_step_holds_a_complete_draft(self) -> None:
        fields = {
            "amount": "12",
            "merchant": "Subway",
            "description": "sandwich",
            "category": "Food & Dining",
        }
        asks_card = ConversationTurn(
            message="Which card did you pay with?",
            extracted=ExtractedFields(**fields),
            next_step="collecting",
        )
        understanding = _understanding_returning(asks_card)
        machine = _machine(understanding=understanding)
        ctx = _ctx(understanding_available=True)

        step = await machine.handle(ctx, "subway sandwich 12")

        assert step.phase == ConversationPhase.COLLECTING
        assert step.reply == "Which card did you pay with?"
        assert ctx.draft.missing_fields() == []

        understanding.process_message.return_value = ConversationTurn(
            message="Thanks!",
            extracted=ExtractedFields(payment_method="Cash"),
            next_step="confirming",
        )
        step = await machine.handle(ctx, "cash")

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith("Thanks!\n\n")
        assert ctx.draft.payment_method_ref == "cash"

    @pytest.mark.asyncio
    async def test_confirming_step_is_gated_by_missing_fields(self) -> None:
        turn = ConversationTurn(
            message="Here's what I have.",
            extracted=ExtractedFields(amount="12", merchant="Subway", category="Food & Dining"),
            next_step="confirming",
            is_complete=True,
        )
        ctx = _ctx(understanding_available=True)

        step = await _machine(understanding=_understanding_returning(turn)).handle(ctx, "subway 12")

        assert step.phase == ConversationPhase.COLLECTING
        assert step.reply == "Here's what I have.\n\nWhat did you buy?"
        assert ctx.clarification_field == "description"

    @pytest.mark.asyncio
    async def test_complete_step_stops_at_confirming(self) -> None:
        turn = ConversationTurn(
            message="Saving it now.",
            extracted=ExtractedFields(
                amount="12", merchant="Subway", description="sandwich", category="Food & Dining"
            ),
            next_step="complete",
            is_complete=True,
        )
        ctx = _ctx(understanding_available=True)

        step = await _machine(understanding=_understanding_returning(turn)).handle(ctx, "subway 12")

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.record is None
        assert step.reply.endswith(formatters.CONFIRM_QUESTION)

    @pytest.mark.asyncio
    async def test_editing_step_with_complete_draft(self) -> None:
        turn = ConversationTurn(
            message="",
            extracted=ExtractedFields(
                amount="12", merchant="Subway", description="sandwich", category="Food & Dining"
            ),
            next_step="editing",
        )
        ctx = _ctx(understanding_available=True)

        step = await _machine(understanding=_understanding_returning(turn)).handle(ctx, "subway 12")

        assert step.phase == ConversationPhase.EDITING
        assert step.reply == formatters.ASK_WHICH_FIELD
        assert ctx.editing_field is None

    @pytest.mark.asyncio
    async def test_unknown_payment_method_kept_as_note(self) -> None:
        turn = ConversationTurn(
            message="Which category?",
            extracted=ExtractedFields(merchant="Subway", payment_method="Amex"),
        )
        ctx = _ctx(understanding_available=True)

        step = await _machine(understanding=_understanding_returning(turn)).handle(ctx, "Subway with Amex")

        assert step.phase == ConversationPhase.COLLECTING
        assert step.reply.startswith("Which category?\n\n")
        assert ctx.draft.notes == "Payment method: Amex"
        assert ctx.draft.payment_method_ref is None

    @pytest.mark.asyncio
    async def test_unavailable_falls_back_to_local_extraction(self) -> None:
        understanding = _understanding_returning(side_effect=UnderstandingUnavailable("timeout"))
        ctx = _ctx(understanding_available=True)

        step = await _machine(understanding=understanding).handle(
            ctx, "I spent $25 at McDonald's yesterday for lunch"
        )

        assert step.phase == ConversationPhase.CONFIRMING
        assert ctx.draft.merchant == "McDonald's"
        understanding.process_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_consulted_when_session_has_no_understanding(self) -> None:
        understanding = _understanding_returning()
        ctx = _ctx(understanding_available=False)

        await _machine(understanding=understanding).handle(ctx, "bought coffee at Starbucks")

        understanding.process_message.assert_not_awaited()


# ── Confirming ────────────────────────────────────────────────────────────────


class TestConfirming:
    @pytest.mark.asyncio
    async def test_yes_finalizes_record(self) -> None:
        ctx = _confirming_ctx(payment_method_ref="cash")

        step = await _machine().handle(ctx, "yes")

        assert step.phase == ConversationPhase.COMPLETE
        assert step.reply == "Saving your expense..."
        record = step.record
        assert record is not None
        assert record.merchant == "McDonald's"
        assert record.amount == Decimal("25")
        assert record.category_ref == "food-dining"
        assert record.payment_method_ref == "cash"
        assert record.date == date(2025, 3, 14)

    @pytest.mark.asyncio
    async def test_yes_with_missing_field_returns_to_collecting(self) -> None:
        ctx = _confirming_ctx(amount=None)

        step = await _machine().handle(ctx, "yes")

        assert step.phase == ConversationPhase.COLLECTING
        assert step.record is None
        assert step.reply == "How much did you spend?"
        assert ctx.clarification_field == "amount"

    @pytest.mark.asyncio
    async def test_no_enters_editing(self) -> None:
        ctx = _confirming_ctx()
        step = await _machine().handle(ctx, "no")
        assert step.phase == ConversationPhase.EDITING
        assert step.reply == formatters.ASK_WHICH_FIELD

    @pytest.mark.asyncio
    async def test_unclear_reply_reprompts(self) -> None:
        ctx = _confirming_ctx()
        step = await _machine().handle(ctx, "maybe later")
        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply == formatters.CONFIRM_REPROMPT

    @pytest.mark.asyncio
    async def test_direct_edit_returns_to_confirming(self) -> None:
        ctx = _confirming_ctx()

        step = await _machine().handle(ctx, "change the merchant to Burger King")

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith("Updated merchant to Burger King")
        assert ctx.draft.merchant == "Burger King"

    @pytest.mark.asyncio
    async def test_date_edit(self) -> None:
        ctx = _confirming_ctx(date=TODAY)
        step = await _machine().handle(ctx, "change date to yesterday")
        assert step.reply.startswith("Updated date to 14/03/2025")
        assert ctx.draft.date == date(2025, 3, 14)

    @pytest.mark.asyncio
    async def test_persistence_failure_allows_retry(self) -> None:
        machine = _machine()
        ctx = _confirming_ctx()
        step = await machine.handle(ctx, "yes")
        assert step.phase == ConversationPhase.COMPLETE

        machine.persistence_failed(ctx, "connection reset")

        assert ctx.phase == ConversationPhase.CONFIRMING
        assert ctx.draft.merchant == "McDonald's"
        step = await machine.handle(ctx, "yes")
        assert step.phase == ConversationPhase.COMPLETE
        assert step.record is not None


# ── Editing ───────────────────────────────────────────────────────────────────


class TestEditing:
    @pytest.mark.asyncio
    async def test_field_then_value(self) -> None:
        machine = _machine()
        ctx = _confirming_ctx()
        await machine.handle(ctx, "no")

        step = await machine.handle(ctx, "amount")
        assert step.phase == ConversationPhase.EDITING
        assert step.reply == formatters.EDIT_FORMAT_HINTS["amount"]
        assert ctx.editing_field == "amount"

        step = await machine.handle(ctx, "$42")
        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith("Updated amount to $42")
        assert ctx.draft.amount == Decimal("42")
        assert ctx.editing_field is None

    @pytest.mark.asyncio
    async def test_cancel_keeps_draft(self) -> None:
        machine = _machine()
        ctx = _confirming_ctx()
        await machine.handle(ctx, "no")

        step = await machine.handle(ctx, "never mind")

        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith(formatters.EDIT_ABANDONED)
        assert ctx.draft.amount == Decimal("25")

    @pytest.mark.asyncio
    async def test_unknown_field(self) -> None:
        machine = _machine()
        ctx = _confirming_ctx()
        await machine.handle(ctx, "no")

        step = await machine.handle(ctx, "hmm, not sure")

        assert step.phase == ConversationPhase.EDITING
        assert step.reply == f"{formatters.UNKNOWN_EDIT_FIELD}\n\n{formatters.ASK_WHICH_FIELD}"

    @pytest.mark.asyncio
    async def test_unresolvable_category_stays_in_editing(self) -> None:
        machine = _machine()
        ctx = _confirming_ctx()

        step = await machine.handle(ctx, "change category to Zzyzx")
        assert step.phase == ConversationPhase.EDITING
        assert "I couldn't find a category matching 'Zzyzx'." in step.reply
        assert ctx.draft.category_ref == "food-dining"

        step = await machine.handle(ctx, "Travel")
        assert step.phase == ConversationPhase.CONFIRMING
        assert step.reply.startswith("Updated category to Travel")
        assert ctx.draft.category_ref == "travel"

    @pytest.mark.asyncio
    async def test_unknown_payment_method_lists_options(self) -> None:
        ctx = _confirming_ctx()

        step = await _machine().handle(ctx, "change the card to Amex")

        assert step.phase == ConversationPhase.EDITING
        assert "I couldn't find a payment method called 'Amex'" in step.reply
        assert ctx.draft.payment_method_ref is None


# ── End to end ────────────────────────────────────────────────────────────────


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_lunch_at_mcdonalds_yesterday(self) -> None:
        ctx = _ctx()

        step = await _machine().handle(ctx, "I bought lunch at McDonald's for $12 yesterday")

        assert step.phase == ConversationPhase.CONFIRMING
        assert ctx.draft.merchant == "McDonald's"
        assert ctx.draft.amount == Decimal("12")
        assert ctx.draft.date == date(2025, 3, 14)
        assert "lunch" in ctx.draft.description
        assert ctx.draft.category_ref == "food-dining"

    @pytest.mark.asyncio
    async def test_lunch_without_classifier_asks_for_category(self) -> None:
        ctx = _ctx()

        step = await _machine(UnavailableClassifier()).handle(
            ctx, "I bought lunch at McDonald's for $12 yesterday"
        )

        assert step.phase == ConversationPhase.COLLECTING
        assert "Available categories:" in step.reply
        assert ctx.draft.category_ref is None
        assert ctx.draft.merchant == "McDonald's"

    @pytest.mark.asyncio
    async def test_office_supplies_last_week(self) -> None:
        machine = _machine()
        ctx = _ctx()

        step = await machine.handle(ctx, "Paid USD 1000 for office supplies last week")

        assert step.phase == ConversationPhase.COLLECTING
        assert ctx.draft.amount == Decimal("1000")
        assert ctx.draft.date == date(2025, 3, 8)
        assert ctx.draft.description == "office supplies"
        assert ctx.draft.merchant is None

        step = await machine.handle(ctx, "at Staples")
        assert step.phase == ConversationPhase.CONFIRMING
        assert ctx.taxonomy.category_by_id(ctx.draft.category_ref).name == "Office Supplies"

        record = (await machine.handle(ctx, "yes")).record
        assert record is not None
        assert record.amount == Decimal("1000")
        assert record.date == date(2025, 3, 8)
        assert record.merchant == "Staples"

    @pytest.mark.asyncio
    async def test_groceries_label_is_filed_under_food(self) -> None:
        classifier = _classifier_returning(ClassificationResult(category="Groceries", confidence=0.8))
        machine = _machine(classifier)
        ctx = _ctx()

        step = await machine.handle(ctx, "bought vegetables at Whole Foods for $30")
        assert step.phase == ConversationPhase.CONFIRMING

        step = await machine.handle(ctx, "yes")

        assert step.record is not None
        food = next(c for c in TAXONOMY.categories if c.name == "Food & Dining")
        assert step.record.category_ref == food.id
        assert step.record.notes is None

    @pytest.mark.asyncio
    async def test_amount_edit_then_yes_keeps_other_fields(self) -> None:
        machine = _machine()
        ctx = _confirming_ctx(payment_method_ref="cash", notes="team lunch")
        before = ctx.draft.finalize()

        step = await machine.handle(ctx, "change amount to $42")
        assert step.phase == ConversationPhase.CONFIRMING

        step = await machine.handle(ctx, "yes")

        assert step.record is not None
        assert step.record.amount == Decimal("42")
        assert step.record.model_dump(exclude={"amount"}) == before.model_dump(exclude={"amount"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"amount": Decimal("0")}, "amount"),
            ({"amount": Decimal("-5")}, "amount"),
            ({"merchant": "   "}, "merchant"),
            ({"description": ""}, "description"),
            ({"category_ref": None}, "category"),
        ],
    )
    async def test_yes_is_blocked_by_invalid_field(self, overrides: dict, field: str) -> None:
        ctx = _confirming_ctx(**overrides)

        step = await _machine().handle(ctx, "yes")

        assert step.phase == ConversationPhase.COLLECTING
        assert step.record is None
        assert step.reply == formatters.MISSING_FIELD_PROMPTS[field]
