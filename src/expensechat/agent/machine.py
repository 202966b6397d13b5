"""Conversation state machine for a single expense draft.

Phases and transitions::

    initial ──utterance──▶ collecting ──all required fields + category
                               ▲          resolution attempted──▶ confirming
                               │                                    │  ▲
                               │                    edit / "no" ────┘  │ edit applied
                               │                        ▼              │ or abandoned
                               │                     editing ──────────┘
                               │
    confirming ──"yes"──▶ complete (finalized record) ──persistence fails──▶ confirming

In collecting, an understanding result's ``next_step`` chooses the transition
within what the draft allows (see :func:`_next_phase`).

The machine mutates the :class:`ConversationContext` it is given.  The
session orchestrator hands it a private copy and adopts the result only if
the session is still live.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from expensechat.agent import formatters
from expensechat.agent.classification import (
    ClassificationRequest,
    ClassificationResult,
    ExpenseClassifier,
)
from expensechat.agent.state import (
    ConversationContext,
    ConversationPhase,
    ExpenseRecord,
)
from expensechat.agent.understanding import (
    ConversationUnderstanding,
    UnderstandingResult,
    UnderstandingUnavailable,
)
from expensechat.config import settings
from expensechat.extraction import (
    FieldEdit,
    detect_field_edit,
    detect_field_name,
    extract_amount,
    extract_date,
    extract_description,
    extract_merchant,
    parse_amount_value,
    parse_date_value,
)
from expensechat.taxonomy.resolver import CategoryResolver

logger = logging.getLogger(__name__)

AFFIRMATIVE = re.compile(
    r"\b(?:yes|y|yeah|yep|yup|sure|ok|okay|save(?:\s+it)?|confirm|correct|"
    r"looks\s+good|go\s+ahead|do\s+it)\b",
    re.IGNORECASE,
)
NEGATIVE = re.compile(
    r"\b(?:no|nope|nah|wrong|incorrect|not\s+right|not\s+correct)\b",
    re.IGNORECASE,
)
CANCEL_EDIT = re.compile(
    r"^\s*(?:cancel|never\s*mind|nevermind|forget\s+it|stop)\b",
    re.IGNORECASE,
)


@dataclass
class StepResult:
    """Outcome of one utterance."""

    #: Text to show the user.
    reply: str

    #: Phase the conversation is in after the step.
    phase: ConversationPhase

    #: Finalized record, set only when ``phase`` is ``COMPLETE``.
    record: ExpenseRecord | None = None


def _clean_value(value: str) -> str:
    return value.strip().strip("'\"").strip().rstrip(".!?").strip()


def _next_phase(understood: UnderstandingResult | None, missing: list[str]) -> ConversationPhase:
    """Phase after a collecting turn.

    With an understanding result its ``next_step`` is followed, gated by the
    draft: confirming and editing need nothing missing, and ``complete`` is
    capped at confirming since only a "yes" finalizes a record.  Without
    one, the draft alone decides.
    """
    if missing:
        return ConversationPhase.COLLECTING
    if understood is None:
        return ConversationPhase.CONFIRMING
    proposed = ConversationPhase(understood.next_step)
    if proposed in (ConversationPhase.CONFIRMING, ConversationPhase.COMPLETE):
        return ConversationPhase.CONFIRMING
    if proposed == ConversationPhase.EDITING:
        return ConversationPhase.EDITING
    return ConversationPhase.COLLECTING


class ConversationStateMachine:
    """Drives one expense draft from first utterance to a finalized record.

    Args:
        resolver: Maps category / payment-method labels onto the taxonomy.
        classifier: Suggests a category when the user gave none.
        understanding: Default understanding collaborator, used when
            :meth:`handle` is not given a per-session one.
        today: Callable returning the reference date for relative dates.
        other_category_name: Name of the catch-all category used when a
            label does not resolve.
    """

    def __init__(
        self,
        resolver: CategoryResolver,
        classifier: ExpenseClassifier,
        understanding: ConversationUnderstanding,
        today: Callable[[], date] = date.today,
        other_category_name: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._classifier = classifier
        self._understanding = understanding
        self._today = today
        self._other_name = other_category_name or settings.other_category_name

    # ── Public entry points ───────────────────────────────────────────────

    async def handle(
        self,
        ctx: ConversationContext,
        text: str,
        *,
        understanding: ConversationUnderstanding | None = None,
    ) -> StepResult:
        """Process one user utterance.

        Args:
            ctx: The conversation context; mutated in place.
            text: The raw utterance.
            understanding: Per-session understanding collaborator
                (defaults to the one given at construction).

        Returns:
            A :class:`StepResult` with the reply and the new phase.
        """
        text = text.strip()
        if ctx.phase == ConversationPhase.COMPLETE:
            ctx.reset_draft(self._today())
        if ctx.phase == ConversationPhase.INITIAL:
            ctx.phase = ConversationPhase.COLLECTING

        logger.debug("Session %s: handling %r in %s", ctx.session_id, text[:100], ctx.phase)

        if ctx.phase == ConversationPhase.CONFIRMING:
            return await self._handle_confirming(ctx, text)
        if ctx.phase == ConversationPhase.EDITING:
            return await self._handle_editing(ctx, text)
        return await self._handle_collecting(ctx, text, understanding or self._understanding)

    def persistence_failed(self, ctx: ConversationContext, reason: str | None = None) -> None:
        """Return *ctx* to confirming after the store rejected the record.

        The draft is left untouched so that a plain "yes" retries the save.
        """
        logger.warning("Session %s: persistence failed (%s)", ctx.session_id, reason)
        ctx.phase = ConversationPhase.CONFIRMING
        ctx.editing_field = None

    # ── Collecting ────────────────────────────────────────────────────────

    async def _handle_collecting(
        self,
        ctx: ConversationContext,
        text: str,
        understanding: ConversationUnderstanding,
    ) -> StepResult:
        lead = ""
        understood: UnderstandingResult | None = None
        if ctx.understanding_available and understanding.is_available():
            try:
                understood = await understanding.process_message(text, ctx)
            except UnderstandingUnavailable as exc:
                logger.warning(
                    "Session %s: understanding unavailable (%s); using local extraction",
                    ctx.session_id,
                    exc,
                )

        if understood is not None:
            changed = self._merge_understood(ctx, understood)
            lead = understood.message.strip()
        else:
            edit = detect_field_edit(text)
            if edit is not None and edit.value:
                ok, message = await self._apply_field(ctx, edit, text)
                if not ok:
                    return StepResult(message, ctx.phase)
                changed, lead = [edit.field], message
            else:
                changed = self._merge_local(ctx, text)

        if not changed and ctx.clarification_field:
            changed = self._fill_clarification(ctx, text)

        notice = await self._ensure_category(ctx)
        if notice:
            lead = f"{lead}\n\n{notice}" if lead else notice

        missing = ctx.draft.missing_fields()
        if missing == ["category"] and ctx.category_attempted:
            # Resolution was attempted and nothing fit: manual selection.
            ctx.clarification_field = "category"
            return StepResult(formatters.format_category_options(ctx.taxonomy, lead), ctx.phase)

        ctx.phase = _next_phase(understood, missing)
        if ctx.phase == ConversationPhase.CONFIRMING:
            ctx.clarification_field = None
            return StepResult(
                formatters.format_confirmation(ctx.draft, ctx.taxonomy, lead or "Great! Here's what I found:"),
                ctx.phase,
            )
        if ctx.phase == ConversationPhase.EDITING:
            ctx.clarification_field = None
            ctx.editing_field = None
            return StepResult(lead or formatters.ASK_WHICH_FIELD, ctx.phase)
        if not missing:
            # Draft is complete but understanding wants to keep collecting.
            ctx.clarification_field = None
            return StepResult(lead or formatters.ANYTHING_ELSE, ctx.phase)

        ctx.clarification_field = missing[0] if len(missing) == 1 else None
        if not changed and not lead and len(missing) == len(formatters.MISSING_FIELD_PROMPTS):
            return StepResult(formatters.NOTHING_FOUND, ctx.phase)
        return StepResult(formatters.format_missing_prompt(missing, lead), ctx.phase)

    def _merge_local(self, ctx: ConversationContext, text: str) -> list[str]:
        """Run the four extractors and merge whatever they found."""
        return ctx.draft.merge(
            date=extract_date(text, self._today()),
            amount=extract_amount(text),
            merchant=extract_merchant(text),
            description=extract_description(text),
        )

    def _merge_understood(self, ctx: ConversationContext, result: UnderstandingResult) -> list[str]:
        """Merge the non-empty fields of an understanding result."""
        fields = result.extracted.non_empty()
        values: dict[str, Any] = {
            "merchant": fields.get("merchant"),
            "description": fields.get("description"),
        }
        if "amount" in fields:
            values["amount"] = parse_amount_value(fields["amount"])
        if "date" in fields:
            values["date"] = parse_date_value(fields["date"], self._today())
        changed = ctx.draft.merge(**values)

        if "notes" in fields and fields["notes"] != ctx.draft.notes:
            ctx.draft.notes = fields["notes"]
            changed.append("notes")

        label = fields.get("category")
        if label:
            current = ctx.taxonomy.category_by_id(ctx.draft.category_ref)
            if current is None or current.name.lower() != label.lower():
                entry = self._resolver.resolve(label, ctx.taxonomy)
                if entry is not None:
                    ctx.draft.category_ref = entry.id
                    ctx.draft.category_confidence = None
                    ctx.category_attempted = True
                    changed.append("category")
                else:
                    ctx.category_label = label

        method = fields.get("payment_method")
        if method:
            entry = self._resolver.resolve_payment_method(method, ctx.taxonomy)
            if entry is not None:
                ctx.draft.payment_method_ref = entry.id
                changed.append("payment_method")
            else:
                ctx.draft.add_note(f"Payment method: {method}")
        return changed

    def _fill_clarification(self, ctx: ConversationContext, text: str) -> list[str]:
        """Take a bare answer as the value of the field last asked about."""
        field = ctx.clarification_field
        value = _clean_value(text)
        if not value:
            return []
        if field == "category":
            ctx.category_label = value
            ctx.category_attempted = False
            return ["category"]
        if field == "amount":
            amount = parse_amount_value(value)
            return ctx.draft.merge(amount=amount) if amount is not None and amount > 0 else []
        if field in ("merchant", "description"):
            return ctx.draft.merge(**{field: value})
        return []

    async def _ensure_category(self, ctx: ConversationContext) -> str | None:
        """Attempt category resolution once merchant, amount and description are set.

        Returns:
            A notice for the user when the category fell back to the
            catch-all entry, else ``None``.
        """
        draft = ctx.draft
        if draft.category_ref is not None:
            return None
        if [f for f in draft.missing_fields() if f != "category"]:
            return None

        label = ctx.category_label
        if label is None:
            if ctx.category_attempted:
                return None
            result = await self._classify(ctx)
            ctx.category_attempted = True
            if result is None:
                return None
            self._apply_payment_suggestion(ctx, result)
            entry = self._resolver.resolve(result.category, ctx.taxonomy)
            if entry is not None:
                draft.category_ref = entry.id
                draft.category_confidence = result.confidence
                return None
            label = result.category
        else:
            ctx.category_attempted = True
            entry = self._resolver.resolve(label, ctx.taxonomy)
            if entry is not None:
                draft.category_ref = entry.id
                draft.category_confidence = None
                ctx.category_label = None
                return None

        other = self._resolver.other_category(ctx.taxonomy, self._other_name)
        if other is None:
            logger.info("Category %r did not resolve and taxonomy has no %r", label, self._other_name)
            return None
        draft.category_ref = other.id
        draft.category_confidence = None
        draft.add_note(f"Category: {label}")
        ctx.category_label = None
        return (
            f"I couldn't match '{label}' to one of your categories, so I filed it "
            f"under {other.name} and kept '{label}' in the notes."
        )

    async def _classify(self, ctx: ConversationContext) -> ClassificationResult | None:
        if not self._classifier.is_available():
            return None
        draft = ctx.draft
        request = ClassificationRequest(
            merchant=draft.merchant,
            amount=draft.amount,
            description=draft.description,
            date=draft.date,
            currency=draft.currency,
            notes=draft.notes,
            categories=ctx.taxonomy.category_names(),
            payment_methods=[p.name for p in ctx.taxonomy.payment_methods],
        )
        try:
            return await self._classifier.categorize(request)
        except Exception:
            logger.exception("Classifier failed for session %s", ctx.session_id)
            return None

    def _apply_payment_suggestion(
        self, ctx: ConversationContext, result: ClassificationResult
    ) -> None:
        if ctx.draft.payment_method_ref is not None or not result.suggested_payment_method:
            return
        entry = self._resolver.resolve_payment_method(result.suggested_payment_method, ctx.taxonomy)
        if entry is not None:
            ctx.draft.payment_method_ref = entry.id

    # ── Confirming ────────────────────────────────────────────────────────

    async def _handle_confirming(self, ctx: ConversationContext, text: str) -> StepResult:
        edit = detect_field_edit(text)
        if edit is not None:
            return await self._apply_edit(ctx, edit, text)

        if NEGATIVE.search(text):
            ctx.phase = ConversationPhase.EDITING
            ctx.editing_field = None
            return StepResult(formatters.ASK_WHICH_FIELD, ctx.phase)

        if AFFIRMATIVE.search(text):
            missing = ctx.draft.missing_fields()
            if missing:
                ctx.phase = ConversationPhase.COLLECTING
                ctx.clarification_field = missing[0] if len(missing) == 1 else None
                return StepResult(formatters.format_missing_prompt(missing), ctx.phase)
            record = ctx.draft.finalize()
            ctx.phase = ConversationPhase.COMPLETE
            return StepResult("Saving your expense...", ctx.phase, record)

        return StepResult(formatters.CONFIRM_REPROMPT, ctx.phase)

    # ── Editing ───────────────────────────────────────────────────────────

    async def _handle_editing(self, ctx: ConversationContext, text: str) -> StepResult:
        if CANCEL_EDIT.match(text):
            ctx.phase = ConversationPhase.CONFIRMING
            ctx.editing_field = None
            return StepResult(
                formatters.format_confirmation(ctx.draft, ctx.taxonomy, formatters.EDIT_ABANDONED),
                ctx.phase,
            )

        edit = detect_field_edit(text)
        if edit is None and ctx.editing_field:
            edit = FieldEdit(field=ctx.editing_field, value=text)
        if edit is None:
            field = detect_field_name(text)
            if field is None:
                return StepResult(
                    f"{formatters.UNKNOWN_EDIT_FIELD}\n\n{formatters.ASK_WHICH_FIELD}",
                    ctx.phase,
                )
            edit = FieldEdit(field=field)
        return await self._apply_edit(ctx, edit, text)

    async def _apply_edit(self, ctx: ConversationContext, edit: FieldEdit, text: str) -> StepResult:
        ok, message = await self._apply_field(ctx, edit, text)
        if ok:
            ctx.phase = ConversationPhase.CONFIRMING
            ctx.editing_field = None
            return StepResult(
                formatters.format_confirmation(ctx.draft, ctx.taxonomy, message),
                ctx.phase,
            )
        ctx.phase = ConversationPhase.EDITING
        ctx.editing_field = edit.field
        return StepResult(message, ctx.phase)

    async def _apply_field(
        self, ctx: ConversationContext, edit: FieldEdit, text: str
    ) -> tuple[bool, str]:
        """Apply one field edit to the draft.

        Returns:
            ``(True, confirmation)`` on success, ``(False, hint)`` when the
            value could not be understood.
        """
        draft = ctx.draft
        today = self._today()
        value = _clean_value(edit.value) if edit.value else ""
        hint = formatters.EDIT_FORMAT_HINTS.get(edit.field, formatters.UNKNOWN_EDIT_FIELD)

        if edit.field == "date":
            parsed = (parse_date_value(value, today) if value else None) or extract_date(text, today)
            if parsed is None:
                return False, hint
            draft.date = parsed
            return True, f"Updated date to {formatters.format_date(parsed)}"

        if edit.field == "amount":
            amount = (parse_amount_value(value) if value else None) or extract_amount(text)
            if amount is None or amount <= 0:
                return False, hint
            draft.amount = amount
            return True, f"Updated amount to {formatters.format_amount(amount, draft.currency)}"

        if edit.field == "merchant":
            merchant = value or extract_merchant(text)
            if not merchant:
                return False, hint
            draft.merchant = merchant
            return True, f"Updated merchant to {merchant}"

        if edit.field == "description":
            description = value or extract_description(text)
            if not description:
                return False, hint
            draft.description = description
            return True, f"Updated description to {description}"

        if edit.field == "notes":
            if not value:
                return False, hint
            draft.notes = value
            return True, "Updated notes"

        if edit.field == "category":
            return await self._apply_category_edit(ctx, value)

        if edit.field == "payment_method":
            entry = self._resolver.resolve_payment_method(value, ctx.taxonomy) if value else None
            if entry is None:
                return False, formatters.format_payment_options(ctx.taxonomy, value or text)
            draft.payment_method_ref = entry.id
            return True, f"Updated payment method to {entry.name}"

        return False, formatters.UNKNOWN_EDIT_FIELD

    async def _apply_category_edit(self, ctx: ConversationContext, value: str) -> tuple[bool, str]:
        draft = ctx.draft
        if value:
            entry = self._resolver.resolve(value, ctx.taxonomy)
            if entry is None:
                return False, formatters.format_category_options(
                    ctx.taxonomy, f"I couldn't find a category matching '{value}'."
                )
            draft.category_ref = entry.id
            draft.category_confidence = None
            return True, f"Updated category to {entry.name}"

        if [f for f in draft.missing_fields() if f != "category"]:
            return False, formatters.format_category_options(
                ctx.taxonomy, "I need merchant, description, and amount to suggest a category."
            )
        result = await self._classify(ctx)
        entry = self._resolver.resolve(result.category, ctx.taxonomy) if result else None
        if result is None or entry is None:
            return False, formatters.format_category_options(
                ctx.taxonomy, "I couldn't suggest a category."
            )
        draft.category_ref = entry.id
        draft.category_confidence = result.confidence
        return True, f"Updated category to {entry.name} (AI suggested)"
