"""Conversation state models for the expense extraction engine.

Provides:

- :class:`ExpenseDraft`: the expense being assembled through the
  conversation (fields start ``None`` and are filled by extraction or edits).
- :class:`ExpenseRecord`: the immutable, validated record handed to the
  persistence collaborator.
- :class:`ConversationPhase`: enum of states in the conversation state machine.
- :class:`TaxonomyEntry` / :class:`Taxonomy`: read-only category and
  payment-method snapshot for one conversation.
- :class:`ConversationContext`: the full per-session context (phase,
  transcript, draft, taxonomy snapshot, liveness token).
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ── Enums ─────────────────────────────────────────────────────────────────────


class ConversationPhase(StrEnum):
    """States in the conversation state machine."""

    INITIAL = "initial"
    COLLECTING = "collecting"
    CONFIRMING = "confirming"
    EDITING = "editing"
    COMPLETE = "complete"


class ExpenseSource(StrEnum):
    """Provenance of a draft; fixed for the life of the draft."""

    VOICE = "voice"
    MANUAL = "manual"
    CHAT = "chat"


class Speaker(StrEnum):
    USER = "user"
    SYSTEM = "system"


class DraftIncompleteError(ValueError):
    """Raised when finalizing a draft that still has missing fields."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Draft is missing required fields: {', '.join(missing)}")


# ── Taxonomy snapshot ─────────────────────────────────────────────────────────


class TaxonomyEntry(BaseModel):
    """A category or payment method supplied by the taxonomy provider.

    Extra display metadata (colour, icon, ...) is kept as-is.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    name: str
    description: str | None = None


class Taxonomy(BaseModel):
    """Snapshot of the workspace taxonomy taken at conversation start."""

    model_config = ConfigDict(frozen=True)

    categories: tuple[TaxonomyEntry, ...] = ()
    payment_methods: tuple[TaxonomyEntry, ...] = ()

    @classmethod
    def from_names(
        cls,
        categories: list[str],
        payment_methods: list[str] | None = None,
    ) -> Taxonomy:
        """Build a snapshot from plain names, using slugs as ids."""
        return cls(
            categories=tuple(
                TaxonomyEntry(id=_slugify(name), name=name) for name in categories
            ),
            payment_methods=tuple(
                TaxonomyEntry(id=_slugify(name), name=name)
                for name in payment_methods or []
            ),
        )

    def category_by_id(self, ref: str | None) -> TaxonomyEntry | None:
        if ref is None:
            return None
        return next((c for c in self.categories if c.id == ref), None)

    def payment_method_by_id(self, ref: str | None) -> TaxonomyEntry | None:
        if ref is None:
            return None
        return next((p for p in self.payment_methods if p.id == ref), None)

    def category_names(self) -> list[str]:
        return [c.name for c in self.categories]


def _slugify(name: str) -> str:
    return "-".join(
        "".join(ch if ch.isalnum() else " " for ch in name.lower()).split()
    )


# ── Expense draft ─────────────────────────────────────────────────────────────

# Alias so the ``date`` field name does not shadow the type in annotations.
CalendarDate = date


class ExpenseRecord(BaseModel):
    """A finalized expense, immutable once built."""

    model_config = ConfigDict(frozen=True)

    date: CalendarDate
    merchant: str
    amount: Decimal
    description: str
    category_ref: str
    payment_method_ref: str | None = None
    notes: str | None = None
    is_reimbursable: bool = False
    source: ExpenseSource = ExpenseSource.CHAT
    category_confidence: float | None = None
    currency: str = "USD"


class ExpenseDraft(BaseModel):
    """The accumulating record for one conversation.

    Fields start as ``None`` (except defaults) and are populated by the
    extractors, the understanding collaborator or targeted edits.
    """

    date: CalendarDate = Field(
        default_factory=date.today,
        description="Expense date; defaults to today at draft creation.",
    )
    merchant: str | None = Field(
        default=None,
        description="Merchant or business name.",
    )
    amount: Decimal | None = Field(
        default=None,
        description="Expense amount; must be > 0 at finalization.",
    )
    description: str | None = Field(
        default=None,
        description="What was purchased.",
    )
    category_ref: str | None = Field(
        default=None,
        description="Id of a category in the conversation's taxonomy snapshot.",
    )
    payment_method_ref: str | None = Field(
        default=None,
        description="Id of a payment method in the taxonomy snapshot.",
    )
    notes: str | None = None
    is_reimbursable: bool = False
    source: ExpenseSource = ExpenseSource.CHAT
    category_confidence: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Set only when the category came from the classifier.",
    )
    currency: str = "USD"

    def missing_fields(self) -> list[str]:
        """Return the required fields that would block finalization.

        This is the only validation rule for drafts: it decides both when
        collecting is done and whether the draft may be finalized.
        """
        missing: list[str] = []
        if not (self.merchant and self.merchant.strip()):
            missing.append("merchant")
        if self.amount is None or self.amount <= 0:
            missing.append("amount")
        if not (self.description and self.description.strip()):
            missing.append("description")
        if self.category_ref is None:
            missing.append("category")
        return missing

    def is_complete(self) -> bool:
        """Return ``True`` if all required fields have valid values."""
        return len(self.missing_fields()) == 0

    def merge(self, **values: Any) -> list[str]:
        """Merge non-empty *values* into the draft.

        ``None`` and blank strings never overwrite a field that is already
        set.  Unknown keys are ignored.

        Returns:
            The names of the fields that changed.
        """
        changed: list[str] = []
        for name, value in values.items():
            if name not in type(self).model_fields or name == "source":
                continue
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            if isinstance(value, str):
                value = value.strip()
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed.append(name)
        return changed

    def add_note(self, note: str) -> None:
        """Append *note* to the free-text notes."""
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def finalize(self) -> ExpenseRecord:
        """Build the immutable :class:`ExpenseRecord` for persistence.

        Raises:
            DraftIncompleteError: If any required field is missing.
        """
        missing = self.missing_fields()
        if missing:
            raise DraftIncompleteError(missing)
        assert self.merchant and self.description and self.amount is not None
        assert self.category_ref is not None
        return ExpenseRecord(
            date=self.date,
            merchant=self.merchant.strip(),
            amount=self.amount,
            description=self.description.strip(),
            category_ref=self.category_ref,
            payment_method_ref=self.payment_method_ref,
            notes=self.notes.strip() if self.notes else None,
            is_reimbursable=self.is_reimbursable,
            source=self.source,
            category_confidence=self.category_confidence,
            currency=self.currency,
        )


# ── Conversation context ──────────────────────────────────────────────────────


class TranscriptEntry(BaseModel):
    """One turn of the conversation, in processing order."""

    model_config = ConfigDict(frozen=True)

    speaker: Speaker
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConversationContext(BaseModel):
    """Full per-session conversation context carried between utterances."""

    session_id: uuid.UUID = Field(default_factory=uuid.uuid4)

    phase: ConversationPhase = ConversationPhase.INITIAL

    #: Append-only; insertion order is the canonical order for replay.
    transcript: list[TranscriptEntry] = Field(default_factory=list)

    draft: ExpenseDraft = Field(default_factory=ExpenseDraft)

    #: Read-only for the life of the conversation.
    taxonomy: Taxonomy = Field(default_factory=Taxonomy)

    #: Field the last re-prompt asked about; a bare answer fills it.
    clarification_field: str | None = None

    #: Field being edited while in the EDITING phase.
    editing_field: str | None = None

    #: Free-text category label not yet mapped onto the taxonomy.
    category_label: str | None = None

    #: Whether a category resolution has been attempted for this draft.
    category_attempted: bool = False

    #: Whether the session's understanding collaborator is available.
    understanding_available: bool = False

    #: Liveness token; bumped on cancellation so late results are dropped.
    generation: int = 0

    closed: bool = False

    def append(self, speaker: Speaker, text: str) -> TranscriptEntry:
        """Append a transcript entry and return it."""
        entry = TranscriptEntry(speaker=speaker, text=text)
        self.transcript.append(entry)
        return entry

    def history(self, limit: int | None = None) -> list[TranscriptEntry]:
        """Return the last *limit* transcript entries (all when ``None``)."""
        if limit is None:
            return list(self.transcript)
        return self.transcript[-limit:] if limit > 0 else []

    def reset_draft(self, today: date | None = None) -> None:
        """Discard the draft and start collecting the next expense."""
        self.draft = ExpenseDraft(
            date=today or date.today(),
            source=self.draft.source,
            currency=self.draft.currency,
        )
        self.phase = ConversationPhase.INITIAL
        self.clarification_field = None
        self.editing_field = None
        self.category_label = None
        self.category_attempted = False

    def adopt(self, other: ConversationContext) -> None:
        """Take over the mutable conversation state computed on *other*.

        The transcript is not copied; the orchestrator appends to it
        directly.
        """
        self.phase = other.phase
        self.draft = other.draft
        self.clarification_field = other.clarification_field
        self.editing_field = other.editing_field
        self.category_label = other.category_label
        self.category_attempted = other.category_attempted
