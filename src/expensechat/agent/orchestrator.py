"""Session orchestrator for conversational expense entry.

Owns the per-session resources and wires the collaborators together:

    submit(text) → dedupe guard → state machine (on a private copy)
                 → liveness check → adopt + transcript → persist on complete

Three public entry points:

- :meth:`SessionOrchestrator.start`: open a conversation on a taxonomy
  snapshot.
- :meth:`SessionOrchestrator.submit`: process one user utterance.
- :meth:`SessionOrchestrator.cancel`: close a conversation immediately;
  results still in flight are discarded.

``submit`` never raises: unexpected errors are logged and turned into a
"please try again" reply.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol, runtime_checkable

from expensechat.agent import formatters, get_llm_client
from expensechat.agent.classification import ExpenseClassifier, create_classifier
from expensechat.agent.dedupe import MessageDeduplicationGuard
from expensechat.agent.machine import ConversationStateMachine
from expensechat.agent.state import (
    ConversationContext,
    ConversationPhase,
    ExpenseDraft,
    ExpenseRecord,
    ExpenseSource,
    Speaker,
    Taxonomy,
)
from expensechat.agent.understanding import ConversationUnderstanding, create_understanding
from expensechat.config import settings
from expensechat.taxonomy.provider import TaxonomyProvider, load_taxonomy
from expensechat.taxonomy.resolver import CategoryResolver

logger = logging.getLogger(__name__)


# ── Persistence collaborator ──────────────────────────────────────────────────


@dataclass
class InsertOutcome:
    """Result of handing a finalized record to the store."""

    success: bool

    #: Failure detail (e.g. the violated column); mapped to a user message.
    reason: str | None = None

    expense_id: str | None = None


@runtime_checkable
class ExpenseStore(Protocol):
    """Persists finalized expense records."""

    async def insert_expense(self, record: ExpenseRecord) -> InsertOutcome:
        ...


#: Called after a successful save with the record and the store's outcome.
SavedCallback = Callable[[ExpenseRecord, InsertOutcome], Any]


# ── Result dataclasses ────────────────────────────────────────────────────────


@dataclass
class SubmitResult:
    """Value object returned by :meth:`SessionOrchestrator.submit`."""

    #: The live context (``None`` only if it could not be created).
    context: ConversationContext | None

    #: System replies produced by this utterance, in order.
    replies: list[str] = field(default_factory=list)

    #: The utterance repeated one still in flight or just completed.
    duplicate: bool = False

    #: The session was cancelled while the utterance was processed.
    discarded: bool = False

    #: Record persisted by this utterance, if any.
    saved: ExpenseRecord | None = None

    expense_id: str | None = None

    #: Processing or persistence failed; ``replies`` explains it.
    error: bool = False


@dataclass
class _Session:
    guard: MessageDeduplicationGuard
    understanding: ConversationUnderstanding


# ── Orchestrator ──────────────────────────────────────────────────────────────


class SessionOrchestrator:
    """Runs expense conversations for any number of sessions.

    Args:
        store: Persistence collaborator receiving finalized records.
        understanding: Conversational-understanding collaborator
            (built from the configured LLM when omitted).
        classifier: Classification collaborator (built from the configured
            LLM when omitted).
        resolver: Category / payment-method resolver.
        taxonomy_provider: Used by :meth:`start_for_workspace`.
        default_taxonomy: Snapshot used when no taxonomy is given
            (defaults to the configured default categories).
        on_saved: Callback (sync or async) invoked after each successful save.
        guard_factory: Builds the per-session deduplication guard.
        today: Callable returning the reference date.
    """

    def __init__(
        self,
        store: ExpenseStore,
        *,
        understanding: ConversationUnderstanding | None = None,
        classifier: ExpenseClassifier | None = None,
        resolver: CategoryResolver | None = None,
        taxonomy_provider: TaxonomyProvider | None = None,
        default_taxonomy: Taxonomy | None = None,
        on_saved: SavedCallback | None = None,
        guard_factory: Callable[[], MessageDeduplicationGuard] | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        if understanding is None or classifier is None:
            llm_client = get_llm_client()
            understanding = understanding or create_understanding(llm_client)
            classifier = classifier or create_classifier(llm_client)

        self._store = store
        self._understanding = understanding
        self._resolver = resolver or CategoryResolver()
        self._taxonomy_provider = taxonomy_provider
        self._default_taxonomy = default_taxonomy or Taxonomy.from_names(
            settings.default_categories, settings.default_payment_methods
        )
        self._on_saved = on_saved
        self._guard_factory = guard_factory or MessageDeduplicationGuard
        self._today = today
        self._machine = ConversationStateMachine(
            self._resolver, classifier, understanding, today=today,
        )
        self._sessions: dict[uuid.UUID, _Session] = {}

    # ── Public entry points ───────────────────────────────────────────────

    def start(
        self,
        taxonomy: Taxonomy | None = None,
        *,
        source: ExpenseSource = ExpenseSource.CHAT,
    ) -> ConversationContext:
        """Open a conversation on *taxonomy* and post the welcome message.

        The understanding implementation is chosen here, once per session.
        """
        available = self._understanding.is_available()
        ctx = ConversationContext(
            taxonomy=taxonomy or self._default_taxonomy,
            draft=ExpenseDraft(
                date=self._today(),
                source=source,
                currency=settings.default_currency,
            ),
            understanding_available=available,
        )
        self._sessions[ctx.session_id] = _Session(
            guard=self._guard_factory(),
            understanding=self._understanding,
        )
        ctx.append(Speaker.SYSTEM, formatters.WELCOME_AI if available else formatters.WELCOME_BASIC)
        logger.info(
            "Started session %s (source=%s, understanding=%s, %d categories)",
            ctx.session_id,
            source,
            available,
            len(ctx.taxonomy.categories),
        )
        return ctx

    async def start_for_workspace(
        self,
        workspace_id: str,
        *,
        source: ExpenseSource = ExpenseSource.CHAT,
    ) -> ConversationContext:
        """Fetch the workspace taxonomy snapshot, then :meth:`start`."""
        if self._taxonomy_provider is None:
            return self.start(source=source)
        taxonomy = await load_taxonomy(self._taxonomy_provider, workspace_id)
        return self.start(taxonomy, source=source)

    async def submit(self, ctx: ConversationContext | None, text: str) -> SubmitResult:
        """Process one user utterance.

        Args:
            ctx: The session context, or ``None`` to start one from the
                default taxonomy.
            text: The raw utterance.

        Returns:
            A :class:`SubmitResult`.  Duplicates and utterances for a
            cancelled session produce no replies.
        """
        if ctx is None:
            ctx = self.start()
        if ctx.closed:
            return SubmitResult(context=ctx, discarded=True)
        if not text or not text.strip():
            return SubmitResult(context=ctx)

        session = self._sessions.get(ctx.session_id)
        if session is None:
            session = _Session(guard=self._guard_factory(), understanding=self._understanding)
            self._sessions[ctx.session_id] = session

        result = await session.guard.run(text, lambda: self._process(ctx, session, text))
        if result is None:
            return SubmitResult(context=ctx, duplicate=True)
        return result

    def cancel(self, ctx: ConversationContext) -> None:
        """Close *ctx* immediately.

        Bumps the liveness token so that any result still being computed is
        discarded, clears the transcript and draft, and drops the session's
        guard state.
        """
        ctx.generation += 1
        ctx.closed = True
        ctx.transcript.clear()
        ctx.reset_draft(self._today())
        session = self._sessions.pop(ctx.session_id, None)
        if session is not None:
            session.guard.clear()
        logger.info("Cancelled session %s", ctx.session_id)

    # ── Internal ──────────────────────────────────────────────────────────

    @staticmethod
    def _is_live(ctx: ConversationContext, generation: int) -> bool:
        return not ctx.closed and ctx.generation == generation

    async def _process(
        self,
        ctx: ConversationContext,
        session: _Session,
        text: str,
    ) -> SubmitResult:
        generation = ctx.generation
        user_logged = False
        try:
            working = ctx.model_copy(deep=True)
            step = await self._machine.handle(working, text, understanding=session.understanding)

            if not self._is_live(ctx, generation):
                logger.info("Session %s was cancelled; discarding result", ctx.session_id)
                return SubmitResult(context=ctx, discarded=True)

            ctx.adopt(working)
            ctx.append(Speaker.USER, text)
            user_logged = True
            ctx.append(Speaker.SYSTEM, step.reply)
            replies = [step.reply]

            if step.record is None:
                return SubmitResult(context=ctx, replies=replies)
            return await self._persist(ctx, step.record, generation, replies)

        except Exception:
            logger.exception(
                "Failed to process message for session %s: %s", ctx.session_id, text[:100]
            )
            if not self._is_live(ctx, generation):
                return SubmitResult(context=ctx, discarded=True)
            if not user_logged:
                ctx.append(Speaker.USER, text)
            ctx.append(Speaker.SYSTEM, formatters.PROCESSING_ERROR)
            return SubmitResult(context=ctx, replies=[formatters.PROCESSING_ERROR], error=True)

    async def _persist(
        self,
        ctx: ConversationContext,
        record: ExpenseRecord,
        generation: int,
        replies: list[str],
    ) -> SubmitResult:
        """Hand *record* to the store exactly once and react to the outcome."""
        try:
            outcome = await self._store.insert_expense(record)
        except Exception as exc:
            logger.exception("Store raised while saving expense for session %s", ctx.session_id)
            outcome = InsertOutcome(success=False, reason=f"{type(exc).__name__}: {exc}")

        if not self._is_live(ctx, generation):
            logger.warning(
                "Session %s was cancelled while saving (success=%s); discarding result",
                ctx.session_id,
                outcome.success,
            )
            return SubmitResult(context=ctx, discarded=True)

        # Another utterance may have started a new draft while the store was busy.
        moved_on = ctx.phase != ConversationPhase.COMPLETE

        if not outcome.success:
            message = formatters.format_persistence_error(outcome.reason)
            if moved_on:
                logger.warning(
                    "Session %s started a new draft before the save failed (%s)",
                    ctx.session_id,
                    outcome.reason,
                )
            else:
                self._machine.persistence_failed(ctx, outcome.reason)
            ctx.append(Speaker.SYSTEM, message)
            return SubmitResult(context=ctx, replies=[*replies, message], error=True)

        logger.info(
            "Saved expense %s for session %s: %s %s at %s",
            outcome.expense_id,
            ctx.session_id,
            record.currency,
            record.amount,
            record.merchant,
        )
        ctx.append(Speaker.SYSTEM, formatters.SAVED)
        await self._notify_saved(record, outcome)
        replies = [*replies, formatters.SAVED]
        if not moved_on:
            ctx.reset_draft(self._today())
            ctx.append(Speaker.SYSTEM, formatters.READY_FOR_NEXT)
            replies.append(formatters.READY_FOR_NEXT)
        return SubmitResult(
            context=ctx,
            replies=replies,
            saved=record,
            expense_id=outcome.expense_id,
        )

    async def _notify_saved(self, record: ExpenseRecord, outcome: InsertOutcome) -> None:
        if self._on_saved is None:
            return
        try:
            result = self._on_saved(record, outcome)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_saved callback failed for expense %s", outcome.expense_id)
