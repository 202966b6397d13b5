"""Idempotent handling of repeated user submissions.

The same text submitted twice in quick succession (double-click, resend on
a flaky connection) must be processed once.  :class:`MessageDeduplicationGuard`
keeps two small maps keyed by the normalized text:

- *in flight*: key -> time processing started;
- *completed*: key -> time processing finished.

A key is rejected while in flight and for ``window_seconds`` after it
completes.  Entries older than ``horizon_seconds`` are evicted on every
acquire and release, which bounds memory for long sessions.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from expensechat.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_key(text: str) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return " ".join(text.lower().split())


class MessageDeduplicationGuard:
    """Rejects duplicate submissions for one session.

    Args:
        window_seconds: How long after completion a repeat is still a
            duplicate (defaults to ``settings.dedupe_window_seconds``).
        horizon_seconds: Age after which entries are evicted (defaults to
            ``settings.dedupe_horizon_seconds``).
        clock: Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        window_seconds: float | None = None,
        horizon_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.dedupe_window_seconds
        )
        self.horizon_seconds = (
            horizon_seconds if horizon_seconds is not None else settings.dedupe_horizon_seconds
        )
        self._clock = clock
        self._in_flight: dict[str, float] = {}
        self._completed: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._in_flight) + len(self._completed)

    def is_in_flight(self, text: str) -> bool:
        return normalize_key(text) in self._in_flight

    def try_acquire(self, text: str) -> str | None:
        """Claim *text* for processing.

        Returns:
            The normalized key to pass to :meth:`release`, or ``None`` if
            *text* is a duplicate (in flight, or completed within the
            window).
        """
        now = self._clock()
        self._evict(now)
        key = normalize_key(text)

        if key in self._in_flight:
            logger.info("Dropping duplicate submission (in flight): %r", key[:100])
            return None
        finished = self._completed.get(key)
        if finished is not None and now - finished < self.window_seconds:
            logger.info(
                "Dropping duplicate submission (%.1fs after completion): %r",
                now - finished,
                key[:100],
            )
            return None

        self._in_flight[key] = now
        return key

    def release(self, key: str) -> None:
        """Mark *key* as finished; call on success and on failure alike."""
        now = self._clock()
        self._in_flight.pop(key, None)
        self._completed[key] = now
        self._evict(now)

    async def run(self, text: str, handler: Callable[[], Awaitable[T]]) -> T | None:
        """Run *handler* unless *text* is a duplicate.

        Returns:
            The handler's result, or ``None`` for a dropped duplicate.
        """
        key = self.try_acquire(text)
        if key is None:
            return None
        try:
            return await handler()
        finally:
            self.release(key)

    def clear(self) -> None:
        self._in_flight.clear()
        self._completed.clear()

    def _evict(self, now: float) -> None:
        cutoff = now - self.horizon_seconds
        for store in (self._in_flight, self._completed):
            stale = [key for key, stamp in store.items() if stamp < cutoff]
            for key in stale:
                del store[key]
