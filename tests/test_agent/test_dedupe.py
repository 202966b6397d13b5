"""Tests for the per-session duplicate submission guard."""

from __future__ import annotations

import asyncio

import pytest

from expensechat.agent.dedupe import MessageDeduplicationGuard, normalize_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def guard(clock: FakeClock) -> MessageDeduplicationGuard:
    return MessageDeduplicationGuard(window_seconds=5.0, horizon_seconds=30.0, clock=clock)


def test_normalize_key() -> None:
    assert normalize_key("  Lunch   at\tSubway ") == "lunch at subway"


def test_in_flight_duplicate_rejected(guard: MessageDeduplicationGuard) -> None:
    key = guard.try_acquire("Lunch $12")
    assert key == "lunch $12"
    assert guard.is_in_flight("lunch  $12")
    assert guard.try_acquire("LUNCH $12") is None


def test_completed_duplicate_rejected_within_window(
    guard: MessageDeduplicationGuard, clock: FakeClock
) -> None:
    guard.release(guard.try_acquire("yes"))
    clock.advance(4.9)
    assert guard.try_acquire("yes") is None


def test_completed_duplicate_accepted_after_window(
    guard: MessageDeduplicationGuard, clock: FakeClock
) -> None:
    guard.release(guard.try_acquire("yes"))
    clock.advance(5.0)
    assert guard.try_acquire("yes") == "yes"


def test_different_text_not_a_duplicate(guard: MessageDeduplicationGuard) -> None:
    assert guard.try_acquire("lunch $12") is not None
    assert guard.try_acquire("lunch $13") is not None


def test_eviction_bounds_memory(guard: MessageDeduplicationGuard, clock: FakeClock) -> None:
    for i in range(50):
        guard.release(guard.try_acquire(f"message {i}"))
        clock.advance(1.0)
    assert len(guard) <= 31


def test_clear(guard: MessageDeduplicationGuard) -> None:
    guard.try_acquire("a")
    guard.release(guard.try_acquire("b"))
    guard.clear()
    assert len(guard) == 0
    assert guard.try_acquire("a") == "a"


def test_defaults_come_from_settings() -> None:
    guard = MessageDeduplicationGuard()
    assert guard.window_seconds == 5.0
    assert guard.horizon_seconds == 30.0


@pytest.mark.asyncio
async def test_run_processes_concurrent_duplicates_once(guard: MessageDeduplicationGuard) -> None:
    release = asyncio.Event()
    calls = 0

    async def handler() -> str:
        nonlocal calls
        calls += 1
        await release.wait()
        return "done"

    first = asyncio.create_task(guard.run("lunch $12", handler))
    await asyncio.sleep(0)
    second = await guard.run("lunch $12", handler)
    release.set()

    assert await first == "done"
    assert second is None
    assert calls == 1


@pytest.mark.asyncio
async def test_run_releases_on_failure(guard: MessageDeduplicationGuard, clock: FakeClock) -> None:
    async def failing() -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await guard.run("lunch", failing)

    assert not guard.is_in_flight("lunch")
    clock.advance(6.0)
    assert await guard.run("lunch", lambda: asyncio.sleep(0, result="ok")) == "ok"
