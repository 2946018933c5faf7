"""Tests for the time-bucketed batching actor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from modules.notifications.batching import BatchingActor

T0 = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class Sink:
    def __init__(self, fail_on_call: int | None = None):
        self.batches: list[list[str]] = []
        self.calls = 0
        self.fail_on_call = fail_on_call

    async def __call__(self, items: list[str]) -> None:
        self.calls += 1
        if self.fail_on_call == self.calls:
            raise ConnectionError("write failed")
        self.batches.append(items)


@pytest.fixture
def clock():
    return FakeClock()


def _actor(sink, clock, **kwargs):
    kwargs.setdefault("flush_interval", 5)
    return BatchingActor(sink, clock=clock, **kwargs)


class TestDue:
    def test_empty_is_never_due(self, clock):
        assert not _actor(Sink(), clock).due()

    def test_due_after_interval(self, clock):
        actor = _actor(Sink(), clock)
        actor.submit("a")
        clock.advance(4)
        assert not actor.due()
        clock.advance(1)
        assert actor.due()

    def test_due_when_batch_is_full(self, clock):
        actor = _actor(Sink(), clock, max_batch_size=2)
        actor.submit("a")
        actor.submit("b")
        assert actor.due()


@pytest.mark.asyncio
async def test_flush_writes_one_call_per_bucket(clock):
    sink = Sink()
    actor = _actor(sink, clock)
    actor.submit("a")
    clock.advance(3)
    actor.submit("b")
    clock.advance(12)
    actor.submit("c")

    assert await actor.flush() == 3
    assert sink.batches == [["a", "b"], ["c"]]
    assert actor.pending == 0


@pytest.mark.asyncio
async def test_flush_respects_max_batch_size(clock):
    sink = Sink()
    actor = _actor(sink, clock, max_batch_size=2)
    for item in "abc":
        actor.submit(item)

    assert await actor.flush() == 2
    assert actor.pending == 1


@pytest.mark.asyncio
async def test_maybe_flush_skips_when_not_due(clock):
    sink = Sink()
    actor = _actor(sink, clock)
    actor.submit("a")
    assert await actor.maybe_flush() == 0
    assert sink.calls == 0


@pytest.mark.asyncio
async def test_failed_bucket_requeued_in_order_with_backoff(clock):
    sink = Sink(fail_on_call=2)
    actor = _actor(sink, clock)
    actor.submit("a")
    clock.advance(10)
    actor.submit("b")
    clock.advance(10)
    actor.submit("c")

    assert await actor.flush() == 1
    assert sink.batches == [["a"]]
    assert actor.pending == 2

    # Backs off for twice the flush interval
    clock.advance(9)
    assert not actor.due()
    clock.advance(1)
    assert actor.due()

    assert await actor.flush() == 2
    assert sink.batches == [["a"], ["b"], ["c"]]


def test_overflow_drops_oldest(clock):
    actor = _actor(Sink(), clock, max_pending=3)
    for item in "abcde":
        actor.submit(item)
    assert actor.pending == 3
    assert [item for _, item in actor._pending] == ["c", "d", "e"]
