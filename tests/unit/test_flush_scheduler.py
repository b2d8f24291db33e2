"""Tests for the per-key flush scheduler."""

import pytest

from codexdesk.engine.scheduler import FlushScheduler, ImmediateTickSource
from tests.event_utils import ManualTickSource

pytestmark = pytest.mark.unit


def test_at_most_one_pending_flush_per_key(ticks):
    scheduler = FlushScheduler(ticks, interval_ms=16)
    calls: list[str] = []

    assert scheduler.schedule("k", lambda: calls.append("first"))
    assert not scheduler.schedule("k", lambda: calls.append("second"))
    assert scheduler.schedule("other", lambda: calls.append("other"))
    assert ticks.pending == 2
    assert ticks.delays == [16, 16]

    assert ticks.tick() == 2
    assert calls == ["first", "other"]
    assert not scheduler.is_pending("k")

    assert scheduler.schedule("k", lambda: calls.append("again"))
    ticks.tick()
    assert calls[-1] == "again"


def test_cancel_drops_flush_without_running_it(ticks):
    scheduler = FlushScheduler(ticks)
    calls: list[int] = []
    scheduler.schedule("k", lambda: calls.append(1))

    assert scheduler.cancel("k")
    assert not scheduler.cancel("k")
    assert ticks.pending == 0
    ticks.tick()
    assert calls == []


def test_late_timer_after_cancel_is_ignored():
    ticks = ManualTickSource(stop_on_cancel=False)
    scheduler = FlushScheduler(ticks)
    calls: list[str] = []
    scheduler.schedule("k", lambda: calls.append("stale"))
    scheduler.cancel("k")
    scheduler.schedule("k", lambda: calls.append("fresh"))

    ticks.tick()
    assert calls == ["fresh"]


def test_cancel_all_and_close(ticks):
    scheduler = FlushScheduler(ticks)
    calls: list[str] = []
    scheduler.schedule("a", lambda: calls.append("a"))
    scheduler.schedule("b", lambda: calls.append("b"))
    scheduler.cancel_all()
    assert scheduler.pending_keys() == []

    scheduler.schedule("c", lambda: calls.append("c"))
    scheduler.close()
    assert scheduler.closed
    assert not scheduler.schedule("d", lambda: calls.append("d"))
    ticks.tick()
    assert calls == []


def test_timer_firing_after_close_is_ignored():
    ticks = ManualTickSource(stop_on_cancel=False)
    scheduler = FlushScheduler(ticks)
    calls: list[int] = []
    scheduler.schedule("k", lambda: calls.append(1))
    scheduler.close()
    ticks.tick()
    assert calls == []


def test_immediate_tick_source_runs_at_once():
    scheduler = FlushScheduler(ImmediateTickSource())
    calls: list[int] = []
    assert scheduler.schedule("k", lambda: calls.append(1))
    assert calls == [1]
    assert not scheduler.is_pending("k")
    assert scheduler.schedule("k", lambda: calls.append(2))
    assert calls == [1, 2]
