"""Unit tests for SessionTimers."""

from __future__ import annotations

import pytest

from racing.timers import SessionTimers

pytestmark = pytest.mark.unit


class TestSchedule:
    def test_one_shot_fires_once(self, scheduler):
        timers = SessionTimers(scheduler, owner="s1")
        fired = []
        timers.schedule("countdown", 3.0, lambda: fired.append(scheduler.time()))
        scheduler.advance(2.9)
        assert fired == []
        scheduler.advance(0.2)
        assert fired == [pytest.approx(1003.0)]
        scheduler.advance(10.0)
        assert len(fired) == 1
        assert not timers.is_pending("countdown")

    def test_same_name_replaces(self, scheduler):
        timers = SessionTimers(scheduler)
        fired = []
        timers.schedule("t", 1.0, lambda: fired.append("first"))
        timers.schedule("t", 2.0, lambda: fired.append("second"))
        scheduler.advance(5.0)
        assert fired == ["second"]

    def test_repeating_until_cancelled(self, scheduler):
        timers = SessionTimers(scheduler)
        ticks = []
        timers.schedule_repeating("tick", 0.1, lambda: ticks.append(1))
        scheduler.advance(0.5)
        assert len(ticks) == 5
        assert timers.cancel("tick") is True
        scheduler.advance(1.0)
        assert len(ticks) == 5

    def test_repeating_callback_can_cancel_itself(self, scheduler):
        timers = SessionTimers(scheduler)
        ticks = []

        def _tick():
            ticks.append(1)
            if len(ticks) == 3:
                timers.cancel("tick")

        timers.schedule_repeating("tick", 0.1, _tick)
        scheduler.advance(2.0)
        assert len(ticks) == 3
        assert scheduler.live() == 0

    def test_cancel_unknown_returns_false(self, scheduler):
        assert SessionTimers(scheduler).cancel("nothing") is False


class TestCancelAll:
    def test_cancel_all_stops_everything(self, scheduler):
        timers = SessionTimers(scheduler, owner="s1")
        fired = []
        timers.schedule("countdown", 1.0, lambda: fired.append("countdown"))
        timers.schedule_repeating("ai_tick", 0.1, lambda: fired.append("tick"))
        assert timers.pending() == ["ai_tick", "countdown"]

        timers.cancel_all()

        scheduler.advance(10.0)
        assert fired == []
        assert timers.pending() == []
        assert timers.closed

    def test_closed_timers_refuse_new_work(self, scheduler):
        timers = SessionTimers(scheduler)
        timers.cancel_all()
        timers.schedule("late", 0.1, lambda: pytest.fail("fired after close"))
        timers.schedule_repeating("tick", 0.1, lambda: pytest.fail("fired after close"))
        scheduler.advance(1.0)
        assert timers.pending() == []
        assert scheduler.live() == 0
