from __future__ import annotations

import random

from npcmind.config import AgentSettings
from npcmind.sim.scheduler import DecisionScheduler, DeferredCall, ManualClock


def _scheduler(**overrides) -> tuple[ManualClock, DecisionScheduler]:
    clock = ManualClock()
    return clock, DecisionScheduler(clock, AgentSettings(**overrides), random.Random(3))


def test_manual_clock_only_moves_forward():
    clock = ManualClock(start=5.0)

    clock.advance(2.5)
    clock.advance(-10.0)

    assert clock.now() == 7.5


def test_decision_timer_is_armed_between_base_and_spread():
    _clock, scheduler = _scheduler()

    for _ in range(50):
        scheduler.reset_timer()
        assert 5.0 <= scheduler.action_timer <= 10.0
        scheduler.reset_after_action()
        assert 3.0 <= scheduler.action_timer <= 7.0


def test_cooldown_blocks_second_trigger():
    clock, scheduler = _scheduler()

    scheduler.action_timer = 0.0
    assert scheduler.due_for_decision() is True
    scheduler.mark_oracle_call()
    assert 25.0 <= scheduler.current_cooldown <= 35.0

    clock.advance(10.0)
    scheduler.action_timer = 0.0
    assert scheduler.due_for_decision() is False
    assert scheduler.action_timer > 0.0

    clock.advance(30.0)
    scheduler.action_timer = 0.0
    assert scheduler.due_for_decision() is True


def test_timer_counts_down_with_tick_delta():
    _clock, scheduler = _scheduler(decision_timer_base_sec=1.0, decision_timer_random_sec=0.0)

    scheduler.reset_timer()
    scheduler.advance(0.6)
    assert scheduler.due_for_decision() is False
    scheduler.advance(0.6)
    assert scheduler.due_for_decision() is True


def test_reactive_cooldown_is_independent():
    clock, scheduler = _scheduler()
    scheduler.mark_oracle_call()

    assert scheduler.try_reactive(False) is False
    assert scheduler.try_reactive(True) is True
    clock.advance(5.0)
    assert scheduler.try_reactive(True) is False
    clock.advance(15.0)
    assert scheduler.try_reactive(True) is True


def test_follow_up_is_debounced_last_write_wins():
    clock, scheduler = _scheduler()

    first = scheduler.schedule_follow_up()
    clock.advance(5.0)
    scheduler.schedule_follow_up()
    assert first.cancelled is True

    clock.advance(3.0)
    assert scheduler.poll_follow_up() is False
    assert scheduler.follow_up_pending is True

    clock.advance(4.0)
    assert scheduler.poll_follow_up() is True
    assert scheduler.follow_up_pending is False
    assert scheduler.poll_follow_up() is False


def test_pending_follow_up_suppresses_timed_decision():
    _clock, scheduler = _scheduler()
    scheduler.schedule_follow_up()

    scheduler.action_timer = 0.0
    assert scheduler.due_for_decision() is False

    scheduler.cancel_follow_up()
    assert scheduler.due_for_decision() is True


def test_deferred_call_due_and_cancel():
    call = DeferredCall(due_at=3.0)

    assert call.is_due(2.9) is False
    assert call.is_due(3.0) is True
    call.cancel()
    assert call.is_due(10.0) is False
