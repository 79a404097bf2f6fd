from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Protocol

from npcmind.config import AgentSettings


class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock advanced explicitly, either by the world step or by tests."""

    def __init__(self, start: float = 0.0):
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        self._now += max(0.0, seconds)
        return self._now


@dataclass
class DeferredCall:
    due_at: float
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def is_due(self, now: float) -> bool:
        return not self.cancelled and now >= self.due_at


class DecisionScheduler:
    """Decides *when* an agent may consult the oracle.

    Three independent gates are tracked here:

    * the decision timer, counted down with the tick delta and re-armed with a
      random duration every time it fires;
    * the oracle cooldown, measured on the clock from the last oracle call and
      jittered per call;
    * the reactive cooldown, which throttles damage-driven interrupts and is
      independent from the oracle cooldown.

    A debounced follow-up decision (used after conversations) suppresses the
    timer while it is pending; scheduling a new one replaces the old one.
    """

    def __init__(self, clock: Clock, settings: AgentSettings, rng: random.Random | None = None):
        self.clock = clock
        self.settings = settings
        self.rng = rng or random.Random()
        self.action_timer = 0.0
        self.last_oracle_call = float("-inf")
        self.last_reactive = float("-inf")
        self.current_cooldown = settings.decision_cooldown_sec
        self.follow_up: DeferredCall | None = None
        self.reset_timer()

    def reset_timer(self, base: float | None = None, spread: float | None = None) -> None:
        base = self.settings.decision_timer_base_sec if base is None else base
        spread = self.settings.decision_timer_random_sec if spread is None else spread
        self.action_timer = base + self.rng.random() * spread

    def reset_after_action(self) -> None:
        self.reset_timer(
            self.settings.after_action_timer_base_sec,
            self.settings.after_action_timer_random_sec,
        )

    def advance(self, dt: float) -> None:
        self.action_timer -= dt

    def cooldown_elapsed(self) -> bool:
        return self.clock.now() - self.last_oracle_call >= self.current_cooldown

    def due_for_decision(self) -> bool:
        if self.action_timer > 0 or self.follow_up_pending:
            return False
        self.reset_timer()
        return self.cooldown_elapsed()

    def mark_oracle_call(self) -> None:
        self.last_oracle_call = self.clock.now()
        jitter = self.settings.cooldown_jitter_sec
        self.current_cooldown = max(0.0, self.settings.decision_cooldown_sec + self.rng.uniform(-jitter, jitter))

    def try_reactive(self, triggered: bool) -> bool:
        now = self.clock.now()
        if now < self.last_reactive + self.settings.reactive_cooldown_sec:
            return False
        if not triggered:
            return False
        self.last_reactive = now
        return True

    @property
    def follow_up_pending(self) -> bool:
        return self.follow_up is not None and not self.follow_up.cancelled

    def schedule_follow_up(self, delay: float | None = None) -> DeferredCall:
        self.cancel_follow_up()
        delay = self.settings.chat_follow_up_sec if delay is None else delay
        self.follow_up = DeferredCall(due_at=self.clock.now() + delay)
        return self.follow_up

    def cancel_follow_up(self) -> None:
        if self.follow_up is not None:
            self.follow_up.cancel()
        self.follow_up = None

    def poll_follow_up(self) -> bool:
        if self.follow_up is None or not self.follow_up.is_due(self.clock.now()):
            return False
        self.follow_up = None
        return True
