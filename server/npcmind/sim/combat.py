from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from npcmind.agents.agent import Entity, WorldObject
from npcmind.memory.event_log import EventJournal
from npcmind.sim.scheduler import Clock


LOGGER = logging.getLogger("npcmind.sim.combat")


class CombatExecutor(Protocol):
    def initiate_attack(self, attacker: Entity, target: Entity | WorldObject) -> bool: ...


class CooldownCombat:
    """Flat-damage combat: one hit per attacker cooldown, no hit rolls or armor."""

    def __init__(
        self,
        clock: Clock,
        journal: EventJournal | None = None,
        on_kill: Callable[[Entity], None] | None = None,
    ):
        self.clock = clock
        self.journal = journal
        self.on_kill = on_kill

    def initiate_attack(self, attacker: Entity, target: Entity | WorldObject) -> bool:
        if attacker.dead:
            return False
        now = self.clock.now()
        if now < attacker.last_attack_time + attacker.attack_cooldown:
            return False
        if isinstance(target, WorldObject):
            if not target.is_available:
                return False
        elif target.dead:
            return False

        attacker.last_attack_time = now
        attacker.look_at(target.pos)
        target.health = max(0.0, target.health - attacker.attack_damage)
        if isinstance(target, WorldObject):
            if target.health <= 0:
                target.visible = False
                target.interactable = False
                self._log(attacker, "gather", f"{attacker.name} depleted {target.type} ({target.id}).", None)
            return True

        if target.health <= 0:
            target.dead = True
            self._log(attacker, "kill", f"{attacker.name} killed {target.name}.", target)
            if self.on_kill is not None:
                self.on_kill(target)
        else:
            self._log(attacker, "hit", f"{attacker.name} hit {target.name}.", target)
        return True

    def _log(self, attacker: Entity, kind: str, message: str, target: Entity | None) -> None:
        LOGGER.debug(message)
        if self.journal is not None:
            self.journal.log_event(attacker, kind, message, target=target)
