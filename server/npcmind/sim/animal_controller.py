from __future__ import annotations

import logging
import random

from npcmind.agents.agent import Entity, MoveIntent, Vec3
from npcmind.config import AnimalSettings
from npcmind.sim.combat import CombatExecutor
from npcmind.sim.movement import TerrainHeight, flat_terrain, random_point_around
from npcmind.sim.registry import EntityRegistry
from npcmind.sim.states import AnimalState


LOGGER = logging.getLogger("npcmind.sim.animal_controller")

# (base, spread) in seconds
IDLE_TIMER = (2.0, 4.0)
ROAM_TIMER = (5.0, 10.0)
TARGET_DIED_TIMER = (3.0, 3.0)
TARGET_ESCAPED_TIMER = (5.0, 5.0)


class AnimalController:
    """Reactive animal brain.

    ``update_logic`` runs the throttled perception and state timers;
    ``compute_movement`` runs every frame and only reads the latest state.
    """

    def __init__(
        self,
        entity: Entity,
        entities: EntityRegistry,
        combat: CombatExecutor | None = None,
        settings: AnimalSettings | None = None,
        rng: random.Random | None = None,
        terrain: TerrainHeight = flat_terrain,
    ):
        self.entity = entity
        self.entities = entities
        self.combat = combat
        self.settings = settings or AnimalSettings()
        self.rng = rng or random.Random()
        self.terrain = terrain
        self.state = AnimalState.DEAD if entity.dead else AnimalState.IDLE
        self.destination: Vec3 | None = None
        self.target: Entity | None = None
        self.action_timer = self._draw(IDLE_TIMER)
        self.perception_interval = self.rng.uniform(
            self.settings.perception_interval_min_sec,
            self.settings.perception_interval_max_sec,
        )
        self.perception_timer = 0.0
        self.find_target_calls = 0

    def _draw(self, timer: tuple[float, float]) -> float:
        base, spread = timer
        return base + self.rng.random() * spread

    def update_logic(self, dt: float) -> None:
        if self.entity.dead:
            self.set_state(AnimalState.DEAD)
            return
        if self.state == AnimalState.DEAD:
            return

        self.perception_timer -= dt
        if self.perception_timer <= 0:
            self.find_target()
            self.perception_timer = self.perception_interval

        if self.state == AnimalState.IDLE:
            self.action_timer -= dt
            if self.target is not None and self.entity.aggressive:
                self.set_state(AnimalState.ATTACKING)
            elif self.action_timer <= 0:
                self.set_state(AnimalState.ROAMING)
        elif self.state == AnimalState.ROAMING:
            if self.target is not None and self.entity.aggressive:
                self.set_state(AnimalState.ATTACKING)
            elif self.destination is None:
                self.set_state(AnimalState.IDLE)
        elif self.state == AnimalState.ATTACKING:
            self._check_target()

    def _check_target(self) -> None:
        target = self.target
        if target is None or target.dead:
            self.set_state(AnimalState.IDLE)
            self.action_timer = self._draw(TARGET_DIED_TIMER)
            return
        lose_range = self.settings.detection_range * self.settings.lose_target_factor
        if self.entity.pos.distance_sq(target.pos) > lose_range * lose_range:
            LOGGER.debug("%s lost track of %s", self.entity.name, target.name)
            self.set_state(AnimalState.IDLE)
            self.action_timer = self._draw(TARGET_ESCAPED_TIMER)

    def compute_movement(self) -> MoveIntent:
        intent = MoveIntent()
        if self.state == AnimalState.ROAMING and self.destination is not None:
            _dx, _dz, distance = self.entity.pos.horizontal_to(self.destination)
            if distance > self.settings.arrive_distance:
                self.entity.look_at(self.destination)
                intent.forward = 1.0
                intent.sprint = True
                intent.reach = distance
            else:
                self.set_state(AnimalState.IDLE)
        elif self.state == AnimalState.ATTACKING and self.target is not None:
            target = self.target
            _dx, _dz, distance = self.entity.pos.horizontal_to(target.pos)
            self.entity.look_at(target.pos)
            if distance > self.settings.attack_range:
                intent.forward = 1.0
                intent.sprint = True
                intent.reach = distance - self.settings.attack_range / 2
            elif self.combat is not None and not self.entity.performing_action:
                self.combat.initiate_attack(self.entity, target)
        return intent

    def set_state(self, new_state: AnimalState) -> None:
        if self.state == new_state:
            return
        self.state = new_state
        if new_state == AnimalState.IDLE:
            self.action_timer = self._draw(IDLE_TIMER)
            self.destination = None
            self.target = None
        elif new_state == AnimalState.ROAMING:
            self.action_timer = self._draw(ROAM_TIMER)
            self.destination = random_point_around(
                self.entity.home or self.entity.pos,
                self.settings.roam_radius,
                self.rng,
                terrain=self.terrain,
                half_size=self.settings.world_half_size,
            )
        elif new_state == AnimalState.ATTACKING:
            self.destination = None
        elif new_state == AnimalState.DEAD:
            self.destination = None
            self.target = None

    def find_target(self) -> Entity | None:
        self.find_target_calls += 1
        closest = self.entities.nearest_character(
            self.entity.pos,
            self.settings.detection_range,
            exclude=self.entity,
        )
        if closest is None and self.state == AnimalState.ATTACKING and self.target is not None:
            # Keep chasing until the target leaves the wider lose range.
            return self.target
        if closest is not self.target:
            self.target = closest
            if closest is not None and self.entity.aggressive and self.state in (AnimalState.IDLE, AnimalState.ROAMING):
                self.set_state(AnimalState.ATTACKING)
        return self.target

    def on_respawn(self) -> None:
        self.state = AnimalState.IDLE
        self.target = None
        self.destination = None
        self.action_timer = self._draw(IDLE_TIMER)
        self.perception_timer = 0.0

    def to_payload(self) -> dict:
        return {
            "state": self.state.value,
            "target_id": self.target.id if self.target is not None else None,
        }
