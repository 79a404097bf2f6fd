from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from npcmind.agents.agent import Entity, EntityKind, InventoryItem, Vec3, WorldObject
from npcmind.sim.decisions import AttackDecision, ChatDecision, DecisionResult, TradeDecision, parse_decision
from npcmind.sim.movement import TerrainHeight, flat_terrain, random_point_around
from npcmind.sim.registry import EntityRegistry, ObjectRegistry
from npcmind.sim.states import AgentState, PersistentAction

if TYPE_CHECKING:
    from npcmind.sim.npc_controller import AgentController


LOGGER = logging.getLogger("npcmind.sim.resolver")

FALLBACK_INTENT = "Exploring"

Target = Entity | WorldObject


class ActionResolver:
    """Turns oracle text into controller state, resolving target ids against the live registries."""

    def __init__(
        self,
        entities: EntityRegistry,
        objects: ObjectRegistry,
        rng: random.Random | None = None,
        terrain: TerrainHeight = flat_terrain,
        world_half_size: float | None = None,
    ):
        self.entities = entities
        self.objects = objects
        self.rng = rng or random.Random()
        self.terrain = terrain
        self.world_half_size = world_half_size

    def resolve(self, raw_text: str | None, controller: AgentController) -> None:
        if controller.entity.dead:
            controller.state = AgentState.DEAD
            return
        if raw_text is None:
            LOGGER.info("no oracle response for %s; falling back", controller.entity.name)
            self.fallback(controller)
            return
        decision = parse_decision(raw_text)
        if decision is None:
            LOGGER.warning("malformed oracle response for %s: %r", controller.entity.name, raw_text[:180])
            self.fallback(controller)
            return
        self.apply(decision, controller)

    def apply(self, decision: DecisionResult, controller: AgentController) -> None:
        entity = controller.entity
        if entity.dead:
            controller.state = AgentState.DEAD
            return

        controller.clear_action()
        controller.set_intent(decision.intent)
        controller.scheduler.reset_timer()

        if isinstance(decision, AttackDecision):
            self._apply_attack(decision, controller)
            return

        target = self.entities.get(decision.target_id)
        if target is None or target is entity or target.kind != EntityKind.CHARACTER or target.dead:
            LOGGER.info("%s cannot %s %r: no living character", entity.name, decision.action, decision.target_id)
            self.handle_target_lost(controller)
            return

        controller.target = target
        controller.target_action = decision.action
        if isinstance(decision, ChatDecision):
            controller.message = decision.message
        elif isinstance(decision, TradeDecision):
            controller.trade_give = [InventoryItem(item.id, item.count) for item in decision.give_items]
            controller.trade_receive = [InventoryItem(item.id, item.count) for item in decision.receive_items]
        controller.state = AgentState.MOVING_TO_TARGET

    def _apply_attack(self, decision: AttackDecision, controller: AgentController) -> None:
        found: Target | None = self.entities.get(decision.target_id)
        if found is None:
            obj = self.objects.get(decision.target_id)
            if obj is not None and obj.is_available:
                found = obj
        if found is None or found is controller.entity:
            self.handle_target_lost(controller)
            return

        if found.kind == EntityKind.CHARACTER:
            controller.persistent_action = PersistentAction("attack", target_id=found.id, target_kind=found.kind)
            self._engage(controller, found)
            return

        target_type = found.animal_type if found.kind == EntityKind.ANIMAL else found.resource
        if not target_type:
            # Untyped objects are approached once, without remembering them.
            self._engage(controller, found)
            return

        controller.persistent_action = PersistentAction("attack", target_type=target_type, target_kind=found.kind)
        nearest = self.find_nearest(target_type, found.kind, controller.entity.pos, controller.entity.search_radius)
        if nearest is None:
            self.handle_target_lost(controller)
            return
        self._engage(controller, nearest)

    def _engage(self, controller: AgentController, target: Target) -> None:
        controller.target = target
        controller.target_action = "attack"
        controller.state = AgentState.MOVING_TO_TARGET

    def find_nearest(
        self,
        target_type: str,
        kind: EntityKind | None,
        origin: Vec3,
        radius: float,
    ) -> Target | None:
        if kind == EntityKind.OBJECT:
            return self.objects.nearest_resource(target_type, origin, radius)
        if kind == EntityKind.ANIMAL:
            return self.entities.nearest_animal(target_type, origin, radius)
        return self.objects.nearest_resource(target_type, origin, radius) or self.entities.nearest_animal(
            target_type, origin, radius
        )

    def handle_target_lost(self, controller: AgentController) -> None:
        controller.last_logged_attack_target_id = None
        action = controller.persistent_action
        if action is None or action.type != "attack":
            controller.reset_after_action()
            return

        entity = controller.entity
        radius = entity.search_radius
        replacement: Target | None = None
        if action.target_id:
            candidate = self.entities.get(action.target_id)
            if candidate is not None and not candidate.dead and entity.pos.distance_sq(candidate.pos) < radius * radius:
                replacement = candidate
        elif action.target_type:
            replacement = self.find_nearest(action.target_type, action.target_kind, entity.pos, radius)

        if replacement is None:
            LOGGER.debug("%s gave up on %s", entity.name, action.target_id or action.target_type)
            controller.reset_after_action()
            return
        self._engage(controller, replacement)

    def fallback(self, controller: AgentController) -> None:
        entity = controller.entity
        controller.clear_action()
        controller.destination = random_point_around(
            entity.home or entity.pos,
            entity.roam_radius,
            self.rng,
            terrain=self.terrain,
            half_size=self.world_half_size,
        )
        controller.state = AgentState.ROAMING
        controller.set_intent(FALLBACK_INTENT)
