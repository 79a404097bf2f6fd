from __future__ import annotations

import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque

from npcmind.agents.agent import Entity, EntityKind, InventoryItem, MoveIntent, Vec3, WorldObject
from npcmind.config import AgentSettings, AnimalSettings, WorldSettings
from npcmind.llm.client import OracleClient
from npcmind.memory.event_log import EventJournal
from npcmind.sim.animal_controller import AnimalController
from npcmind.sim.chat import ChatResponder
from npcmind.sim.combat import CooldownCombat
from npcmind.sim.movement import TerrainHeight, flat_terrain, step_forward
from npcmind.sim.npc_controller import AgentContext, AgentController, Spawner
from npcmind.sim.registry import EntityRegistry, ObjectRegistry
from npcmind.sim.scheduler import ManualClock
from npcmind.sim.states import AnimalState


LOGGER = logging.getLogger("npcmind.sim.engine")


def _clamp_float(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class TickResult:
    tick: int
    events: list[dict] = field(default_factory=list)


class World:
    """Owns every entity, controller and shared collaborator, and advances them one step at a time.

    Simulated time drives a ``ManualClock`` so the decision cooldowns, chat
    follow-ups and combat cooldowns all move with the simulation speed.
    """

    def __init__(
        self,
        oracle: OracleClient | None = None,
        agent_settings: AgentSettings | None = None,
        animal_settings: AnimalSettings | None = None,
        settings: WorldSettings | None = None,
        rng: random.Random | None = None,
        terrain: TerrainHeight = flat_terrain,
        spawner: Spawner | None = None,
    ):
        self.settings = settings or WorldSettings()
        self.agent_settings = agent_settings or AgentSettings()
        self.animal_settings = animal_settings or AnimalSettings()
        self.rng = rng or random.Random()
        self.terrain = terrain
        self.clock = ManualClock()
        self.oracle = oracle or OracleClient.disabled()
        self.entities = EntityRegistry()
        self.objects = ObjectRegistry()
        self.journal = EventJournal(
            self.entities,
            log_size=self.settings.event_log_size,
            history_limit=self.settings.history_limit,
            hearing_radius=self.settings.hearing_radius,
        )
        self.controllers: dict[str, Any] = {}
        self.combat = CooldownCombat(self.clock, self.journal, on_kill=self._on_killed)
        self.chat_responder = ChatResponder(self.oracle, self.journal, self.controllers, self.agent_settings, spawner)
        self.context = AgentContext(
            entities=self.entities,
            objects=self.objects,
            oracle=self.oracle,
            journal=self.journal,
            clock=self.clock,
            settings=self.agent_settings,
            effects=self,
            terrain=terrain,
            world_half_size=self.settings.world_half_size,
            controllers=self.controllers,
            spawner=spawner,
        )
        self.speed = 1.0
        self.tick = 0
        self.player_id: str | None = None
        self.trade_requests: Deque[dict] = deque(maxlen=50)

    # --- population ------------------------------------------------------

    def add_npc(
        self,
        entity_id: str,
        name: str,
        pos: Vec3,
        persona: str = "",
        inventory: list[InventoryItem | None] | None = None,
    ) -> AgentController:
        entity = Entity(
            id=entity_id,
            name=name,
            kind=EntityKind.CHARACTER,
            pos=self._on_ground(pos),
            persona=persona,
            search_radius=self.agent_settings.search_radius,
            roam_radius=self.agent_settings.roam_radius,
            inventory=list(inventory or []),
        )
        self.entities.add(entity)
        return AgentController(entity, self.context, rng=random.Random(self.rng.random()))

    def add_player(self, entity_id: str, name: str, pos: Vec3) -> Entity:
        entity = Entity(id=entity_id, name=name, kind=EntityKind.CHARACTER, pos=self._on_ground(pos), is_player=True)
        self.entities.add(entity)
        self.player_id = entity.id
        return entity

    def add_animal(
        self,
        entity_id: str,
        animal_type: str,
        pos: Vec3,
        aggressive: bool = False,
        health: float = 50.0,
        attack_damage: float = 5.0,
    ) -> AnimalController:
        entity = Entity(
            id=entity_id,
            name=animal_type.capitalize(),
            kind=EntityKind.ANIMAL,
            pos=self._on_ground(pos),
            health=health,
            max_health=health,
            animal_type=animal_type,
            aggressive=aggressive,
            attack_damage=attack_damage,
            attack_cooldown=2.0,
            roam_radius=self.animal_settings.roam_radius,
        )
        self.entities.add(entity)
        controller = AnimalController(
            entity,
            self.entities,
            combat=self.combat,
            settings=self.animal_settings,
            rng=random.Random(self.rng.random()),
            terrain=self.terrain,
        )
        self.controllers[entity.id] = controller
        return controller

    def add_object(self, object_id: str, object_type: str, pos: Vec3, resource: str | None = None) -> WorldObject:
        obj = WorldObject(id=object_id, type=object_type, pos=self._on_ground(pos), resource=resource)
        self.objects.add(obj)
        return obj

    def _on_ground(self, pos: Vec3) -> Vec3:
        return Vec3(pos.x, self.terrain(pos.x, pos.z), pos.z)

    @classmethod
    def build_default(cls, oracle: OracleClient | None = None, **kwargs: Any) -> "World":
        world = cls(oracle=oracle, **kwargs)
        npcs = [
            ("npc_farmer", "Farmer Giles", "A friendly farmer who loves his fields and trades vegetables.", Vec3(-6.0, 0.0, 4.0)),
            ("npc_blacksmith", "Brynn", "A gruff blacksmith, always short on stone and iron.", Vec3(6.0, 0.0, 5.0)),
            ("npc_hunter", "Ash", "A quiet hunter who tracks deer and fears wolves.", Vec3(0.0, 0.0, -8.0)),
        ]
        for entity_id, name, persona, pos in npcs:
            world.add_npc(entity_id, name, pos, persona=persona, inventory=[InventoryItem("bread", 2), None])
        world.add_player("player", "Player", Vec3(0.0, 0.0, 0.0))

        world.add_animal("wolf_1", "wolf", Vec3(25.0, 0.0, 20.0), aggressive=True, attack_damage=8.0)
        world.add_animal("deer_1", "deer", Vec3(-20.0, 0.0, -15.0))
        world.add_animal("deer_2", "deer", Vec3(-24.0, 0.0, -10.0))

        resources = [("tree", "wood", 4), ("rock", "stone", 3), ("herb", "herb", 3)]
        for object_type, resource, count in resources:
            for idx in range(count):
                pos = Vec3(world.rng.uniform(-30.0, 30.0), 0.0, world.rng.uniform(-30.0, 30.0))
                world.add_object(f"{object_type}_{idx + 1}", object_type, pos, resource=resource)

        world.journal.log_event(None, "world", "The village wakes up.")
        return world

    # --- simulation ------------------------------------------------------

    def step(self, dt: float | None = None) -> TickResult:
        dt = self.settings.tick_interval_sec if dt is None else max(0.0, dt)
        self.tick += 1
        self.clock.advance(dt)
        before = self.journal.sequence
        self.entities.refresh()
        self.objects.refresh()

        for controller in list(self.controllers.values()):
            if isinstance(controller, AgentController):
                intent = controller.tick(dt)
                self._apply_intent(controller.entity, intent, dt)
                if intent.attack and controller.target is not None:
                    self.combat.initiate_attack(controller.entity, controller.target)

        for controller in list(self.controllers.values()):
            if isinstance(controller, AnimalController):
                controller.update_logic(dt)
                self._apply_intent(controller.entity, controller.compute_movement(), dt)

        events = [entry.to_payload() for entry in self.journal.events_since(before)]
        return TickResult(tick=self.tick, events=events)

    def _apply_intent(self, entity: Entity, intent: MoveIntent, dt: float) -> None:
        if entity.dead or intent.forward == 0.0:
            return
        speed = self.settings.sprint_speed if intent.sprint else self.settings.walk_speed
        distance = speed * intent.forward * dt
        if intent.reach is not None:
            distance = min(distance, max(intent.reach, 0.0))
        entity.pos = step_forward(
            entity.pos,
            entity.facing,
            distance,
            self.terrain,
            self.settings.world_half_size,
        )

    # --- AgentEffects ----------------------------------------------------

    def chat(self, speaker: Entity, target: Entity, message: str) -> None:
        self.chat_responder.deliver(speaker, target, message)

    def trade(
        self,
        speaker: Entity,
        target: Entity,
        give: list[InventoryItem],
        receive: list[InventoryItem],
    ) -> None:
        request = {
            "from_id": speaker.id,
            "to_id": target.id,
            "give_items": [item.to_dict() for item in give],
            "receive_items": [item.to_dict() for item in receive],
        }
        self.trade_requests.append(request)
        self.journal.log_event(
            speaker,
            "trade_request",
            f"{speaker.name} offered a trade to {target.name}.",
            target=target,
            details=request,
        )

    def show_intent(self, entity: Entity, text: str) -> None:
        entity.display_text = text

    # --- control ---------------------------------------------------------

    def _require(self, entity_id: str) -> Entity:
        entity = self.entities.get(entity_id)
        if entity is None:
            raise KeyError(entity_id)
        return entity

    def damage(self, entity_id: str, amount: float) -> Entity:
        entity = self._require(entity_id)
        if entity.dead:
            raise ValueError(f"{entity_id} is already dead")
        entity.health = max(0.0, entity.health - max(0.0, amount))
        self.journal.log_event(entity, "damage", f"{entity.name} took {amount:g} damage.")
        if entity.health <= 0:
            entity.dead = True
            self._on_killed(entity)
        return entity

    def kill(self, entity_id: str) -> Entity:
        entity = self._require(entity_id)
        if entity.dead:
            raise ValueError(f"{entity_id} is already dead")
        entity.health = 0.0
        entity.dead = True
        self._on_killed(entity)
        return entity

    def _on_killed(self, entity: Entity) -> None:
        controller = self.controllers.get(entity.id)
        if isinstance(controller, AgentController):
            controller.on_death()
        elif isinstance(controller, AnimalController):
            controller.set_state(AnimalState.DEAD)
        self.journal.log_event(entity, "death", f"{entity.name} died.")

    def respawn(self, entity_id: str) -> Entity:
        entity = self._require(entity_id)
        if not entity.dead:
            raise ValueError(f"{entity_id} is alive")
        entity.dead = False
        entity.health = entity.max_health
        entity.pos = (entity.home or entity.pos).copy()
        self.entities.refresh()
        controller = self.controllers.get(entity.id)
        if controller is not None:
            controller.on_respawn()
        self.journal.log_event(entity, "respawn", f"{entity.name} returned.")
        return entity

    def player_say(self, target_id: str, text: str) -> bool:
        if self.player_id is None:
            raise RuntimeError("no player in this world")
        player = self._require(self.player_id)
        target = self._require(target_id)
        if target.kind != EntityKind.CHARACTER or target is player:
            raise ValueError(f"{target_id} cannot be talked to")
        return self.chat_responder.deliver(player, target, text)

    def update_speed(self, speed: float) -> float:
        self.speed = _clamp_float(speed, 0.1, 5.0)
        return self.speed

    # --- payloads --------------------------------------------------------

    def entities_state_payload(self) -> list[dict]:
        payload: list[dict] = []
        for entity in self.entities:
            item = entity.to_state_payload()
            controller = self.controllers.get(entity.id)
            item["state"] = controller.state.value if controller is not None else self.context.action_label(entity)
            payload.append(item)
        return payload

    def objects_payload(self) -> list[dict]:
        return [obj.to_state_payload() for obj in self.objects]

    def agents_list_payload(self) -> list[dict]:
        return [
            {"id": c.entity.id, "name": c.entity.name, "state": c.state.value, "intent": c.current_intent}
            for c in self.controllers.values()
            if isinstance(c, AgentController)
        ]

    def agent_details(self, agent_id: str) -> dict | None:
        controller = self.controllers.get(agent_id)
        if not isinstance(controller, AgentController):
            return None
        details = controller.entity.to_state_payload()
        details.update(controller.to_payload())
        details["persona"] = controller.entity.persona
        details["inventory"] = [item.to_dict() if item is not None else None for item in controller.entity.inventory]
        details["recent_events"] = [
            entry.to_payload() for entry in self.journal.log_for(agent_id).recent(self.agent_settings.prompt_events)
        ]
        return details

    def events_payload(self, limit: int = 200, agent_id: str | None = None) -> list[dict]:
        return self.journal.history_payload(limit=limit, actor_id=agent_id)

    def oracle_stats_payload(self) -> dict:
        return {
            "enabled": self.oracle.enabled,
            "model": self.oracle.model,
            "calls": self.oracle.calls,
            "key_rotated": self.oracle.credentials.rotated,
        }

    def state_payload(self) -> dict:
        return {
            "tick": self.tick,
            "sim_time": round(self.clock.now(), 3),
            "speed": self.speed,
            "entities": self.entities_state_payload(),
            "objects": self.objects_payload(),
            "events": self.events_payload(limit=200),
            "trade_requests": list(self.trade_requests),
            "oracle": self.oracle_stats_payload(),
        }
