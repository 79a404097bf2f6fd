from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Protocol

from npcmind.agents.agent import Entity, InventoryItem, MoveIntent, Vec3, WorldObject
from npcmind.config import AgentSettings
from npcmind.llm.client import OracleClient
from npcmind.memory.event_log import EventJournal
from npcmind.sim.movement import TerrainHeight, flat_terrain
from npcmind.sim.observation import Observation, ObservationBuilder, default_action_label
from npcmind.sim.prompts import build_decision_prompt
from npcmind.sim.registry import EntityRegistry, ObjectRegistry
from npcmind.sim.resolver import ActionResolver
from npcmind.sim.scheduler import Clock, DecisionScheduler
from npcmind.sim.states import AgentState, PersistentAction


LOGGER = logging.getLogger("npcmind.sim.npc_controller")

Spawner = Callable[[Coroutine[Any, Any, None]], Any]

_BACKGROUND_TASKS: set[asyncio.Task] = set()


class AgentEffects(Protocol):
    def chat(self, speaker: Entity, target: Entity, message: str) -> None: ...

    def trade(
        self,
        speaker: Entity,
        target: Entity,
        give: list[InventoryItem],
        receive: list[InventoryItem],
    ) -> None: ...

    def show_intent(self, entity: Entity, text: str) -> None: ...


class NullEffects:
    def chat(self, speaker: Entity, target: Entity, message: str) -> None:
        return None

    def trade(
        self,
        speaker: Entity,
        target: Entity,
        give: list[InventoryItem],
        receive: list[InventoryItem],
    ) -> None:
        return None

    def show_intent(self, entity: Entity, text: str) -> None:
        entity.display_text = text


@dataclass
class AgentContext:
    """Everything an agent controller reads from or talks to outside its own entity."""

    entities: EntityRegistry
    objects: ObjectRegistry
    oracle: OracleClient
    journal: EventJournal
    clock: Clock
    settings: AgentSettings = field(default_factory=AgentSettings)
    effects: AgentEffects = field(default_factory=NullEffects)
    terrain: TerrainHeight = flat_terrain
    world_half_size: float | None = None
    controllers: dict[str, Any] = field(default_factory=dict)
    spawner: Spawner | None = None

    def action_label(self, entity: Entity) -> str:
        controller = self.controllers.get(entity.id)
        if controller is not None and not entity.is_player:
            return controller.state.value
        return default_action_label(entity)

    def spawn(self, coro: Coroutine[Any, Any, None]) -> bool:
        return spawn_task(coro, self.spawner)


def spawn_task(coro: Coroutine[Any, Any, Any], spawner: Spawner | None = None) -> bool:
    """Run ``coro`` in the background; returns False (and closes it) when there is no loop."""
    if spawner is not None:
        spawner(coro)
        return True
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        return False
    task = loop.create_task(coro)
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(_BACKGROUND_TASKS.discard)
    return True


class AgentController:
    """Oracle-driven humanoid controller.

    ``tick`` runs every frame and returns the movement intent; oracle calls run
    as background coroutines while the agent sits in ``deciding``. At most one
    call is in flight per agent.
    """

    def __init__(self, entity: Entity, context: AgentContext, rng: random.Random | None = None):
        self.entity = entity
        self.context = context
        self.settings = context.settings
        self.rng = rng or random.Random()
        self.state = AgentState.DEAD if entity.dead else AgentState.IDLE
        self.destination: Vec3 | None = None
        self.target: Entity | WorldObject | None = None
        self.target_action: str | None = None
        self.message: str | None = None
        self.trade_give: list[InventoryItem] = []
        self.trade_receive: list[InventoryItem] = []
        self.persistent_action: PersistentAction | None = None
        self.current_intent = ""
        self.following = False
        self.last_logged_attack_target_id: str | None = None
        self.oracle_calls = 0
        self._lifecycle = 0
        self._oracle_in_flight = False

        self.scheduler = DecisionScheduler(context.clock, self.settings, self.rng)
        self.observations = ObservationBuilder(
            radius=entity.search_radius,
            labeler=context.action_label,
            max_characters=self.settings.max_nearby_characters,
            max_animals=self.settings.max_nearby_animals,
            max_objects=self.settings.max_nearby_objects,
        )
        self.resolver = ActionResolver(
            context.entities,
            context.objects,
            rng=self.rng,
            terrain=context.terrain,
            world_half_size=context.world_half_size,
        )
        context.controllers[entity.id] = self

    @property
    def observation(self) -> Observation | None:
        return self.observations.current

    def set_intent(self, text: str) -> None:
        self.current_intent = text
        self.context.effects.show_intent(self.entity, text)

    def clear_action(self) -> None:
        self.destination = None
        self.target = None
        self.target_action = None
        self.message = None
        self.trade_give = []
        self.trade_receive = []
        self.persistent_action = None
        self.following = False
        self.last_logged_attack_target_id = None

    def reset_after_action(self) -> None:
        self.clear_action()
        self.state = AgentState.IDLE
        self.scheduler.reset_after_action()

    def fallback(self) -> None:
        self.resolver.fallback(self)

    def handle_target_lost(self) -> None:
        self.resolver.handle_target_lost(self)

    # --- decisions -------------------------------------------------------

    def _begin_decision(self) -> bool:
        if self.entity.dead:
            self.state = AgentState.DEAD
            return False
        if self.state in (AgentState.DECIDING, AgentState.DEAD) or self.following:
            return False
        if self._oracle_in_flight:
            LOGGER.debug("%s still waits on an earlier oracle call", self.entity.name)
            return False
        self.state = AgentState.DECIDING
        self._oracle_in_flight = True
        return True

    def request_decision(self) -> bool:
        if not self._begin_decision():
            return False
        if not self.context.spawn(self._consult_oracle(self._lifecycle)):
            self._oracle_in_flight = False
            LOGGER.warning("no running event loop; %s falls back without deciding", self.entity.name)
            self.fallback()
            return False
        return True

    async def decide_next_action(self) -> None:
        if self._begin_decision():
            await self._consult_oracle(self._lifecycle)

    def build_prompt(self) -> str:
        events = self.context.journal.log_for(self.entity.id).recent(self.settings.prompt_events)
        return build_decision_prompt(
            name=self.entity.name,
            agent_id=self.entity.id,
            persona=self.entity.persona,
            observation=self.observations.current,
            events=events,
            max_health=self.entity.max_health,
            current_intent=self.current_intent,
            locale=self.settings.locale,
            objects_per_type=self.settings.objects_per_type,
        )

    async def _consult_oracle(self, lifecycle: int) -> None:
        try:
            prompt = self.build_prompt()
            self.scheduler.mark_oracle_call()
            self.oracle_calls += 1
            try:
                response = await self.context.oracle.invoke(prompt)
            except Exception:
                LOGGER.exception("oracle call raised for %s", self.entity.name)
                response = None
        finally:
            self._oracle_in_flight = False

        if lifecycle != self._lifecycle or self.state != AgentState.DECIDING:
            LOGGER.debug("discarding stale oracle response for %s", self.entity.name)
            return
        if self.entity.dead:
            self.state = AgentState.DEAD
            return
        self.resolver.resolve(response, self)

    # --- per-frame -------------------------------------------------------

    def tick(self, dt: float) -> MoveIntent:
        intent = MoveIntent()
        if self.entity.dead or self.state == AgentState.DEAD:
            if self.state != AgentState.DEAD:
                self.on_death()
            return intent

        if not isinstance(self.state, AgentState):
            LOGGER.warning("unhandled state %r for %s; resetting to idle", self.state, self.entity.name)
            self.state = AgentState.IDLE

        self.observations.update(
            self.entity,
            self._candidates(),
            action_label=self.state.value,
            now=self.context.clock.now(),
        )
        if self.scheduler.try_reactive(self.observations.affected()):
            self.scheduler.reset_timer()
            self.request_decision()

        self.scheduler.advance(dt)
        if self.scheduler.poll_follow_up():
            self.request_decision()
        elif self.scheduler.due_for_decision():
            self.request_decision()

        if self.state == AgentState.DECIDING:
            return intent
        if self.state in (AgentState.IDLE, AgentState.ROAMING):
            self._walk_to_destination(intent)
        elif self.state == AgentState.MOVING_TO_TARGET:
            self._pursue_target(intent)
        return intent

    def _candidates(self) -> list[Entity | WorldObject]:
        origin = self.entity.pos
        radius = self.entity.search_radius
        return [
            *self.context.entities.query_radius(origin, radius),
            *self.context.objects.query_radius(origin, radius),
        ]

    def _walk_to_destination(self, intent: MoveIntent) -> None:
        if self.destination is None:
            self.state = AgentState.IDLE
            return
        _dx, _dz, distance = self.entity.pos.horizontal_to(self.destination)
        if distance > self.settings.stopping_distance:
            self.entity.look_at(self.destination)
            intent.forward = 1.0
            intent.reach = distance
        else:
            self.state = AgentState.IDLE
            self.destination = None

    def _target_valid(self) -> bool:
        target = self.target
        if isinstance(target, WorldObject):
            return target.is_available
        return target is not None and not target.dead

    def _required_distance(self) -> float:
        if self.target_action == "attack":
            return self.settings.attack_distance
        if self.target_action == "follow":
            return self.settings.follow_distance
        return self.settings.interaction_distance

    def _pursue_target(self, intent: MoveIntent) -> None:
        target = self.target
        if target is None or self.target_action is None:
            self.reset_after_action()
            return
        if not self._target_valid():
            self.handle_target_lost()
            return

        _dx, _dz, distance = self.entity.pos.horizontal_to(target.pos)
        if self.following:
            self._hold_follow(intent, distance)
            return

        if self.target_action == "attack" and distance > self.entity.search_radius:
            LOGGER.info("%s lost attack target %s (out of range)", self.entity.name, target.id)
            self.handle_target_lost()
            return

        required = self._required_distance()
        if distance > required:
            self.entity.look_at(target.pos)
            intent.forward = 1.0
            intent.reach = distance - required / 2
            return

        self.entity.look_at(target.pos)
        if self.target_action == "attack":
            intent.attack = True
            self._log_attack_once(target)
        elif self.target_action == "chat" and self.message and isinstance(target, Entity):
            self._deliver_chat(target, self.message)
        elif self.target_action == "trade" and isinstance(target, Entity):
            self.context.effects.trade(self.entity, target, list(self.trade_give), list(self.trade_receive))
            self.reset_after_action()
        elif self.target_action == "follow":
            self.following = True
            self.destination = None
        else:
            self.reset_after_action()

    def _hold_follow(self, intent: MoveIntent, distance: float) -> None:
        target = self.target
        if distance > self.settings.follow_distance * self.settings.follow_leash_factor:
            LOGGER.info("%s lost follow target %s (too far)", self.entity.name, getattr(target, "name", target.id))
            self.reset_after_action()
            return
        self.entity.look_at(target.pos)
        if distance > self.settings.follow_distance:
            intent.forward = 1.0
            intent.reach = distance - self.settings.follow_distance / 2

    def _log_attack_once(self, target: Entity | WorldObject) -> None:
        if self.last_logged_attack_target_id == target.id:
            return
        self.last_logged_attack_target_id = target.id
        label = target.name if isinstance(target, Entity) else target.type
        self.context.journal.log_event(
            self.entity,
            "attack",
            f"{self.entity.name} attacks {label}.",
            target=target if isinstance(target, Entity) else None,
            details={"target_id": target.id},
        )

    def _deliver_chat(self, target: Entity, message: str) -> None:
        peer = self.context.controllers.get(target.id)
        if isinstance(peer, AgentController):
            peer.persistent_action = None
            if peer.state not in (AgentState.DECIDING, AgentState.DEAD):
                peer.clear_action()
                peer.state = AgentState.IDLE
        self.set_intent(message)
        self.context.effects.chat(self.entity, target, message)
        self.reset_after_action()
        self.schedule_follow_up()

    # --- lifecycle -------------------------------------------------------

    def on_death(self) -> None:
        self._lifecycle += 1
        self.clear_action()
        self.scheduler.cancel_follow_up()
        self.state = AgentState.DEAD
        self.current_intent = ""

    def on_respawn(self) -> None:
        self._lifecycle += 1
        self.clear_action()
        self.scheduler.cancel_follow_up()
        self.scheduler.reset_timer()
        self.observations.reset()
        self.state = AgentState.IDLE
        self.current_intent = ""

    def schedule_follow_up(self, delay: float | None = None) -> None:
        if self.state != AgentState.DEAD:
            self.scheduler.schedule_follow_up(delay)

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "intent": self.current_intent,
            "target_id": self.target.id if self.target is not None else None,
            "target_action": self.target_action,
            "following": self.following,
            "persistent_action": (
                {
                    "type": self.persistent_action.type,
                    "target_id": self.persistent_action.target_id,
                    "target_type": self.persistent_action.target_type,
                }
                if self.persistent_action is not None
                else None
            ),
            "oracle_calls": self.oracle_calls,
            "follow_up_pending": self.scheduler.follow_up_pending,
        }
