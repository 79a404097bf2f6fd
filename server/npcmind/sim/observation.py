from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from npcmind.agents.agent import Entity, EntityKind, InventoryItem, Vec3, WorldObject


Point = tuple[float, float, float]
ActionLabeler = Callable[[Entity], str]


def _point(pos: Vec3) -> Point:
    return (pos.x, pos.y, pos.z)


@dataclass(frozen=True)
class SelfView:
    id: str
    position: Point
    health: float
    dead: bool
    current_action: str
    inventory: tuple[InventoryItem | None, ...] = ()


@dataclass(frozen=True)
class CharacterView:
    id: str
    name: str
    position: Point
    health: float
    dead: bool
    current_action: str


@dataclass(frozen=True)
class AnimalView:
    id: str
    type: str
    position: Point
    health: float
    dead: bool
    aggressive: bool
    current_action: str


@dataclass(frozen=True)
class ObjectView:
    id: str
    type: str
    position: Point
    interactable: bool
    resource: str | None = None


@dataclass(frozen=True)
class Observation:
    timestamp: float
    self_state: SelfView
    nearby_characters: tuple[CharacterView, ...] = ()
    nearby_animals: tuple[AnimalView, ...] = ()
    nearby_objects: tuple[ObjectView, ...] = ()

    def character(self, character_id: str) -> CharacterView | None:
        for view in self.nearby_characters:
            if view.id == character_id:
                return view
        return None


def default_action_label(entity: Entity) -> str:
    if entity.is_player:
        return "player_controlled"
    if entity.dead:
        return "dead"
    return "unknown"


def snapshot(
    agent: Entity,
    candidates: Iterable[Entity | WorldObject],
    *,
    radius: float,
    action_label: str,
    now: float,
    labeler: ActionLabeler = default_action_label,
    max_characters: int = 12,
    max_animals: int = 12,
    max_objects: int = 24,
) -> Observation:
    origin = agent.pos
    radius_sq = radius * radius
    seen: set[str] = {agent.id}
    characters: list[tuple[float, CharacterView]] = []
    animals: list[tuple[float, AnimalView]] = []
    objects: list[tuple[float, ObjectView]] = []

    for candidate in candidates:
        if candidate is agent or candidate.id in seen:
            continue
        distance_sq = origin.distance_sq(candidate.pos)
        if distance_sq > radius_sq:
            continue
        seen.add(candidate.id)

        if candidate.kind == EntityKind.CHARACTER:
            characters.append(
                (
                    distance_sq,
                    CharacterView(
                        id=candidate.id,
                        name=candidate.name,
                        position=_point(candidate.pos),
                        health=candidate.health,
                        dead=candidate.dead,
                        current_action=labeler(candidate),
                    ),
                )
            )
        elif candidate.kind == EntityKind.ANIMAL:
            animals.append(
                (
                    distance_sq,
                    AnimalView(
                        id=candidate.id,
                        type=candidate.animal_type or "animal",
                        position=_point(candidate.pos),
                        health=candidate.health,
                        dead=candidate.dead,
                        aggressive=candidate.aggressive,
                        current_action=labeler(candidate),
                    ),
                )
            )
        elif candidate.kind == EntityKind.OBJECT and candidate.is_available:
            objects.append(
                (
                    distance_sq,
                    ObjectView(
                        id=candidate.id,
                        type=candidate.type,
                        position=_point(candidate.pos),
                        interactable=candidate.interactable,
                        resource=candidate.resource,
                    ),
                )
            )

    def _closest(items: list, cap: int) -> tuple:
        items.sort(key=lambda pair: pair[0])
        return tuple(view for _distance, view in items[:cap])

    return Observation(
        timestamp=now,
        self_state=SelfView(
            id=agent.id,
            position=_point(origin),
            health=agent.health,
            dead=agent.dead,
            current_action=action_label,
            inventory=agent.inventory_snapshot(),
        ),
        nearby_characters=_closest(characters, max_characters),
        nearby_animals=_closest(animals, max_animals),
        nearby_objects=_closest(objects, max_objects),
    )


def reactive_trigger(current: Observation | None, previous: Observation | None) -> bool:
    """True when something happened to the agent or its neighbours since the last snapshot."""
    if current is None or previous is None:
        return False
    if current.self_state.health < previous.self_state.health:
        return True
    for view in current.nearby_characters:
        before = previous.character(view.id)
        if before is None or view.health < before.health or view.dead != before.dead:
            return True
    return False


class ObservationBuilder:
    def __init__(
        self,
        radius: float,
        labeler: ActionLabeler = default_action_label,
        max_characters: int = 12,
        max_animals: int = 12,
        max_objects: int = 24,
    ):
        self.radius = radius
        self.labeler = labeler
        self.max_characters = max_characters
        self.max_animals = max_animals
        self.max_objects = max_objects
        self.current: Observation | None = None
        self.previous: Observation | None = None

    def update(
        self,
        agent: Entity,
        candidates: Iterable[Entity | WorldObject],
        action_label: str,
        now: float,
    ) -> Observation:
        # Observations are frozen, so keeping the reference is the structural copy.
        self.previous = self.current
        self.current = snapshot(
            agent,
            candidates,
            radius=self.radius,
            action_label=action_label,
            now=now,
            labeler=self.labeler,
            max_characters=self.max_characters,
            max_animals=self.max_animals,
            max_objects=self.max_objects,
        )
        return self.current

    def affected(self) -> bool:
        return reactive_trigger(self.current, self.previous)

    def reset(self) -> None:
        self.current = None
        self.previous = None
