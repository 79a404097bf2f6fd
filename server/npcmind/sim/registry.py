from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Generic, TypeVar

from npcmind.agents.agent import Entity, EntityKind, Vec3, WorldObject
from npcmind.sim.spatial import SpatialHashGrid


T = TypeVar("T", Entity, WorldObject)


class _Registry(Generic[T]):
    def __init__(self, items: Iterable[T] = (), cell_size: float = 16.0):
        self._items: dict[str, T] = {}
        self._grid: SpatialHashGrid[T] = SpatialHashGrid(cell_size)
        self._dirty = True
        for item in items:
            self.add(item)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: T) -> T:
        if item.id in self._items:
            raise ValueError(f"duplicate id: {item.id}")
        self._items[item.id] = item
        self._dirty = True
        return item

    def get(self, item_id: str | None) -> T | None:
        if not item_id:
            return None
        return self._items.get(item_id)

    def refresh(self) -> None:
        """Rebuild the broad phase from current positions; called once per world step."""
        self._grid.rebuild(self._items.values())
        self._dirty = False

    def query_radius(self, origin: Vec3, radius: float) -> list[T]:
        if self._dirty:
            self.refresh()
        radius_sq = radius * radius
        return [item for item in self._grid.get_in_radius(origin, radius) if origin.distance_sq(item.pos) <= radius_sq]

    def _nearest(self, candidates: Iterable[T], origin: Vec3, radius: float) -> T | None:
        nearest: T | None = None
        min_distance_sq = radius * radius
        for candidate in candidates:
            distance_sq = origin.distance_sq(candidate.pos)
            if distance_sq < min_distance_sq:
                min_distance_sq = distance_sq
                nearest = candidate
        return nearest


class EntityRegistry(_Registry[Entity]):
    def characters(self) -> list[Entity]:
        return [entity for entity in self._items.values() if entity.kind == EntityKind.CHARACTER]

    def animals(self) -> list[Entity]:
        return [entity for entity in self._items.values() if entity.kind == EntityKind.ANIMAL]

    def nearest_animal(self, animal_type: str, origin: Vec3, radius: float) -> Entity | None:
        candidates = (
            entity
            for entity in self.query_radius(origin, radius)
            if entity.kind == EntityKind.ANIMAL and entity.animal_type == animal_type and not entity.dead
        )
        return self._nearest(candidates, origin, radius)

    def nearest_character(
        self,
        origin: Vec3,
        radius: float,
        exclude: Entity | None = None,
    ) -> Entity | None:
        candidates = (
            entity
            for entity in self.query_radius(origin, radius)
            if entity.kind == EntityKind.CHARACTER and not entity.dead and entity is not exclude
        )
        return self._nearest(candidates, origin, radius)


class ObjectRegistry(_Registry[WorldObject]):
    def nearest_resource(self, resource: str, origin: Vec3, radius: float) -> WorldObject | None:
        candidates = (
            obj
            for obj in self.query_radius(origin, radius)
            if obj.resource == resource and obj.is_available
        )
        return self._nearest(candidates, origin, radius)
