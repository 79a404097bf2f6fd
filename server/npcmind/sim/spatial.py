"""
Uniform hash grid used as the broad phase for radius queries.

Objects are bucketed by the XZ cell of their position. A radius query only
visits the cells overlapping the query square, so the cost scales with the
number of nearby objects rather than the size of the world.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable
from typing import Generic, Protocol, TypeVar

from npcmind.agents.agent import Vec3


Cell = tuple[int, int]


class HasPosition(Protocol):
    pos: Vec3


T = TypeVar("T", bound=HasPosition)


class SpatialHashGrid(Generic[T]):
    def __init__(self, cell_size: float = 16.0):
        if cell_size <= 0:
            raise ValueError("Cell size must be positive.")
        self.cell_size = cell_size
        self.grid: dict[Cell, list[T]] = defaultdict(list)

    def _hash(self, x: float, z: float) -> Cell:
        return math.floor(x / self.cell_size), math.floor(z / self.cell_size)

    def rebuild(self, objects: Iterable[T]) -> None:
        self.grid.clear()
        for obj in objects:
            self.add(obj)

    def add(self, obj: T) -> None:
        self.grid[self._hash(obj.pos.x, obj.pos.z)].append(obj)

    def get_in_radius(self, origin: Vec3, radius: float) -> list[T]:
        """Candidates whose cell overlaps the query square; callers still filter by distance."""
        min_x, min_z = self._hash(origin.x - radius, origin.z - radius)
        max_x, max_z = self._hash(origin.x + radius, origin.z + radius)
        found: list[T] = []
        for cx in range(min_x, max_x + 1):
            for cz in range(min_z, max_z + 1):
                bucket = self.grid.get((cx, cz))
                if bucket:
                    found.extend(bucket)
        return found
