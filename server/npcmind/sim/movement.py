from __future__ import annotations

import math
import random
from collections.abc import Callable

from npcmind.agents.agent import Vec3


TerrainHeight = Callable[[float, float], float]


def flat_terrain(x: float, z: float) -> float:
    return 0.0


def clamp_position(pos: Vec3, half_size: float) -> Vec3:
    return Vec3(
        x=max(-half_size, min(half_size, pos.x)),
        y=pos.y,
        z=max(-half_size, min(half_size, pos.z)),
    )


def random_point_around(
    home: Vec3,
    radius: float,
    rng: random.Random,
    terrain: TerrainHeight = flat_terrain,
    half_size: float | None = None,
) -> Vec3:
    angle = rng.random() * math.pi * 2.0
    distance = rng.random() * radius
    point = Vec3(home.x + math.cos(angle) * distance, home.y, home.z + math.sin(angle) * distance)
    if half_size is not None:
        point = clamp_position(point, half_size)
    point.y = terrain(point.x, point.z)
    return point


def step_forward(pos: Vec3, facing: Vec3, distance: float, terrain: TerrainHeight, half_size: float) -> Vec3:
    moved = Vec3(pos.x + facing.x * distance, pos.y, pos.z + facing.z * distance)
    moved = clamp_position(moved, half_size)
    moved.y = terrain(moved.x, moved.z)
    return moved
