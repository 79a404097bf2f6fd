from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Vec3:
    x: float
    y: float = 0.0
    z: float = 0.0

    def copy(self) -> "Vec3":
        return Vec3(self.x, self.y, self.z)

    def distance_sq(self, other: "Vec3") -> float:
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return dx * dx + dy * dy + dz * dz

    def distance_2d(self, other: "Vec3") -> float:
        return math.sqrt((self.x - other.x) ** 2 + (self.z - other.z) ** 2)

    def horizontal_to(self, other: "Vec3") -> tuple[float, float, float]:
        """Direction towards ``other`` on the XZ plane as ``(dx, dz, length)``."""
        dx = other.x - self.x
        dz = other.z - self.z
        return dx, dz, math.sqrt(dx * dx + dz * dz)

    def to_dict(self) -> dict:
        return {"x": round(self.x, 2), "y": round(self.y, 2), "z": round(self.z, 2)}


class EntityKind(str, Enum):
    CHARACTER = "character"
    ANIMAL = "animal"
    OBJECT = "object"


@dataclass(frozen=True)
class InventoryItem:
    id: str
    count: int

    def to_dict(self) -> dict:
        return {"id": self.id, "count": self.count}


@dataclass
class MoveIntent:
    forward: float = 0.0
    right: float = 0.0
    jump: bool = False
    sprint: bool = False
    interact: bool = False
    attack: bool = False
    # distance left to where the mover should stop; None means unbounded
    reach: float | None = None


@dataclass(eq=False)
class Entity:
    id: str
    name: str
    kind: EntityKind
    pos: Vec3
    health: float = 100.0
    max_health: float = 100.0
    dead: bool = False
    persona: str = ""
    search_radius: float = 30.0
    roam_radius: float = 20.0
    animal_type: str | None = None
    aggressive: bool = False
    is_player: bool = False
    facing: Vec3 = field(default_factory=lambda: Vec3(0.0, 0.0, 1.0))
    performing_action: bool = False
    attack_cooldown: float = 1.5
    attack_damage: float = 10.0
    last_attack_time: float = float("-inf")
    inventory: list[InventoryItem | None] = field(default_factory=list)
    display_text: str = ""
    home: Vec3 | None = None

    def __post_init__(self) -> None:
        if self.home is None:
            self.home = self.pos.copy()

    @property
    def is_available(self) -> bool:
        return not self.dead

    def look_at(self, point: Vec3) -> None:
        dx, dz, length = self.pos.horizontal_to(point)
        if length < 1e-6:
            return
        self.facing = Vec3(dx / length, 0.0, dz / length)

    def inventory_snapshot(self) -> tuple[InventoryItem | None, ...]:
        return tuple(self.inventory)

    def to_state_payload(self) -> dict:
        payload = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "pos": self.pos.to_dict(),
            "facing": self.facing.to_dict(),
            "health": round(self.health, 1),
            "max_health": self.max_health,
            "dead": self.dead,
            "display_text": self.display_text,
        }
        if self.kind == EntityKind.ANIMAL:
            payload["animal_type"] = self.animal_type
            payload["aggressive"] = self.aggressive
        return payload


@dataclass(eq=False)
class WorldObject:
    id: str
    type: str
    pos: Vec3
    resource: str | None = None
    interactable: bool = True
    visible: bool = True
    health: float = 30.0
    kind: EntityKind = EntityKind.OBJECT

    @property
    def is_available(self) -> bool:
        return self.visible and self.interactable and self.health > 0

    def to_state_payload(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "resource": self.resource,
            "pos": self.pos.to_dict(),
            "available": self.is_available,
        }
