from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from npcmind.agents.agent import EntityKind


class AgentState(str, Enum):
    IDLE = "idle"
    ROAMING = "roaming"
    DECIDING = "deciding"
    MOVING_TO_TARGET = "movingToTarget"
    DEAD = "dead"


class AnimalState(str, Enum):
    IDLE = "idle"
    ROAMING = "roaming"
    ATTACKING = "attacking"
    DEAD = "dead"


@dataclass
class PersistentAction:
    """Remembered attack intent; refers to targets by id or type, never by live reference."""

    type: str
    target_id: str | None = None
    target_type: str | None = None
    target_kind: EntityKind | None = None
