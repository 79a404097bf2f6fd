from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Deque

from npcmind.agents.agent import Entity, EntityKind, Vec3
from npcmind.sim.registry import EntityRegistry


LOGGER = logging.getLogger("npcmind.memory.event_log")


def _utc_clock_time() -> str:
    return datetime.now(UTC).strftime("%H:%M:%S")


@dataclass(frozen=True)
class EventEntry:
    timestamp: str
    message: str
    kind: str = "note"
    actor_id: str | None = None
    target_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_prompt_line(self) -> str:
        return f"[{self.timestamp}] {self.message}"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ts": self.timestamp,
            "kind": self.kind,
            "text": self.message,
            "actor_id": self.actor_id,
        }
        if self.target_id is not None:
            payload["target_id"] = self.target_id
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class EventLog:
    """Append-only, bounded log of what one character has witnessed."""

    def __init__(self, max_entries: int = 50):
        self._entries: Deque[EventEntry] = deque(maxlen=max(1, max_entries))

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, entry: EventEntry | str) -> EventEntry:
        if isinstance(entry, str):
            entry = EventEntry(timestamp=_utc_clock_time(), message=entry)
        self._entries.append(entry)
        return entry

    def recent(self, limit: int) -> list[EventEntry]:
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]


class EventJournal:
    def __init__(
        self,
        entities: EntityRegistry,
        log_size: int = 50,
        history_limit: int = 300,
        hearing_radius: float = 30.0,
    ):
        self.entities = entities
        self.log_size = log_size
        self.hearing_radius = hearing_radius
        self.history: Deque[EventEntry] = deque(maxlen=history_limit)
        self.sequence = 0
        self._logs: dict[str, EventLog] = {}

    def events_since(self, sequence: int) -> list[EventEntry]:
        count = min(self.sequence - sequence, len(self.history))
        if count <= 0:
            return []
        return list(self.history)[-count:]

    def log_for(self, character_id: str) -> EventLog:
        log = self._logs.get(character_id)
        if log is None:
            log = EventLog(self.log_size)
            self._logs[character_id] = log
        return log

    def log_event(
        self,
        actor: Entity | None,
        kind: str,
        message: str,
        target: Entity | None = None,
        details: dict[str, Any] | None = None,
        position: Vec3 | None = None,
    ) -> EventEntry:
        entry = EventEntry(
            timestamp=_utc_clock_time(),
            message=message,
            kind=kind,
            actor_id=actor.id if actor is not None else None,
            target_id=target.id if target is not None else None,
            details=dict(details or {}),
        )
        self.history.append(entry)
        self.sequence += 1

        witnesses: dict[str, Entity] = {}
        origin = position or (actor.pos if actor is not None else None)
        if origin is not None:
            for entity in self.entities.query_radius(origin, self.hearing_radius):
                if entity.kind == EntityKind.CHARACTER:
                    witnesses[entity.id] = entity
        for participant in (actor, target):
            if participant is not None and participant.kind == EntityKind.CHARACTER:
                witnesses[participant.id] = participant

        for witness_id in witnesses:
            self.log_for(witness_id).add(entry)
        LOGGER.debug("event kind=%s witnesses=%d text=%r", kind, len(witnesses), message)
        return entry

    def history_payload(self, limit: int = 200, actor_id: str | None = None) -> list[dict[str, Any]]:
        items = list(self.history)
        if actor_id:
            items = [entry for entry in items if entry.actor_id == actor_id or entry.target_id == actor_id]
        return [entry.to_payload() for entry in items[-max(1, min(limit, 500)) :]]
